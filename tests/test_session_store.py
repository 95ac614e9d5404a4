"""
Tests for the session store.
"""

import json

from session_store import Session, SessionStore


class FakeClock:
    def __init__(self, now=1000.0):
        self.now = now

    def __call__(self):
        return self.now


class TestSession:
    """Test session expiry."""

    def test_is_expired(self):
        """Test a session expires exactly at its TTL."""
        session = Session(id='x', domain='example.com', nonce='n', created_at=100.0, ttl=10)

        assert session.is_expired(109.9) is False
        assert session.is_expired(110.0) is True


class TestSessionStore:
    """Test creating, fetching and expiring sessions."""

    def test_create(self):
        """Test a new session has an id, a random nonce and a normalized domain."""
        store = SessionStore()

        first = store.create('  Example.COM ')
        second = store.create('example.com')

        assert first.domain == 'example.com'
        assert len(first.nonce) == 16
        assert first.id != second.id
        assert first.nonce != second.nonce
        assert store.get(first.id) == first
        assert len(store) == 2

    def test_unknown(self):
        """Test an unknown id is None."""
        assert SessionStore().get('nope') is None

    def test_discard(self):
        """Test a discarded session is gone."""
        store = SessionStore()
        session = store.create('example.com')

        store.discard(session.id)
        store.discard(session.id)

        assert store.get(session.id) is None

    def test_expiry(self):
        """Test sessions disappear once their TTL has passed."""
        clock = FakeClock()
        store = SessionStore(ttl=60, clock=clock)
        session = store.create('example.com')

        clock.now += 59
        assert store.get(session.id) == session
        clock.now += 1
        assert store.get(session.id) is None
        assert len(store) == 0


class TestPersistence:
    """Test the JSON file behind the store."""

    def test_round_trip(self, tmp_path):
        """Test a second store sees sessions the first one wrote."""
        path = str(tmp_path / 'data' / 'sessions.json')
        session = SessionStore(path=path).create('example.com')

        assert SessionStore(path=path).get(session.id) == session

    def test_picks_up_late_writes(self, tmp_path):
        """Test a session written by another store after startup is found."""
        path = str(tmp_path / 'sessions.json')
        reader = SessionStore(path=path)
        session = SessionStore(path=path).create('example.com')

        assert reader.get(session.id) == session

    def test_expired_not_loaded(self, tmp_path):
        """Test stale sessions on disk are ignored."""
        path = tmp_path / 'sessions.json'
        path.write_text(json.dumps([
            {'id': 'old', 'domain': 'example.com', 'nonce': 'n', 'created_at': 0.0, 'ttl': 10},
        ]))

        assert SessionStore(path=str(path), clock=FakeClock(1000.0)).get('old') is None

    def test_unreadable_file(self, tmp_path):
        """Test a corrupt file leaves an empty store."""
        path = tmp_path / 'sessions.json'
        path.write_text('{not json')

        store = SessionStore(path=str(path))

        assert len(store) == 0
