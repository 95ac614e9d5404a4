"""
In-memory session store with optional JSON persistence.

A session ties a claimed domain to a random nonce that the user puts into the
Subject of an email sent from that domain.  The verification engine only
ever calls get(); create() and discard() belong to whoever drives the flow.
"""

import json
import logging
import os
import secrets
import threading
import time
import uuid

from dataclasses import asdict, dataclass
from typing import Callable, Dict, Optional

import config

logger = logging.getLogger(__name__)


@dataclass
class Session:
    """
    One domain claim awaiting proof.

    Attributes:
        id: opaque, unguessable session token
        domain: claimed domain, lower-cased
        nonce: random token expected in the email Subject
        created_at: creation time in seconds since the epoch
        ttl: lifetime in seconds
    """
    id: str
    domain: str
    nonce: str
    created_at: float
    ttl: float = config.SESSION_TTL

    def is_expired(self, now: float = None) -> bool:
        now = time.time() if now is None else now
        return now - self.created_at >= self.ttl


class SessionStore:
    def __init__(self, path: str = None, ttl: float = config.SESSION_TTL,
                 clock: Callable[[], float] = time.time):
        self.path = path
        self.ttl = ttl
        self.clock = clock
        self._sessions: Dict[str, Session] = {}
        self._lock = threading.Lock()
        if self.path:
            self._load()

    def create(self, domain: str) -> Session:
        session = Session(
            id=str(uuid.uuid4()),
            domain=domain.strip().lower(),
            nonce=secrets.token_hex(8),
            created_at=self.clock(),
            ttl=self.ttl)
        with self._lock:
            self._sessions[session.id] = session
            self._persist()
        logger.info(f'created session {session.id} for domain {session.domain}')
        return session

    def get(self, session_id: str) -> Optional[Session]:
        with self._lock:
            self._prune()
            found = self._sessions.get(session_id)
            if found is None and self.path:
                # another process may have written it since we last looked
                self._load()
                found = self._sessions.get(session_id)
            return found

    def discard(self, session_id: str):
        with self._lock:
            if self._sessions.pop(session_id, None) is not None:
                self._persist()

    def __len__(self):
        return len(self._sessions)

    def _prune(self):
        now = self.clock()
        expired = [k for k, s in self._sessions.items() if s.is_expired(now)]
        for k in expired:
            del self._sessions[k]
        if expired:
            logger.debug(f'pruned {len(expired)} expired sessions')

    def _load(self):
        try:
            with open(self.path, 'r') as fh:
                stored = json.load(fh)
        except FileNotFoundError:
            return
        except (OSError, ValueError) as e:
            logger.warning(f'could not read sessions from {self.path}: {e}')
            return

        now = self.clock()
        for item in stored:
            session = Session(**item)
            if not session.is_expired(now):
                self._sessions[session.id] = session

    def _persist(self):
        if not self.path:
            return
        directory = os.path.dirname(self.path)
        if directory:
            os.makedirs(directory, exist_ok=True)
        with open(self.path, 'w') as fh:
            json.dump([asdict(s) for s in self._sessions.values()], fh)
