#!/usr/bin/env python

import argparse
import json
import logging
import sys
import time

import config

from binding import DomainOwnershipVerifier
from commitments import COMMITMENT, CommitmentRegistry
from key_resolver import KeyCache, KeyResolver
from session_store import Session, SessionStore


def parse_args(argv=None):
    parser = argparse.ArgumentParser (description = 'Domain ownership verifier')
    parser.add_argument ('-d', '--debug', dest='debug', action='store_true', help='Enable debugging logs')
    parser.add_argument ('-f', '--file', dest='filename', action='store', required=True, help='Headers or raw message to verify')
    parser.add_argument ('--raw', dest='raw', action='store_true', help='Treat the file as a full raw message and verify it with the DKIM library')
    parser.add_argument ('--session-id', dest='session_id', action='store', help='Session to bind, read from the sessions file')
    parser.add_argument ('--sessions-file', dest='sessions_file', action='store', default=config.SESSIONS_FILE, help='Where sessions are persisted')
    parser.add_argument ('--domain', dest='domain', action='store', help='Claimed domain for an ad-hoc session')
    parser.add_argument ('--nonce', dest='nonce', action='store', help='Nonce for an ad-hoc session')
    parser.add_argument ('--dns-timeout', dest='dns_timeout', action='store', type=float, default=config.DNS_TIMEOUT, help='DNS lookup timeout in seconds')
    parser.add_argument ('--commitment', dest='commitment', action='store', help='Commitment to register for the domain once it is bound')
    parser.add_argument ('--commitments-file', dest='commitments_file', action='store', default=config.COMMITMENTS_FILE, help='Where commitments are persisted')
    args = parser.parse_args(argv)

    if not args.session_id and not (args.domain and args.nonce):
        parser.error('either --session-id or both --domain and --nonce are required')
    if args.commitment and not COMMITMENT.match(args.commitment.lower()):
        parser.error('--commitment must be 0x followed by 64 hex digits')
    return args


class AdHocSessions:
    # a single session described on the command line
    def __init__(self, session: Session):
        self.session = session

    def get(self, session_id):
        if session_id != self.session.id or self.session.is_expired():
            return None
        return self.session


def main(argv=None) -> int:
    args = parse_args(argv)

    logging_level = logging.DEBUG if args.debug else logging.INFO
    logging.basicConfig(level = logging_level)

    if args.session_id:
        sessions = SessionStore(path=args.sessions_file)
        session_id = args.session_id
    else:
        session = Session(id='cli', domain=args.domain.lower(), nonce=args.nonce,
                          created_at=time.time())
        sessions = AdHocSessions(session)
        session_id = session.id

    key_resolver = KeyResolver(cache=KeyCache(), timeout=args.dns_timeout)
    verifier = DomainOwnershipVerifier(sessions, key_resolver)

    with open(args.filename, 'rb') as fh:
        message_raw = fh.read()

    if args.raw:
        outcome = verifier.verify_message(message_raw, session_id)
    else:
        outcome = verifier.verify_headers(message_raw.decode('utf-8', errors='surrogateescape'), session_id)

    if outcome.ok and args.commitment:
        CommitmentRegistry(path=args.commitments_file).add(outcome.domain, args.commitment)

    print(json.dumps(outcome.to_dict(), indent=2))
    return 0 if outcome.ok else 1


if __name__ == '__main__':
    sys.exit(main())
