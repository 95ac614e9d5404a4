"""
Domain-ownership binding.

Turns "this DKIM signature verifies" into "this session's holder controls mail
for the claimed domain".  Checks run in a fixed order and stop at the first
failure:

1. the session exists and has not expired
2. a usable DKIM signature verifies
3. the signing domain equals the claimed domain exactly (no subdomains)
4. the Subject contains the session nonce, case-insensitively
5. the Subject is one of the signed headers

Every failure comes back as a VerificationOutcome; nothing is raised to the
caller.
"""

import logging

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

from Crypto.Hash import keccak

from dkim_validator import DKIM_Validator, DkimResult
from errors import FailureReason, VerificationFailure
from header_parser import parse_headers
from key_resolver import KeyResolver
from library_validator import Library_Validator
from session_store import Session

logger = logging.getLogger(__name__)


class BindingState(Enum):
    NO_SESSION = 'NoSession'
    HEADERS_SUBMITTED = 'HeadersSubmitted'
    SIGNATURE_INVALID = 'SignatureInvalid'
    DOMAIN_MISMATCH = 'DomainMismatch'
    NONCE_MISSING = 'NonceMissing'
    SUBJECT_UNSIGNED = 'SubjectUnsigned'
    BOUND = 'Bound'


@dataclass
class VerificationOutcome:
    """
    The only value the engine hands back.

    Attributes:
        ok: whether the session is now proven
        state: where the binding state machine stopped
        domain: verified signing domain, lower-cased
        subject: Subject text that was checked for the nonce
        signed_headers: h= list of the verified signature
        failure_reason: why it failed (None on success)
        message: caller-safe description of the failure
        domain_id: identifier derived from the domain (success only)
    """
    ok: bool
    state: BindingState
    domain: Optional[str] = None
    subject: Optional[str] = None
    signed_headers: List[str] = field(default_factory=list)
    failure_reason: Optional[FailureReason] = None
    message: Optional[str] = None
    domain_id: Optional[str] = None

    @classmethod
    def failed(cls, state: BindingState, failure: VerificationFailure, result: DkimResult = None):
        outcome = cls(ok=False, state=state, failure_reason=failure.reason, message=failure.message)
        if result is not None:
            outcome.domain = result.domain.lower()
            outcome.subject = result.subject
            outcome.signed_headers = list(result.signed_headers)
        return outcome

    def to_dict(self) -> Dict[str, Any]:
        result = {'ok': self.ok, 'state': self.state.value}
        if self.domain is not None:
            result['domain'] = self.domain
        if self.domain_id is not None:
            result['domainId'] = self.domain_id
        if self.subject is not None:
            result['subject'] = self.subject
        if self.signed_headers:
            result['signedHeaders'] = self.signed_headers
        if self.failure_reason is not None:
            result['reason'] = self.failure_reason.value
            result['message'] = self.message
        return result

    def __repr__(self) -> str:
        if self.ok:
            return f'VerificationOutcome(ok=True, domain={self.domain})'
        return f'VerificationOutcome(ok=False, reason={self.failure_reason.value})'


def keccak256_hex(data: bytes) -> str:
    k = keccak.new(digest_bits=256)
    k.update(data)
    return '0x' + k.hexdigest()


def domain_identifier(domain: str) -> str:
    """Stable identifier for a verified domain, used to key downstream state."""
    return keccak256_hex(domain.lower().encode('utf-8'))


def check_binding(session: Session, result: DkimResult) -> VerificationOutcome:
    """Steps 3-5: tie a verified signature to the session's claim."""
    domain = result.domain.lower()

    # exact equality: proving mail.example.com does not prove example.com
    if domain != session.domain.lower():
        return VerificationOutcome.failed(
            BindingState.DOMAIN_MISMATCH,
            VerificationFailure(FailureReason.DOMAIN_MISMATCH, 'domain mismatch'),
            result)

    subject = (result.subject or '').lower()
    if session.nonce.lower() not in subject:
        return VerificationOutcome.failed(
            BindingState.NONCE_MISSING,
            VerificationFailure(FailureReason.NONCE_NOT_FOUND, 'nonce not found in subject'),
            result)

    if 'subject' not in [h.lower() for h in result.signed_headers]:
        return VerificationOutcome.failed(
            BindingState.SUBJECT_UNSIGNED,
            VerificationFailure(FailureReason.SUBJECT_NOT_SIGNED, 'subject not signed by dkim'),
            result)

    return VerificationOutcome(
        ok=True,
        state=BindingState.BOUND,
        domain=domain,
        subject=result.subject,
        signed_headers=list(result.signed_headers),
        domain_id=domain_identifier(domain))


class DomainOwnershipVerifier:
    """
    Verification engine entry point.

    Holds no per-request state, so one instance can serve concurrent calls.
    The session store only needs a get(session_id) returning a live Session
    or None, judging expiry by its own clock; the key resolver carries the
    DNS lookup and its cache.
    """

    def __init__(self, session_store, key_resolver: KeyResolver = None):
        self.session_store = session_store
        self.key_resolver = key_resolver or KeyResolver()

    def verify_headers(self, headers_text: str, session_id: str) -> VerificationOutcome:
        """Verify pasted header text; the body hash is not recomputed."""
        def run(session):
            headers = parse_headers(headers_text)
            return DKIM_Validator(headers, self.key_resolver, claimed_domain=session.domain).validate()

        return self._verify(session_id, run)

    def verify_message(self, message_raw: bytes, session_id: str) -> VerificationOutcome:
        """Verify a complete raw message through the DKIM library."""
        def run(session):
            return Library_Validator(message_raw, self.key_resolver, claimed_domain=session.domain).validate()

        return self._verify(session_id, run)

    def _verify(self, session_id, run) -> VerificationOutcome:
        try:
            session = self.session_store.get(session_id) if session_id else None
            # the store alone decides whether a session is still live
            if session is None:
                # may simply not be visible yet; the caller can retry
                logger.warning(f'session {session_id!r} not found')
                return VerificationOutcome.failed(
                    BindingState.NO_SESSION,
                    VerificationFailure(FailureReason.SESSION_NOT_FOUND, 'session not found'))

            try:
                result = run(session)
            except VerificationFailure as e:
                logger.warning(f'DKIM check failed for session {session_id}: {e.reason.value}: {e.message}')
                return VerificationOutcome.failed(BindingState.SIGNATURE_INVALID, e)

            outcome = check_binding(session, result)
        except Exception:
            logger.exception(f'verification for session {session_id!r} could not complete')
            return VerificationOutcome.failed(
                BindingState.HEADERS_SUBMITTED,
                VerificationFailure(FailureReason.INTERNAL_ERROR, 'verification could not be completed'))

        if outcome.ok:
            logger.info(f'session {session_id} bound to domain {outcome.domain}')
        else:
            logger.warning(f'binding failed for session {session_id}: {outcome.failure_reason.value}')
        return outcome
