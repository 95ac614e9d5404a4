from enum import Enum

# failure taxonomy for domain-ownership verification; every value is a
# caller-visible reason string


class FailureReason(str, Enum):
    NO_DKIM_SIGNATURE = 'NoDkimSignature'
    UNSUPPORTED_ALGORITHM = 'UnsupportedAlgorithm'
    KEY_NOT_FOUND = 'KeyNotFound'
    INVALID_SIGNATURE = 'InvalidSignature'
    SESSION_NOT_FOUND = 'SessionNotFound'
    DOMAIN_MISMATCH = 'DomainMismatch'
    NONCE_NOT_FOUND = 'NonceNotFound'
    SUBJECT_NOT_SIGNED = 'SubjectNotSigned'
    MALFORMED_HEADERS = 'MalformedHeaders'
    INTERNAL_ERROR = 'InternalError'


class VerificationFailure(Exception):
    """A verification attempt that ended in one of the FailureReason kinds.

    The message is safe to show to the caller: it never carries key material,
    signature bytes or the canonicalized signing input.
    """

    def __init__(self, reason: FailureReason, message: str = None):
        self.reason = reason
        self.message = message or reason.value
        super().__init__(self.message)


class ParseError(VerificationFailure):
    def __init__(self, message: str = 'unable to parse message headers'):
        super().__init__(FailureReason.MALFORMED_HEADERS, message)


class RecordNotFound(Exception):
    """The DNS name exists but has no TXT answer, or does not exist at all."""


class DnsLookupError(Exception):
    """The DNS transport could not complete the query."""


class DnsTimeout(DnsLookupError):
    pass
