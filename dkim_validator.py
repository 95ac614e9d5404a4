from dataclasses import dataclass, field
from email.errors import HeaderParseError
from email.header import decode_header, make_header
from functools import cached_property
from typing import List, Optional

import logging
import rsa
import rsa.pkcs1
import dkim_signature

from canonicalization import body_hash, get_canonicalizer, select_headers, signing_input
from errors import FailureReason, VerificationFailure
from header_parser import ParsedHeaders, RawHeader
from key_resolver import KeyResolver

logger = logging.getLogger(__name__)

# a module for validating the DKIM signature on a list of headers

# see - https://www.ietf.org/rfc/rfc6376.txt


@dataclass
class DkimResult:
    """What a verified signature proves; no key material or signature bytes."""
    domain: str
    selector: str
    subject: Optional[str] = None
    signed_headers: List[str] = field(default_factory=list)


def verify_signature(data: bytes, signature: bytes, public_key: rsa.PublicKey) -> bool:
    # RSASSA-PKCS1-v1_5 with SHA-256; a signature that does not check out is
    # an answer, not an error
    try:
        hash_method = rsa.verify(data, signature, public_key)
    except (rsa.pkcs1.VerificationError, OverflowError, ValueError) as e:
        logger.debug(f'signature did not verify: {e!r}')
        return False
    return hash_method == 'SHA-256'


def decode_subject(value: str) -> str:
    # RFC 2047 encoded-words; anything undecodable is compared as received
    try:
        return str(make_header(decode_header(value)))
    except (HeaderParseError, LookupError, UnicodeError, ValueError):
        return value


def subject_of(headers: List[RawHeader], signature: dkim_signature.DKIM_Signature) -> Optional[str]:
    # the Subject occurrence the signature covers, else the last one present
    if signature.signs_subject:
        selected = [h for h in select_headers(headers, signature.signed_header_names)
                    if h.key == 'subject']
        if selected:
            return decode_subject(selected[0].value)

    subjects = [h for h in headers if h.key == 'subject']
    return decode_subject(subjects[-1].value) if subjects else None


class DKIM_Validator:
    def __init__(self, headers: ParsedHeaders, key_resolver: KeyResolver,
                 claimed_domain: str = None, body: bytes = None):
        assert(isinstance(headers, ParsedHeaders))
        if not headers.complete:
            logger.debug('no end of headers found, treating the input as headers only')
        self.headers_ = headers
        self.key_resolver_ = key_resolver
        self.claimed_domain_ = claimed_domain
        # when a body is supplied the bh= tag is checked as well
        assert(body is None or isinstance(body, bytes))
        self.message_ = body

    @cached_property
    def dkim_(self) -> dkim_signature.DKIM_Signature:
        signatures = dkim_signature.from_parsed_headers(self.headers_)
        return dkim_signature.select_signature(signatures, self.claimed_domain_)

    @cached_property
    def header_algo(self):
        return get_canonicalizer(self.dkim_.header_algo)

    @cached_property
    def body_algo(self):
        return get_canonicalizer(self.dkim_.body_algo)

    @cached_property
    def public_key(self):
        # Retrieves the public key from DNS
        return self.key_resolver_.get_public_key(self.dkim_.selector, self.dkim_.domain)

    @cached_property
    def signed_data(self) -> bytes:
        # The header fields specified by the "h=" tag, in the order
        # specified in that tag, canonicalized using the header
        # canonicalization algorithm specified in the "c=" tag, then the
        # DKIM-Signature header field with an empty "b=" and no trailing CRLF.
        return signing_input(self.headers_.headers, self.dkim_.signed_header_names,
                             self.dkim_.header, self.header_algo)

    def validate_body_hash(self):
        calculated = body_hash(self.message_, self.body_algo, self.dkim_.body_length)
        logger.debug(f'body_hash[calculated] => {calculated}')
        logger.debug(f'body_hash[received] => {self.dkim_.body_hash}')
        if calculated != self.dkim_.body_hash:
            raise VerificationFailure(FailureReason.INVALID_SIGNATURE, 'body hash did not verify')

    def validate(self) -> DkimResult:
        dkim = self.dkim_

        if self.message_ is not None:
            self.validate_body_hash()

        # Using the signature conveyed in the "b=" tag, verify the
        # signature against the header hash using the mechanism appropriate
        # for the public-key algorithm described in the "a=" tag.
        if not verify_signature(self.signed_data, dkim.signature, self.public_key):
            logger.warning(f'DKIM signature verification failed for d={dkim.domain} s={dkim.selector}')
            raise VerificationFailure(FailureReason.INVALID_SIGNATURE, 'dkim signature invalid')

        logger.info(f'DKIM signature verification succeeded for d={dkim.domain}')
        return DkimResult(
            domain=dkim.domain,
            selector=dkim.selector,
            subject=subject_of(self.headers_.headers, dkim),
            signed_headers=list(dkim.signed_header_names))
