import logging

import dkim

import dkim_signature

from dkim_validator import DkimResult, subject_of
from errors import FailureReason, ParseError, RecordNotFound, VerificationFailure
from header_parser import parse_headers, split_message
from key_resolver import KeyResolver

logger = logging.getLogger(__name__)

# a module for validating a complete raw message with dkimpy, body hash included

LIBRARY_ALGORITHMS = ('rsa-sha256', 'ed25519-sha256')


class Library_Validator:
    def __init__(self, message_raw: bytes, key_resolver: KeyResolver, claimed_domain: str = None):
        if isinstance(message_raw, str):
            message_raw = message_raw.encode('utf-8', errors='surrogateescape')
        self.message_ = message_raw
        self.key_resolver_ = key_resolver
        self.claimed_domain_ = claimed_domain
        # key records already resolved for this message, by lower-cased DNS name
        self.records_ = {}
        self.key_missing_ = False

    def txt_lookup(self, name, timeout=None):
        # dkimpy hands over a fully qualified bytes name and wants the joined
        # TXT record back, or None when there is none
        if isinstance(name, bytes):
            name = name.decode('ascii')
        name = name.rstrip('.')

        record = self.records_.get(name.lower())
        if record is None:
            try:
                records = self.key_resolver_.txt_lookup(name)
            except RecordNotFound:
                records = []
            record = next((r for r in records if 'p=' in r), None)

        if record is None:
            self.key_missing_ = True
            return None
        return record.encode('utf-8')

    def resolve_key(self, chosen: dkim_signature.DKIM_Signature):
        # dkimpy turns key errors into a plain False, so RSA keys are
        # resolved (and cached) here first; ed25519 keys are left to dkimpy
        if not chosen.algorithm.startswith('rsa-'):
            return
        record, _ = self.key_resolver_.get_key_record(chosen.selector, chosen.domain)
        self.records_[f'{chosen.selector}._domainkey.{chosen.domain}'.lower()] = record

    def validate(self) -> DkimResult:
        header_text, _ = split_message(self.message_)
        headers = parse_headers(header_text)

        signatures = dkim_signature.from_parsed_headers(headers)
        chosen = dkim_signature.select_signature(signatures, self.claimed_domain_,
                                                 supported=LIBRARY_ALGORITHMS)
        self.resolve_key(chosen)

        try:
            verified = dkim.DKIM(self.message_, logger=logger).verify(
                idx=chosen.position, dnsfunc=self.txt_lookup)
        except dkim.KeyFormatError as e:
            logger.debug(f'dkimpy key error: {e}')
            verified = False
            self.key_missing_ = True
        except dkim.MessageFormatError as e:
            raise ParseError(f'message rejected by DKIM library: {e}')
        except dkim.DKIMException as e:
            logger.warning(f'DKIM library rejected signature for d={chosen.domain}: {e}')
            raise VerificationFailure(FailureReason.INVALID_SIGNATURE, 'dkim signature invalid')

        if not verified and self.key_missing_:
            raise VerificationFailure(FailureReason.KEY_NOT_FOUND,
                                      f'dkim public key not found for {chosen.selector}._domainkey.{chosen.domain}')
        if not verified:
            logger.warning(f'DKIM signature verification failed for d={chosen.domain} s={chosen.selector}')
            raise VerificationFailure(FailureReason.INVALID_SIGNATURE, 'dkim signature invalid')

        logger.info(f'DKIM signature verification succeeded for d={chosen.domain}')
        return DkimResult(
            domain=chosen.domain,
            selector=chosen.selector,
            subject=subject_of(headers.headers, chosen),
            signed_headers=list(chosen.signed_header_names))
