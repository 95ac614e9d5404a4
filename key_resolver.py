import logging
import threading
import time

from collections import OrderedDict
from typing import Callable, List, Tuple

import rsa

import config

from errors import FailureReason, RecordNotFound, VerificationFailure
from utility import extract_key_material, resolve_txt, unpack_public_key

logger = logging.getLogger(__name__)


class KeyCache:
    """A bounded, TTL-expiring map of (selector, domain) to resolved keys."""

    def __init__(self, ttl: float = config.KEY_CACHE_TTL, max_entries: int = config.KEY_CACHE_SIZE,
                 clock: Callable[[], float] = time.monotonic):
        self.ttl = ttl
        self.max_entries = max_entries
        self.clock = clock
        self._entries = OrderedDict()
        self._lock = threading.Lock()

    def get(self, selector: str, domain: str):
        key = (selector, domain.lower())
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            stored_at, value = entry
            if self.clock() - stored_at >= self.ttl:
                del self._entries[key]
                return None
            return value

    def put(self, selector: str, domain: str, entry):
        key = (selector, domain.lower())
        with self._lock:
            self._entries[key] = (self.clock(), entry)
            self._entries.move_to_end(key)
            while len(self._entries) > self.max_entries:
                self._entries.popitem(last=False)

    def __len__(self):
        return len(self._entries)


class KeyResolver:
    """Turns (selector, domain) into an rsa.PublicKey published in DNS.

    txt_lookup takes a DNS name and returns the TXT records found there, one
    string per record with its character-strings already joined.  It raises
    RecordNotFound when there is nothing, and DnsLookupError when the query
    itself could not complete.
    """

    def __init__(self, txt_lookup: Callable[[str], List[str]] = None, cache: KeyCache = None,
                 timeout: float = config.DNS_TIMEOUT):
        self.timeout = timeout
        self.txt_lookup = txt_lookup or (lambda name: resolve_txt(name, self.timeout))
        self.cache = cache

    def lookup_records(self, selector: str, domain: str) -> List[str]:
        dns_query = f'{selector}._domainkey.{domain}'
        logger.debug(f'querying TXT {dns_query}')
        return self.txt_lookup(dns_query)

    def get_key_record(self, selector: str, domain: str) -> Tuple[str, rsa.PublicKey]:
        """Return the TXT record carrying the key and the key itself."""
        if self.cache is not None:
            entry = self.cache.get(selector, domain)
            if entry is not None:
                logger.debug(f'key for {selector}._domainkey.{domain} served from cache')
                return entry

        try:
            records = self.lookup_records(selector, domain)
        except RecordNotFound:
            records = []

        entry = None
        for record in records:
            public_key_encoded = extract_key_material(record)
            if public_key_encoded is None:
                continue
            try:
                entry = (record, unpack_public_key(public_key_encoded))
                break
            except ValueError as e:
                logger.debug(f'unusable key record at {selector}._domainkey.{domain}: {e}')

        if entry is None:
            # no record, no p= and a broken key all look the same to the caller
            raise VerificationFailure(FailureReason.KEY_NOT_FOUND,
                                      f'dkim public key not found for {selector}._domainkey.{domain}')

        if self.cache is not None:
            self.cache.put(selector, domain, entry)
        return entry

    def get_public_key(self, selector: str, domain: str) -> rsa.PublicKey:
        _, public_key = self.get_key_record(selector, domain)
        return public_key
