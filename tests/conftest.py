"""
Pytest configuration and fixtures for all tests.
"""

import base64
import os
import sys

import pytest
import rsa

# Add the repository root to the Python path before any imports
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from errors import RecordNotFound

SELECTOR = 'sel1'
DOMAIN = 'example.com'
NONCE = '7f3a9c21'

BASE_HEADERS = [
    ('From', 'Alice <alice@example.com>'),
    ('To', 'verify@proofs.test'),
    ('Subject', f'Verify {NONCE}'),
    ('Date', 'Mon, 19 Oct 2026 10:00:00 +0000'),
]


def _der_length(n):
    if n < 0x80:
        return bytes([n])
    body = n.to_bytes((n.bit_length() + 7) // 8, 'big')
    return bytes([0x80 | len(body)]) + body


def _der(tag, content):
    return bytes([tag]) + _der_length(len(content)) + content


def spki_base64(public_key):
    """Base64 SubjectPublicKeyInfo, the form DKIM key records publish."""
    pkcs1 = public_key.save_pkcs1(format='DER')
    algorithm = _der(0x30, bytes.fromhex('06092a864886f70d010101') + bytes.fromhex('0500'))
    spki = _der(0x30, algorithm + _der(0x03, b'\x00' + pkcs1))
    return base64.b64encode(spki).decode()


def key_record(public_key):
    return f'v=DKIM1; k=rsa; p={spki_base64(public_key)}'


def relaxed_line(name, value):
    # independent rendition of relaxed header canonicalization, no CRLF
    return f'{name.strip().lower()}:{" ".join(value.split())}'


def fold_value(value, width=40):
    return '\r\n\t'.join(value[i:i + width] for i in range(0, len(value), width))


def sign_headers(private_key, headers=None, domain=DOMAIN, selector=SELECTOR,
                 signed=('from', 'subject', 'date'), algorithm='rsa-sha256', fold=False):
    """Build header text carrying a relaxed/relaxed DKIM-Signature.

    The signature covers the named headers, bottom-most occurrence first,
    the way a signer picks them.
    """
    headers = list(BASE_HEADERS if headers is None else headers)
    tags = (f'v=1; a={algorithm}; c=relaxed/relaxed; d={domain}; s={selector}; '
            f'h={":".join(signed)}; bh=47DEQpj8HBSa+/TImW+5JCeuQeRkm5NMpJWZG3hSuFU=; b=')

    used = set()
    lines = []
    for name in signed:
        for i in range(len(headers) - 1, -1, -1):
            if i not in used and headers[i][0].lower() == name:
                used.add(i)
                lines.append(relaxed_line(*headers[i]) + '\r\n')
                break
    data = ''.join(lines) + relaxed_line('DKIM-Signature', tags)
    signature = base64.b64encode(rsa.sign(data.encode('utf-8', errors='surrogateescape'),
                                          private_key, 'SHA-256')).decode()

    if fold:
        dkim_line = 'DKIM-Signature: ' + tags.replace(' h=', '\r\n\th=') + '\r\n\t' + fold_value(signature)
    else:
        dkim_line = 'DKIM-Signature: ' + tags + signature
    return '\r\n'.join([dkim_line] + [f'{n}: {v}' for n, v in headers]) + '\r\n'


class FakeDns:
    """TXT lookup stand-in: name -> list of records."""

    def __init__(self, records=None, error=None):
        self.records = dict(records or {})
        self.error = error
        self.queries = []

    def __call__(self, name):
        self.queries.append(name)
        if self.error is not None:
            raise self.error
        if name not in self.records:
            raise RecordNotFound(name)
        return list(self.records[name])


@pytest.fixture(scope='session')
def keypair():
    return rsa.newkeys(1024)


@pytest.fixture(scope='session')
def public_key(keypair):
    return keypair[0]


@pytest.fixture(scope='session')
def private_key(keypair):
    return keypair[1]


@pytest.fixture
def fake_dns(public_key):
    return FakeDns({f'{SELECTOR}._domainkey.{DOMAIN}': [key_record(public_key)]})
