import asn1
import base64
import binascii
import logging
import re
import rsa

import dns.exception
import dns.resolver

from pyparsing import Optional, ParseException, Suppress
from pyparsing import pyparsing_common, rest_of_line

from errors import DnsLookupError, DnsTimeout, RecordNotFound

logger = logging.getLogger(__name__)

# rsaEncryption, the algorithm of an RSA SubjectPublicKeyInfo
RSA_ENCRYPTION_OID = '1.2.840.113549.1.1.1'

PEM_LINE_LENGTH = 64

TAG_LIST = pyparsing_common.identifier + Optional(Suppress('=') + rest_of_line)


def split_keypair(value: str):
    index = value.find('=')
    if index == -1:
        return (value)

    return (value[0:index], value[index+1:])


def parse_tag_list(record: str) -> dict:
    # parse the tag lists, but some elements may not be a tag list
    tag_dict = {}
    for piece in record.split(';'):
        piece = piece.strip()
        if not piece:
            continue
        try:
            elem = TAG_LIST.parse_string(piece).as_list()
        except ParseException:
            continue
        if len(elem) == 2:
            tag_dict.setdefault(elem[0].lower(), elem[1].strip())
        else:
            tag_dict.setdefault(elem[0].lower(), '')
    return tag_dict


def extract_key_material(record: str):
    """Return the p= value of a DKIM key record, or None.

    Quotes and whitespace left over from zone-file formatting are removed.
    An empty p= (a revoked key) also yields None.
    """
    tag_dict = parse_tag_list(record)

    version = tag_dict.get('v', 'DKIM1')  # RECOMMENDED
    if version != 'DKIM1':
        return None

    key_type = tag_dict.get('k', 'rsa')  # OPTIONAL
    if key_type != 'rsa':
        logger.debug(f'key type {key_type} not supported')
        return None

    public_key_encoded = re.sub(r'[\s"]+', '', tag_dict.get('p', ''))  # REQUIRED
    return public_key_encoded or None


def wrap_pem(public_key_encoded: str) -> str:
    lines = [public_key_encoded[i:i + PEM_LINE_LENGTH]
             for i in range(0, len(public_key_encoded), PEM_LINE_LENGTH)]
    return '-----BEGIN PUBLIC KEY-----\n' + '\n'.join(lines) + '\n-----END PUBLIC KEY-----\n'


def unpack_public_key(public_key_encoded: str) -> rsa.PublicKey:
    """Turn base64 key material into an rsa.PublicKey.

    Accepts a SubjectPublicKeyInfo (what DKIM publishes) or a bare PKCS#1
    RSAPublicKey.  Raises ValueError for anything else.
    """
    try:
        der = base64.b64decode(public_key_encoded, validate=True)
    except binascii.Error as e:
        raise ValueError(f'key material is not base64: {e}')

    decoder = asn1.Decoder()
    decoder.start(der)
    try:
        outer = decoder.peek()
        if outer is None or outer.nr != asn1.Numbers.Sequence:
            raise ValueError('key is not a DER sequence')
        decoder.enter()
        inner = decoder.peek()
        if inner is not None and inner.nr == asn1.Numbers.Integer:
            pkcs1 = True
        else:
            pkcs1 = False
            decoder.enter()
            _, algorithm = decoder.read()
    except (asn1.Error, IndexError) as e:
        raise ValueError(f'key is not valid DER: {e}')

    if not pkcs1 and algorithm != RSA_ENCRYPTION_OID:
        raise ValueError(f'key algorithm {algorithm} is not rsaEncryption')

    try:
        if pkcs1:
            return rsa.PublicKey.load_pkcs1(der, format='DER')
        return rsa.PublicKey.load_pkcs1_openssl_pem(wrap_pem(public_key_encoded).encode('ascii'))
    except Exception as e:
        # rsa reports broken structures through its ASN.1 backend's own errors
        raise ValueError(f'key could not be loaded: {e!r}') from e


def resolve_txt(name: str, timeout: float) -> list:
    """Look up the TXT records at name, one string per record.

    The character-strings of each record are concatenated; a single attempt
    bounded by timeout, no retries.
    """
    try:
        resolver = dns.resolver.Resolver()
        # one server, one try: per-server timeout and overall lifetime coincide
        resolver.nameservers = resolver.nameservers[:1]
        resolver.timeout = timeout
        resolver.lifetime = timeout
        answer = resolver.resolve(name, 'TXT', lifetime=timeout)
    except (dns.resolver.NXDOMAIN, dns.resolver.NoAnswer) as e:
        raise RecordNotFound(name) from e
    except dns.exception.Timeout as e:
        raise DnsTimeout(f'TXT lookup for {name} timed out after {timeout}s') from e
    except dns.exception.DNSException as e:
        raise DnsLookupError(f'TXT lookup for {name} failed: {e!r}') from e

    return [b''.join(rdata.strings).decode('ascii', errors='replace') for rdata in answer]
