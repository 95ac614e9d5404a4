import base64
import hashlib
import logging
import re

from collections import defaultdict
from typing import List

from header_parser import RawHeader

logger = logging.getLogger(__name__)

# this module helps with the canonicalization requirement for DKIM verification
# see - RFC 6376 sections 3.4 and 3.7

# FWS  =  ([*WSP CRLF] 1*WSP) /  obs-FWS ; Folding white space  [RFC5322]
FWS = r'(?:(?:\s*\r?\n)?\s+)?'
RE_BTAG = re.compile(r'((?:(?<=[;\s])|^)b' + FWS + r'=)(?:' + FWS + r'[a-zA-Z0-9+/=])*')


def strip_trailing_lines(message_part: bytes):
    assert(isinstance(message_part, bytes))
    # trim the empty lines at the end of the message body
    while message_part.endswith(b'\r\n'):
        message_part = message_part[:-2]

    if message_part == b'':
        return b'\r\n'

    return message_part + b'\r\n'


def reduce_whitespace(message_part: bytes):
    # per line: drop trailing whitespace, collapse the rest to single spaces
    lines = message_part.split(b'\r\n')
    return b'\r\n'.join(re.sub(b'[\t ]+', b' ', line).rstrip(b' ') for line in lines)


def relaxed_body(message_part: bytes):
    message_part = strip_trailing_lines(reduce_whitespace(message_part))
    # an empty body canonicalizes to nothing at all in relaxed mode
    return b'' if message_part == b'\r\n' else message_part


def simple_header(raw_block: str):
    return raw_block if raw_block.endswith('\r\n') else raw_block + '\r\n'


def relaxed_header(raw_block: str):
    name, _, value = raw_block.partition(':')
    value = re.sub(r'\r?\n', '', value)
    value = re.sub(r'[ \t]+', ' ', value).strip()
    return f'{name.rstrip().lower()}:{value}\r\n'


class Canonicalizer:
    name = None
    apply_header = None
    apply_body = None

simple = Canonicalizer()
simple.name = 'simple'
simple.apply_body = strip_trailing_lines
simple.apply_header = simple_header

relaxed = Canonicalizer()
relaxed.name = 'relaxed'
relaxed.apply_body = relaxed_body
relaxed.apply_header = relaxed_header

CANONICALIZERS = {
    'simple': simple,
    'relaxed': relaxed,
}


def get_canonicalizer(algo: str) -> Canonicalizer:
    try:
        return CANONICALIZERS[algo]
    except KeyError:
        raise ValueError(f'unknown canonicalization algo {algo}')


def select_headers(headers: List[RawHeader], signed_header_names: List[str]) -> List[RawHeader]:
    """Select the header occurrences fed to the signature, in h= order.

    Each name takes the bottom-most occurrence not used yet.  A name listed
    more often than it occurs contributes nothing for the surplus entries.

    >>> h = [RawHeader('A', '1', 'A: 1', 0), RawHeader('B', '2', 'B: 2', 1), RawHeader('A', '3', 'A: 3', 2)]
    >>> [x.index for x in select_headers(h, ['a', 'a', 'b', 'a'])]
    [2, 0, 1]
    """
    remaining = defaultdict(list)
    for header in headers:
        remaining[header.key].append(header.index)

    position = {header.index: header for header in headers}
    selected = []
    for name in signed_header_names:
        indices = remaining.get(name.lower())
        if not indices:
            continue
        selected.append(position[indices.pop()])
    return selected


def blank_signature(raw_block: str):
    # the DKIM-Signature header with the value of the "b=" tag (including the
    # folding inside it) deleted
    name, _, value = raw_block.partition(':')
    return name + ':' + RE_BTAG.sub(r'\1', value)


def signing_input(headers: List[RawHeader], signed_header_names: List[str],
                  signature_header: RawHeader, canonicalizer: Canonicalizer) -> bytes:
    """Rebuild the exact byte sequence the signer hashed.

    The header fields named by h=, each canonicalized and CRLF-terminated,
    followed by the DKIM-Signature header itself with an empty b= and no
    trailing CRLF.
    """
    selected = select_headers(headers, signed_header_names)
    logger.debug(f'signed header occurrences: {[h.index for h in selected]}')

    canonical = ''.join(canonicalizer.apply_header(h.raw_block) for h in selected)
    canonical += canonicalizer.apply_header(blank_signature(signature_header.raw_block))[:-2]
    # undecodable 8-bit header bytes travel as surrogates and go back out unchanged
    return canonical.encode('utf-8', errors='surrogateescape')


def body_hash(body: bytes, canonicalizer: Canonicalizer, length: int = None) -> str:
    message_body = canonicalizer.apply_body(body)
    if length is not None:
        # only the first l= octets were signed
        message_body = message_body[0:length]
    return base64.b64encode(hashlib.sha256(message_body).digest()).decode()
