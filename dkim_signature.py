import base64
import binascii
import logging
import re

from typing import List, Optional

from errors import FailureReason, VerificationFailure
from header_parser import ParsedHeaders, RawHeader
from utility import split_keypair

logger = logging.getLogger(__name__)

DEFAULT_ALGORITHM = 'rsa-sha256'

DEFAULT_CANONICALIZATION = 'simple/simple'

CANONICALIZATION_MODES = ('simple', 'relaxed')

SUPPORTED_ALGORITHMS = ('rsa-sha256',)


class DKIM_Signature():
    """The semantic tags of one DKIM-Signature header.

    Instances are only built by from_header(), which rejects any header that
    is missing d=, s=, a non-empty h= or a decodable b=.
    """

    def __init__(self, header: RawHeader, tags: dict, position: int):
        self.header = header
        # position among the DKIM-Signature headers of the message, topmost is 0
        self.position = position

        # a= The algorithm used to generate the signature (plain-text;
        #    REQUIRED).
        self.algorithm = tags.get('a', DEFAULT_ALGORITHM).lower()

        # d= The SDID claiming responsibility for an introduction of a message
        #    into the mail stream.  Case is preserved here; comparisons must
        #    lower-case it themselves.
        self.domain = tags['d']

        # s= The selector subdividing the namespace for the "d=" (domain) tag.
        self.selector = tags['s']

        # h= Signed header fields.  A colon-separated list of header field
        #    names, compared case-insensitively, in the order presented to the
        #    signing algorithm.  The list MUST NOT be empty.
        self.signed_header_names = [x.strip().lower() for x in tags['h'].split(':') if x.strip()]

        # b= The signature data (base64; REQUIRED).  Whitespace is ignored in
        #    this value.
        self.signature = tags['b']

        # c= Message canonicalization, "header/body".  If only one algorithm
        #    is named, "simple" is used for the body.
        c_value = tags.get('c', DEFAULT_CANONICALIZATION).lower()
        header_algo, _, body_algo = c_value.partition('/')
        self.header_algo = header_algo.strip()
        self.body_algo = body_algo.strip() or 'simple'

        self.body_hash = re.sub(r'\s+', '', tags.get('bh', ''))
        self.body_length = int(tags['l']) if tags.get('l', '').isdigit() else None

    @property
    def canonicalization(self):
        return self.header_algo, self.body_algo

    @property
    def signs_subject(self) -> bool:
        return 'subject' in self.signed_header_names

    def __repr__(self):
        return (f'DKIM_Signature(a={self.algorithm}, d={self.domain}, s={self.selector}, '
                f'h={":".join(self.signed_header_names)}, c={self.header_algo}/{self.body_algo})')


def parse_tags(value: str) -> dict:
    tags = {}
    for piece in value.split(';'):
        piece = piece.strip()
        if not piece:
            continue
        pair = split_keypair(piece)
        if not isinstance(pair, tuple):
            # a piece with no '=' carries no tag
            continue
        name, tag_value = pair
        # the first occurrence of a tag wins
        tags.setdefault(name.strip().lower(), tag_value.strip())
    return tags


def from_header(header: RawHeader, position: int = 0) -> Optional[DKIM_Signature]:
    tags = parse_tags(header.value)

    for required in ('d', 's', 'h', 'b'):
        if not tags.get(required):
            logger.debug(f'DKIM-Signature #{position} missing {required}=, ignoring it')
            return None

    if not [x for x in tags['h'].split(':') if x.strip()]:
        logger.debug(f'DKIM-Signature #{position} has an empty h=, ignoring it')
        return None

    try:
        tags['b'] = base64.b64decode(re.sub(r'\s+', '', tags['b']), validate=True)
    except (binascii.Error, ValueError):
        logger.debug(f'DKIM-Signature #{position} has an undecodable b=, ignoring it')
        return None

    signature = DKIM_Signature(header, tags, position)
    if (signature.header_algo not in CANONICALIZATION_MODES
            or signature.body_algo not in CANONICALIZATION_MODES):
        logger.debug(f'DKIM-Signature #{position} has an unknown c= value, ignoring it')
        return None

    return signature


def from_parsed_headers(headers: ParsedHeaders) -> List[DKIM_Signature]:
    # 6.1 - Extract signatures from the message
    signatures = []
    for position, header in enumerate(headers.dkim_signatures):
        signature = from_header(header, position)
        if signature is not None:
            signatures.append(signature)
    return signatures


def select_signature(signatures: List[DKIM_Signature], claimed_domain: str = None,
                     supported=SUPPORTED_ALGORITHMS) -> DKIM_Signature:
    """Pick the one signature to verify out of all usable ones.

    A signature whose d= equals the claimed domain wins, then one using a
    supported algorithm, then the topmost.  Raises VerificationFailure if
    there is nothing to pick or the pick uses an unsupported algorithm.
    """
    if not signatures:
        raise VerificationFailure(FailureReason.NO_DKIM_SIGNATURE, 'no usable DKIM-Signature header')

    candidates = signatures
    if claimed_domain:
        matching = [s for s in signatures if s.domain.lower() == claimed_domain.lower()]
        if matching:
            candidates = matching

    chosen = next((s for s in candidates if s.algorithm in supported), candidates[0])
    logger.debug(f'selected signature #{chosen.position}: {chosen!r}')

    if chosen.algorithm not in supported:
        raise VerificationFailure(FailureReason.UNSUPPORTED_ALGORITHM,
                                  f'unsupported algorithm a={chosen.algorithm}')
    return chosen
