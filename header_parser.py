import logging
import re

from dataclasses import dataclass, field
from typing import List

from errors import ParseError

logger = logging.getLogger(__name__)

# a module for splitting raw message text into an ordered list of headers

DKIM_SIGNATURE = 'dkim-signature'

# RFC 5322 field-name: printable US-ASCII except the colon
FIELD_NAME = re.compile(r'^[\x21-\x39\x3b-\x7e]+$')


@dataclass
class RawHeader:
    """One header field as received.

    Attributes:
        name: field name as it appeared (case preserved)
        value: unfolded, trimmed value
        raw_block: the original lines, folding included, joined with CRLF
        index: position among all headers in receipt order
    """
    name: str
    value: str
    raw_block: str
    index: int

    @property
    def key(self) -> str:
        return self.name.lower()


@dataclass
class ParsedHeaders:
    headers: List[RawHeader] = field(default_factory=list)
    # True when a blank line terminated the header section
    complete: bool = False

    def named(self, name: str) -> List[RawHeader]:
        name = name.lower()
        return [h for h in self.headers if h.key == name]

    @property
    def dkim_signatures(self) -> List[RawHeader]:
        return self.named(DKIM_SIGNATURE)

    @property
    def first_dkim_block(self) -> str:
        signatures = self.dkim_signatures
        return signatures[0].raw_block if signatures else ''


def parse_headers(text: str) -> ParsedHeaders:
    # CRLF and bare LF may be mixed; leading blank lines left over from
    # copy-and-paste are not an end-of-headers marker
    lines = re.split(r'\r?\n', text.lstrip('\r\n'))
    parsed = ParsedHeaders()
    current = None

    for line in lines:
        if line[:1] in (' ', '\t'):
            # continuation of the current header; stray ones are dropped
            if current is None:
                continue
            current.raw_block += '\r\n' + line
            piece = line.strip()
            if piece:
                current.value = f'{current.value} {piece}' if current.value else piece
            continue

        if line == '':
            parsed.complete = True
            break

        index = line.find(':')
        name = line[:index].rstrip() if index > 0 else ''
        if not FIELD_NAME.match(name):
            if not line.startswith('From '):
                logger.debug(f'skipping malformed header line #{len(parsed.headers)}')
            current = None
            continue

        current = RawHeader(
            name=name,
            value=line[index + 1:].strip(),
            raw_block=line,
            index=len(parsed.headers))
        parsed.headers.append(current)

    if not parsed.headers:
        raise ParseError('no header fields found')

    logger.debug(f'parsed {len(parsed.headers)} headers, '
                 f'{len(parsed.dkim_signatures)} DKIM-Signature')
    return parsed


def split_message(message_raw: bytes):
    """Split a full raw message into its header text and CRLF-joined body.

    Raises ParseError when there is no blank line separating the two.
    """
    lines = re.split(b'\r?\n', message_raw)
    for ii in range(0, len(lines)):
        if len(lines[ii]) == 0:
            headers = b'\r\n'.join(lines[:ii])
            return headers.decode('utf-8', errors='surrogateescape'), b'\r\n'.join(lines[ii + 1:])

    raise ParseError('unable to find the end of the message headers')
