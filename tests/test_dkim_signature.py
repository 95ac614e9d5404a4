"""
Tests for DKIM-Signature tag parsing and signature selection.
"""

import pytest

import dkim_signature

from errors import FailureReason, VerificationFailure
from header_parser import parse_headers


def signature_from(value):
    parsed = parse_headers(f'DKIM-Signature: {value}\r\nFrom: a@example.com\r\n')
    return dkim_signature.from_header(parsed.dkim_signatures[0])


class TestFromHeader:
    """Test decomposing a DKIM-Signature value into tags."""

    def test_tags(self):
        """Test the semantic fields come out of the tag list."""
        sig = signature_from('v=1; a=rsa-sha256; c=relaxed/simple; d=Example.COM; s=Sel1; '
                             'h=From : Subject:DATE; bh=abc=; b=QUJD')

        assert sig.algorithm == 'rsa-sha256'
        assert sig.domain == 'Example.COM'
        assert sig.selector == 'Sel1'
        assert sig.signed_header_names == ['from', 'subject', 'date']
        assert sig.signature == b'ABC'
        assert sig.canonicalization == ('relaxed', 'simple')
        assert sig.signs_subject is True

    def test_folded_signature_whitespace_removed(self):
        """Test whitespace inside b= is ignored before decoding."""
        sig = signature_from('d=example.com; s=s; h=from;\r\n\tb=QUJD\r\n\t REVG')

        assert sig.signature == b'ABCDEF'

    def test_canonicalization_defaults(self):
        """Test c= defaults to simple/simple and a lone header mode means simple body."""
        assert signature_from('d=e.com; s=s; h=from; b=QUJD').canonicalization == ('simple', 'simple')
        assert signature_from('c=relaxed; d=e.com; s=s; h=from; b=QUJD').canonicalization == ('relaxed', 'simple')

    def test_algorithm_default(self):
        """Test a missing a= is read as rsa-sha256."""
        assert signature_from('d=e.com; s=s; h=from; b=QUJD').algorithm == 'rsa-sha256'

    @pytest.mark.parametrize('value', [
        's=s; h=from; b=QUJD',
        'd=e.com; h=from; b=QUJD',
        'd=e.com; s=s; b=QUJD',
        'd=e.com; s=s; h= : ; b=QUJD',
        'd=e.com; s=s; h=from; b=',
        'd=e.com; s=s; h=from; b=not base64!',
        'c=fancy/simple; d=e.com; s=s; h=from; b=QUJD',
    ])
    def test_unusable_signatures(self, value):
        """Test headers missing required tags are excluded, not fatal."""
        assert signature_from(value) is None

    def test_from_parsed_headers_skips_unusable(self):
        """Test only usable signatures are candidates, positions kept."""
        parsed = parse_headers('DKIM-Signature: d=a.com; s=s\r\n'
                               'DKIM-Signature: d=b.com; s=s; h=from; b=QUJD\r\n'
                               'From: a@example.com\r\n')
        signatures = dkim_signature.from_parsed_headers(parsed)

        assert len(signatures) == 1
        assert signatures[0].domain == 'b.com'
        assert signatures[0].position == 1


class TestSelectSignature:
    """Test the candidate selection policy."""

    def candidates(self, *values):
        text = ''.join(f'DKIM-Signature: {v}\r\n' for v in values) + 'From: a@example.com\r\n'
        return dkim_signature.from_parsed_headers(parse_headers(text))

    def test_claimed_domain_wins(self):
        """Test a signature for the claimed domain beats the topmost one."""
        sigs = self.candidates('d=esp.example.net; s=s; h=from; b=QUJD',
                               'd=Example.com; s=s; h=from; b=QUJD')

        assert dkim_signature.select_signature(sigs, 'example.com').domain == 'Example.com'

    def test_supported_algorithm_preferred(self):
        """Test a supported algorithm beats an unsupported one."""
        sigs = self.candidates('a=rsa-sha1; d=a.com; s=s; h=from; b=QUJD',
                               'a=rsa-sha256; d=b.com; s=s; h=from; b=QUJD')

        assert dkim_signature.select_signature(sigs, 'other.com').domain == 'b.com'

    def test_first_parseable_otherwise(self):
        """Test the topmost signature is the fallback."""
        sigs = self.candidates('d=a.com; s=s; h=from; b=QUJD', 'd=b.com; s=s; h=from; b=QUJD')

        assert dkim_signature.select_signature(sigs).domain == 'a.com'

    def test_unsupported_algorithm(self):
        """Test the chosen signature must use a supported algorithm."""
        sigs = self.candidates('a=rsa-sha1; d=a.com; s=s; h=from; b=QUJD')

        with pytest.raises(VerificationFailure) as excinfo:
            dkim_signature.select_signature(sigs, 'a.com')

        assert excinfo.value.reason is FailureReason.UNSUPPORTED_ALGORITHM
        assert 'rsa-sha1' in excinfo.value.message

    def test_nothing_to_select(self):
        """Test no candidates means no DKIM signature."""
        with pytest.raises(VerificationFailure) as excinfo:
            dkim_signature.select_signature([])

        assert excinfo.value.reason is FailureReason.NO_DKIM_SIGNATURE
