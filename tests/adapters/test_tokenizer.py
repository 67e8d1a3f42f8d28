"""Unit tests for the record tokenizer."""

from ldt_pipeline.adapters.ingesters.tokenizer import Tokenizer, tokenize
from ldt_pipeline.domain.enums import DecodeErrorKind, PayloadFormat

from conftest import build_line, build_message


class TestTokenizer:
    """Test suite for payload → records."""

    def test_line_based_message(self, sample_message, sample_lines):
        tokenized = tokenize(sample_message)

        assert tokenized.format == PayloadFormat.LINE_BASED
        assert tokenized.lines == sample_lines
        assert len(tokenized.records) == 16
        assert tokenized.errors == []
        assert [r.line_number for r in tokenized.records] == list(range(1, 17))

    def test_wrapped_message_gives_same_records(self, sample_message, sample_lines):
        """Test the transport wrapping is invisible after tokenizing."""
        wrapped = "".join(f"<column1>{line}</column1>" for line in sample_lines)

        plain = tokenize(sample_message)
        unwrapped = tokenize(wrapped)

        assert unwrapped.format == PayloadFormat.WRAPPED
        assert unwrapped.records == plain.records
        assert unwrapped.fingerprint == plain.fingerprint

    def test_decode_errors_keep_line_numbers(self, message_45_lines):
        tokenized = tokenize("\r\n".join(message_45_lines))

        assert len(tokenized.records) == 44
        assert len(tokenized.errors) == 1
        assert tokenized.errors[0].line_number == 16
        assert tokenized.errors[0].kind == DecodeErrorKind.MALFORMED

    def test_latin_payload(self):
        """Test 8-bit payloads are read with the fallback charset."""
        line = build_line("8200", "3101", "Müller")
        raw = "\r\n".join(build_message([line])).encode("iso-8859-15")

        tokenized = tokenize(raw)

        assert tokenized.errors == []
        assert tokenized.records[1].content == "Müller"

    def test_utf8_bom_is_dropped(self, sample_message):
        tokenized = tokenize(b"\xef\xbb\xbf" + sample_message.encode("utf-8"))

        assert tokenized.fingerprint == tokenize(sample_message).fingerprint

    def test_terminator_length(self):
        """Test lengths that count a one-character terminator need width 1."""
        lines = [build_line("8100", "0201", "123456789", terminator_length=1)]

        assert len(Tokenizer(terminator_length=1).tokenize("\n".join(lines)).records) == 1
        assert len(Tokenizer().tokenize("\n".join(lines)).errors) == 1

    def test_fingerprint_is_content_based(self, sample_message):
        tokenizer = Tokenizer()

        assert tokenizer.fingerprint(sample_message) == tokenize(sample_message).fingerprint
        assert tokenizer.fingerprint(sample_message) != tokenizer.fingerprint(sample_message + "0108000X\r\n")
