"""Record Decoder.

Parses one LDT line into a typed ``Record`` or a ``RecordError``. The record
layout is positional:

    ``LLL TTTT FFFF content``  long form, line length >= 11
    ``LLL TTTT F``             short form, line length in [8, 11)

where ``LLL`` is the declared length, ``TTTT`` the record type and ``F``/
``FFFF`` the field id. The variant is decided by line length alone.

Decoding never raises on a bad line: one corrupt line must not hide errors
in the other lines of the same message.
"""

import re
from typing import Union

from ldt_pipeline.domain.enums import DecodeErrorKind
from ldt_pipeline.domain.lab_result import Record, RecordError

MIN_LINE_LENGTH = 8
LONG_FORM_LENGTH = 11
MAX_DECLARED_LENGTH = 999

# Declared lengths count the line text only; set 2 for feeds that count CR LF.
DEFAULT_TERMINATOR_LENGTH = 0

_LENGTH_RE = re.compile(r"^[0-9]{3}$")
_RECORD_TYPE_RE = re.compile(r"^[0-9]{4}$")
_SHORT_FIELD_RE = re.compile(r"^[A-Za-z0-9]$")
# '*' is a reserved sentinel (image path annotations); it is data, not a wildcard.
_LONG_FIELD_RE = re.compile(r"^[A-Za-z0-9*]{4}$")


def decode(
    line: str,
    line_number: int = 0,
    terminator_length: int = DEFAULT_TERMINATOR_LENGTH,
) -> Union[Record, RecordError]:
    """Decode one line.

    Parameters:
        line: Line text without its terminator
        line_number: 1-based position in the message (for diagnostics)
        terminator_length: Characters of line terminator counted by the
                           declared length (0 by default, 2 for CR LF feeds)

    Returns:
        Record on success, RecordError naming the failing field otherwise
    """
    if len(line) < MIN_LINE_LENGTH:
        return RecordError(
            line_number=line_number,
            kind=DecodeErrorKind.TOO_SHORT,
            detail=f"line has {len(line)} characters, minimum is {MIN_LINE_LENGTH}",
            raw=line,
        )

    length_text = line[0:3]
    record_type = line[3:7]
    if len(line) < LONG_FORM_LENGTH:
        field_id, content, field_re = line[7:8], "", _SHORT_FIELD_RE
    else:
        field_id, content, field_re = line[7:11], line[11:], _LONG_FIELD_RE

    def malformed(field: str, detail: str) -> RecordError:
        return RecordError(
            line_number=line_number,
            kind=DecodeErrorKind.MALFORMED,
            field=field,
            detail=detail,
            raw=line,
        )

    if not _LENGTH_RE.match(length_text):
        return malformed("declared_length", "length prefix is not three digits")
    if not _RECORD_TYPE_RE.match(record_type):
        return malformed("record_type", "record type is not four digits")
    if not field_re.match(field_id):
        form = "short" if len(field_id) == 1 else "long"
        return malformed("field_id", f"invalid {form}-form field id")

    declared_length = int(length_text)
    actual_length = len(line) + terminator_length
    if declared_length != actual_length:
        return malformed(
            "length_mismatch",
            f"declared {declared_length}, actual {actual_length}",
        )

    return Record(
        line_number=line_number,
        raw=line,
        declared_length=declared_length,
        record_type=record_type,
        field_id=field_id,
        content=content,
    )


def decode_lines(lines, terminator_length: int = DEFAULT_TERMINATOR_LENGTH):
    """Decode every line; returns ``(records, errors)`` in line order."""
    records: list[Record] = []
    errors: list[RecordError] = []
    for number, line in enumerate(lines, start=1):
        decoded = decode(line, number, terminator_length)
        if isinstance(decoded, RecordError):
            errors.append(decoded)
        else:
            records.append(decoded)
    return records, errors
