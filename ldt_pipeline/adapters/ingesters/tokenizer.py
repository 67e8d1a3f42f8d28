"""Record Tokenizer.

Turns a raw payload into decoded records, independent of the outer
transport wrapping: format detection, canonical lines, then the decoder per
line. Also computes the content fingerprint used for dedup.
"""

import logging
from dataclasses import dataclass, field
from typing import Union

from ldt_pipeline.adapters.ingesters.format_detector import (
    DEFAULT_WRAPPER_TAG,
    canonical_lines,
    detect_format,
)
from ldt_pipeline.domain.enums import PayloadFormat
from ldt_pipeline.domain.lab_result import Record, RecordError
from ldt_pipeline.domain.services.decoder import DEFAULT_TERMINATOR_LENGTH, decode_lines
from ldt_pipeline.domain.utils import decode_payload, sha256_lines

logger = logging.getLogger(__name__)


@dataclass
class TokenizedMessage:
    """Decoded view of one payload.

    Attributes:
        format: Outer payload format
        lines: Canonical candidate lines
        records: Successfully decoded records, in line order
        errors: Per-line decode errors, in line order
        fingerprint: SHA-256 of the canonical lines
    """
    format: PayloadFormat
    lines: list[str] = field(default_factory=list)
    records: list[Record] = field(default_factory=list)
    errors: list[RecordError] = field(default_factory=list)
    fingerprint: str = ""

    @property
    def canonical_text(self) -> str:
        return "\n".join(self.lines)


class Tokenizer:
    """Payload → TokenizedMessage.

    Parameters:
        terminator_length: Terminator width counted by declared lengths
        wrapper_tag: Segment tag used by wrapped payloads
    """

    def __init__(
        self,
        terminator_length: int = DEFAULT_TERMINATOR_LENGTH,
        wrapper_tag: str = DEFAULT_WRAPPER_TAG,
    ):
        self.terminator_length = terminator_length
        self.wrapper_tag = wrapper_tag

    def tokenize(self, payload: Union[bytes, str]) -> TokenizedMessage:
        text = payload if isinstance(payload, str) else decode_payload(payload)
        payload_format = detect_format(text, self.wrapper_tag)
        lines = canonical_lines(text, self.wrapper_tag)
        records, errors = decode_lines(lines, self.terminator_length)
        logger.debug(
            f"Tokenized {payload_format.value} payload: {len(records)} records, {len(errors)} errors"
        )
        return TokenizedMessage(
            format=payload_format,
            lines=lines,
            records=records,
            errors=errors,
            fingerprint=sha256_lines(lines),
        )

    def fingerprint(self, payload: Union[bytes, str]) -> str:
        return sha256_lines(canonical_lines(payload, self.wrapper_tag))


def tokenize(
    payload: Union[bytes, str],
    terminator_length: int = DEFAULT_TERMINATOR_LENGTH,
    wrapper_tag: str = DEFAULT_WRAPPER_TAG,
) -> TokenizedMessage:
    return Tokenizer(terminator_length, wrapper_tag).tokenize(payload)


def fingerprint(payload: Union[bytes, str], wrapper_tag: str = DEFAULT_WRAPPER_TAG) -> str:
    """SHA-256 hex of the canonical lines joined by ``\\n``."""
    return sha256_lines(canonical_lines(payload, wrapper_tag))
