"""Record Validator - message-level structural checks.

Decides whether a decoded record sequence is a well-formed transmission.
Decode failures are soft rejects (the record is dropped, the diagnostic is
kept); bracketing failures and "zero valid records" are hard rejects that
send the whole message to quarantine without partial application.

Security Impact:
    - An unterminated message is never partially applied
    - Diagnostics reference line numbers of this message only
"""

import logging
from dataclasses import dataclass, field
from typing import Optional

from ldt_pipeline.domain.enums import DecodeErrorKind, ReasonCode
from ldt_pipeline.domain.field_mapping import (
    FOOTER_FIELD_IDS,
    HEADER_RECORD_TYPE,
    PACKET_BRACKETS,
)
from ldt_pipeline.domain.lab_result import Record, RecordError
from ldt_pipeline.domain.ports import Result

logger = logging.getLogger(__name__)


@dataclass
class ValidationReport:
    """Records that survived validation plus per-record diagnostics.

    Attributes:
        valid_records: Records between (and after) the brackets, excluding
                       the header and footer records themselves
        diagnostics: Dropped lines: decode errors and records outside the
                     packet, in line order
        header: The packet header record
        footer: The packet footer record
    """
    valid_records: list[Record] = field(default_factory=list)
    diagnostics: list[RecordError] = field(default_factory=list)
    header: Optional[Record] = None
    footer: Optional[Record] = None

    @property
    def sequence(self) -> str:
        return self.header.content if self.header else ""

    @property
    def record_count(self) -> int:
        """Kept records including the header and footer."""
        return len(self.valid_records) + sum(r is not None for r in (self.header, self.footer))


def is_header(record: Record) -> bool:
    return record.record_type == HEADER_RECORD_TYPE and record.field_id in PACKET_BRACKETS


def is_footer(record: Record) -> bool:
    return record.record_type == HEADER_RECORD_TYPE and record.field_id in FOOTER_FIELD_IDS


class RecordValidator:
    """Structural validator for one decoded message.

    Parameters:
        max_decode_failure_ratio: When set, a message whose share of
            undecodable lines exceeds this fraction is hard-rejected. When
            None (default), decode failures are logged but never reject the
            message on their own.
    """

    def __init__(self, max_decode_failure_ratio: Optional[float] = None):
        if max_decode_failure_ratio is not None and not 0.0 <= max_decode_failure_ratio <= 1.0:
            raise ValueError("max_decode_failure_ratio must be between 0 and 1")
        self.max_decode_failure_ratio = max_decode_failure_ratio

    def validate(self, records: list[Record], errors: list[RecordError]) -> Result[ValidationReport]:
        """Validate bracketing and decode health.

        Parameters:
            records: Successfully decoded records in line order
            errors: Decode errors in line order

        Returns:
            Result[ValidationReport]: Success with the report, or a failure
            with ``error_type="StructuralError"`` and ``error_details`` holding
            ``reason_code`` and ``diagnostics``
        """
        diagnostics = sorted(errors, key=lambda e: e.line_number)
        for error in diagnostics:
            logger.warning(f"Dropped undecodable record: {error.describe()}")

        if not records:
            return self._reject(ReasonCode.NO_RECORDS, "no valid records found", diagnostics)

        total = len(records) + len(errors)
        if self.max_decode_failure_ratio is not None and total:
            ratio = len(errors) / total
            if ratio > self.max_decode_failure_ratio:
                return self._reject(
                    ReasonCode.TOO_MANY_DECODE_ERRORS,
                    f"{len(errors)} of {total} lines failed to decode",
                    diagnostics,
                )

        header_index = next((i for i, r in enumerate(records) if is_header(r)), None)
        if header_index is None:
            return self._reject(ReasonCode.MISSING_HEADER, "no packet header record", diagnostics)
        header = records[header_index]

        footer_index = next(
            (i for i in range(header_index + 1, len(records)) if is_footer(records[i]) or is_header(records[i])),
            None,
        )
        if footer_index is None or is_header(records[footer_index]):
            return self._reject(
                ReasonCode.MISSING_FOOTER,
                f"packet opened at line {header.line_number} is never closed",
                diagnostics,
            )
        footer = records[footer_index]

        if PACKET_BRACKETS[header.field_id] != footer.field_id:
            return self._reject(
                ReasonCode.SEQUENCE_MISMATCH,
                f"footer {footer.field_id} at line {footer.line_number} does not close header {header.field_id}",
                diagnostics,
            )
        if header.content and footer.content and header.content != footer.content:
            return self._reject(
                ReasonCode.SEQUENCE_MISMATCH,
                f"footer sequence at line {footer.line_number} differs from header sequence",
                diagnostics,
            )

        trailing = records[footer_index + 1:]
        if any(r.record_type == HEADER_RECORD_TYPE for r in trailing):
            return self._reject(
                ReasonCode.TRAILING_PACKET,
                "records of another packet follow the footer",
                diagnostics,
            )

        leading = records[:header_index]
        if leading:
            logger.warning(f"{len(leading)} record(s) precede the packet header and are ignored")
            diagnostics = sorted(
                diagnostics + [
                    RecordError(
                        line_number=r.line_number,
                        kind=DecodeErrorKind.OUTSIDE_PACKET,
                        detail="record precedes the packet header",
                        raw=r.raw,
                    )
                    for r in leading
                ],
                key=lambda e: e.line_number,
            )

        report = ValidationReport(
            valid_records=records[header_index + 1:footer_index] + trailing,
            diagnostics=diagnostics,
            header=header,
            footer=footer,
        )
        return Result.success_result(report)

    @staticmethod
    def _reject(reason: ReasonCode, message: str, diagnostics: list[RecordError]) -> Result[ValidationReport]:
        logger.info(f"Structural reject ({reason.value}): {message}")
        return Result.failure_result(
            message,
            error_type="StructuralError",
            error_details={
                "reason_code": reason,
                "diagnostics": [message] + [d.describe() for d in diagnostics],
                "record_errors": diagnostics,
            },
        )
