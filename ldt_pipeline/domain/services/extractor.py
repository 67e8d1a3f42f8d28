"""Semantic Extraction Service.

Folds validated records left-to-right into a ``DomainResult`` using the
declarative field table. Unknown keys are preserved as annotations so the
pipeline degrades gracefully as new record types appear.

Security Impact:
    - Scalars are first-write-wins; a conflicting later record never silently
      overwrites an identifier
    - Diagnostics carry keys and line numbers, never record content

Architecture:
    - Pure domain service, deterministic for a given record sequence
    - Returns an ``ExtractionReport`` (result + diagnostics)
"""

import logging
from typing import Optional

from ldt_pipeline.domain.enums import DiagnosticCode, FieldKind, ValueSource
from ldt_pipeline.domain.field_mapping import (
    FieldRule,
    FieldTable,
    default_field_table,
)
from ldt_pipeline.domain.lab_result import (
    Annotation,
    DomainResult,
    ExtractionDiagnostic,
    ExtractionReport,
    LabInfo,
    PatientIdentity,
    Record,
    TestParameter,
)

logger = logging.getLogger(__name__)

SENTINEL = "*"


def split_annotation(payload: str) -> tuple[str, str]:
    """Split an annotation payload into ``(key, value)``.

    ``LOCATION|Potsdam`` splits on the first pipe. Payloads carrying the
    reserved ``*`` sentinel (``*IMAGENAME\\\\host\\path``) split after the
    leading ``*NAME`` token. Anything else is a value without a key.
    """
    if "|" in payload:
        key, value = payload.split("|", 1)
        return key, value
    if payload.startswith(SENTINEL):
        head = payload[1:]
        end = 0
        while end < len(head) and head[end].isalpha() and head[end].isupper():
            end += 1
        return SENTINEL + head[:end], head[end:]
    return "", payload


def make_annotation(record: Record) -> Annotation:
    """Preserve ``record`` verbatim.

    For short-form records ``content`` holds whatever follows the one-character
    field id, so ``field_id + content`` always equals the record payload.
    """
    payload = record.payload
    key, value = split_annotation(payload)
    return Annotation(
        record_type=record.record_type,
        field_id=record.field_id,
        content=payload[len(record.field_id):],
        key=key,
        value=value,
    )


class _Accumulator:
    """Mutable working state for one extraction pass."""

    def __init__(self):
        self.scalars: dict[str, tuple[str, int]] = {}
        self.parameters: list[dict] = []
        self.annotations: list[Annotation] = []
        self.diagnostics: list[ExtractionDiagnostic] = []

    def diagnose(self, record: Record, code: DiagnosticCode, attribute: Optional[str], detail: str) -> None:
        self.diagnostics.append(ExtractionDiagnostic(
            line_number=record.line_number,
            code=code,
            record_type=record.record_type,
            field_id=record.field_id,
            attribute=attribute,
            detail=detail,
        ))


class SemanticExtractor:
    """Builds a DomainResult from validated records.

    Parameters:
        field_table: Mapping table (defaults to the shared default table)
    """

    def __init__(self, field_table: Optional[FieldTable] = None):
        self.field_table = field_table or default_field_table

    def extract(self, records: list[Record], sequence: str = "") -> ExtractionReport:
        """Fold ``records`` into an ExtractionReport.

        Parameters:
            records: Valid records in message order (header/footer excluded)
            sequence: Transmission sequence from the packet header

        Returns:
            ExtractionReport: The DomainResult and non-fatal diagnostics
        """
        state = _Accumulator()
        for record in records:
            rule = self.field_table.lookup(record.record_type, record.field_id, record.payload)
            if rule is None:
                state.annotations.append(make_annotation(record))
                continue
            self._fold(state, record, rule)

        result = self._build(state, sequence)
        if state.diagnostics:
            logger.info(f"Extraction produced {len(state.diagnostics)} diagnostic(s)")
        return ExtractionReport(
            result=result,
            diagnostics=tuple(state.diagnostics),
            record_count=len(records),
        )

    def _fold(self, state: _Accumulator, record: Record, rule: FieldRule) -> None:
        value = record.payload if rule.source == ValueSource.PAYLOAD else record.content

        if rule.kind == FieldKind.FRAMING:
            return
        if rule.kind == FieldKind.ANNOTATION:
            state.annotations.append(make_annotation(record))
            return
        if rule.kind == FieldKind.SCALAR:
            self._assign_scalar(state, record, rule.target, value)
            return
        if rule.kind == FieldKind.PARAMETER_START:
            state.parameters.append({"code": value})
            return

        # PARAMETER_FIELD
        if not state.parameters:
            state.annotations.append(make_annotation(record))
            state.diagnose(
                record,
                DiagnosticCode.ORPHAN_PARAMETER_FIELD,
                rule.target,
                "parameter field without a preceding parameter code",
            )
            return
        current = state.parameters[-1]
        if rule.target in current:
            if current[rule.target] != value:
                state.diagnose(
                    record,
                    DiagnosticCode.REPEATED_PARAMETER_FIELD,
                    rule.target,
                    f"{rule.target} already set for parameter, first value kept",
                )
            return
        current[rule.target] = value

    @staticmethod
    def _assign_scalar(state: _Accumulator, record: Record, target: str, value: str) -> None:
        existing = state.scalars.get(target)
        if existing is None:
            state.scalars[target] = (value, record.line_number)
            return
        first_value, first_line = existing
        if first_value != value:
            state.diagnose(
                record,
                DiagnosticCode.CONFLICTING_VALUE,
                target,
                f"conflicts with line {first_line}, first value kept",
            )

    def _build(self, state: _Accumulator, sequence: str) -> DomainResult:
        top: dict[str, str] = {}
        patient: dict[str, str] = {}
        lab: dict[str, str] = {}
        for target, (value, _line) in state.scalars.items():
            if target.startswith("patient."):
                patient[target.split(".", 1)[1]] = value
            elif target.startswith("lab_info."):
                lab[target.split(".", 1)[1]] = value
            else:
                top[target] = value

        return DomainResult(
            practice_id=top.get("practice_id"),
            physician_id=top.get("physician_id"),
            patient=PatientIdentity(**patient),
            lab_info=LabInfo(**lab),
            parameters=tuple(TestParameter(**fields) for fields in state.parameters),
            annotations=tuple(state.annotations),
            sequence=sequence,
        )
