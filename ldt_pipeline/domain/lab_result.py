"""Lab Result Schema Definitions.

This module defines the canonical data models for one LDT transmission:
the decoded ``Record`` (one line), the per-line ``RecordError`` and the
semantic projection ``DomainResult`` handed to the persistence layer.

Security Impact:
    - Models are frozen: once the pipeline hands a result over, nothing in
      the core can mutate it
    - Identifiers (BSNR/LANR) are kept as the exact digit strings carried by
      the source records and are never reformatted
    - ``RecordError.raw`` belongs to the message being diagnosed only

Architecture:
    - Pure domain models with zero infrastructure dependencies
    - Validated at runtime via Pydantic V2
    - Follows Hexagonal Architecture: Domain Core is isolated from Adapters
"""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from ldt_pipeline.domain.enums import DecodeErrorKind, DiagnosticCode


class Record(BaseModel):
    """One decoded LDT line.

    Parameters:
        line_number: 1-based position of the line inside the message
        raw: The line exactly as tokenized (no terminator)
        declared_length: Integer value of the 3-digit length prefix
        record_type: 4-digit record type code
        field_id: 4-character (long form) or 1-character (short form) field id
        content: Remainder of the line after the field id (may be empty)
    """

    model_config = ConfigDict(frozen=True)

    line_number: int = Field(0, description="1-based line number in the message")
    raw: str = Field(..., description="Raw line without terminator")
    declared_length: int = Field(..., ge=0, le=999)
    record_type: str = Field(..., pattern=r"^[0-9]{4}$")
    field_id: str = Field(..., min_length=1, max_length=4)
    content: str = ""

    @property
    def is_short_form(self) -> bool:
        return len(self.field_id) == 1

    @property
    def payload(self) -> str:
        """Everything after the record type.

        Lab traffic uses the record type as the field code, so the value
        starts right after it; the payload keeps short-form values lossless.
        """
        return self.raw[7:]

    @property
    def key(self) -> tuple[str, str]:
        return (self.record_type, self.field_id)


class RecordError(BaseModel):
    """Per-line decode failure (a DecodeError in the error taxonomy).

    Decode failures never abort the message; the validator keeps them as
    diagnostics so every bad line of a message is reported at once.
    """

    model_config = ConfigDict(frozen=True)

    line_number: int = 0
    kind: DecodeErrorKind
    field: Optional[str] = Field(None, description="Positional field that failed")
    detail: str = ""
    raw: str = ""

    def describe(self) -> str:
        """Log-safe summary (never includes the line content)."""
        where = f" ({self.field})" if self.field else ""
        return f"line {self.line_number}: {self.kind.value}{where} {self.detail}".rstrip()


class ExtractionDiagnostic(BaseModel):
    """Non-fatal finding raised while folding records into a DomainResult."""

    model_config = ConfigDict(frozen=True)

    line_number: int
    code: DiagnosticCode
    record_type: str
    field_id: str
    attribute: Optional[str] = None
    detail: str = ""


class PatientIdentity(BaseModel):
    """Patient block of a lab result.

    The birth date is kept as the raw ``YYYYMMDD`` text carried by the
    message; parsing it would reformat source data.
    """

    model_config = ConfigDict(frozen=True)

    last_name: Optional[str] = None
    first_name: Optional[str] = None
    birth_date: Optional[str] = None
    gender: Optional[str] = None
    patient_id: Optional[str] = Field(None, description="Patient-system identifier")
    street: Optional[str] = None
    house_number: Optional[str] = None
    postal_code: Optional[str] = None
    city: Optional[str] = None

    @property
    def has_identity(self) -> bool:
        return bool(self.patient_id or self.last_name or self.first_name)

    @property
    def full_name(self) -> str:
        return " ".join(part for part in (self.first_name, self.last_name) if part)


class LabInfo(BaseModel):
    """Laboratory and request metadata."""

    model_config = ConfigDict(frozen=True)

    name: Optional[str] = None
    street: Optional[str] = None
    postal_code: Optional[str] = None
    city: Optional[str] = None
    request_id: Optional[str] = None
    collection_date: Optional[str] = None
    report_date: Optional[str] = None


class TestParameter(BaseModel):
    """One observation. Repeated codes are distinct observations."""

    __test__ = False  # keep pytest from collecting this model

    model_config = ConfigDict(frozen=True)

    code: str
    display_name: Optional[str] = None
    value: Optional[str] = None
    unit: Optional[str] = None
    reference_range: Optional[str] = None


class Annotation(BaseModel):
    """Auxiliary or unknown record preserved verbatim.

    ``record_type``/``field_id``/``content`` reproduce the source record;
    ``key``/``value`` are a convenience split of the payload.
    """

    model_config = ConfigDict(frozen=True)

    record_type: str
    field_id: str
    content: str = ""
    key: str = ""
    value: str = ""


class DomainResult(BaseModel):
    """Semantic projection of one valid LDT message.

    Security Impact: Contains patient PII. Owned by the pipeline until it is
    handed to the result sink; only the fingerprint is retained afterwards.

    Parameters:
        practice_id: BSNR as carried in the source (digits, never reformatted)
        physician_id: LANR as carried in the source
        patient: Patient identity block
        lab_info: Laboratory / request metadata
        parameters: Ordered observations, duplicates preserved
        annotations: Auxiliary records preserved verbatim
        sequence: Transmission sequence carried by the header record
    """

    model_config = ConfigDict(frozen=True)

    practice_id: Optional[str] = None
    physician_id: Optional[str] = None
    patient: PatientIdentity = Field(default_factory=PatientIdentity)
    lab_info: LabInfo = Field(default_factory=LabInfo)
    parameters: tuple[TestParameter, ...] = ()
    annotations: tuple[Annotation, ...] = ()
    sequence: str = ""


class ExtractionReport(BaseModel):
    """DomainResult plus the diagnostics collected while building it."""

    model_config = ConfigDict(frozen=True)

    result: DomainResult
    diagnostics: tuple[ExtractionDiagnostic, ...] = ()
    record_count: int = 0
