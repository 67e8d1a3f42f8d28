"""Domain enumerations for the LDT ingestion core.

All enums derive from ``str`` so they serialize cleanly into JSON audit
payloads and DuckDB ``VARCHAR`` columns without custom encoders.
"""

from enum import Enum


class DecodeErrorKind(str, Enum):
    """Why a single line was dropped instead of becoming part of the message."""
    TOO_SHORT = "too_short"
    MALFORMED = "malformed"
    OUTSIDE_PACKET = "outside_packet"


class PayloadFormat(str, Enum):
    """Outer shape of a raw payload before tokenization."""
    LINE_BASED = "line_based"
    WRAPPED = "wrapped"


class ReasonCode(str, Enum):
    """Reason a message was quarantined instead of applied.

    Structural codes are fatal to the message; matching codes are business
    outcomes; ``STORE_UNAVAILABLE`` and ``LOOKUP_TIMEOUT`` are transient.
    """
    NO_RECORDS = "no_records"
    MISSING_HEADER = "missing_header"
    MISSING_FOOTER = "missing_footer"
    SEQUENCE_MISMATCH = "sequence_mismatch"
    TRAILING_PACKET = "trailing_packet"
    TOO_MANY_DECODE_ERRORS = "too_many_decode_errors"
    MISSING_IDENTIFIERS = "missing_identifiers"
    MATCH_AMBIGUOUS = "match_ambiguous"
    MATCH_NOT_FOUND = "match_not_found"
    STORE_UNAVAILABLE = "store_unavailable"
    LOOKUP_TIMEOUT = "lookup_timeout"
    APPLICATION_FAILED = "application_failed"

    @property
    def is_structural(self) -> bool:
        return self in STRUCTURAL_REASONS

    @property
    def is_transient(self) -> bool:
        return self in (ReasonCode.STORE_UNAVAILABLE, ReasonCode.LOOKUP_TIMEOUT)


STRUCTURAL_REASONS = frozenset({
    ReasonCode.NO_RECORDS,
    ReasonCode.MISSING_HEADER,
    ReasonCode.MISSING_FOOTER,
    ReasonCode.SEQUENCE_MISMATCH,
    ReasonCode.TRAILING_PACKET,
    ReasonCode.TOO_MANY_DECODE_ERRORS,
})


class DedupOutcome(str, Enum):
    """Outcome stored in the dedup ledger for a dedup key."""
    APPLIED = "applied"
    QUARANTINED = "quarantined"


class QuarantineStatus(str, Enum):
    """Lifecycle state of a quarantine entry."""
    QUARANTINED = "quarantined"
    STALE = "stale"
    APPLIED = "applied"
    RESOLVED = "resolved"


class ResolutionDisposition(str, Enum):
    """Operator decision when closing a quarantine entry by hand."""
    ACCEPTED = "accepted"
    REJECTED = "rejected"


class MatchStatus(str, Enum):
    """Result of identity matching against the directory."""
    MATCHED = "matched"
    AMBIGUOUS = "ambiguous"
    NO_MATCH = "no_match"
    UNAVAILABLE = "unavailable"


class FieldKind(str, Enum):
    """How the semantic extractor treats a (record type, field id) key."""
    SCALAR = "scalar"
    PARAMETER_START = "parameter_start"
    PARAMETER_FIELD = "parameter_field"
    ANNOTATION = "annotation"
    FRAMING = "framing"


class ValueSource(str, Enum):
    """Which part of a record carries the value for a table entry.

    ``CONTENT`` is everything after the field id (canonical export keys);
    ``PAYLOAD`` is everything after the record type (lab traffic where the
    record type itself is the field code).
    """
    CONTENT = "content"
    PAYLOAD = "payload"


class DiagnosticCode(str, Enum):
    """Codes for non-fatal findings collected while extracting."""
    CONFLICTING_VALUE = "conflicting_value"
    ORPHAN_PARAMETER_FIELD = "orphan_parameter_field"
    REPEATED_PARAMETER_FIELD = "repeated_parameter_field"
