"""Domain Ports - Abstract Contracts for LDT Ingestion.

This module defines the Port interfaces (abstract contracts) that Adapters must
implement, the ``Result`` type used at component boundaries and the error
taxonomy of the ingestion core.

Following Hexagonal Architecture, the Domain Core defines what it needs, not
how it's provided: the identity directory, the dedup ledger, the quarantine
store and the downstream result sink are all supplied from outside, so the
persistence mechanism can vary (in-memory for tests, DuckDB for production)
without touching the pipeline.

Security Impact:
    - The ledger contract makes check-and-apply a single atomic operation, so
      duplicate delivery can never double-apply clinical data
    - Store failures are typed (``StoreUnavailableError``) so callers retry
      instead of silently dropping a message

Architecture:
    - Pure abstract interfaces with zero infrastructure dependencies
    - Failures of expected conditions travel as ``Result``, not exceptions
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Generic, Optional, TypeVar, Union

from ldt_pipeline.domain.lab_result import DomainResult, PatientIdentity
from ldt_pipeline.domain.pipeline_models import (
    CandidateEntity,
    DedupEntry,
    QuarantineEntry,
)
from ldt_pipeline.domain.enums import QuarantineStatus, ReasonCode

# Type variable for Result generic
T = TypeVar('T')


# ============================================================================
# Result Type for Success/Failure Communication
# ============================================================================

@dataclass(frozen=True)
class Result(Generic[T]):
    """Result type for communicating success or failure without exceptions.

    Attributes:
        success: True if the operation succeeded, False otherwise
        value: The successful result value (only present if success=True)
        error: Error information (only present if success=False)
        error_type: Type of error (StructuralError, StoreUnavailableError, ...)
        error_details: Additional error context (reason_code, diagnostics, ...)

    Example:
        ```python
        result = validator.validate(records, errors)
        if result.is_failure():
            quarantine(result.error_details["reason_code"])
        ```
    """

    success: bool
    value: Optional[T] = None
    error: Optional[str] = None
    error_type: Optional[str] = None
    error_details: Optional[dict] = None

    @classmethod
    def success_result(cls, value: T) -> 'Result[T]':
        """Create a successful result."""
        return cls(
            success=True,
            value=value,
            error=None,
            error_type=None,
            error_details=None
        )

    @classmethod
    def failure_result(
        cls,
        error: Union[str, Exception],
        error_type: Optional[str] = None,
        error_details: Optional[dict] = None
    ) -> 'Result[T]':
        """Create a failure result.

        Parameters:
            error: Error message or exception
            error_type: Type of error (e.g., "StructuralError")
            error_details: Additional context (reason_code, diagnostics, ...)

        Returns:
            Result: Failure result with error information
        """
        error_message = str(error) if isinstance(error, Exception) else error
        error_type_name = error_type or (type(error).__name__ if isinstance(error, Exception) else "UnknownError")

        return cls(
            success=False,
            value=None,
            error=error_message,
            error_type=error_type_name,
            error_details=error_details or {}
        )

    def is_success(self) -> bool:
        """Check if result is successful."""
        return self.success

    def is_failure(self) -> bool:
        """Check if result is a failure."""
        return not self.success


# ============================================================================
# Custom Exception Hierarchy
# ============================================================================

class IngestionError(Exception):
    """Base exception for all ingestion-related errors."""
    pass


class StructuralError(IngestionError):
    """Raised when a message is not a well-bracketed LDT transmission.

    Fatal to the message (quarantine, no partial apply).

    Attributes:
        reason_code: Structural reason (missing footer, sequence mismatch, ...)
        diagnostics: Per-record findings collected so far
    """

    def __init__(self, message: str, reason_code: ReasonCode, diagnostics: Optional[list] = None):
        super().__init__(message)
        self.reason_code = reason_code
        self.diagnostics = diagnostics or []


class MatchError(IngestionError):
    """Base for matching outcomes that route a message to quarantine."""

    reason_code = ReasonCode.MATCH_NOT_FOUND


class MatchAmbiguousError(MatchError):
    """More than one directory entity qualifies for the message."""

    reason_code = ReasonCode.MATCH_AMBIGUOUS


class MatchNotFoundError(MatchError):
    """No directory entity qualifies for the message."""

    reason_code = ReasonCode.MATCH_NOT_FOUND


class StoreUnavailableError(IngestionError):
    """Raised when the ledger, quarantine store or directory cannot be reached.

    Transient: the message must be retried, never dropped.

    Attributes:
        operation: The store operation that failed
        details: Additional error context (no patient content)
    """

    def __init__(self, message: str, operation: Optional[str] = None, details: Optional[dict] = None):
        super().__init__(message)
        self.operation = operation
        self.details = details or {}


class EncodingError(IngestionError):
    """Raised when a DomainResult attribute cannot be serialized as a record.

    Attributes:
        attribute: Domain attribute that failed
    """

    def __init__(self, message: str, attribute: Optional[str] = None):
        super().__init__(message)
        self.attribute = attribute


class SourceNotFoundError(IngestionError):
    """Raised when a file source cannot be found or accessed.

    Attributes:
        source: The source identifier that was not found
    """

    def __init__(self, message: str, source: Optional[str] = None):
        super().__init__(message)
        self.source = source


# ============================================================================
# Ports
# ============================================================================

class DirectoryPort(ABC):
    """Identity lookup supplied by the directory / persistence layer.

    Implementations may raise ``StoreUnavailableError``; the matcher treats
    that (and a timeout) as a transient failure, never as "no match".
    """

    @abstractmethod
    def lookup(
        self,
        practice_id: Optional[str],
        physician_id: Optional[str],
        patient_hints: PatientIdentity,
    ) -> list[CandidateEntity]:
        """Return candidate entities for the given identifiers.

        Parameters:
            practice_id: BSNR from the message (may be None)
            physician_id: LANR from the message (may be None)
            patient_hints: Patient identity block from the message

        Returns:
            list[CandidateEntity]: Candidates; the matcher decides among them
        """
        pass


class LedgerPort(ABC):
    """Dedup ledger with an atomic check-and-apply operation.

    The one place in the core that needs true mutual exclusion: for a given
    dedup key at most one caller may observe "first application wins".
    """

    @abstractmethod
    def get(self, dedup_key: str) -> Optional[DedupEntry]:
        """Return the ledger entry for a key, or None."""
        pass

    @abstractmethod
    def apply_once(
        self,
        entry: DedupEntry,
        apply: Callable[[], None],
    ) -> tuple[bool, DedupEntry]:
        """Atomically claim ``entry.dedup_key`` and run ``apply``.

        Under the ledger's lock / transaction: if the key is already applied,
        return ``(False, existing_entry)`` without calling ``apply``.
        Otherwise call ``apply`` and persist ``entry`` with outcome applied;
        return ``(True, entry)``. If ``apply`` raises, nothing is written and
        the exception propagates.

        Raises:
            StoreUnavailableError: If the ledger cannot be reached
        """
        pass

    @abstractmethod
    def mark_quarantined(self, entry: DedupEntry) -> None:
        """Record outcome quarantined for a key unless it is already applied."""
        pass


class QuarantineStorePort(ABC):
    """Durable holding area for messages that were not applied.

    Writes are independent per entry; concurrent adds need no coordination.
    """

    @abstractmethod
    def add(self, entry: QuarantineEntry) -> QuarantineEntry:
        pass

    @abstractmethod
    def get_entry(self, entry_id: str) -> Optional[QuarantineEntry]:
        pass

    @abstractmethod
    def update(self, entry: QuarantineEntry) -> QuarantineEntry:
        """Replace the stored entry with ``entry`` in a single write."""
        pass

    @abstractmethod
    def list_entries(self, status: Optional[QuarantineStatus] = None) -> list[QuarantineEntry]:
        pass

    def due(self, now: datetime) -> list[QuarantineEntry]:
        """Quarantined entries whose next attempt time has passed."""
        return [
            entry for entry in self.list_entries(QuarantineStatus.QUARANTINED)
            if entry.next_attempt_at is None or entry.next_attempt_at <= now
        ]


class ResultSinkPort(ABC):
    """Downstream application of a matched result (persistence layer).

    Called inside the ledger's atomic unit: if ``apply`` raises, the ledger
    entry is not written and the message can be retried.
    """

    @abstractmethod
    def apply(self, result: DomainResult, entity: CandidateEntity, application_id: str) -> None:
        pass
