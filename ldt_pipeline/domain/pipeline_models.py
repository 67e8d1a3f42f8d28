"""Pipeline State and Outcome Models.

This module defines the models that describe what happened to a message:
dedup ledger entries, quarantine entries, directory candidates, match
outcomes and the three caller-facing outcomes (applied, duplicate,
quarantined).

Security Impact:
    - Quarantine diagnostics only ever describe the message they belong to
    - Ledger entries carry no patient content, only keys and identifiers

Architecture:
    - Pure domain models with zero infrastructure dependencies
    - Store adapters serialize these models; the domain never sees SQL rows
"""

import uuid
from datetime import datetime, timezone
from typing import Optional, Union

from pydantic import BaseModel, ConfigDict, Field

from ldt_pipeline.domain.enums import (
    DedupOutcome,
    MatchStatus,
    QuarantineStatus,
    ReasonCode,
    ResolutionDisposition,
)
from ldt_pipeline.domain.lab_result import DomainResult
from ldt_pipeline.domain.utils import decode_payload


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class InboundMessage(BaseModel):
    """Raw message plus the envelope supplied by the transport layer.

    Parameters:
        raw: Message bytes or text exactly as delivered
        external_message_id: Envelope message id, if the transport has one
        source_id: Sending system; scopes the external id
        received_at: Arrival timestamp (defaults to now)
    """

    model_config = ConfigDict(frozen=True)

    raw: Union[bytes, str]
    external_message_id: Optional[str] = None
    source_id: Optional[str] = None
    received_at: datetime = Field(default_factory=utcnow)

    def raw_text(self) -> str:
        return decode_payload(self.raw)


class DedupEntry(BaseModel):
    """Dedup ledger row, keyed by ``dedup_key``."""

    dedup_key: str
    fingerprint: str
    external_message_id: Optional[str] = None
    source_id: Optional[str] = None
    first_seen_at: datetime = Field(default_factory=utcnow)
    outcome: DedupOutcome = DedupOutcome.APPLIED
    application_id: Optional[str] = None
    entity_id: Optional[str] = None


class QuarantineEntry(BaseModel):
    """Durable holding record for a message that was not applied.

    Parameters:
        entry_id: Stable identifier used by operators
        raw_message: The message text as received
        reason_code: Why the message is held
        diagnostics: Human-readable findings for this message only
        retry_count: Completed retry attempts
        last_attempt_at: When the last retry attempt finished
        next_attempt_at: Earliest time the retry manager may try again
        status: Lifecycle state
    """

    entry_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    raw_message: str
    reason_code: ReasonCode
    diagnostics: list[str] = Field(default_factory=list)
    received_at: datetime = Field(default_factory=utcnow)
    retry_count: int = 0
    last_attempt_at: Optional[datetime] = None
    next_attempt_at: Optional[datetime] = None
    status: QuarantineStatus = QuarantineStatus.QUARANTINED
    dedup_key: Optional[str] = None
    fingerprint: Optional[str] = None
    external_message_id: Optional[str] = None
    source_id: Optional[str] = None
    resolution: Optional[ResolutionDisposition] = None
    resolved_by: Optional[str] = None
    resolved_at: Optional[datetime] = None
    resolution_note: Optional[str] = None


class CandidateEntity(BaseModel):
    """Directory entry returned by an identity lookup."""

    model_config = ConfigDict(frozen=True)

    entity_id: str
    practice_id: Optional[str] = None
    physician_id: Optional[str] = None
    patient_id: Optional[str] = None
    last_name: Optional[str] = None
    first_name: Optional[str] = None
    birth_date: Optional[str] = None
    display_name: Optional[str] = None


class MatchOutcome(BaseModel):
    """Outcome of identity matching.

    ``entity`` is set only for ``MATCHED``; ``candidates`` lists everything
    that survived the deciding pass (for manual review when ambiguous).
    """

    model_config = ConfigDict(frozen=True)

    status: MatchStatus
    entity: Optional[CandidateEntity] = None
    candidates: tuple[CandidateEntity, ...] = ()
    score: Optional[float] = None
    fuzzy: bool = False
    reason_code: Optional[ReasonCode] = None
    detail: str = ""


# ============================================================================
# Caller-facing outcomes
# ============================================================================

class Applied(BaseModel):
    """Message applied exactly once."""

    model_config = ConfigDict(frozen=True)

    result: DomainResult
    entity: CandidateEntity
    application_id: str
    dedup_key: str
    diagnostics: tuple[str, ...] = ()
    record_count: int = Field(0, description="Records kept, header and footer included")

    @property
    def disposition(self) -> str:
        return "applied"


class Duplicate(BaseModel):
    """Message already applied; carries the original acknowledgment."""

    model_config = ConfigDict(frozen=True)

    original: DedupEntry

    @property
    def disposition(self) -> str:
        return "duplicate"


class Quarantined(BaseModel):
    """Message held for retry or manual resolution."""

    model_config = ConfigDict(frozen=True)

    reason_code: ReasonCode
    diagnostics: tuple[str, ...] = ()
    entry_id: Optional[str] = None
    retryable: bool = False

    @property
    def disposition(self) -> str:
        return "quarantined"


PipelineOutcome = Union[Applied, Duplicate, Quarantined]
