"""Quarantine & Retry Manager.

Drives quarantined messages through their lifecycle:

    quarantined --retry--> quarantined | applied
    quarantined --max attempts exceeded--> stale
    quarantined --operator--> resolved

Retries run on their own cadence (a timer or the CLI), re-run the pipeline
on the stored raw message and use exponential backoff between attempts.
Stale entries are kept for alerting, never deleted.

Security Impact:
    - An entry is written once per attempt, after the attempt completes; an
      interrupted batch leaves untouched entries exactly as they were
    - Manual resolutions record the operator and disposition
"""

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable, Optional

from ldt_pipeline.domain.enums import (
    QuarantineStatus,
    ReasonCode,
    ResolutionDisposition,
)
from ldt_pipeline.domain.pipeline_models import (
    Applied,
    Duplicate,
    InboundMessage,
    PipelineOutcome,
    QuarantineEntry,
    Quarantined,
    utcnow,
)
from ldt_pipeline.domain.ports import IngestionError, QuarantineStorePort

logger = logging.getLogger(__name__)

DEFAULT_RETRYABLE_REASONS = frozenset({
    ReasonCode.MATCH_AMBIGUOUS,
    ReasonCode.MATCH_NOT_FOUND,
    ReasonCode.STORE_UNAVAILABLE,
    ReasonCode.LOOKUP_TIMEOUT,
})

# reprocess(message, forced_entity_id) -> outcome, without creating quarantine entries
Reprocess = Callable[[InboundMessage, Optional[str]], PipelineOutcome]


class QuarantineEntryNotFoundError(IngestionError):
    """Raised when an operator names a quarantine entry that does not exist."""

    def __init__(self, entry_id: str):
        super().__init__(f"Quarantine entry not found: {entry_id}")
        self.entry_id = entry_id


def backoff_seconds(attempt: int, base: float, cap: float) -> float:
    """Exponential backoff: ``min(cap, base * 2**attempt)``."""
    return min(cap, base * (2 ** max(0, int(attempt))))


@dataclass(frozen=True)
class RetryPolicy:
    """Bounded retry schedule.

    Attributes:
        max_attempts: Attempts before an entry goes stale
        base_delay_seconds: Delay before the first retry
        max_delay_seconds: Upper bound for any delay
        retryable_reasons: Reasons the manager retries automatically;
                           structural rejects need an operator
    """
    max_attempts: int = 5
    base_delay_seconds: float = 60.0
    max_delay_seconds: float = 3600.0
    retryable_reasons: frozenset = DEFAULT_RETRYABLE_REASONS

    def delay(self, retry_count: int) -> timedelta:
        return timedelta(seconds=backoff_seconds(retry_count, self.base_delay_seconds, self.max_delay_seconds))

    def is_retryable(self, reason: ReasonCode) -> bool:
        return reason in self.retryable_reasons

    def next_attempt(self, now: datetime, retry_count: int) -> datetime:
        return now + self.delay(retry_count)


@dataclass
class RetryBatchReport:
    """Counters for one ``run_due`` pass."""
    attempted: int = 0
    applied: int = 0
    requeued: int = 0
    stale: int = 0
    interrupted: bool = False
    entry_ids: list[str] = field(default_factory=list)


class RetryManager:
    """Retries, expires and resolves quarantine entries.

    Parameters:
        store: Quarantine store
        reprocess: Pipeline evaluation callable (never quarantines by itself)
        policy: Retry policy
        audit_logger: Optional disposition audit logger
    """

    def __init__(
        self,
        store: QuarantineStorePort,
        reprocess: Reprocess,
        policy: Optional[RetryPolicy] = None,
        audit_logger=None,
    ):
        self.store = store
        self.reprocess = reprocess
        self.policy = policy or RetryPolicy()
        self.audit_logger = audit_logger

    def due_entries(self, now: Optional[datetime] = None) -> list[QuarantineEntry]:
        """Retryable entries whose next attempt time has passed."""
        now = now or utcnow()
        return [e for e in self.store.due(now) if self.policy.is_retryable(e.reason_code)]

    def run_due(
        self,
        now: Optional[datetime] = None,
        stop_event: Optional[threading.Event] = None,
    ) -> RetryBatchReport:
        """Attempt every due entry once.

        Parameters:
            now: Clock reading for this pass (defaults to now)
            stop_event: Checked before each entry; when set the batch stops
                        and the remaining entries stay untouched

        Returns:
            RetryBatchReport: What happened in this pass
        """
        now = now or utcnow()
        report = RetryBatchReport()
        for entry in self.due_entries(now):
            if stop_event is not None and stop_event.is_set():
                report.interrupted = True
                logger.info("Retry batch interrupted")
                break

            outcome = self.reprocess(self._message_for(entry), None)
            report.attempted += 1
            report.entry_ids.append(entry.entry_id)
            updated = self._after_attempt(entry, outcome, now)
            self.store.update(updated)

            if updated.status == QuarantineStatus.APPLIED:
                report.applied += 1
            elif updated.status == QuarantineStatus.STALE:
                report.stale += 1
            else:
                report.requeued += 1

        if report.attempted:
            logger.info(
                f"Retry pass: {report.attempted} attempted, {report.applied} applied, "
                f"{report.requeued} requeued, {report.stale} stale"
            )
        return report

    def stale_entries(self) -> list[QuarantineEntry]:
        """Entries that exhausted their retries; logged for alerting."""
        entries = self.store.list_entries(QuarantineStatus.STALE)
        for entry in entries:
            logger.warning(
                f"Stale quarantine entry {entry.entry_id} ({entry.reason_code.value}, "
                f"{entry.retry_count} attempts)"
            )
        return entries

    def resolve(
        self,
        entry_id: str,
        disposition: ResolutionDisposition,
        operator: str,
        note: Optional[str] = None,
        corrected_message: Optional[str] = None,
        entity_id: Optional[str] = None,
    ) -> tuple[QuarantineEntry, Optional[PipelineOutcome]]:
        """Close an entry by hand.

        ``ACCEPTED`` re-runs the pipeline on the corrected message (or the
        stored one), optionally forcing the directory entity. When that run
        is quarantined again the entry stays open with the new reason.
        ``REJECTED`` closes the entry permanently.

        Raises:
            QuarantineEntryNotFoundError: If the entry does not exist
            ValueError: If the entry is already applied or resolved
        """
        entry = self.store.get_entry(entry_id)
        if entry is None:
            raise QuarantineEntryNotFoundError(entry_id)
        if entry.status in (QuarantineStatus.APPLIED, QuarantineStatus.RESOLVED):
            raise ValueError(f"Quarantine entry {entry_id} is already {entry.status.value}")

        now = utcnow()
        outcome: Optional[PipelineOutcome] = None
        if disposition == ResolutionDisposition.ACCEPTED:
            message = self._message_for(entry, corrected_message)
            outcome = self.reprocess(message, entity_id)
            if isinstance(outcome, Quarantined):
                entry = entry.model_copy(update={
                    "reason_code": outcome.reason_code,
                    "diagnostics": list(outcome.diagnostics),
                    "last_attempt_at": now,
                    "raw_message": message.raw_text(),
                })
                self.store.update(entry)
                logger.info(f"Accepted entry {entry_id} still not applicable ({outcome.reason_code.value})")
                return entry, outcome

        resolved = entry.model_copy(update={
            "status": QuarantineStatus.RESOLVED,
            "resolution": disposition,
            "resolved_by": operator,
            "resolved_at": now,
            "resolution_note": note,
        })
        self.store.update(resolved)
        logger.info(f"Quarantine entry {entry_id} resolved as {disposition.value} by {operator}")
        self._audit("resolved", resolved, actor=operator, detail=disposition.value)
        return resolved, outcome

    def _after_attempt(self, entry: QuarantineEntry, outcome: PipelineOutcome, now: datetime) -> QuarantineEntry:
        retry_count = entry.retry_count + 1
        if isinstance(outcome, (Applied, Duplicate)):
            updated = entry.model_copy(update={
                "status": QuarantineStatus.APPLIED,
                "retry_count": retry_count,
                "last_attempt_at": now,
                "next_attempt_at": None,
            })
            self._audit("retried", updated, detail=outcome.disposition)
            return updated

        reason = outcome.reason_code
        if retry_count >= self.policy.max_attempts or not self.policy.is_retryable(reason):
            updated = entry.model_copy(update={
                "status": QuarantineStatus.STALE,
                "reason_code": reason,
                "diagnostics": list(outcome.diagnostics),
                "retry_count": retry_count,
                "last_attempt_at": now,
                "next_attempt_at": None,
            })
            logger.warning(f"Quarantine entry {entry.entry_id} is stale after {retry_count} attempts")
            self._audit("stale", updated)
            return updated

        updated = entry.model_copy(update={
            "reason_code": reason,
            "diagnostics": list(outcome.diagnostics),
            "retry_count": retry_count,
            "last_attempt_at": now,
            "next_attempt_at": self.policy.next_attempt(now, retry_count),
        })
        self._audit("retried", updated, detail="requeued")
        return updated

    @staticmethod
    def _message_for(entry: QuarantineEntry, raw: Optional[str] = None) -> InboundMessage:
        return InboundMessage(
            raw=raw if raw is not None else entry.raw_message,
            external_message_id=entry.external_message_id,
            source_id=entry.source_id,
            received_at=entry.received_at,
        )

    def _audit(self, event: str, entry: QuarantineEntry, actor: Optional[str] = None, detail: Optional[str] = None) -> None:
        if self.audit_logger is not None:
            self.audit_logger.log_event(
                event,
                dedup_key=entry.dedup_key,
                reason_code=entry.reason_code,
                entry_id=entry.entry_id,
                actor=actor,
                detail=detail,
            )
