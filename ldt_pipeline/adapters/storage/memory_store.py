"""In-Memory Stores.

Ledger, quarantine store and result sink held in process memory. Used by
tests and by the CLI when no durable database is configured.

Architecture:
    - Implements LedgerPort, QuarantineStorePort and ResultSinkPort
    - The ledger serializes ``apply_once`` with one lock; concurrent
      deliveries of the same key observe first-application-wins
"""

import logging
import threading
from typing import Callable, Optional

from ldt_pipeline.domain.enums import DedupOutcome, QuarantineStatus
from ldt_pipeline.domain.lab_result import DomainResult
from ldt_pipeline.domain.pipeline_models import (
    CandidateEntity,
    DedupEntry,
    QuarantineEntry,
)
from ldt_pipeline.domain.ports import (
    LedgerPort,
    QuarantineStorePort,
    ResultSinkPort,
)

logger = logging.getLogger(__name__)


class InMemoryLedger(LedgerPort):
    """Dedup ledger backed by a dict.

    ``write_count`` counts every ledger write so callers can assert that a
    duplicate delivery caused none.
    """

    def __init__(self):
        self._entries: dict[str, DedupEntry] = {}
        self._lock = threading.Lock()
        self.write_count = 0

    def get(self, dedup_key: str) -> Optional[DedupEntry]:
        with self._lock:
            return self._entries.get(dedup_key)

    def apply_once(self, entry: DedupEntry, apply: Callable[[], None]) -> tuple[bool, DedupEntry]:
        with self._lock:
            existing = self._entries.get(entry.dedup_key)
            if existing is not None and existing.outcome == DedupOutcome.APPLIED:
                return False, existing
            apply()
            stored = entry.model_copy(update={"outcome": DedupOutcome.APPLIED})
            if existing is not None:
                stored = stored.model_copy(update={"first_seen_at": existing.first_seen_at})
            self._entries[entry.dedup_key] = stored
            self.write_count += 1
            return True, stored

    def mark_quarantined(self, entry: DedupEntry) -> None:
        with self._lock:
            existing = self._entries.get(entry.dedup_key)
            if existing is not None:
                # Applied wins; an earlier quarantine keeps its first-seen time.
                return
            self._entries[entry.dedup_key] = entry.model_copy(update={"outcome": DedupOutcome.QUARANTINED})
            self.write_count += 1

    def entries(self) -> list[DedupEntry]:
        with self._lock:
            return list(self._entries.values())


class InMemoryQuarantineStore(QuarantineStorePort):
    """Quarantine entries keyed by entry id, in insertion order."""

    def __init__(self):
        self._entries: dict[str, QuarantineEntry] = {}
        self._lock = threading.Lock()

    def add(self, entry: QuarantineEntry) -> QuarantineEntry:
        with self._lock:
            self._entries[entry.entry_id] = entry.model_copy(deep=True)
        logger.debug(f"Quarantined entry {entry.entry_id} ({entry.reason_code.value})")
        return entry

    def get_entry(self, entry_id: str) -> Optional[QuarantineEntry]:
        with self._lock:
            entry = self._entries.get(entry_id)
            return entry.model_copy(deep=True) if entry else None

    def update(self, entry: QuarantineEntry) -> QuarantineEntry:
        with self._lock:
            if entry.entry_id not in self._entries:
                raise KeyError(entry.entry_id)
            self._entries[entry.entry_id] = entry.model_copy(deep=True)
        return entry

    def list_entries(self, status: Optional[QuarantineStatus] = None) -> list[QuarantineEntry]:
        with self._lock:
            return [
                e.model_copy(deep=True) for e in self._entries.values()
                if status is None or e.status == status
            ]


class InMemoryResultSink(ResultSinkPort):
    """Collects applied results as ``(application_id, entity, result)``."""

    def __init__(self):
        self.applied: list[tuple[str, CandidateEntity, DomainResult]] = []
        self._lock = threading.Lock()

    def apply(self, result: DomainResult, entity: CandidateEntity, application_id: str) -> None:
        with self._lock:
            self.applied.append((application_id, entity, result))
