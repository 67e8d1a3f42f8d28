"""Disposition Audit Logger.

Buffers one audit event per message disposition (applied, duplicate,
quarantined, retried, stale, resolved) so the trail can be flushed to the
durable store in batches.

Security Impact:
    - Events carry dedup keys, reason codes and entry ids only; patient
      content never enters the audit trail
    - The buffer is append-only until it is flushed

Architecture:
    - Infrastructure layer component
    - Called from the pipeline and the retry manager
    - Flushed by ``DuckDBStore.flush_audit_logs``
"""

import logging
import threading
import uuid
from typing import List, Optional

from ldt_pipeline.domain.pipeline_models import utcnow

logger = logging.getLogger(__name__)

AUDIT_EVENTS = frozenset({
    "applied",
    "duplicate",
    "quarantined",
    "retried",
    "stale",
    "resolved",
})


class DispositionAuditLogger:
    """Thread-safe buffer of disposition events.

    Example Usage:
        ```python
        audit = DispositionAuditLogger()
        audit.log_event("quarantined", dedup_key="fp:ab12...", reason_code="missing_footer")
        store.flush_audit_logs(audit.get_logs())
        audit.clear_logs()
        ```
    """

    def __init__(self, source_id: Optional[str] = None):
        self._logs: List[dict] = []
        self._lock = threading.Lock()
        self._source_id = source_id

    def log_event(
        self,
        event: str,
        dedup_key: Optional[str] = None,
        reason_code: Optional[str] = None,
        entry_id: Optional[str] = None,
        application_id: Optional[str] = None,
        actor: Optional[str] = None,
        detail: Optional[str] = None,
    ) -> dict:
        """Append one event.

        Parameters:
            event: One of ``AUDIT_EVENTS``
            dedup_key: Ledger key of the message
            reason_code: Quarantine reason, if any
            entry_id: Quarantine entry id, if any
            application_id: Application id for applied messages
            actor: Operator name for manual resolutions (defaults to "system")
            detail: Short free text (must not contain patient content)

        Returns:
            dict: The stored event

        Raises:
            ValueError: If ``event`` is not a known disposition
        """
        if event not in AUDIT_EVENTS:
            raise ValueError(f"Unknown audit event: {event}")

        log_entry = {
            "audit_id": str(uuid.uuid4()),
            "event": event,
            "dedup_key": dedup_key,
            "reason_code": getattr(reason_code, "value", reason_code),
            "entry_id": entry_id,
            "application_id": application_id,
            "source_id": self._source_id,
            "actor": actor or "system",
            "detail": detail,
            "logged_at": utcnow(),
        }
        with self._lock:
            self._logs.append(log_entry)
        logger.debug(f"Audit {event}: key={dedup_key} entry={entry_id}")
        return log_entry

    def get_logs(self) -> List[dict]:
        """Copy of the buffered events, oldest first."""
        with self._lock:
            return self._logs.copy()

    def clear_logs(self) -> None:
        """Clear all logged events (after flushing to storage)."""
        with self._lock:
            self._logs.clear()
        logger.debug("Cleared disposition audit logs")

    def get_log_count(self) -> int:
        with self._lock:
            return len(self._logs)

    def has_logs(self) -> bool:
        return self.get_log_count() > 0
