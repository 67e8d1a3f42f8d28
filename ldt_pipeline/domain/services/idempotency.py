"""Idempotency Gate.

Computes the dedup key of a message and guards the downstream application
with the ledger's atomic check-and-apply, so each logical message takes
effect at most once even under duplicate or concurrent delivery.
"""

import logging
import uuid
from dataclasses import dataclass
from typing import Callable, Optional

from ldt_pipeline.domain.enums import DedupOutcome
from ldt_pipeline.domain.pipeline_models import DedupEntry, utcnow
from ldt_pipeline.domain.ports import LedgerPort

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class GateDecision:
    """Result of a ledger pre-check.

    ``duplicate`` is True only when the key was already applied; ``existing``
    is whatever the ledger holds for the key (None when absent).
    """
    dedup_key: str
    duplicate: bool
    existing: Optional[DedupEntry] = None


def dedup_key(
    fingerprint: str,
    external_message_id: Optional[str] = None,
    source_id: Optional[str] = None,
) -> str:
    """Effective dedup key: the envelope id when present, else the fingerprint.

    External ids are scoped by source so two senders reusing the same id do
    not collide.
    """
    if external_message_id:
        return f"ext:{source_id or ''}:{external_message_id}"
    return f"fp:{fingerprint}"


class IdempotencyGate:
    """Dedup ledger front end.

    Parameters:
        ledger: Ledger port providing the atomic ``apply_once``
    """

    def __init__(self, ledger: LedgerPort):
        self.ledger = ledger

    @staticmethod
    def dedup_key(fingerprint: str, external_message_id: Optional[str] = None, source_id: Optional[str] = None) -> str:
        return dedup_key(fingerprint, external_message_id, source_id)

    def check(self, key: str) -> GateDecision:
        """Read-only pre-check. Raises ``StoreUnavailableError`` on outage."""
        existing = self.ledger.get(key)
        duplicate = existing is not None and existing.outcome == DedupOutcome.APPLIED
        if existing is not None and not duplicate:
            logger.info(f"Redelivery of previously quarantined message {key}")
        return GateDecision(dedup_key=key, duplicate=duplicate, existing=existing)

    def apply_once(
        self,
        key: str,
        fingerprint: str,
        apply: Callable[[str], None],
        external_message_id: Optional[str] = None,
        source_id: Optional[str] = None,
        entity_id: Optional[str] = None,
    ) -> tuple[bool, DedupEntry]:
        """Claim ``key`` and run ``apply(application_id)`` as one atomic unit.

        Returns:
            tuple[bool, DedupEntry]: ``(True, new_entry)`` when this caller
            applied the message, ``(False, original_entry)`` when another
            delivery won
        """
        application_id = str(uuid.uuid4())
        entry = DedupEntry(
            dedup_key=key,
            fingerprint=fingerprint,
            external_message_id=external_message_id,
            source_id=source_id,
            first_seen_at=utcnow(),
            outcome=DedupOutcome.APPLIED,
            application_id=application_id,
            entity_id=entity_id,
        )
        applied, stored = self.ledger.apply_once(entry, lambda: apply(application_id))
        if applied:
            logger.info(f"Applied {key} as {application_id}")
        else:
            logger.info(f"Duplicate delivery of {key}; original application {stored.application_id}")
        return applied, stored

    def mark_quarantined(
        self,
        key: str,
        fingerprint: str,
        external_message_id: Optional[str] = None,
        source_id: Optional[str] = None,
    ) -> None:
        self.ledger.mark_quarantined(DedupEntry(
            dedup_key=key,
            fingerprint=fingerprint,
            external_message_id=external_message_id,
            source_id=source_id,
            outcome=DedupOutcome.QUARANTINED,
        ))
