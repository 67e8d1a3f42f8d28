"""Ingestion Pipeline - one message in, one disposition out.

Wires the codec, the validator, the extractor, the identity matcher and the
idempotency gate into a single call:

    tokenize → ledger pre-check → validate → extract → match → apply_once → audit

Every expected failure (structural reject, unmatched identity, store outage,
sink failure) ends as a typed ``Quarantined`` outcome; nothing expected
escapes ``process``.

Security Impact:
    - A message is applied only inside the ledger's atomic unit, so duplicate
      or concurrent delivery can never double-apply a lab result
    - Quarantine diagnostics and log lines reference line numbers, codes and
      keys, never record content

Architecture:
    - Ports (directory, ledger, quarantine store, sink) are injected; the
      pipeline holds no state of its own besides the matcher's worker pool
    - ``process`` is safe to call from several threads at once
"""

import logging
from typing import Optional

from ldt_pipeline.adapters.ingesters.tokenizer import TokenizedMessage, Tokenizer
from ldt_pipeline.domain.enums import MatchStatus, ReasonCode
from ldt_pipeline.domain.field_mapping import FieldTable
from ldt_pipeline.domain.lab_result import ExtractionDiagnostic
from ldt_pipeline.domain.pipeline_models import (
    Applied,
    Duplicate,
    InboundMessage,
    PipelineOutcome,
    QuarantineEntry,
    Quarantined,
    utcnow,
)
from ldt_pipeline.domain.ports import (
    DirectoryPort,
    LedgerPort,
    QuarantineStorePort,
    ResultSinkPort,
    StoreUnavailableError,
)
from ldt_pipeline.domain.services import (
    IdempotencyGate,
    IdentityMatcher,
    RecordValidator,
    RetryManager,
    RetryPolicy,
    SemanticExtractor,
)
from ldt_pipeline.infrastructure.audit import DispositionAuditLogger
from ldt_pipeline.infrastructure.settings import Settings, settings as default_settings

logger = logging.getLogger(__name__)


def describe_diagnostic(diagnostic: ExtractionDiagnostic) -> str:
    """Log-safe one-line summary of an extraction finding."""
    where = f" ({diagnostic.attribute})" if diagnostic.attribute else ""
    return f"line {diagnostic.line_number}: {diagnostic.code.value}{where} {diagnostic.detail}".rstrip()


def retry_policy_from_settings(config: Settings) -> RetryPolicy:
    return RetryPolicy(
        max_attempts=config.retry_max_attempts,
        base_delay_seconds=config.retry_base_delay,
        max_delay_seconds=config.retry_max_delay,
    )


class IngestionPipeline:
    """End-to-end processing of inbound LDT messages.

    Parameters:
        directory: Identity directory port
        ledger: Dedup ledger port
        quarantine_store: Quarantine store port
        sink: Downstream result sink, called inside the ledger's atomic unit
        settings: Codec / matching / retry settings (defaults to the
                  environment-driven global settings)
        field_table: Field mapping table (defaults to the built-in table)
        audit_logger: Disposition audit logger (one is created when omitted)
        retry_policy: Overrides the policy derived from ``settings``

    Example Usage:
        ```python
        pipeline = IngestionPipeline(directory, store, store, store)
        outcome = pipeline.process(InboundMessage(raw=payload, external_message_id="42"))
        if isinstance(outcome, Quarantined):
            print(outcome.reason_code, outcome.entry_id)
        ```
    """

    def __init__(
        self,
        directory: DirectoryPort,
        ledger: LedgerPort,
        quarantine_store: QuarantineStorePort,
        sink: ResultSinkPort,
        settings: Optional[Settings] = None,
        field_table: Optional[FieldTable] = None,
        audit_logger: Optional[DispositionAuditLogger] = None,
        retry_policy: Optional[RetryPolicy] = None,
    ):
        config = settings or default_settings
        self.quarantine_store = quarantine_store
        self.sink = sink
        self.audit_logger = audit_logger or DispositionAuditLogger()
        self.retry_policy = retry_policy or retry_policy_from_settings(config)

        self.tokenizer = Tokenizer(config.terminator_length, config.wrapper_tag)
        self.validator = RecordValidator(config.max_decode_failure_ratio)
        self.extractor = SemanticExtractor(field_table)
        self.matcher = IdentityMatcher(directory, config.fuzzy_threshold, config.lookup_timeout)
        self.gate = IdempotencyGate(ledger)

    def close(self) -> None:
        self.matcher.close()

    def retry_manager(self) -> RetryManager:
        """Retry manager bound to this pipeline's store, policy and audit trail."""
        return RetryManager(
            self.quarantine_store,
            self.evaluate,
            policy=self.retry_policy,
            audit_logger=self.audit_logger,
        )

    # ------------------------------------------------------------------
    # Processing
    # ------------------------------------------------------------------

    def process(self, message: InboundMessage) -> PipelineOutcome:
        """Process one message and persist its disposition.

        Parameters:
            message: Raw payload plus transport envelope

        Returns:
            PipelineOutcome: ``Applied``, ``Duplicate`` or ``Quarantined``
            (with the id of the new quarantine entry when the store accepted
            it)
        """
        outcome, key, fingerprint = self._run(message)

        if isinstance(outcome, Applied):
            logger.info(
                f"Message {outcome.dedup_key} applied",
                extra={"dedup_key": outcome.dedup_key, "source_id": message.source_id},
            )
            self.audit_logger.log_event(
                "applied",
                dedup_key=outcome.dedup_key,
                application_id=outcome.application_id,
            )
            return outcome

        if isinstance(outcome, Duplicate):
            self.audit_logger.log_event(
                "duplicate",
                dedup_key=outcome.original.dedup_key,
                application_id=outcome.original.application_id,
            )
            return outcome

        return self._quarantine(message, outcome, key, fingerprint)

    def evaluate(self, message: InboundMessage, forced_entity_id: Optional[str] = None) -> PipelineOutcome:
        """Run the pipeline without writing quarantine entries.

        This is the reprocess callable of the retry manager. When
        ``forced_entity_id`` is given (operator resolution) the matcher only
        confirms that entity.
        """
        outcome, _, _ = self._run(message, forced_entity_id)
        return outcome

    def _run(self, message: InboundMessage, forced_entity_id: Optional[str] = None) -> tuple[PipelineOutcome, str, str]:
        """Outcome plus the dedup key and fingerprint it was decided under."""
        tokenized = self.tokenizer.tokenize(message.raw)
        key = self.gate.dedup_key(tokenized.fingerprint, message.external_message_id, message.source_id)
        return self._decide(message, tokenized, key, forced_entity_id), key, tokenized.fingerprint

    def _decide(
        self,
        message: InboundMessage,
        tokenized: TokenizedMessage,
        key: str,
        forced_entity_id: Optional[str],
    ) -> PipelineOutcome:
        try:
            decision = self.gate.check(key)
        except StoreUnavailableError as e:
            logger.warning(f"Ledger unavailable during pre-check for {key}: {e}", extra={"dedup_key": key})
            return self._held(ReasonCode.STORE_UNAVAILABLE, [f"ledger unavailable: {e}"], key)
        if decision.duplicate:
            logger.info(f"Duplicate message {key}", extra={"dedup_key": key})
            return Duplicate(original=decision.existing)

        validation = self.validator.validate(tokenized.records, tokenized.errors)
        if validation.is_failure():
            details = validation.error_details or {}
            return self._held(details["reason_code"], details.get("diagnostics", [validation.error]), key)
        report = validation.value

        extraction = self.extractor.extract(report.valid_records, report.sequence)
        result = extraction.result
        diagnostics = [d.describe() for d in report.diagnostics]
        diagnostics += [describe_diagnostic(d) for d in extraction.diagnostics]

        if forced_entity_id:
            match = self.matcher.confirm(forced_entity_id, result.practice_id, result.physician_id, result.patient)
        else:
            match = self.matcher.match(result.practice_id, result.physician_id, result.patient)
        if match.status != MatchStatus.MATCHED:
            detail = [match.detail] if match.detail else []
            return self._held(match.reason_code, detail + diagnostics, key)

        entity = match.entity
        try:
            applied, entry = self.gate.apply_once(
                key,
                tokenized.fingerprint,
                lambda application_id: self.sink.apply(result, entity, application_id),
                external_message_id=message.external_message_id,
                source_id=message.source_id,
                entity_id=entity.entity_id,
            )
        except StoreUnavailableError as e:
            logger.warning(f"Ledger unavailable while applying {key}: {e}", extra={"dedup_key": key})
            return self._held(ReasonCode.STORE_UNAVAILABLE, [f"ledger unavailable: {e}"] + diagnostics, key)
        except Exception as e:
            logger.error(f"Result sink failed for {key}: {e}", exc_info=True, extra={"dedup_key": key})
            return self._held(ReasonCode.APPLICATION_FAILED, [f"application failed: {e}"] + diagnostics, key)

        if not applied:
            return Duplicate(original=entry)
        return Applied(
            result=result,
            entity=entity,
            application_id=entry.application_id,
            dedup_key=key,
            diagnostics=tuple(diagnostics),
            record_count=report.record_count,
        )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _held(self, reason: ReasonCode, diagnostics: list[str], key: str) -> Quarantined:
        logger.info(f"Message {key} held: {reason.value}", extra={"dedup_key": key, "reason_code": reason.value})
        return Quarantined(
            reason_code=reason,
            diagnostics=tuple(diagnostics),
            retryable=self.retry_policy.is_retryable(reason),
        )

    def _quarantine(self, message: InboundMessage, outcome: Quarantined, key: str, fingerprint: str) -> Quarantined:
        now = utcnow()
        entry = QuarantineEntry(
            raw_message=message.raw_text(),
            reason_code=outcome.reason_code,
            diagnostics=list(outcome.diagnostics),
            received_at=message.received_at,
            next_attempt_at=now + self.retry_policy.delay(0) if outcome.retryable else None,
            dedup_key=key,
            fingerprint=fingerprint,
            external_message_id=message.external_message_id,
            source_id=message.source_id,
        )

        try:
            stored = self.quarantine_store.add(entry)
        except StoreUnavailableError as e:
            logger.error(
                f"Quarantine store unavailable; message {key} not held: {e}",
                extra={"dedup_key": key, "reason_code": ReasonCode.STORE_UNAVAILABLE.value, "source_id": message.source_id},
            )
            self.audit_logger.log_event("quarantined", dedup_key=key, reason_code=ReasonCode.STORE_UNAVAILABLE)
            return Quarantined(
                reason_code=ReasonCode.STORE_UNAVAILABLE,
                diagnostics=outcome.diagnostics + (f"quarantine store unavailable: {e}",),
                retryable=True,
            )

        try:
            self.gate.mark_quarantined(key, fingerprint, message.external_message_id, message.source_id)
        except StoreUnavailableError as e:
            logger.warning(f"Could not record quarantine of {key} in the ledger: {e}", extra={"dedup_key": key})

        self.audit_logger.log_event(
            "quarantined",
            dedup_key=key,
            reason_code=stored.reason_code,
            entry_id=stored.entry_id,
        )
        logger.info(
            f"Quarantine entry {stored.entry_id} created for {key}",
            extra={"dedup_key": key, "entry_id": stored.entry_id, "reason_code": stored.reason_code.value},
        )
        return outcome.model_copy(update={"entry_id": stored.entry_id})
