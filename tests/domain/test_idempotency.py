"""Unit tests for the idempotency gate."""

import threading
from concurrent.futures import ThreadPoolExecutor

import pytest

from ldt_pipeline.adapters.storage import InMemoryLedger
from ldt_pipeline.domain.enums import DedupOutcome
from ldt_pipeline.domain.services.idempotency import IdempotencyGate, dedup_key


class TestDedupKey:
    """Effective dedup key selection."""

    def test_external_id_wins(self):
        """Test the envelope id is used when present, scoped by source."""
        assert dedup_key("abc", "42", "lab-a") == "ext:lab-a:42"

    def test_fingerprint_fallback(self):
        """Test the content fingerprint is used without an envelope id."""
        assert dedup_key("abc") == "fp:abc"

    def test_sources_do_not_collide(self):
        """Test equal ids from different senders are different keys."""
        assert dedup_key("abc", "42", "lab-a") != dedup_key("abc", "42", "lab-b")


class TestIdempotencyGate:
    """Test suite for check-and-apply."""

    def test_check_absent_key(self):
        """Test an unseen key proceeds."""
        decision = IdempotencyGate(InMemoryLedger()).check("fp:abc")

        assert not decision.duplicate
        assert decision.existing is None

    def test_apply_once_runs_apply_with_application_id(self):
        """Test the apply callable receives the recorded application id."""
        gate = IdempotencyGate(InMemoryLedger())
        seen = []

        applied, entry = gate.apply_once("fp:abc", "abc", seen.append, entity_id="E-1")

        assert applied
        assert seen == [entry.application_id]
        assert entry.outcome == DedupOutcome.APPLIED
        assert entry.entity_id == "E-1"
        assert gate.check("fp:abc").duplicate

    def test_second_apply_is_duplicate(self):
        """Test a repeated key returns the original entry without applying."""
        gate = IdempotencyGate(InMemoryLedger())
        calls = []
        _, first = gate.apply_once("fp:abc", "abc", calls.append)

        applied, original = gate.apply_once("fp:abc", "abc", calls.append)

        assert not applied
        assert original.application_id == first.application_id
        assert len(calls) == 1

    def test_failed_apply_writes_nothing(self):
        """Test a raising apply leaves the key unclaimed."""
        ledger = InMemoryLedger()
        gate = IdempotencyGate(ledger)

        def failing(application_id):
            raise RuntimeError("sink down")

        with pytest.raises(RuntimeError):
            gate.apply_once("fp:abc", "abc", failing)

        assert ledger.get("fp:abc") is None
        assert ledger.write_count == 0

    def test_quarantined_key_can_still_be_applied(self):
        """Test a quarantine mark does not block a later application."""
        ledger = InMemoryLedger()
        gate = IdempotencyGate(ledger)
        gate.mark_quarantined("fp:abc", "abc")

        decision = gate.check("fp:abc")
        assert not decision.duplicate
        assert decision.existing.outcome == DedupOutcome.QUARANTINED

        applied, entry = gate.apply_once("fp:abc", "abc", lambda application_id: None)
        assert applied
        assert ledger.get("fp:abc").outcome == DedupOutcome.APPLIED

    def test_mark_quarantined_never_downgrades(self):
        """Test an applied key stays applied."""
        ledger = InMemoryLedger()
        gate = IdempotencyGate(ledger)
        gate.apply_once("fp:abc", "abc", lambda application_id: None)

        gate.mark_quarantined("fp:abc", "abc")

        assert ledger.get("fp:abc").outcome == DedupOutcome.APPLIED

    def test_concurrent_delivery_applies_once(self):
        """Test racing deliveries of one key apply exactly once."""
        gate = IdempotencyGate(InMemoryLedger())
        calls = []
        lock = threading.Lock()
        start = threading.Barrier(8)

        def apply(application_id):
            with lock:
                calls.append(application_id)

        def deliver():
            start.wait()
            return gate.apply_once("ext:lab:1", "abc", apply, external_message_id="1", source_id="lab")

        with ThreadPoolExecutor(max_workers=8) as executor:
            results = list(executor.map(lambda _: deliver(), range(8)))

        assert sum(1 for applied, _ in results if applied) == 1
        assert len(calls) == 1
        assert {entry.application_id for _, entry in results} == {calls[0]}
