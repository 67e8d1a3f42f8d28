"""DuckDB Store.

Durable implementation of the dedup ledger, the quarantine store and the
result sink over one DuckDB connection.

Security Impact:
    - The ledger key is a primary key and the ledger write shares one
      transaction with the result insert: a message is applied and recorded
      together or not at all
    - Connection and query failures surface as ``StoreUnavailableError`` so
      the pipeline quarantines instead of dropping the message
    - The ledger holds keys and ids only, never message content

Architecture:
    - Implements LedgerPort, QuarantineStorePort and ResultSinkPort
    - One connection guarded by a re-entrant lock (the result sink runs
      inside the ledger's transaction on the same thread)
    - Connection is established lazily (on first operation)
"""

import json
import logging
import threading
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Optional

import duckdb

from ldt_pipeline.domain.enums import (
    DedupOutcome,
    QuarantineStatus,
    ReasonCode,
    ResolutionDisposition,
)
from ldt_pipeline.domain.lab_result import DomainResult
from ldt_pipeline.domain.pipeline_models import (
    CandidateEntity,
    DedupEntry,
    QuarantineEntry,
    utcnow,
)
from ldt_pipeline.domain.ports import (
    LedgerPort,
    QuarantineStorePort,
    Result,
    ResultSinkPort,
    StoreUnavailableError,
)
from ldt_pipeline.infrastructure.config_manager import DatabaseConfig

logger = logging.getLogger(__name__)

_QUARANTINE_COLUMNS = (
    "entry_id", "raw_message", "reason_code", "diagnostics", "received_at",
    "retry_count", "last_attempt_at", "next_attempt_at", "status", "dedup_key",
    "fingerprint", "external_message_id", "source_id", "resolution",
    "resolved_by", "resolved_at", "resolution_note",
)


def _to_db(value: Optional[datetime]) -> Optional[datetime]:
    """Aware datetimes are stored as naive UTC timestamps."""
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def _from_db(value: Optional[datetime]) -> Optional[datetime]:
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


class DuckDBStore(LedgerPort, QuarantineStorePort, ResultSinkPort):
    """Ledger, quarantine store and result sink in one DuckDB database.

    Parameters:
        db_config: DatabaseConfig from the configuration manager (preferred)
        db_path: Path to the DuckDB file, or ``:memory:``

    Example Usage:
        ```python
        store = DuckDBStore(db_path="data/ldt.duckdb")
        store.initialize_schema()
        pipeline = IngestionPipeline(directory, ledger=store, quarantine_store=store, sink=store)
        ```
    """

    def __init__(self, db_config: Optional[DatabaseConfig] = None, db_path: Optional[str] = None):
        if db_config:
            if db_config.db_type != "duckdb":
                raise StoreUnavailableError(
                    f"DatabaseConfig type '{db_config.db_type}' does not match DuckDB store",
                    operation="__init__",
                )
            self.db_path = db_config.db_path or ":memory:"
        else:
            self.db_path = db_path or ":memory:"

        if self.db_path != ":memory:" and not Path(self.db_path).parent.exists():
            raise StoreUnavailableError(
                f"Database directory does not exist: {Path(self.db_path).parent}",
                operation="__init__",
            )

        self._connection: Optional[duckdb.DuckDBPyConnection] = None
        self._initialized = False
        self._lock = threading.RLock()

    def _get_connection(self) -> duckdb.DuckDBPyConnection:
        if self._connection is None:
            try:
                self._connection = duckdb.connect(self.db_path)
                logger.info(f"Connected to DuckDB database: {self.db_path}")
            except duckdb.Error as e:
                raise StoreUnavailableError(
                    f"Failed to connect to DuckDB: {str(e)}",
                    operation="connect",
                    details={"db_path": self.db_path},
                )
        return self._connection

    def _conn(self) -> duckdb.DuckDBPyConnection:
        if not self._initialized:
            result = self.initialize_schema()
            if result.is_failure():
                raise StoreUnavailableError(result.error, operation="initialize_schema")
        return self._get_connection()

    def initialize_schema(self) -> Result[None]:
        """Create the ledger, quarantine, result and audit tables.

        Returns:
            Result[None]: Success or failure result
        """
        with self._lock:
            try:
                conn = self._get_connection()
                conn.execute("""
                    CREATE TABLE IF NOT EXISTS dedup_ledger (
                        dedup_key VARCHAR PRIMARY KEY,
                        fingerprint VARCHAR NOT NULL,
                        external_message_id VARCHAR,
                        source_id VARCHAR,
                        first_seen_at TIMESTAMP NOT NULL,
                        outcome VARCHAR NOT NULL,
                        application_id VARCHAR,
                        entity_id VARCHAR
                    )
                """)
                conn.execute("""
                    CREATE TABLE IF NOT EXISTS quarantine (
                        entry_id VARCHAR PRIMARY KEY,
                        raw_message VARCHAR NOT NULL,
                        reason_code VARCHAR NOT NULL,
                        diagnostics VARCHAR,
                        received_at TIMESTAMP NOT NULL,
                        retry_count INTEGER NOT NULL DEFAULT 0,
                        last_attempt_at TIMESTAMP,
                        next_attempt_at TIMESTAMP,
                        status VARCHAR NOT NULL,
                        dedup_key VARCHAR,
                        fingerprint VARCHAR,
                        external_message_id VARCHAR,
                        source_id VARCHAR,
                        resolution VARCHAR,
                        resolved_by VARCHAR,
                        resolved_at TIMESTAMP,
                        resolution_note VARCHAR
                    )
                """)
                conn.execute("""
                    CREATE TABLE IF NOT EXISTS lab_results (
                        application_id VARCHAR PRIMARY KEY,
                        entity_id VARCHAR NOT NULL,
                        practice_id VARCHAR,
                        physician_id VARCHAR,
                        request_id VARCHAR,
                        parameter_count INTEGER,
                        result_json VARCHAR NOT NULL,
                        applied_at TIMESTAMP NOT NULL
                    )
                """)
                conn.execute("""
                    CREATE TABLE IF NOT EXISTS audit_log (
                        audit_id VARCHAR PRIMARY KEY,
                        event VARCHAR NOT NULL,
                        dedup_key VARCHAR,
                        reason_code VARCHAR,
                        entry_id VARCHAR,
                        application_id VARCHAR,
                        source_id VARCHAR,
                        actor VARCHAR,
                        detail VARCHAR,
                        logged_at TIMESTAMP NOT NULL
                    )
                """)
                conn.execute("CREATE INDEX IF NOT EXISTS idx_lab_results_entity ON lab_results(entity_id)")
                conn.execute("CREATE INDEX IF NOT EXISTS idx_audit_event ON audit_log(event)")

                self._initialized = True
                logger.info("Database schema initialized successfully")
                return Result.success_result(None)
            except (duckdb.Error, StoreUnavailableError) as e:
                error_msg = f"Failed to initialize schema: {str(e)}"
                logger.error(error_msg, exc_info=True)
                return Result.failure_result(
                    StoreUnavailableError(error_msg, operation="initialize_schema"),
                    error_type="StoreUnavailableError",
                )

    # ------------------------------------------------------------------
    # LedgerPort
    # ------------------------------------------------------------------

    def get(self, dedup_key: str) -> Optional[DedupEntry]:
        with self._lock:
            try:
                row = self._conn().execute(
                    "SELECT dedup_key, fingerprint, external_message_id, source_id, first_seen_at, "
                    "outcome, application_id, entity_id FROM dedup_ledger WHERE dedup_key = ?",
                    [dedup_key],
                ).fetchone()
            except duckdb.Error as e:
                raise StoreUnavailableError(f"Ledger read failed: {e}", operation="ledger_get")
        return self._ledger_row(row) if row else None

    def apply_once(self, entry: DedupEntry, apply: Callable[[], None]) -> tuple[bool, DedupEntry]:
        with self._lock:
            try:
                conn = self._conn()
                conn.begin()
            except duckdb.Error as e:
                raise StoreUnavailableError(f"Ledger transaction failed: {e}", operation="apply_once")

            try:
                row = conn.execute(
                    "SELECT dedup_key, fingerprint, external_message_id, source_id, first_seen_at, "
                    "outcome, application_id, entity_id FROM dedup_ledger WHERE dedup_key = ?",
                    [entry.dedup_key],
                ).fetchone()
                existing = self._ledger_row(row) if row else None
                if existing is not None and existing.outcome == DedupOutcome.APPLIED:
                    conn.commit()
                    return False, existing

                apply()

                stored = entry.model_copy(update={"outcome": DedupOutcome.APPLIED})
                if existing is not None:
                    stored = stored.model_copy(update={"first_seen_at": existing.first_seen_at})
                    params = self._ledger_params(stored)
                    conn.execute(
                        "UPDATE dedup_ledger SET fingerprint = ?, external_message_id = ?, source_id = ?, "
                        "first_seen_at = ?, outcome = ?, application_id = ?, entity_id = ? WHERE dedup_key = ?",
                        params[1:] + [params[0]],
                    )
                else:
                    self._insert_ledger(conn, stored)
                conn.commit()
                return True, stored
            except duckdb.Error as e:
                conn.rollback()
                raise StoreUnavailableError(f"Ledger transaction failed: {e}", operation="apply_once")
            except Exception:
                conn.rollback()
                raise

    def mark_quarantined(self, entry: DedupEntry) -> None:
        with self._lock:
            try:
                self._conn().execute(
                    "INSERT INTO dedup_ledger (dedup_key, fingerprint, external_message_id, source_id, "
                    "first_seen_at, outcome, application_id, entity_id) VALUES (?, ?, ?, ?, ?, ?, ?, ?) "
                    "ON CONFLICT (dedup_key) DO NOTHING",
                    self._ledger_params(entry.model_copy(update={"outcome": DedupOutcome.QUARANTINED})),
                )
            except duckdb.Error as e:
                raise StoreUnavailableError(f"Ledger write failed: {e}", operation="mark_quarantined")

    def _insert_ledger(self, conn, entry: DedupEntry) -> None:
        conn.execute(
            "INSERT INTO dedup_ledger (dedup_key, fingerprint, external_message_id, source_id, "
            "first_seen_at, outcome, application_id, entity_id) VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
            self._ledger_params(entry),
        )

    @staticmethod
    def _ledger_params(entry: DedupEntry) -> list:
        return [
            entry.dedup_key,
            entry.fingerprint,
            entry.external_message_id,
            entry.source_id,
            _to_db(entry.first_seen_at),
            entry.outcome.value,
            entry.application_id,
            entry.entity_id,
        ]

    @staticmethod
    def _ledger_row(row) -> DedupEntry:
        return DedupEntry(
            dedup_key=row[0],
            fingerprint=row[1],
            external_message_id=row[2],
            source_id=row[3],
            first_seen_at=_from_db(row[4]),
            outcome=DedupOutcome(row[5]),
            application_id=row[6],
            entity_id=row[7],
        )

    # ------------------------------------------------------------------
    # QuarantineStorePort
    # ------------------------------------------------------------------

    def add(self, entry: QuarantineEntry) -> QuarantineEntry:
        placeholders = ", ".join("?" for _ in _QUARANTINE_COLUMNS)
        with self._lock:
            try:
                self._conn().execute(
                    f"INSERT INTO quarantine ({', '.join(_QUARANTINE_COLUMNS)}) VALUES ({placeholders})",
                    self._quarantine_params(entry),
                )
            except duckdb.Error as e:
                raise StoreUnavailableError(f"Quarantine write failed: {e}", operation="quarantine_add")
        logger.debug(f"Quarantined entry {entry.entry_id} ({entry.reason_code.value})")
        return entry

    def get_entry(self, entry_id: str) -> Optional[QuarantineEntry]:
        rows = self._select_quarantine("WHERE entry_id = ?", [entry_id])
        return rows[0] if rows else None

    def update(self, entry: QuarantineEntry) -> QuarantineEntry:
        assignments = ", ".join(f"{column} = ?" for column in _QUARANTINE_COLUMNS[1:])
        params = self._quarantine_params(entry)
        with self._lock:
            try:
                self._conn().execute(
                    f"UPDATE quarantine SET {assignments} WHERE entry_id = ?",
                    params[1:] + [params[0]],
                )
            except duckdb.Error as e:
                raise StoreUnavailableError(f"Quarantine update failed: {e}", operation="quarantine_update")
        return entry

    def list_entries(self, status: Optional[QuarantineStatus] = None) -> list[QuarantineEntry]:
        if status is None:
            return self._select_quarantine("", [])
        return self._select_quarantine("WHERE status = ?", [status.value])

    def _select_quarantine(self, where: str, params: list) -> list[QuarantineEntry]:
        with self._lock:
            try:
                rows = self._conn().execute(
                    f"SELECT {', '.join(_QUARANTINE_COLUMNS)} FROM quarantine {where} ORDER BY received_at",
                    params,
                ).fetchall()
            except duckdb.Error as e:
                raise StoreUnavailableError(f"Quarantine read failed: {e}", operation="quarantine_read")
        return [self._quarantine_row(row) for row in rows]

    @staticmethod
    def _quarantine_params(entry: QuarantineEntry) -> list:
        return [
            entry.entry_id,
            entry.raw_message,
            entry.reason_code.value,
            json.dumps(entry.diagnostics),
            _to_db(entry.received_at),
            entry.retry_count,
            _to_db(entry.last_attempt_at),
            _to_db(entry.next_attempt_at),
            entry.status.value,
            entry.dedup_key,
            entry.fingerprint,
            entry.external_message_id,
            entry.source_id,
            entry.resolution.value if entry.resolution else None,
            entry.resolved_by,
            _to_db(entry.resolved_at),
            entry.resolution_note,
        ]

    @staticmethod
    def _quarantine_row(row) -> QuarantineEntry:
        data = dict(zip(_QUARANTINE_COLUMNS, row))
        data["reason_code"] = ReasonCode(data["reason_code"])
        data["status"] = QuarantineStatus(data["status"])
        data["diagnostics"] = json.loads(data["diagnostics"]) if data["diagnostics"] else []
        data["resolution"] = ResolutionDisposition(data["resolution"]) if data["resolution"] else None
        for column in ("received_at", "last_attempt_at", "next_attempt_at", "resolved_at"):
            data[column] = _from_db(data[column])
        return QuarantineEntry(**data)

    # ------------------------------------------------------------------
    # ResultSinkPort
    # ------------------------------------------------------------------

    def apply(self, result: DomainResult, entity: CandidateEntity, application_id: str) -> None:
        """Insert the applied result (inside the ledger transaction when called from ``apply_once``)."""
        with self._lock:
            self._conn().execute(
                "INSERT INTO lab_results (application_id, entity_id, practice_id, physician_id, "
                "request_id, parameter_count, result_json, applied_at) VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
                [
                    application_id,
                    entity.entity_id,
                    result.practice_id,
                    result.physician_id,
                    result.lab_info.request_id,
                    len(result.parameters),
                    result.model_dump_json(),
                    _to_db(utcnow()),
                ],
            )

    def get_result(self, application_id: str) -> Optional[DomainResult]:
        with self._lock:
            try:
                row = self._conn().execute(
                    "SELECT result_json FROM lab_results WHERE application_id = ?",
                    [application_id],
                ).fetchone()
            except duckdb.Error as e:
                raise StoreUnavailableError(f"Result read failed: {e}", operation="get_result")
        return DomainResult.model_validate_json(row[0]) if row else None

    def count_results(self) -> int:
        with self._lock:
            return self._conn().execute("SELECT COUNT(*) FROM lab_results").fetchone()[0]

    # ------------------------------------------------------------------
    # Audit trail
    # ------------------------------------------------------------------

    def flush_audit_logs(self, audit_logs: list[dict]) -> Result[int]:
        """Persist buffered audit events in one transaction.

        Returns:
            Result[int]: Number of events persisted or error
        """
        if not audit_logs:
            return Result.success_result(0)
        with self._lock:
            try:
                conn = self._conn()
                conn.begin()
                try:
                    for log_entry in audit_logs:
                        conn.execute(
                            "INSERT INTO audit_log (audit_id, event, dedup_key, reason_code, entry_id, "
                            "application_id, source_id, actor, detail, logged_at) "
                            "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                            [
                                log_entry.get("audit_id", str(uuid.uuid4())),
                                log_entry["event"],
                                log_entry.get("dedup_key"),
                                log_entry.get("reason_code"),
                                log_entry.get("entry_id"),
                                log_entry.get("application_id"),
                                log_entry.get("source_id"),
                                log_entry.get("actor"),
                                log_entry.get("detail"),
                                _to_db(log_entry.get("logged_at") or utcnow()),
                            ],
                        )
                    conn.commit()
                except duckdb.Error:
                    conn.rollback()
                    raise
            except (duckdb.Error, StoreUnavailableError) as e:
                error_msg = f"Failed to flush audit logs: {str(e)}"
                logger.error(error_msg)
                return Result.failure_result(
                    StoreUnavailableError(error_msg, operation="flush_audit_logs"),
                    error_type="StoreUnavailableError",
                )
        count = len(audit_logs)
        logger.info(f"Flushed {count} audit events to database")
        return Result.success_result(count)

    def close(self) -> None:
        """Close the connection and release resources."""
        with self._lock:
            if self._connection is not None:
                try:
                    self._connection.close()
                except duckdb.Error as e:
                    logger.warning(f"Error closing connection: {str(e)}")
                finally:
                    self._connection = None
                    self._initialized = False
                    logger.info("Closed DuckDB connection")
