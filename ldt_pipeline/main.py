"""Main entry point for the LDT ingestion pipeline.

Builds the stores, the identity directory and the pipeline from
configuration, and drives bulk ingestion of LDT files (one message per
file).

Security Impact:
    - Configuration is loaded via the configuration manager, never from
      message content
    - Every disposition lands in the audit trail; durable stores get it
      flushed after each run

Architecture:
    - Store adapters are selected from ``LDT_DB_TYPE``
    - Files are processed concurrently; the ledger serializes per dedup key
"""

import argparse
import logging
import sys
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Optional

from ldt_pipeline.adapters.directory import InMemoryDirectory
from ldt_pipeline.adapters.ingesters import LDTFileSource
from ldt_pipeline.adapters.storage import (
    DuckDBStore,
    InMemoryLedger,
    InMemoryQuarantineStore,
    InMemoryResultSink,
)
from ldt_pipeline.domain.pipeline_models import (
    Applied,
    Duplicate,
    PipelineOutcome,
)
from ldt_pipeline.domain.ports import (
    LedgerPort,
    QuarantineStorePort,
    ResultSinkPort,
    SourceNotFoundError,
    StoreUnavailableError,
)
from ldt_pipeline.infrastructure.config_manager import DatabaseConfig, get_database_config
from ldt_pipeline.infrastructure.logging_config import setup_logging
from ldt_pipeline.infrastructure.settings import Settings, settings as default_settings
from ldt_pipeline.pipeline import IngestionPipeline

logger = logging.getLogger(__name__)

DEFAULT_MAX_WORKERS = 4


@dataclass
class StoreBundle:
    """Ledger, quarantine store and sink selected by configuration.

    With DuckDB all three are the same ``DuckDBStore``.
    """
    ledger: LedgerPort
    quarantine_store: QuarantineStorePort
    sink: ResultSinkPort
    durable: bool = False

    def close(self) -> None:
        closer = getattr(self.ledger, "close", None)
        if closer is not None:
            closer()


@dataclass
class IngestionSummary:
    """Counters and per-file outcomes of one bulk run."""
    applied: int = 0
    duplicate: int = 0
    quarantined: int = 0
    outcomes: list[tuple[Path, PipelineOutcome]] = field(default_factory=list)

    @property
    def total(self) -> int:
        return self.applied + self.duplicate + self.quarantined

    def record(self, path: Path, outcome: PipelineOutcome) -> None:
        self.outcomes.append((path, outcome))
        if isinstance(outcome, Applied):
            self.applied += 1
        elif isinstance(outcome, Duplicate):
            self.duplicate += 1
        else:
            self.quarantined += 1


def create_stores(db_config: Optional[DatabaseConfig] = None) -> StoreBundle:
    """Create the store adapters based on configuration.

    Raises:
        ValueError: If the database type is unsupported
    """
    db_config = db_config or get_database_config()

    if db_config.db_type == "duckdb":
        logger.info(f"Initializing DuckDB store with path: {db_config.db_path or ':memory:'}")
        store = DuckDBStore(db_config=db_config)
        schema_result = store.initialize_schema()
        if not schema_result.is_success():
            raise RuntimeError(f"Schema initialization failed: {schema_result.error}")
        return StoreBundle(ledger=store, quarantine_store=store, sink=store, durable=db_config.is_durable)
    elif db_config.db_type == "memory":
        logger.info("Initializing in-memory stores")
        return StoreBundle(
            ledger=InMemoryLedger(),
            quarantine_store=InMemoryQuarantineStore(),
            sink=InMemoryResultSink(),
        )
    else:
        raise ValueError(f"Unsupported database type: {db_config.db_type}")


def create_directory(directory_file: Optional[str] = None) -> InMemoryDirectory:
    """Directory from a JSON file, or an empty one (every message quarantines)."""
    if not directory_file:
        logger.warning("No directory file configured; messages cannot be matched")
        return InMemoryDirectory()
    return InMemoryDirectory.from_json_file(directory_file)


def build_pipeline(
    stores: StoreBundle,
    settings: Optional[Settings] = None,
    directory_file: Optional[str] = None,
) -> IngestionPipeline:
    config = settings or default_settings
    directory = create_directory(directory_file or config.directory_file)
    return IngestionPipeline(
        directory,
        stores.ledger,
        stores.quarantine_store,
        stores.sink,
        settings=config,
    )


def flush_audit(pipeline: IngestionPipeline, stores: StoreBundle) -> int:
    """Move buffered audit events into the store, when it keeps them."""
    audit = pipeline.audit_logger
    if not audit.has_logs() or not hasattr(stores.ledger, "flush_audit_logs"):
        return 0
    flush_result = stores.ledger.flush_audit_logs(audit.get_logs())
    if flush_result.is_success():
        audit.clear_logs()
        logger.debug(f"Flushed {flush_result.value} audit events to storage")
        return flush_result.value
    logger.warning(f"Failed to flush audit events: {flush_result.error}")
    return 0


def process_path(
    path: str,
    pipeline: IngestionPipeline,
    source_id: Optional[str] = None,
    external_message_id: Optional[str] = None,
    pattern: str = "*.ldt",
    max_workers: int = DEFAULT_MAX_WORKERS,
    on_outcome: Optional[Callable[[Path, PipelineOutcome], None]] = None,
) -> IngestionSummary:
    """Ingest one LDT file or every matching file of a directory.

    Parameters:
        path: File or directory
        pipeline: Configured pipeline
        source_id: Sending system recorded with each message
        external_message_id: Envelope id; only meaningful for a single file
        pattern: Glob for directory imports
        max_workers: Files processed concurrently
        on_outcome: Called once per processed file (progress reporting)

    Raises:
        SourceNotFoundError: If ``path`` does not exist
        ValueError: If an external id is given for a directory import
    """
    source = LDTFileSource(path, pattern=pattern, source_id=source_id)
    files = source.files()
    if external_message_id and len(files) > 1:
        raise ValueError("An external message id can only be given for a single file")

    summary = IngestionSummary()
    messages = []
    for file_path, message in source.messages():
        if external_message_id:
            message = message.model_copy(update={"external_message_id": external_message_id})
        messages.append((file_path, message))
    logger.info(f"Starting ingestion of {len(messages)} message(s) from {path}")

    with ThreadPoolExecutor(max_workers=max(1, max_workers), thread_name_prefix="ldt-ingest") as executor:
        futures = {executor.submit(pipeline.process, message): file_path for file_path, message in messages}
        for future in as_completed(futures):
            file_path = futures[future]
            outcome = future.result()
            summary.record(file_path, outcome)
            if on_outcome is not None:
                on_outcome(file_path, outcome)

    summary.outcomes.sort(key=lambda item: str(item[0]))
    logger.info(
        f"Ingestion complete: {summary.applied} applied, {summary.duplicate} duplicate, "
        f"{summary.quarantined} quarantined"
    )
    return summary


def main(argv: Optional[list[str]] = None) -> int:
    """Main entry point for command-line ingestion.

    Returns:
        int: Exit code (0 when nothing was quarantined)
    """
    parser = argparse.ArgumentParser(description="LDT laboratory message ingestion")
    parser.add_argument("source", help="LDT file or directory")
    parser.add_argument("--source-id", default="file-import", help="Sending system identifier")
    parser.add_argument("--external-id", default=None, help="Envelope message id (single file only)")
    parser.add_argument("--directory-file", default=None, help="JSON directory of practices and patients")
    parser.add_argument("--pattern", default="*.ldt", help="File pattern for directory imports")
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable verbose logging")
    args = parser.parse_args(argv)

    setup_logging(use_json=default_settings.log_json, log_level="DEBUG" if args.verbose else default_settings.log_level)

    try:
        stores = create_stores()
    except (ValueError, RuntimeError, StoreUnavailableError) as e:
        logger.error(f"Failed to create stores: {e}")
        return 1

    pipeline = None
    try:
        pipeline = build_pipeline(stores, directory_file=args.directory_file)
        summary = process_path(
            args.source,
            pipeline,
            source_id=args.source_id,
            external_message_id=args.external_id,
            pattern=args.pattern,
        )
        flush_audit(pipeline, stores)
    except (SourceNotFoundError, ValueError) as e:
        logger.error(str(e))
        return 1
    except KeyboardInterrupt:
        logger.warning("Ingestion interrupted by user")
        return 130
    finally:
        if pipeline is not None:
            pipeline.close()
        stores.close()

    return 1 if summary.quarantined else 0


if __name__ == "__main__":
    sys.exit(main())
