"""Ledger, quarantine and result stores."""

from ldt_pipeline.adapters.storage.duckdb_store import DuckDBStore
from ldt_pipeline.adapters.storage.memory_store import (
    InMemoryLedger,
    InMemoryQuarantineStore,
    InMemoryResultSink,
)

__all__ = [
    "DuckDBStore",
    "InMemoryLedger",
    "InMemoryQuarantineStore",
    "InMemoryResultSink",
]
