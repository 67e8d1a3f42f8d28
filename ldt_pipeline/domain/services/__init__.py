"""Domain services of the LDT codec and ingestion core."""

from ldt_pipeline.domain.services.decoder import decode, decode_lines
from ldt_pipeline.domain.services.encoder import RecordEncoder
from ldt_pipeline.domain.services.extractor import SemanticExtractor
from ldt_pipeline.domain.services.idempotency import IdempotencyGate, dedup_key
from ldt_pipeline.domain.services.matcher import IdentityMatcher
from ldt_pipeline.domain.services.retry_manager import (
    QuarantineEntryNotFoundError,
    RetryBatchReport,
    RetryManager,
    RetryPolicy,
)
from ldt_pipeline.domain.services.validator import RecordValidator, ValidationReport

__all__ = [
    "decode",
    "decode_lines",
    "RecordEncoder",
    "SemanticExtractor",
    "IdempotencyGate",
    "dedup_key",
    "IdentityMatcher",
    "QuarantineEntryNotFoundError",
    "RetryBatchReport",
    "RetryManager",
    "RetryPolicy",
    "RecordValidator",
    "ValidationReport",
]
