"""Payload adapters: format detection, tokenization and file sources."""

from ldt_pipeline.adapters.ingesters.format_detector import (
    canonical_lines,
    detect_format,
)
from ldt_pipeline.adapters.ingesters.ldt_file_source import LDTFileSource
from ldt_pipeline.adapters.ingesters.tokenizer import (
    TokenizedMessage,
    Tokenizer,
    fingerprint,
    tokenize,
)

__all__ = [
    "canonical_lines",
    "detect_format",
    "LDTFileSource",
    "TokenizedMessage",
    "Tokenizer",
    "fingerprint",
    "tokenize",
]
