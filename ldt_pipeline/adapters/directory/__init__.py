"""Identity directory adapters."""

from ldt_pipeline.adapters.directory.memory_directory import InMemoryDirectory

__all__ = ["InMemoryDirectory"]
