"""LDT-Ingest: laboratory result ingestion for LDT record streams.

The package is split along the hexagonal boundaries used throughout:

- ``ldt_pipeline.domain``: record model, codec services, matching, dedup and
  quarantine logic, with ports describing what the core needs from outside
- ``ldt_pipeline.adapters``: payload readers, stores and directories that
  implement those ports
- ``ldt_pipeline.infrastructure``: settings, configuration, logging and audit
"""

__version__ = "1.0.0"
