"""Audit infrastructure components.

This package provides the disposition audit trail of the ingestion pipeline.
"""

from ldt_pipeline.infrastructure.audit.disposition_audit_logger import DispositionAuditLogger

__all__ = ['DispositionAuditLogger']
