"""Domain layer for the LDT ingestion pipeline.

This module contains the record models, the field mapping table and the
ports the pipeline depends on. Domain models are pure Python with no
external dependencies beyond Pydantic.
"""

from .lab_result import (
    Annotation,
    DomainResult,
    LabInfo,
    PatientIdentity,
    Record,
    RecordError,
    TestParameter,
)

__all__ = [
    "Annotation",
    "DomainResult",
    "LabInfo",
    "PatientIdentity",
    "Record",
    "RecordError",
    "TestParameter",
]
