"""Shared fixtures: sample LDT messages, directory entities and stores."""

import pytest

from ldt_pipeline.adapters.directory import InMemoryDirectory
from ldt_pipeline.adapters.storage import (
    InMemoryLedger,
    InMemoryQuarantineStore,
    InMemoryResultSink,
)
from ldt_pipeline.domain.pipeline_models import CandidateEntity
from ldt_pipeline.infrastructure.audit import DispositionAuditLogger
from ldt_pipeline.infrastructure.settings import Settings
from ldt_pipeline.pipeline import IngestionPipeline

PRACTICE_ID = "123456789"
PHYSICIAN_ID = "987654321"


def build_line(record_type: str, field_id: str, content: str = "", terminator_length: int = 0) -> str:
    """One LDT line with a correct declared length."""
    body = f"{record_type}{field_id}{content}"
    return f"{3 + len(body) + terminator_length:03d}{body}"


def build_message(body_lines, sequence: str = "0001", footer: bool = True) -> list[str]:
    lines = [build_line("8000", "8230", sequence)]
    lines.extend(body_lines)
    if footer:
        lines.append(build_line("8000", "8231", sequence))
    return lines


def core_body() -> list[str]:
    return [
        build_line("8100", "0201", PRACTICE_ID),
        build_line("8100", "0202", PHYSICIAN_ID),
        build_line("8100", "0203", "Labor Potsdam"),
        build_line("8200", "3101", "Mustermann"),
        build_line("8200", "3102", "Erika"),
        build_line("8200", "3103", "19800101"),
        build_line("8200", "3110", "W"),
        build_line("8300", "8310", "REQ-42"),
        build_line("8400", "8410", "HB"),
        build_line("8400", "8411", "Haemoglobin"),
        build_line("8400", "8420", "13.5"),
        build_line("8400", "8421", "g/dl"),
        build_line("8400", "8460", "12.0-16.0"),
        build_line("9901", "LOCA", "TION|Potsdam"),
    ]


@pytest.fixture
def ldt_line():
    """Line builder: ``ldt_line(record_type, field_id, content)``."""
    return build_line


@pytest.fixture
def sample_lines() -> list[str]:
    """A valid 16-line message: header, 14 body records, footer."""
    return build_message(core_body())


@pytest.fixture
def sample_message(sample_lines) -> str:
    return "".join(line + "\r\n" for line in sample_lines)


@pytest.fixture
def message_45_lines() -> list[str]:
    """45 lines; line 16 carries an invalid field id, the rest decode."""
    body = core_body()
    body.append(build_line("9901", "LAB!", "NOTE"))
    for index in range(7):
        body.extend([
            build_line("8400", "8410", f"P{index}"),
            build_line("8400", "8411", f"Parameter {index}"),
            build_line("8400", "8420", str(index)),
            build_line("8400", "8421", "mg/dl"),
        ])
    return build_message(body)


@pytest.fixture
def entity() -> CandidateEntity:
    return CandidateEntity(
        entity_id="E-1",
        practice_id=PRACTICE_ID,
        physician_id=PHYSICIAN_ID,
        last_name="Mustermann",
        first_name="Erika",
        birth_date="19800101",
    )


@pytest.fixture
def directory(entity) -> InMemoryDirectory:
    return InMemoryDirectory([entity])


@pytest.fixture
def test_settings() -> Settings:
    """Environment defaults with short retry delays."""
    config = Settings()
    config.terminator_length = 0
    config.wrapper_tag = "column1"
    config.max_decode_failure_ratio = None
    config.fuzzy_threshold = 0.85
    config.lookup_timeout = 2.0
    config.retry_max_attempts = 3
    config.retry_base_delay = 1.0
    config.retry_max_delay = 10.0
    return config


@pytest.fixture
def ledger() -> InMemoryLedger:
    return InMemoryLedger()


@pytest.fixture
def quarantine_store() -> InMemoryQuarantineStore:
    return InMemoryQuarantineStore()


@pytest.fixture
def sink() -> InMemoryResultSink:
    return InMemoryResultSink()


@pytest.fixture
def audit_logger() -> DispositionAuditLogger:
    return DispositionAuditLogger(source_id="test")


@pytest.fixture
def pipeline(directory, ledger, quarantine_store, sink, test_settings, audit_logger):
    pipe = IngestionPipeline(
        directory,
        ledger,
        quarantine_store,
        sink,
        settings=test_settings,
        audit_logger=audit_logger,
    )
    yield pipe
    pipe.close()
