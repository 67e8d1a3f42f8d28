"""Tests for the Typer command line interface."""

import json
import logging

import pytest
from typer.testing import CliRunner

from ldt_pipeline import __version__
from ldt_pipeline.adapters.storage import DuckDBStore
from ldt_pipeline.cli import app
from ldt_pipeline.domain.enums import QuarantineStatus, ReasonCode
from ldt_pipeline.domain.lab_result import DomainResult, PatientIdentity
from ldt_pipeline.domain.services import RecordEncoder
from ldt_pipeline.infrastructure.config_manager import DatabaseConfig
from ldt_pipeline.infrastructure.settings import settings

from conftest import build_message, core_body

runner = CliRunner()


@pytest.fixture(autouse=True)
def restore_root_logger():
    """Commands install their own log handler on the root logger."""
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    yield
    root.handlers[:] = handlers
    root.setLevel(level)


@pytest.fixture
def db_path(tmp_path, monkeypatch):
    path = tmp_path / "ldt.duckdb"
    monkeypatch.setattr(settings, "_db_config", DatabaseConfig(db_type="duckdb", db_path=str(path)))
    return path


@pytest.fixture
def directory_file(tmp_path, entity):
    path = tmp_path / "directory.json"
    path.write_text(json.dumps([entity.model_dump()]), encoding="utf-8")
    return path


@pytest.fixture
def ldt_file(tmp_path, sample_message):
    path = tmp_path / "result.ldt"
    path.write_bytes(sample_message.encode("utf-8"))
    return path


@pytest.fixture
def broken_file(tmp_path):
    path = tmp_path / "broken.ldt"
    path.write_text("\r\n".join(build_message(core_body(), footer=False)), encoding="utf-8")
    return path


def quarantine_entries(db_path):
    store = DuckDBStore(db_path=str(db_path))
    try:
        return store.list_entries()
    finally:
        store.close()


class TestGeneralCommands:

    def test_version(self):
        result = runner.invoke(app, ["--version"])

        assert result.exit_code == 0
        assert f"ldt-pipeline v{__version__}" in result.output

    def test_info(self, db_path):
        result = runner.invoke(app, ["info"])

        assert result.exit_code == 0
        assert "duckdb" in result.output


class TestInspectCommand:

    def test_valid_file(self, ldt_file):
        result = runner.invoke(app, ["inspect", str(ldt_file)])

        assert result.exit_code == 0
        assert "Laboratory report REQ-42" in result.output
        assert "Mustermann" in result.output

    def test_structural_reject(self, broken_file):
        result = runner.invoke(app, ["inspect", str(broken_file)])

        assert result.exit_code == 1
        assert "missing_footer" in result.output


class TestEncodeCommand:

    def test_encode_to_file(self, tmp_path):
        result_model = DomainResult(practice_id="123456789", patient=PatientIdentity(last_name="Mustermann"))
        source = tmp_path / "result.json"
        source.write_text(result_model.model_dump_json(), encoding="utf-8")
        output = tmp_path / "out.ldt"

        result = runner.invoke(app, ["encode", str(source), "--output", str(output)])

        assert result.exit_code == 0
        assert output.read_bytes() == RecordEncoder().encode(result_model).encode("utf-8")

    def test_encode_to_stdout(self, tmp_path):
        result_model = DomainResult(practice_id="123456789")
        source = tmp_path / "result.json"
        source.write_text(result_model.model_dump_json(), encoding="utf-8")

        result = runner.invoke(app, ["encode", str(source)])

        assert result.exit_code == 0
        assert "81000201123456789" in result.output

    def test_value_too_long(self, tmp_path):
        source = tmp_path / "result.json"
        source.write_text(DomainResult(practice_id="1" * 995).model_dump_json(), encoding="utf-8")

        result = runner.invoke(app, ["encode", str(source)])

        assert result.exit_code == 1
        assert "practice_id" in result.output

    def test_invalid_json(self, tmp_path):
        source = tmp_path / "result.json"
        source.write_text("[]", encoding="utf-8")

        assert runner.invoke(app, ["encode", str(source)]).exit_code == 1


class TestIngestCommand:

    def test_applied_then_duplicate(self, db_path, ldt_file, directory_file):
        first = runner.invoke(app, ["ingest", str(ldt_file), "--directory-file", str(directory_file)])
        second = runner.invoke(app, ["ingest", str(ldt_file), "--directory-file", str(directory_file)])

        assert first.exit_code == 0, first.output
        assert "Ingestion completed successfully" in first.output
        assert second.exit_code == 0

        store = DuckDBStore(db_path=str(db_path))
        try:
            assert store.count_results() == 1
            events = [row[0] for row in store._conn().execute("SELECT event FROM audit_log").fetchall()]
        finally:
            store.close()
        assert sorted(events) == ["applied", "duplicate"]

    def test_quarantined_exits_nonzero(self, db_path, broken_file):
        result = runner.invoke(app, ["ingest", str(broken_file)])

        assert result.exit_code == 1
        entries = quarantine_entries(db_path)
        assert len(entries) == 1
        assert entries[0].reason_code == ReasonCode.MISSING_FOOTER

    def test_external_id_for_directory_rejected(self, db_path, tmp_path, ldt_file, directory_file):
        (tmp_path / "second.ldt").write_bytes(ldt_file.read_bytes())

        result = runner.invoke(app, [
            "ingest", str(tmp_path), "--external-id", "42", "--directory-file", str(directory_file),
        ])

        assert result.exit_code == 1


class TestQuarantineCommands:

    def test_list(self, db_path, broken_file):
        runner.invoke(app, ["ingest", str(broken_file)])

        result = runner.invoke(app, ["quarantine", "list"])

        assert result.exit_code == 0
        assert "1 entry" in result.output

    def test_reject(self, db_path, broken_file):
        runner.invoke(app, ["ingest", str(broken_file)])
        entry_id = quarantine_entries(db_path)[0].entry_id

        result = runner.invoke(app, ["quarantine", "resolve", entry_id, "--reject", "--operator", "alice"])

        assert result.exit_code == 0
        entry = quarantine_entries(db_path)[0]
        assert entry.status == QuarantineStatus.RESOLVED
        assert entry.resolved_by == "alice"

    def test_accept_with_corrected_file(self, db_path, broken_file, ldt_file, directory_file):
        runner.invoke(app, ["ingest", str(broken_file)])
        entry_id = quarantine_entries(db_path)[0].entry_id

        result = runner.invoke(app, [
            "quarantine", "resolve", entry_id, "--accept", "--operator", "alice",
            "--corrected-file", str(ldt_file), "--directory-file", str(directory_file),
        ])

        assert result.exit_code == 0, result.output
        assert quarantine_entries(db_path)[0].status == QuarantineStatus.RESOLVED

    def test_accept_still_failing(self, db_path, broken_file):
        runner.invoke(app, ["ingest", str(broken_file)])
        entry_id = quarantine_entries(db_path)[0].entry_id

        result = runner.invoke(app, ["quarantine", "resolve", entry_id, "--accept", "--operator", "alice"])

        assert result.exit_code == 1
        assert quarantine_entries(db_path)[0].status == QuarantineStatus.QUARANTINED

    def test_disposition_required(self, db_path):
        result = runner.invoke(app, ["quarantine", "resolve", "some-id", "--operator", "alice"])

        assert result.exit_code == 2

    def test_unknown_entry(self, db_path):
        result = runner.invoke(app, ["quarantine", "resolve", "missing", "--reject", "--operator", "alice"])

        assert result.exit_code == 1
        assert "not found" in result.output

    def test_retry(self, db_path, directory_file):
        result = runner.invoke(app, ["quarantine", "retry", "--directory-file", str(directory_file)])

        assert result.exit_code == 0
        assert "Attempted" in result.output
