"""Unit tests for the LDT file source."""

import pytest

from ldt_pipeline.adapters.ingesters import LDTFileSource
from ldt_pipeline.domain.ports import SourceNotFoundError


class TestLDTFileSource:
    """Test suite for file and directory imports."""

    def test_single_file(self, tmp_path, sample_message):
        path = tmp_path / "result.ldt"
        path.write_bytes(sample_message.encode("utf-8"))

        messages = list(LDTFileSource(path, source_id="lab-a"))

        assert len(messages) == 1
        file_path, message = messages[0]
        assert file_path == path
        assert message.raw == sample_message.encode("utf-8")
        assert message.source_id == "lab-a"
        assert message.external_message_id is None

    def test_directory_in_name_order(self, tmp_path, sample_message):
        for name in ("b.ldt", "a.ldt", "notes.txt"):
            (tmp_path / name).write_text(sample_message, encoding="utf-8")

        source = LDTFileSource(tmp_path)

        assert [p.name for p in source.files()] == ["a.ldt", "b.ldt"]
        assert [p.name for p, _ in source.messages()] == ["a.ldt", "b.ldt"]

    def test_custom_pattern(self, tmp_path, sample_message):
        (tmp_path / "a.LDT").write_text(sample_message, encoding="utf-8")

        assert len(list(LDTFileSource(tmp_path, pattern="*.LDT"))) == 1

    def test_empty_file_skipped(self, tmp_path, sample_message):
        (tmp_path / "empty.ldt").write_bytes(b"\r\n")
        (tmp_path / "full.ldt").write_text(sample_message, encoding="utf-8")

        assert [p.name for p, _ in LDTFileSource(tmp_path)] == ["full.ldt"]

    def test_missing_path(self, tmp_path):
        with pytest.raises(SourceNotFoundError):
            LDTFileSource(tmp_path / "missing.ldt")
