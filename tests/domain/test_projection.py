"""Unit tests for the report projection."""

from ldt_pipeline.domain.lab_result import Annotation, DomainResult, TestParameter
from ldt_pipeline.domain.projection import abnormal_flag, format_date, project_result
from ldt_pipeline.domain.services.decoder import decode_lines
from ldt_pipeline.domain.services.extractor import SemanticExtractor


class TestFormatDate:

    def test_ldt_date(self):
        assert format_date("19800101") == "01.01.1980"

    def test_other_text_unchanged(self):
        assert format_date("1980") == "1980"

    def test_empty(self):
        assert format_date(None) == ""


class TestAbnormalFlag:
    """Flagging values outside their reference range."""

    def test_high(self):
        assert abnormal_flag(TestParameter(code="HB", value="17.2", reference_range="12.0-16.0")) == "H"

    def test_low(self):
        """Test decimal commas are understood."""
        assert abnormal_flag(TestParameter(code="HB", value="9,8", reference_range="12,0 - 16,0")) == "L"

    def test_within_range(self):
        assert abnormal_flag(TestParameter(code="HB", value="13.5", reference_range="12.0-16.0")) == ""

    def test_non_numeric(self):
        """Test textual values or ranges are never flagged."""
        assert abnormal_flag(TestParameter(code="AB", value="positive", reference_range="negative")) == ""
        assert abnormal_flag(TestParameter(code="HB", value="13.5")) == ""


class TestProjectResult:
    """Test suite for the print layout."""

    def test_sample_layout(self, sample_lines):
        """Test sections, rows and annotations of the sample message."""
        records, _ = decode_lines(sample_lines[1:-1])
        layout = project_result(SemanticExtractor().extract(records).result)

        assert layout.title == "Laboratory report REQ-42"
        assert [s.title for s in layout.sections] == ["Header", "Patient", "Laboratory"]

        patient = {f.label: f.value for f in layout.sections[1].fields}
        assert patient["Name"] == "Mustermann, Erika"
        assert patient["Date of birth"] == "01.01.1980"
        assert "Address" not in patient

        row = layout.rows[0]
        assert (row.code, row.name, row.value, row.unit, row.flag) == ("HB", "Haemoglobin", "13.5", "g/dl", "")

        assert layout.annotations[0].label == "LOCATION"
        assert layout.annotations[0].value == "Potsdam"

    def test_empty_result(self):
        """Test an empty result still projects to a titled layout."""
        layout = project_result(DomainResult())

        assert layout.title == "Laboratory report"
        assert all(section.fields == () for section in layout.sections)
        assert layout.rows == ()

    def test_parameter_without_name_uses_code(self):
        layout = project_result(DomainResult(parameters=(TestParameter(code="GLU", value="95"),)))

        assert layout.rows[0].name == "GLU"

    def test_unkeyed_annotation_label(self):
        """Test annotations without a key are labelled by their record key."""
        annotation = Annotation(record_type="7777", field_id="ABCD", content="x", value="ABCDx")
        layout = project_result(DomainResult(annotations=(annotation,)))

        assert layout.annotations[0].label == "7777/ABCD"
