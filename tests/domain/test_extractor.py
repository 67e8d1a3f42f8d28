"""Unit tests for the semantic extractor."""

import pytest

from ldt_pipeline.domain.enums import DiagnosticCode, FieldKind
from ldt_pipeline.domain.field_mapping import DEFAULT_RULES, FieldRule, FieldTable
from ldt_pipeline.domain.services.decoder import decode_lines
from ldt_pipeline.domain.services.extractor import SemanticExtractor, split_annotation

from conftest import build_line


def extract(body_lines, extractor=None, sequence=""):
    records, errors = decode_lines(body_lines)
    assert not errors
    return (extractor or SemanticExtractor()).extract(records, sequence)


class TestSemanticExtractor:
    """Test suite for folding records into a DomainResult."""

    def test_extracts_sample_message(self, sample_lines):
        """Test every populated block of the sample message."""
        report = extract(sample_lines[1:-1], sequence="0001")
        result = report.result

        assert result.practice_id == "123456789"
        assert result.physician_id == "987654321"
        assert result.patient.last_name == "Mustermann"
        assert result.patient.first_name == "Erika"
        assert result.patient.birth_date == "19800101"
        assert result.patient.gender == "W"
        assert result.lab_info.name == "Labor Potsdam"
        assert result.lab_info.request_id == "REQ-42"
        assert result.sequence == "0001"
        assert report.diagnostics == ()
        assert report.record_count == 14

        assert len(result.parameters) == 1
        parameter = result.parameters[0]
        assert parameter.code == "HB"
        assert parameter.display_name == "Haemoglobin"
        assert parameter.value == "13.5"
        assert parameter.unit == "g/dl"
        assert parameter.reference_range == "12.0-16.0"

        assert len(result.annotations) == 1
        assert result.annotations[0].key == "LOCATION"
        assert result.annotations[0].value == "Potsdam"

    def test_identifiers_are_not_reformatted(self):
        """Test leading zeros of identifiers survive extraction."""
        report = extract([build_line("8100", "0201", "001234567")])

        assert report.result.practice_id == "001234567"

    def test_conflicting_scalar_keeps_first_value(self):
        """Test first-write-wins with a diagnostic for the later record."""
        report = extract([
            build_line("8200", "3101", "Mustermann"),
            build_line("8200", "3101", "Musterfrau"),
        ])

        assert report.result.patient.last_name == "Mustermann"
        assert len(report.diagnostics) == 1
        diagnostic = report.diagnostics[0]
        assert diagnostic.code == DiagnosticCode.CONFLICTING_VALUE
        assert diagnostic.line_number == 2
        assert diagnostic.attribute == "patient.last_name"

    def test_repeated_equal_scalar_is_silent(self):
        """Test a repeated identical value raises no diagnostic."""
        report = extract([
            build_line("8200", "3101", "Mustermann"),
            build_line("8200", "3101", "Mustermann"),
        ])

        assert report.diagnostics == ()

    def test_orphan_parameter_field(self):
        """Test a parameter field before any parameter code."""
        report = extract([build_line("8400", "8420", "13.5")])

        assert report.result.parameters == ()
        assert len(report.result.annotations) == 1
        assert report.result.annotations[0].record_type == "8400"
        assert report.diagnostics[0].code == DiagnosticCode.ORPHAN_PARAMETER_FIELD

    def test_repeated_parameter_field(self):
        """Test a second, different value for the same parameter field."""
        report = extract([
            build_line("8400", "8410", "HB"),
            build_line("8400", "8420", "13.5"),
            build_line("8400", "8420", "14.0"),
        ])

        assert report.result.parameters[0].value == "13.5"
        assert report.diagnostics[0].code == DiagnosticCode.REPEATED_PARAMETER_FIELD

    def test_duplicate_parameters_are_distinct_observations(self):
        """Test two parameters with the same code are both kept in order."""
        report = extract([
            build_line("8400", "8410", "HB"),
            build_line("8400", "8420", "13.5"),
            build_line("8400", "8410", "HB"),
            build_line("8400", "8420", "12.9"),
        ])

        assert [p.value for p in report.result.parameters] == ["13.5", "12.9"]

    def test_unknown_record_is_preserved(self):
        """Test records without a rule become verbatim annotations."""
        report = extract([build_line("7777", "ABCD", "payload")])

        annotation = report.result.annotations[0]
        assert annotation.record_type == "7777"
        assert annotation.field_id == "ABCD"
        assert annotation.content == "payload"
        assert annotation.value == "ABCDpayload"

    def test_unknown_fields_of_known_blocks_are_preserved(self):
        """Test unmapped practice and header fields become annotations."""
        report = extract([
            build_line("8100", "0201", "123456789"),
            build_line("8100", "0247", "+49-123-456789"),
            build_line("8100", "0249", "info@laborresults.de"),
            build_line("8000", "9218", "LABOR_RESULTS_V2.1"),
        ])

        assert report.result.practice_id == "123456789"
        assert [(a.record_type, a.field_id, a.content) for a in report.result.annotations] == [
            ("8100", "0247", "+49-123-456789"),
            ("8100", "0249", "info@laborresults.de"),
            ("8000", "9218", "LABOR_RESULTS_V2.1"),
        ]
        assert report.diagnostics == ()

    def test_lab_counters_are_framing(self):
        """Test set markers and length counters of lab traffic are not annotations."""
        report = extract([
            build_line("8000", "8201"),
            build_line("8100", "0004", "4"),
            build_line("9202", "0000", "0724"),
            build_line("3101", "Must", "ermann"),
        ])

        assert report.result.annotations == ()
        assert report.result.patient.last_name == "Mustermann"

    def test_lab_traffic_dialect(self):
        """Test records whose record type is the field code read the payload."""
        report = extract([
            build_line("0201", "1234", "56789"),
            build_line("3101", "Must", "ermann"),
            build_line("3103", "1980", "0101"),
            build_line("8410", "GLU", ""),
            build_line("8420", "95", ""),
            build_line("9103", "2024", "0115"),
        ])
        result = report.result

        assert result.practice_id == "123456789"
        assert result.patient.last_name == "Mustermann"
        assert result.patient.birth_date == "19800101"
        assert result.lab_info.report_date == "20240115"
        assert result.parameters[0].code == "GLU"
        assert result.parameters[0].value == "95"

    def test_alias_keys(self):
        """Test alternative keys fill the same attributes."""
        report = extract([
            build_line("8300", "7303", "REQ-7"),
            build_line("8200", "3000", "PAT-1"),
        ])

        assert report.result.lab_info.request_id == "REQ-7"
        assert report.result.patient.patient_id == "PAT-1"

    def test_sentinel_annotation(self):
        """Test '*NAME' records split into key and path."""
        report = extract([build_line("9901", "*IMA", "GENAME\\\\srv\\img.png")])

        annotation = report.result.annotations[0]
        assert annotation.key == "*IMAGENAME"
        assert annotation.value == "\\\\srv\\img.png"

    def test_short_form_annotation_keeps_trailing_characters(self):
        """Test short-form records lose nothing when preserved."""
        report = extract([build_line("9901", "X", "12")])

        annotation = report.result.annotations[0]
        assert annotation.field_id == "X"
        assert annotation.content == "12"

    def test_extraction_is_deterministic(self, sample_lines):
        """Test equal records always give equal reports."""
        assert extract(sample_lines[1:-1]) == extract(sample_lines[1:-1])

    def test_custom_rule_is_additive(self):
        """Test a registered rule changes only its own key."""
        table = FieldTable(DEFAULT_RULES)
        table.register(FieldRule("7777", "CITY", FieldKind.SCALAR, "patient.city"))
        report = extract([build_line("7777", "CITY", "Potsdam")], extractor=SemanticExtractor(table))

        assert report.result.patient.city == "Potsdam"
        assert report.result.annotations == ()


class TestFieldTable:
    """Test suite for the declarative mapping table."""

    def test_duplicate_rule_rejected(self):
        """Test a key can only be registered once."""
        table = FieldTable(DEFAULT_RULES)
        with pytest.raises(ValueError):
            table.register(FieldRule("8100", "0201", FieldKind.SCALAR, "practice_id"))

    def test_exact_key_wins_over_record_type_rule(self):
        """Test lookup order: exact key, then record-type rule."""
        table = FieldTable()

        assert table.lookup("8100", "0201").target == "practice_id"
        assert table.lookup("8100", "0004", "00044").kind == FieldKind.FRAMING
        assert table.lookup("7777", "ABCD") is None

    def test_framing_needs_counter_shape(self):
        """Test a framing rule only covers digit-shaped payloads."""
        table = FieldTable()

        assert table.lookup("8100", "0247", "0247+49-123-456789") is None
        assert table.lookup("8100", "9999") is None
        assert table.lookup("8000", "8201", "8201").kind == FieldKind.FRAMING
        assert table.lookup("8000", "9218", "9218LABOR_RESULTS_V2.1") is None
        assert table.lookup("9202", "0000", "00000724").kind == FieldKind.FRAMING


class TestSplitAnnotation:
    """Test suite for annotation key/value splitting."""

    def test_pipe_split(self):
        """Test the first pipe separates key and value."""
        assert split_annotation("LOCATION|Potsdam|Brandenburg") == ("LOCATION", "Potsdam|Brandenburg")

    def test_sentinel_split(self):
        """Test the uppercase token after '*' is the key."""
        assert split_annotation("*PDF/tmp/report.pdf") == ("*PDF", "/tmp/report.pdf")

    def test_plain_value(self):
        """Test payloads without a separator have no key."""
        assert split_annotation("free text") == ("", "free text")
