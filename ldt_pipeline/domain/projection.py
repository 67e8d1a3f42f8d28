"""Report Projection.

Projects a ``DomainResult`` into a print-ready structure (sections of
label/value pairs plus a parameter table) for an external renderer. The
layout is data only; visual rendering happens elsewhere.
"""

import re
from typing import Optional

from pydantic import BaseModel, ConfigDict

from ldt_pipeline.domain.lab_result import DomainResult, TestParameter

_LDT_DATE = re.compile(r"^(\d{4})(\d{2})(\d{2})$")
_RANGE = re.compile(r"^\s*(-?\d+(?:[.,]\d+)?)\s*-\s*(-?\d+(?:[.,]\d+)?)\s*$")


class LayoutField(BaseModel):
    model_config = ConfigDict(frozen=True)

    label: str
    value: str


class LayoutSection(BaseModel):
    model_config = ConfigDict(frozen=True)

    title: str
    fields: tuple[LayoutField, ...] = ()


class ParameterRow(BaseModel):
    """One row of the result table; ``flag`` is ``H``, ``L`` or empty."""

    model_config = ConfigDict(frozen=True)

    code: str
    name: str
    value: str
    unit: str
    reference_range: str
    flag: str = ""


class ReportLayout(BaseModel):
    model_config = ConfigDict(frozen=True)

    title: str
    sections: tuple[LayoutSection, ...] = ()
    rows: tuple[ParameterRow, ...] = ()
    annotations: tuple[LayoutField, ...] = ()


def format_date(value: Optional[str]) -> str:
    """``YYYYMMDD`` → ``DD.MM.YYYY``; anything else is shown as carried."""
    if not value:
        return ""
    match = _LDT_DATE.match(value)
    if not match:
        return value
    year, month, day = match.groups()
    return f"{day}.{month}.{year}"


def _number(text: str) -> Optional[float]:
    try:
        return float(text.replace(",", "."))
    except (AttributeError, ValueError):
        return None


def abnormal_flag(parameter: TestParameter) -> str:
    """``H``/``L`` when a numeric value falls outside a ``low-high`` range."""
    if not parameter.value or not parameter.reference_range:
        return ""
    bounds = _RANGE.match(parameter.reference_range)
    value = _number(parameter.value)
    if bounds is None or value is None:
        return ""
    low, high = (_number(b) for b in bounds.groups())
    if value < low:
        return "L"
    if value > high:
        return "H"
    return ""


def _section(title: str, pairs) -> LayoutSection:
    return LayoutSection(
        title=title,
        fields=tuple(LayoutField(label=label, value=value) for label, value in pairs if value),
    )


def project_result(result: DomainResult) -> ReportLayout:
    """Build the print layout for one result."""
    patient = result.patient
    lab = result.lab_info
    address = " ".join(p for p in (patient.street, patient.house_number) if p)
    city = " ".join(p for p in (patient.postal_code, patient.city) if p)
    lab_city = " ".join(p for p in (lab.postal_code, lab.city) if p)

    sections = (
        _section("Header", [
            ("Practice (BSNR)", result.practice_id or ""),
            ("Physician (LANR)", result.physician_id or ""),
            ("Request", lab.request_id or ""),
            ("Collected", format_date(lab.collection_date)),
            ("Reported", format_date(lab.report_date)),
        ]),
        _section("Patient", [
            ("Name", ", ".join(p for p in (patient.last_name, patient.first_name) if p)),
            ("Date of birth", format_date(patient.birth_date)),
            ("Gender", patient.gender or ""),
            ("Patient id", patient.patient_id or ""),
            ("Address", ", ".join(p for p in (address, city) if p)),
        ]),
        _section("Laboratory", [
            ("Name", lab.name or ""),
            ("Address", ", ".join(p for p in (lab.street, lab_city) if p)),
        ]),
    )

    rows = tuple(
        ParameterRow(
            code=p.code,
            name=p.display_name or p.code,
            value=p.value or "",
            unit=p.unit or "",
            reference_range=p.reference_range or "",
            flag=abnormal_flag(p),
        )
        for p in result.parameters
    )
    annotations = tuple(
        LayoutField(label=a.key or f"{a.record_type}/{a.field_id}", value=a.value)
        for a in result.annotations
    )
    title = f"Laboratory report {lab.request_id}" if lab.request_id else "Laboratory report"
    return ReportLayout(title=title, sections=sections, rows=rows, annotations=annotations)
