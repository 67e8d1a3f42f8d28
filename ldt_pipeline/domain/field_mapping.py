"""Field Mapping - declarative (record type, field id) → attribute table.

The semantic extractor and the record encoder both read this table, so new
record types are additive: register a rule, nothing else changes.

Two dialects share the table:

- canonical keys, written by the encoder: the record type names the block
  (8100 practice/lab, 8200 patient, 8300 request, 8400 parameters) and the
  field id names the attribute; the value is the record content
- lab traffic keys: the record type *is* the LDT field code and the value
  starts right after it, so those rules are registered per record type
  (``field_id=None``) and read the record payload

Lookup order is exact ``(record_type, field_id)`` first, then the record-type
level rule ``(record_type, None)``. Framing rules (set markers, length
counters) only apply when the payload has their fixed digit shape. Anything
unmatched is preserved as an annotation by the extractor.
"""

import re
from dataclasses import dataclass
from typing import Iterable, Optional

from ldt_pipeline.domain.enums import FieldKind, ValueSource

# Header/footer pairs (record type 8000): packet header field id → footer id.
HEADER_RECORD_TYPE = "8000"
PACKET_BRACKETS = {
    "8220": "8221",  # lab packet
    "8230": "8231",  # practice packet
}
FOOTER_FIELD_IDS = frozenset(PACKET_BRACKETS.values())
CANONICAL_HEADER = "8230"

# Annotation record carrying free key/value pairs and image paths.
ANNOTATION_RECORD_TYPE = "9901"


@dataclass(frozen=True)
class FieldRule:
    """One table entry.

    Attributes:
        record_type: 4-digit record type
        field_id: Field id, or None for a record-type level rule
        kind: How the extractor folds the value
        target: Dotted attribute path (``patient.last_name``) or parameter
                field name (``value``); None for annotations / framing
        source: Which part of the record carries the value
        canonical: True for the key the encoder writes for ``target``
        payload_pattern: Regex the whole payload must match for the rule to
                         apply (record-type level rules only)
    """

    record_type: str
    field_id: Optional[str]
    kind: FieldKind
    target: Optional[str] = None
    source: ValueSource = ValueSource.CONTENT
    canonical: bool = False
    payload_pattern: Optional[str] = None

    @property
    def key(self) -> tuple[str, Optional[str]]:
        return (self.record_type, self.field_id)


def _canonical(record_type: str, field_id: str, kind: FieldKind, target: str) -> FieldRule:
    return FieldRule(record_type, field_id, kind, target, ValueSource.CONTENT, canonical=True)


def _alias(record_type: str, field_id: str, kind: FieldKind, target: str) -> FieldRule:
    return FieldRule(record_type, field_id, kind, target, ValueSource.CONTENT)


def _lab(record_type: str, kind: FieldKind, target: Optional[str] = None) -> FieldRule:
    return FieldRule(record_type, None, kind, target, ValueSource.PAYLOAD)


def _framing(record_type: str, payload_pattern: str) -> FieldRule:
    return FieldRule(record_type, None, FieldKind.FRAMING, source=ValueSource.PAYLOAD, payload_pattern=payload_pattern)


S = FieldKind.SCALAR
P_START = FieldKind.PARAMETER_START
P_FIELD = FieldKind.PARAMETER_FIELD

DEFAULT_RULES: tuple[FieldRule, ...] = (
    # Practice / physician / laboratory
    _canonical("8100", "0201", S, "practice_id"),
    _canonical("8100", "0202", S, "physician_id"),
    _canonical("8100", "0203", S, "lab_info.name"),
    _canonical("8100", "0205", S, "lab_info.street"),
    _canonical("8100", "0215", S, "lab_info.postal_code"),
    _canonical("8100", "0216", S, "lab_info.city"),
    _lab("0201", S, "practice_id"),
    _lab("0212", S, "physician_id"),
    _lab("0203", S, "lab_info.name"),
    _lab("0205", S, "lab_info.street"),
    _lab("0215", S, "lab_info.postal_code"),
    _lab("0216", S, "lab_info.city"),

    # Patient
    _canonical("8200", "3101", S, "patient.last_name"),
    _canonical("8200", "3102", S, "patient.first_name"),
    _canonical("8200", "3103", S, "patient.birth_date"),
    _canonical("8200", "3105", S, "patient.patient_id"),
    _canonical("8200", "3107", S, "patient.street"),
    _canonical("8200", "3109", S, "patient.house_number"),
    _canonical("8200", "3110", S, "patient.gender"),
    _canonical("8200", "3112", S, "patient.postal_code"),
    _canonical("8200", "3113", S, "patient.city"),
    _alias("8200", "3000", S, "patient.patient_id"),
    _lab("3101", S, "patient.last_name"),
    _lab("3102", S, "patient.first_name"),
    _lab("3103", S, "patient.birth_date"),
    _lab("3105", S, "patient.patient_id"),
    _lab("3107", S, "patient.street"),
    _lab("3109", S, "patient.house_number"),
    _lab("3110", S, "patient.gender"),
    _lab("3112", S, "patient.postal_code"),
    _lab("3113", S, "patient.city"),

    # Request
    _canonical("8300", "8310", S, "lab_info.request_id"),
    _canonical("8300", "8432", S, "lab_info.collection_date"),
    _canonical("8300", "8302", S, "lab_info.report_date"),
    _alias("8300", "7303", S, "lab_info.request_id"),
    _lab("8310", S, "lab_info.request_id"),
    _lab("8432", S, "lab_info.collection_date"),
    _lab("8302", S, "lab_info.report_date"),
    _lab("9103", S, "lab_info.report_date"),

    # Parameters
    _canonical("8400", "8410", P_START, "code"),
    _canonical("8400", "8411", P_FIELD, "display_name"),
    _canonical("8400", "8420", P_FIELD, "value"),
    _canonical("8400", "8421", P_FIELD, "unit"),
    _canonical("8400", "8460", P_FIELD, "reference_range"),
    _alias("8400", "7260", P_START, "code"),
    _alias("8400", "7261", P_FIELD, "display_name"),
    _alias("8400", "7262", P_FIELD, "value"),
    _alias("8400", "7263", P_FIELD, "unit"),
    _alias("8400", "7264", P_FIELD, "reference_range"),
    _lab("8410", P_START, "code"),
    _lab("8411", P_FIELD, "display_name"),
    _lab("8420", P_FIELD, "value"),
    _lab("8421", P_FIELD, "unit"),
    _lab("8460", P_FIELD, "reference_range"),

    # Annotations and framing
    _lab(ANNOTATION_RECORD_TYPE, FieldKind.ANNOTATION),
    _framing(HEADER_RECORD_TYPE, r"8[0-9]{3}"),  # set marker (8000 8201, 8000 8231)
    _framing("8100", r"[0-9]{5}"),  # record length counter
    _framing("9202", r"[0-9]{1,9}"),  # packet length counter
)


class FieldTable:
    """Lookup structure over a set of ``FieldRule`` entries.

    Parameters:
        rules: Rules to register (defaults to ``DEFAULT_RULES``)

    Raises:
        ValueError: If two rules share a key, or an attribute has more than
                    one canonical key
    """

    def __init__(self, rules: Optional[Iterable[FieldRule]] = None):
        self._rules: dict[tuple[str, Optional[str]], FieldRule] = {}
        self._canonical: dict[tuple[FieldKind, str], FieldRule] = {}
        for rule in (DEFAULT_RULES if rules is None else rules):
            self.register(rule)

    def register(self, rule: FieldRule) -> None:
        if rule.key in self._rules:
            raise ValueError(f"Duplicate field rule for key {rule.key}")
        self._rules[rule.key] = rule
        if rule.canonical:
            slot = (FieldKind.SCALAR if rule.kind == FieldKind.SCALAR else FieldKind.PARAMETER_FIELD, rule.target)
            if slot in self._canonical:
                raise ValueError(f"Attribute {rule.target} already has a canonical key")
            self._canonical[slot] = rule

    def lookup(self, record_type: str, field_id: str, payload: Optional[str] = None) -> Optional[FieldRule]:
        """Exact key first, then the record-type level rule.

        A record-type rule with a ``payload_pattern`` only matches when
        ``payload`` is given and matches it in full.
        """
        rule = self._rules.get((record_type, field_id))
        if rule is not None:
            return rule
        rule = self._rules.get((record_type, None))
        if rule is not None and rule.payload_pattern is not None:
            if payload is None or re.fullmatch(rule.payload_pattern, payload) is None:
                return None
        return rule

    def canonical_scalar(self, target: str) -> FieldRule:
        return self._canonical[(FieldKind.SCALAR, target)]

    def canonical_parameter(self, target: str) -> FieldRule:
        return self._canonical[(FieldKind.PARAMETER_FIELD, target)]

    def scalar_targets(self) -> list[str]:
        """Attribute paths that have a canonical key, in table order."""
        return [
            rule.target for rule in self._rules.values()
            if rule.canonical and rule.kind == FieldKind.SCALAR
        ]

    def __len__(self) -> int:
        return len(self._rules)


default_field_table = FieldTable()
