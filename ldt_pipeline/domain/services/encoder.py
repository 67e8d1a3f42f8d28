"""Record Encoder - DomainResult back to LDT records.

The structural inverse of decoding and extraction: every populated attribute
is written under its canonical key from the field table, with a freshly
computed declared length. Re-decoding and re-extracting the output yields an
equal DomainResult.
"""

import logging
from typing import Optional

from ldt_pipeline.domain.field_mapping import (
    CANONICAL_HEADER,
    HEADER_RECORD_TYPE,
    PACKET_BRACKETS,
    FieldTable,
    default_field_table,
)
from ldt_pipeline.domain.lab_result import Annotation, DomainResult
from ldt_pipeline.domain.ports import EncodingError
from ldt_pipeline.domain.services.decoder import (
    DEFAULT_TERMINATOR_LENGTH,
    LONG_FORM_LENGTH,
    MAX_DECLARED_LENGTH,
)

logger = logging.getLogger(__name__)

PARAMETER_FIELDS = ("display_name", "value", "unit", "reference_range")


class RecordEncoder:
    """Serializes a DomainResult into LDT lines.

    Parameters:
        field_table: Mapping table providing the canonical keys
        terminator: Line terminator used by ``encode``
        terminator_length: Terminator width added to every declared length
                           (0 by default, 2 for receivers that count CR LF)
    """

    def __init__(
        self,
        field_table: Optional[FieldTable] = None,
        terminator: str = "\r\n",
        terminator_length: int = DEFAULT_TERMINATOR_LENGTH,
    ):
        self.field_table = field_table or default_field_table
        self.terminator = terminator
        self.terminator_length = terminator_length

    def encode_line(self, record_type: str, field_id: str, content: str, attribute: Optional[str] = None) -> str:
        """Build one long-form line with a computed declared length.

        Raises:
            EncodingError: If the line cannot carry its declared length
        """
        if "\r" in content or "\n" in content:
            raise EncodingError(f"{attribute or record_type} contains a line break", attribute=attribute)
        body = f"{record_type}{field_id}{content}"
        length = 3 + len(body) + self.terminator_length
        if length > MAX_DECLARED_LENGTH:
            raise EncodingError(
                f"{attribute or record_type} is too long for one record ({length} > {MAX_DECLARED_LENGTH})",
                attribute=attribute,
            )
        return f"{length:03d}{body}"

    def encode_lines(self, result: DomainResult) -> list[str]:
        """Encode ``result`` as an ordered list of lines (no terminators)."""
        lines = [self.encode_line(HEADER_RECORD_TYPE, CANONICAL_HEADER, result.sequence, "sequence")]

        for target in self.field_table.scalar_targets():
            value = self._resolve(result, target)
            if value is None:
                continue
            rule = self.field_table.canonical_scalar(target)
            lines.append(self.encode_line(rule.record_type, rule.field_id, value, target))

        # Annotations precede parameters so orphaned parameter fields stay orphaned.
        for index, annotation in enumerate(result.annotations):
            lines.append(self._encode_annotation(annotation, index))

        for index, parameter in enumerate(result.parameters):
            start = self.field_table.canonical_parameter("code")
            lines.append(self.encode_line(start.record_type, start.field_id, parameter.code, f"parameters[{index}].code"))
            for name in PARAMETER_FIELDS:
                value = getattr(parameter, name)
                if value is None:
                    continue
                rule = self.field_table.canonical_parameter(name)
                lines.append(self.encode_line(rule.record_type, rule.field_id, value, f"parameters[{index}].{name}"))

        footer = PACKET_BRACKETS[CANONICAL_HEADER]
        lines.append(self.encode_line(HEADER_RECORD_TYPE, footer, result.sequence, "sequence"))
        logger.debug(f"Encoded {len(lines)} records")
        return lines

    def encode(self, result: DomainResult) -> str:
        """Encode ``result`` as text, one record per terminated line."""
        return "".join(line + self.terminator for line in self.encode_lines(result))

    def _encode_annotation(self, annotation: Annotation, index: int) -> str:
        attribute = f"annotations[{index}]"
        line = self.encode_line(annotation.record_type, annotation.field_id, annotation.content, attribute)
        if len(annotation.field_id) == 1 and len(line) >= LONG_FORM_LENGTH:
            raise EncodingError(f"{attribute} does not fit a short-form record", attribute=attribute)
        return line

    @staticmethod
    def _resolve(result: DomainResult, target: str) -> Optional[str]:
        value = result
        for part in target.split("."):
            value = getattr(value, part, None)
            if value is None:
                return None
        return value

