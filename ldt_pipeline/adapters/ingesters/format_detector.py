"""Format Detector.

Decides whether a raw payload is line-based (one record per line) or wrapped
(each record inside a ``<column1>`` segment, as emitted by the upstream
integration engine) and returns the canonical candidate lines either way.
Downstream code only ever sees canonical lines.

Security Impact:
    - Wrapped payloads are parsed with defusedxml: entity expansion and
      external entity resolution are forbidden
    - Pure function: no I/O, no state
"""

import html
import logging
import re
from typing import Optional, Union

from defusedxml import DefusedXmlException
from defusedxml import ElementTree as SafeET
from defusedxml.ElementTree import ParseError as SafeParseError

from ldt_pipeline.domain.enums import PayloadFormat
from ldt_pipeline.domain.utils import decode_payload

logger = logging.getLogger(__name__)

DEFAULT_WRAPPER_TAG = "column1"

_LINE_SPLIT = re.compile(r"\r\n|\n|\r")
_XML_DECLARATION = re.compile(r"^\s*<\?xml[^>]*\?>", re.IGNORECASE)


def _as_text(payload: Union[bytes, str]) -> str:
    return payload if isinstance(payload, str) else decode_payload(payload)


def detect_format(payload: Union[bytes, str], wrapper_tag: str = DEFAULT_WRAPPER_TAG) -> PayloadFormat:
    """Return ``WRAPPED`` when the payload carries wrapper segments."""
    text = _as_text(payload)
    if f"<{wrapper_tag}>" in text or f"<{wrapper_tag}/>" in text:
        return PayloadFormat.WRAPPED
    return PayloadFormat.LINE_BASED


def split_lines(text: str) -> list[str]:
    """Split on any line terminator, drop blank lines, strip trailing whitespace.

    Leading characters are positional (length prefix) and are kept.
    """
    return [line.rstrip() for line in _LINE_SPLIT.split(text) if line.strip()]


def unwrap_segments(text: str, wrapper_tag: str = DEFAULT_WRAPPER_TAG) -> list[str]:
    """Inner text of every wrapper segment, in document order.

    The payload is parsed as XML first; a fragment without a single root is
    retried inside a synthetic root. When it is still not well formed the
    segments are recovered with a tag pattern and unescaped.
    """
    body = _XML_DECLARATION.sub("", text, count=1)
    segments = _parse_segments(body, wrapper_tag)
    if segments is None:
        segments = _parse_segments(f"<ldt-root>{body}</ldt-root>", wrapper_tag)
    if segments is None:
        logger.warning("Wrapped payload is not well-formed XML; recovering segments by pattern")
        pattern = re.compile(rf"<{re.escape(wrapper_tag)}>(.*?)</{re.escape(wrapper_tag)}>", re.DOTALL)
        segments = [html.unescape(match) for match in pattern.findall(body)]

    lines = []
    for segment in segments:
        # A segment may carry its own terminator; one segment is one line.
        lines.extend(split_lines(segment))
    return lines


def _parse_segments(document: str, wrapper_tag: str) -> Optional[list[str]]:
    try:
        root = SafeET.fromstring(document)
    except (SafeParseError, DefusedXmlException) as e:
        logger.debug(f"Wrapped payload parse attempt failed: {e}")
        return None
    if root.tag == wrapper_tag:
        return [root.text or ""]
    return [element.text or "" for element in root.iter(wrapper_tag)]


def canonical_lines(payload: Union[bytes, str], wrapper_tag: str = DEFAULT_WRAPPER_TAG) -> list[str]:
    """Canonical candidate lines of a payload.

    Parameters:
        payload: Raw message bytes or text
        wrapper_tag: Segment tag used by wrapped payloads

    Returns:
        list[str]: Candidate lines; empty when the payload holds no records
    """
    text = _as_text(payload)
    if detect_format(text, wrapper_tag) == PayloadFormat.WRAPPED:
        return unwrap_segments(text, wrapper_tag)
    return split_lines(text)
