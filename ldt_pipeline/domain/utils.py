"""Domain Utilities - small pure helpers shared by the codec and matcher.

Security Impact:
    - No security impact - pure utility functions
"""

import codecs
import hashlib
import unicodedata
from typing import Iterable, Optional, Union

# LDT 8-bit traffic is ISO-8859-15; everything modern arrives as UTF-8.
FALLBACK_ENCODING = "iso-8859-15"


def decode_payload(raw: Union[bytes, str], fallback_encoding: str = FALLBACK_ENCODING) -> str:
    """Turn raw message bytes into text.

    UTF-8 is tried first (strict); payloads that are not valid UTF-8 are read
    with the 8-bit fallback encoding, which cannot fail. A leading BOM is
    dropped in both cases.

    Parameters:
        raw: Message bytes or text
        fallback_encoding: Encoding used when the bytes are not UTF-8

    Returns:
        str: Decoded text
    """
    if isinstance(raw, str):
        return raw.lstrip("\ufeff")
    if raw.startswith(codecs.BOM_UTF8):
        raw = raw[len(codecs.BOM_UTF8):]
    try:
        return raw.decode("utf-8")
    except UnicodeDecodeError:
        return raw.decode(fallback_encoding)


def sha256_lines(lines: Iterable[str]) -> str:
    """SHA-256 hex digest of lines joined by ``\\n``."""
    return hashlib.sha256("\n".join(lines).encode("utf-8")).hexdigest()


def normalize_name(value: Optional[str]) -> str:
    """Case-fold a personal name and fold accents / German umlauts.

    ``"Müller"``, ``"Mueller"`` and ``"MULLER"`` all normalize close enough
    for fuzzy comparison; the exact spelling is never altered in stored data.
    """
    if not value:
        return ""
    text = value.strip().casefold()
    text = (
        text.replace("ä", "ae")
        .replace("ö", "oe")
        .replace("ü", "ue")
        .replace("ß", "ss")
    )
    text = unicodedata.normalize("NFKD", text)
    text = "".join(ch for ch in text if not unicodedata.combining(ch))
    return " ".join(text.replace("-", " ").split())
