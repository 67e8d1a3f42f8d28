"""LDT File Source.

Yields ``InboundMessage`` objects for one ``.ldt`` file or for every matching
file in a directory, for bulk import of files received outside the webhook
path. Files are read as bytes; charset handling is left to the tokenizer.

Security Impact:
    - Only regular files matching the pattern are read
    - Empty files are skipped with a warning, never submitted
"""

import logging
from pathlib import Path
from typing import Iterator, Optional

from ldt_pipeline.domain.pipeline_models import InboundMessage
from ldt_pipeline.domain.ports import SourceNotFoundError

logger = logging.getLogger(__name__)


class LDTFileSource:
    """File or directory of LDT messages.

    Parameters:
        path: A single file, or a directory to scan (non-recursive)
        pattern: Glob used when ``path`` is a directory
        source_id: Source id attached to every message

    Raises:
        SourceNotFoundError: If ``path`` does not exist
    """

    def __init__(self, path, pattern: str = "*.ldt", source_id: Optional[str] = "file-import"):
        self.path = Path(path)
        self.pattern = pattern
        self.source_id = source_id
        if not self.path.exists():
            raise SourceNotFoundError(f"LDT source not found: {self.path}", source=str(self.path))

    def files(self) -> list[Path]:
        if self.path.is_file():
            return [self.path]
        return sorted(p for p in self.path.glob(self.pattern) if p.is_file())

    def __iter__(self) -> Iterator[tuple[Path, InboundMessage]]:
        return self.messages()

    def messages(self) -> Iterator[tuple[Path, InboundMessage]]:
        """Yield ``(path, message)`` for every non-empty file."""
        files = self.files()
        if not files:
            logger.warning(f"No files matching {self.pattern} in {self.path}")
        for file_path in files:
            try:
                raw = file_path.read_bytes()
            except OSError as e:
                raise SourceNotFoundError(f"Cannot read LDT file {file_path}: {e}", source=str(file_path)) from e
            if not raw.strip():
                logger.warning(f"Skipping empty file: {file_path.name}")
                continue
            yield file_path, InboundMessage(raw=raw, source_id=self.source_id)
