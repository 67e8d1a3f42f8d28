"""In-Memory Directory.

Identity directory held in memory, optionally loaded from a JSON file
(a list of entity objects). Stands in for the practice / patient registry of
the persistence layer in tests and CLI runs.
"""

import json
import logging
from pathlib import Path
from typing import Iterable, Optional

from pydantic import ValidationError as PydanticValidationError

from ldt_pipeline.domain.lab_result import PatientIdentity
from ldt_pipeline.domain.pipeline_models import CandidateEntity
from ldt_pipeline.domain.ports import DirectoryPort, SourceNotFoundError

logger = logging.getLogger(__name__)


class InMemoryDirectory(DirectoryPort):
    """Directory over a fixed list of entities.

    ``lookup`` returns every entity registered under the practice and
    physician; the matcher decides among them.
    """

    def __init__(self, entities: Optional[Iterable[CandidateEntity]] = None):
        self._entities: list[CandidateEntity] = list(entities or [])

    @classmethod
    def from_json_file(cls, path) -> "InMemoryDirectory":
        """Load entities from a JSON array.

        Raises:
            SourceNotFoundError: If the file is missing
            ValueError: If the file is not a list of valid entities
        """
        file_path = Path(path)
        if not file_path.exists():
            raise SourceNotFoundError(f"Directory file not found: {file_path}", source=str(file_path))
        try:
            with open(file_path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except json.JSONDecodeError as e:
            raise ValueError(f"Invalid JSON in directory file: {str(e)}")
        if not isinstance(data, list):
            raise ValueError("Directory file must contain a JSON array of entities")
        try:
            entities = [CandidateEntity(**item) for item in data]
        except (PydanticValidationError, TypeError) as e:
            raise ValueError(f"Invalid directory entity: {str(e)}")
        logger.info(f"Loaded {len(entities)} directory entities from {file_path}")
        return cls(entities)

    def add(self, entity: CandidateEntity) -> None:
        self._entities.append(entity)

    def __len__(self) -> int:
        return len(self._entities)

    def lookup(
        self,
        practice_id: Optional[str],
        physician_id: Optional[str],
        patient_hints: PatientIdentity,
    ) -> list[CandidateEntity]:
        return [
            e for e in self._entities
            if e.practice_id == practice_id and e.physician_id == physician_id
        ]
