"""Identity Matching Service.

Resolves the practice / physician / patient identifiers of a lab result
against the caller-supplied directory: a deterministic pass on exact
identifiers first, then a fuzzy name comparison as fallback.

Security Impact:
    - Two or more qualifying candidates are always ``AMBIGUOUS``; the matcher
      never picks one arbitrarily
    - A directory outage or timeout is ``UNAVAILABLE`` (retryable), never
      ``NO_MATCH``, so transient failures cannot misroute clinical data
    - Log lines carry entity ids and scores, never patient names
"""

import logging
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from typing import Optional

from rapidfuzz import fuzz

from ldt_pipeline.domain.enums import MatchStatus, ReasonCode
from ldt_pipeline.domain.lab_result import PatientIdentity
from ldt_pipeline.domain.pipeline_models import CandidateEntity, MatchOutcome
from ldt_pipeline.domain.ports import DirectoryPort, StoreUnavailableError
from ldt_pipeline.domain.utils import normalize_name

logger = logging.getLogger(__name__)

DEFAULT_FUZZY_THRESHOLD = 0.85
DEFAULT_LOOKUP_TIMEOUT = 5.0


def _name_key(last_name: Optional[str], first_name: Optional[str]) -> tuple[str, str]:
    return normalize_name(last_name or ""), normalize_name(first_name or "")


def name_similarity(patient: PatientIdentity, candidate: CandidateEntity) -> float:
    """Similarity of two full names in ``[0, 1]`` (order-insensitive)."""
    left = normalize_name(patient.full_name)
    right = normalize_name(" ".join(p for p in (candidate.first_name, candidate.last_name) if p))
    if not left or not right:
        return 0.0
    return fuzz.token_sort_ratio(left, right) / 100.0


class IdentityMatcher:
    """Matches a DomainResult's identifiers against a directory.

    Parameters:
        directory: Identity lookup port
        fuzzy_threshold: Minimum similarity (0..1) for a fuzzy match
        lookup_timeout: Seconds to wait for the directory before giving up
    """

    def __init__(
        self,
        directory: DirectoryPort,
        fuzzy_threshold: float = DEFAULT_FUZZY_THRESHOLD,
        lookup_timeout: Optional[float] = DEFAULT_LOOKUP_TIMEOUT,
    ):
        if not 0.0 < fuzzy_threshold <= 1.0:
            raise ValueError("fuzzy_threshold must be in (0, 1]")
        self.directory = directory
        self.fuzzy_threshold = fuzzy_threshold
        self.lookup_timeout = lookup_timeout
        self._executor = ThreadPoolExecutor(max_workers=4, thread_name_prefix="directory-lookup")

    def close(self) -> None:
        self._executor.shutdown(wait=False)

    def match(
        self,
        practice_id: Optional[str],
        physician_id: Optional[str],
        patient: Optional[PatientIdentity] = None,
    ) -> MatchOutcome:
        """Resolve identifiers to exactly one directory entity.

        Parameters:
            practice_id: BSNR from the message
            physician_id: LANR from the message
            patient: Patient identity block from the message

        Returns:
            MatchOutcome: ``MATCHED`` with the entity, ``AMBIGUOUS`` with the
            competing candidates, ``NO_MATCH`` or ``UNAVAILABLE``
        """
        patient = patient or PatientIdentity()
        if not practice_id or not physician_id:
            return MatchOutcome(
                status=MatchStatus.NO_MATCH,
                reason_code=ReasonCode.MISSING_IDENTIFIERS,
                detail="practice or physician identifier missing",
            )

        candidates, unavailable = self._candidates(practice_id, physician_id, patient)
        if unavailable is not None:
            return unavailable

        deterministic = self._deterministic(candidates, practice_id, physician_id, patient)
        if len(deterministic) == 1:
            logger.debug(f"Deterministic match: {deterministic[0].entity_id}")
            return MatchOutcome(
                status=MatchStatus.MATCHED,
                entity=deterministic[0],
                candidates=tuple(deterministic),
                score=1.0,
            )
        if len(deterministic) > 1:
            return MatchOutcome(
                status=MatchStatus.AMBIGUOUS,
                candidates=tuple(deterministic),
                reason_code=ReasonCode.MATCH_AMBIGUOUS,
                detail=f"{len(deterministic)} candidates match exactly",
            )

        if not patient.has_identity:
            return self._no_match("no candidate matches the practice and physician identifiers")

        return self._fuzzy(candidates, patient)

    def confirm(
        self,
        entity_id: str,
        practice_id: Optional[str],
        physician_id: Optional[str],
        patient: Optional[PatientIdentity] = None,
    ) -> MatchOutcome:
        """Operator-confirmed match: accept ``entity_id`` if the directory returns it.

        Used when a quarantined message is resolved by hand; the entity must
        still belong to the message's practice and physician.
        """
        patient = patient or PatientIdentity()
        candidates, unavailable = self._candidates(practice_id, physician_id, patient)
        if unavailable is not None:
            return unavailable
        for candidate in candidates:
            if candidate.entity_id == entity_id:
                logger.info(f"Operator-confirmed match: {entity_id}")
                return MatchOutcome(status=MatchStatus.MATCHED, entity=candidate, candidates=(candidate,))
        return self._no_match(f"entity {entity_id} is not registered for this practice and physician")

    def _candidates(
        self,
        practice_id: Optional[str],
        physician_id: Optional[str],
        patient: PatientIdentity,
    ) -> tuple[list[CandidateEntity], Optional[MatchOutcome]]:
        """Directory candidates, or an ``UNAVAILABLE`` outcome on outage / timeout."""
        try:
            return self._lookup(practice_id, physician_id, patient), None
        except FutureTimeoutError:
            logger.warning(f"Directory lookup timed out after {self.lookup_timeout}s")
            return [], MatchOutcome(
                status=MatchStatus.UNAVAILABLE,
                reason_code=ReasonCode.LOOKUP_TIMEOUT,
                detail="directory lookup timed out",
            )
        except StoreUnavailableError as e:
            logger.warning(f"Directory unavailable: {e}")
            return [], MatchOutcome(
                status=MatchStatus.UNAVAILABLE,
                reason_code=ReasonCode.STORE_UNAVAILABLE,
                detail=str(e),
            )

    def _lookup(self, practice_id: Optional[str], physician_id: Optional[str], patient: PatientIdentity) -> list[CandidateEntity]:
        if self.lookup_timeout is None:
            return list(self.directory.lookup(practice_id, physician_id, patient))
        future = self._executor.submit(self.directory.lookup, practice_id, physician_id, patient)
        try:
            return list(future.result(timeout=self.lookup_timeout))
        except FutureTimeoutError:
            future.cancel()
            raise

    @staticmethod
    def _deterministic(
        candidates: list[CandidateEntity],
        practice_id: str,
        physician_id: str,
        patient: PatientIdentity,
    ) -> list[CandidateEntity]:
        exact = [
            c for c in candidates
            if c.practice_id == practice_id and c.physician_id == physician_id
        ]
        if not exact:
            return []

        if patient.patient_id and any(c.patient_id for c in exact):
            return [c for c in exact if c.patient_id == patient.patient_id]

        wanted = _name_key(patient.last_name, patient.first_name)
        if patient.birth_date and any(wanted) and any(c.birth_date for c in exact):
            return [
                c for c in exact
                if c.birth_date == patient.birth_date
                and _name_key(c.last_name, c.first_name) == wanted
            ]
        return exact

    def _fuzzy(self, candidates: list[CandidateEntity], patient: PatientIdentity) -> MatchOutcome:
        scored = []
        for candidate in candidates:
            if not patient.birth_date or candidate.birth_date != patient.birth_date:
                continue
            # A recorded patient id that differs is a different person.
            if patient.patient_id and candidate.patient_id and candidate.patient_id != patient.patient_id:
                continue
            score = name_similarity(patient, candidate)
            if score >= self.fuzzy_threshold:
                scored.append((score, candidate))

        if len(scored) == 1:
            score, entity = scored[0]
            logger.info(f"Fuzzy match {entity.entity_id} (score {score:.2f})")
            return MatchOutcome(
                status=MatchStatus.MATCHED,
                entity=entity,
                candidates=(entity,),
                score=score,
                fuzzy=True,
            )
        if len(scored) > 1:
            scored.sort(key=lambda item: item[0], reverse=True)
            return MatchOutcome(
                status=MatchStatus.AMBIGUOUS,
                candidates=tuple(c for _, c in scored),
                score=scored[0][0],
                fuzzy=True,
                reason_code=ReasonCode.MATCH_AMBIGUOUS,
                detail=f"{len(scored)} candidates above fuzzy threshold {self.fuzzy_threshold}",
            )
        return self._no_match("no candidate above fuzzy threshold")

    @staticmethod
    def _no_match(detail: str) -> MatchOutcome:
        return MatchOutcome(
            status=MatchStatus.NO_MATCH,
            reason_code=ReasonCode.MATCH_NOT_FOUND,
            detail=detail,
        )
