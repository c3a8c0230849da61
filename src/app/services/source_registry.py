# src/app/services/source_registry.py
"""
Dedup gate in front of the pipeline.

A reference is registered at most once per (external_ref, kind). The
outcome of a registration is returned as a value, never raised.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional, Union

from src.app.domain.errors import DuplicateSourceError, StepError
from src.app.domain.models import JobStatus, RecipeJob, RecipeSource, SourceKind
from src.app.infra.db.base import RecipeRepository
from src.app.services.capabilities import SourceVerifier
from src.services.ids import is_valid_video_id

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SourceCreated:
    source: RecipeSource
    # set when an existing source is re-entered with a job that never started
    job: Optional[RecipeJob] = None


@dataclass(frozen=True)
class RecipeAlreadyExists:
    recipe_id: int


@dataclass(frozen=True)
class SourceValidationFailed:
    message: str


@dataclass(frozen=True)
class SourceUnavailable:
    message: str


@dataclass(frozen=True)
class SourceInProgress:
    job_id: Optional[int] = None


RegistrationOutcome = Union[
    SourceCreated,
    RecipeAlreadyExists,
    SourceValidationFailed,
    SourceUnavailable,
    SourceInProgress,
]


def validate_reference(external_ref: str, kind: str) -> Optional[str]:
    """Returns a validation message, or None when the reference is well formed."""
    try:
        source_kind = SourceKind(kind)
    except ValueError:
        return f"Unsupported source kind: {kind}"

    if source_kind == SourceKind.YOUTUBE_SHORTS and not is_valid_video_id(external_ref or ""):
        return f"Invalid video id: {external_ref!r}"
    return None


class SourceRegistry:
    def __init__(self, repository: RecipeRepository, verifier: SourceVerifier):
        self._repository = repository
        self._verifier = verifier

    def register_source(self, external_ref: str, kind: str) -> RegistrationOutcome:
        message = validate_reference(external_ref, kind)
        if message:
            logger.info("registry.validation_failed ref=%s kind=%s reason=%s", external_ref, kind, message)
            return SourceValidationFailed(message)

        existing_recipe = self._repository.get_recipe_by_source_ref(external_ref, kind)
        if existing_recipe is not None:
            logger.info("registry.recipe_exists ref=%s recipe=%s", external_ref, existing_recipe.id)
            return RecipeAlreadyExists(existing_recipe.id)

        existing_source = self._repository.get_source_by_ref(external_ref, kind)
        if existing_source is not None:
            outcome = self._resolve_incomplete_source(existing_source)
            if outcome is not None:
                return outcome

        try:
            metadata = self._verifier.verify(external_ref)
        except StepError as error:
            logger.warning("registry.source_unavailable ref=%s kind=%s error=%s", external_ref, kind, error)
            return SourceUnavailable(str(error))

        try:
            source = self._repository.create_source(external_ref, kind, metadata)
        except DuplicateSourceError:
            return self._concurrent_duplicate(external_ref, kind)

        logger.info("registry.source_created id=%s ref=%s kind=%s", source.id, external_ref, kind)
        return SourceCreated(source)

    def _resolve_incomplete_source(self, source: RecipeSource) -> Optional[RegistrationOutcome]:
        """
        A source without a committed recipe. Returns the outcome, or None
        when the source was discarded and registration should start over.
        """
        job = self._repository.get_job_by_source(source.id)

        if job is None or job.status == JobStatus.CREATED:
            try:
                self._verifier.verify(source.external_ref)
            except StepError as error:
                logger.warning(
                    "registry.source_unavailable ref=%s kind=%s error=%s", source.external_ref, source.kind, error
                )
                return SourceUnavailable(str(error))
            logger.info("registry.source_reentered id=%s job=%s", source.id, job.id if job else None)
            return SourceCreated(source, job=job)

        if job.status == JobStatus.PROCESSING:
            return SourceInProgress(job.id)

        if job.status == JobStatus.COMPLETED:
            # recipe was committed after our lookup
            recipe = self._repository.get_recipe_by_source_ref(source.external_ref, source.kind)
            return RecipeAlreadyExists(recipe.id) if recipe else SourceInProgress(job.id)

        if self._repository.discard_failed_source(source.id):
            logger.info("registry.failed_source_discarded id=%s job=%s", source.id, job.id)
            return None
        return SourceInProgress(job.id)

    def _concurrent_duplicate(self, external_ref: str, kind: str) -> RegistrationOutcome:
        recipe = self._repository.get_recipe_by_source_ref(external_ref, kind)
        if recipe is not None:
            return RecipeAlreadyExists(recipe.id)

        source = self._repository.get_source_by_ref(external_ref, kind)
        job = self._repository.get_job_by_source(source.id) if source else None
        logger.info(
            "registry.concurrent_duplicate ref=%s kind=%s job=%s",
            external_ref, kind, job.id if job else None,
        )
        return SourceInProgress(job.id if job else None)
