# src/app/services/recipe_service.py
"""
Ingestion facade used by the HTTP layer: registration, job creation and
background execution, plus the read paths (job status, recipe, search).
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional, Union

from starlette.concurrency import run_in_threadpool

from src.app.domain.errors import InvalidJobTransitionError, JobRepositoryError
from src.app.domain.models import RECIPE_JOB_STEPS, RankedRecipe, Recipe, RecipeJob
from src.app.infra.db.base import RecipeRepository
from src.app.services.pipeline import INTERRUPTED_MESSAGE, PipelineExecutor, PipelineRun
from src.app.services.search import SearchRanker
from src.app.services.source_registry import (
    RecipeAlreadyExists,
    SourceCreated,
    SourceInProgress,
    SourceRegistry,
    SourceUnavailable,
    SourceValidationFailed,
)
from src.services.errors import InvalidURLError, UnsupportedPlatformError
from src.services.ids import parse_source_url

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class IngestionStarted:
    job: RecipeJob
    run: PipelineRun


IngestionOutcome = Union[
    IngestionStarted,
    RecipeAlreadyExists,
    SourceValidationFailed,
    SourceUnavailable,
    SourceInProgress,
]


class RecipeIngestionService:
    def __init__(
        self,
        repository: RecipeRepository,
        registry: SourceRegistry,
        executor: PipelineExecutor,
        ranker: SearchRanker,
    ):
        self._repository = repository
        self._registry = registry
        self._executor = executor
        self._ranker = ranker

    async def ingest(self, kind: str, url: str) -> IngestionOutcome:
        try:
            external_ref = parse_source_url(kind, url)
        except (InvalidURLError, UnsupportedPlatformError) as error:
            logger.info("ingest.invalid_url kind=%s url=%s error=%s", kind, url, error)
            return SourceValidationFailed(str(error))

        logger.info("ingest.start kind=%s ref=%s", kind, external_ref)
        return await self.ingest_reference(external_ref, kind)

    async def ingest_reference(self, external_ref: str, kind: str) -> IngestionOutcome:
        outcome = await run_in_threadpool(self._registry.register_source, external_ref, kind)
        if not isinstance(outcome, SourceCreated):
            return outcome

        job = outcome.job
        if job is None:
            try:
                job = await run_in_threadpool(
                    self._repository.create_job, outcome.source.id, RECIPE_JOB_STEPS
                )
            except JobRepositoryError as error:
                # lost the race to create the job for this source
                existing = await run_in_threadpool(self._repository.get_job_by_source, outcome.source.id)
                if existing is None:
                    raise
                logger.info("ingest.job_exists source=%s job=%s error=%s", outcome.source.id, existing.id, error)
                return SourceInProgress(existing.id)

        try:
            run = await self._executor.submit(job)
        except InvalidJobTransitionError:
            return SourceInProgress(job.id)

        logger.info("ingest.job_started job=%s source=%s", job.id, outcome.source.id)
        return IngestionStarted(job=job, run=run)

    async def get_job(self, job_id: int) -> Optional[RecipeJob]:
        return await run_in_threadpool(self._repository.get_job, job_id)

    async def get_recipe(self, recipe_id: int) -> Optional[Recipe]:
        return await run_in_threadpool(self._repository.get_recipe, recipe_id)

    async def search(self, query: str, limit: Optional[int] = None) -> list[RankedRecipe]:
        return await run_in_threadpool(self._ranker.search, query, limit)

    async def recover_interrupted_jobs(self) -> int:
        """Fail the jobs a previous process left in processing."""
        count = await run_in_threadpool(self._repository.fail_interrupted_jobs, INTERRUPTED_MESSAGE)
        if count:
            logger.warning("ingest.recovered_interrupted_jobs count=%d", count)
        return count

    async def shutdown(self, grace_seconds: float) -> None:
        await self._executor.shutdown(grace_seconds)
