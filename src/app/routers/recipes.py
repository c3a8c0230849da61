# src/app/routers/recipes.py
from __future__ import annotations

import json
import logging
from typing import AsyncIterator, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from fastapi.responses import JSONResponse, StreamingResponse

from src.app.deps import get_ingestion_service
from src.app.domain.errors import ErrorKind, StepError
from src.app.domain.events import event_to_dict
from src.app.schemas.recipes import (
    IngestRecipeRequest,
    JobResponse,
    RecipeResponse,
    SearchResponse,
    SearchResultItem,
)
from src.app.services.pipeline import PipelineRun
from src.app.services.recipe_service import IngestionStarted, RecipeIngestionService
from src.app.services.source_registry import (
    RecipeAlreadyExists,
    SourceInProgress,
    SourceUnavailable,
    SourceValidationFailed,
)

log = logging.getLogger("recipes")
router = APIRouter(prefix="/recipes", tags=["recipes"])
jobs_router = APIRouter(prefix="/recipe-jobs", tags=["recipes"])


def _error(status_code: int, kind: ErrorKind, message: str, **extra: object) -> HTTPException:
    return HTTPException(status_code=status_code, detail={"error": kind.value, "message": message, **extra})


async def _ndjson_events(run: PipelineRun) -> AsyncIterator[str]:
    async for event in run.events():
        yield json.dumps(event_to_dict(event)) + "\n"


@router.post("", status_code=status.HTTP_202_ACCEPTED, response_model=JobResponse)
async def ingest_recipe(
    body: IngestRecipeRequest,
    stream: bool = Query(False, description="Stream pipeline events as NDJSON"),
    service: RecipeIngestionService = Depends(get_ingestion_service),
):
    log.info("recipes.ingest type=%s url=%s stream=%s", body.type, body.data.url, stream)
    outcome = await service.ingest(body.type, body.data.url)

    if isinstance(outcome, SourceValidationFailed):
        raise _error(status.HTTP_400_BAD_REQUEST, ErrorKind.VALIDATION, outcome.message)
    if isinstance(outcome, RecipeAlreadyExists):
        raise _error(
            status.HTTP_409_CONFLICT, ErrorKind.ALREADY_EXISTS,
            "A recipe already exists for this video.", recipeId=outcome.recipe_id,
        )
    if isinstance(outcome, SourceInProgress):
        raise _error(
            status.HTTP_409_CONFLICT, ErrorKind.ALREADY_EXISTS,
            "This video is already being processed.", jobId=outcome.job_id,
        )
    if isinstance(outcome, SourceUnavailable):
        raise _error(
            status.HTTP_503_SERVICE_UNAVAILABLE, ErrorKind.UPSTREAM_UNAVAILABLE,
            "The video is unavailable or does not exist.",
        )

    if not isinstance(outcome, IngestionStarted):
        log.error("recipes.ingest_unexpected_outcome outcome=%s", type(outcome).__name__)
        raise _error(
            status.HTTP_500_INTERNAL_SERVER_ERROR, ErrorKind.INTERNAL, "Unexpected ingestion outcome.",
        )

    if stream:
        return StreamingResponse(
            _ndjson_events(outcome.run),
            status_code=status.HTTP_202_ACCEPTED,
            media_type="application/x-ndjson",
            headers={"X-Recipe-Job-Id": str(outcome.job.id)},
        )

    job = await service.get_job(outcome.job.id) or outcome.job
    return JSONResponse(
        status_code=status.HTTP_202_ACCEPTED,
        content=JobResponse.from_domain(job).model_dump(mode="json"),
    )


@router.get("", response_model=SearchResponse)
async def search_recipes(
    q: str = Query(..., min_length=1, description="Free text query"),
    limit: Optional[int] = Query(None, ge=1, le=100),
    service: RecipeIngestionService = Depends(get_ingestion_service),
) -> SearchResponse:
    try:
        results = await service.search(q, limit)
    except ValueError as exc:
        raise _error(status.HTTP_400_BAD_REQUEST, ErrorKind.VALIDATION, str(exc)) from exc
    except StepError as exc:
        log.warning("recipes.search_failed query=%r kind=%s error=%s", q, exc.kind.value, exc)
        raise _error(
            status.HTTP_503_SERVICE_UNAVAILABLE, exc.kind, "Search is temporarily unavailable."
        ) from exc

    return SearchResponse(query=q, items=[SearchResultItem.from_domain(item) for item in results])


@router.get("/{recipe_id}", response_model=RecipeResponse)
async def get_recipe(
    recipe_id: int,
    service: RecipeIngestionService = Depends(get_ingestion_service),
) -> RecipeResponse:
    recipe = await service.get_recipe(recipe_id)
    if recipe is None:
        raise HTTPException(status_code=404, detail="Recipe not found")
    return RecipeResponse.from_domain(recipe)


@jobs_router.get("/{job_id}", response_model=JobResponse)
async def get_recipe_job(
    job_id: int,
    service: RecipeIngestionService = Depends(get_ingestion_service),
) -> JobResponse:
    job = await service.get_job(job_id)
    if job is None:
        raise HTTPException(status_code=404, detail="Job not found")
    return JobResponse.from_domain(job)
