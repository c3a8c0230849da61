# src/app/deps.py
"""
Construction of the application's services. Built once per process by the
FastAPI lifespan and stored on `app.state`; routers receive it as a dependency.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Callable, Optional

from fastapi import HTTPException, Request, status

from src.app.config import Settings
from src.app.infra.db.base import RecipeRepository
from src.app.infra.db.memory_repo import InMemoryRecipeRepository
from src.app.infra.db.supabase_recipe_repo import SupabaseRecipeRepository, create_supabase_client
from src.app.services.artifact_committer import ArtifactCommitter
from src.app.services.capabilities import (
    GeminiRecipeEmbedder,
    GeminiRecipeStructurer,
    StepCapabilities,
    YoutubeSourceVerifier,
    YoutubeTranscriptExtractor,
)
from src.app.services.pipeline import PipelineExecutor
from src.app.services.recipe_service import RecipeIngestionService
from src.app.services.search import SearchRanker, SearchWeights
from src.app.services.source_registry import SourceRegistry
from src.services.fetcher import YoutubeClient
from src.services.gemini_client import GeminiClient

logger = logging.getLogger(__name__)


@dataclass
class ServiceContainer:
    repository: RecipeRepository
    registry: SourceRegistry
    executor: PipelineExecutor
    committer: ArtifactCommitter
    ranker: SearchRanker
    ingestion: RecipeIngestionService
    closers: list[Callable[[], None]] = field(default_factory=list)

    def close(self) -> None:
        for close in self.closers:
            close()


def build_repository(settings: Settings) -> RecipeRepository:
    if settings.STORE_BACKEND == "memory":
        logger.info("deps.store backend=memory")
        return InMemoryRecipeRepository(embedding_dimensions=settings.EMBEDDING_DIMENSIONS)

    client = create_supabase_client(str(settings.SUPABASE_URL), settings.SUPABASE_SERVICE_ROLE_KEY or "")
    return SupabaseRecipeRepository(client)


def search_weights_from(settings: Settings) -> SearchWeights:
    return SearchWeights(
        semantic=settings.SEARCH_SEMANTIC_WEIGHT,
        keyword=settings.SEARCH_KEYWORD_WEIGHT,
        name=settings.SEARCH_NAME_WEIGHT,
        tags=settings.SEARCH_TAGS_WEIGHT,
        ingredients=settings.SEARCH_INGREDIENTS_WEIGHT,
    )


def build_services(
    settings: Settings,
    repository: Optional[RecipeRepository] = None,
    youtube: Optional[YoutubeClient] = None,
    gemini: Optional[GeminiClient] = None,
) -> ServiceContainer:
    settings.ensure_valid()

    repository = repository or build_repository(settings)
    closers: list[Callable[[], None]] = []
    if youtube is None:
        youtube = YoutubeClient()
        closers.append(youtube.close)
    gemini = gemini or GeminiClient(
        api_key=settings.GEMINI_API_KEY or "",
        model_name=settings.GEMINI_MODEL,
        embedding_model=settings.EMBEDDING_MODEL,
        embedding_dimensions=settings.EMBEDDING_DIMENSIONS,
    )

    embedder = GeminiRecipeEmbedder(gemini, dimensions=settings.EMBEDDING_DIMENSIONS)
    capabilities = StepCapabilities(
        extractor=YoutubeTranscriptExtractor(youtube),
        structurer=GeminiRecipeStructurer(gemini),
        embedder=embedder,
    )
    committer = ArtifactCommitter(repository, embedding_dimensions=settings.EMBEDDING_DIMENSIONS)
    executor = PipelineExecutor(
        repository,
        capabilities,
        committer,
        max_concurrent_jobs=settings.PIPELINE_MAX_CONCURRENT_JOBS,
        step_timeout_seconds=settings.PIPELINE_STEP_TIMEOUT_SECONDS,
    )
    registry = SourceRegistry(repository, YoutubeSourceVerifier(youtube))
    ranker = SearchRanker(
        repository,
        embedder,
        weights=search_weights_from(settings),
        default_limit=settings.SEARCH_RESULT_LIMIT,
    )
    ingestion = RecipeIngestionService(repository, registry, executor, ranker)

    return ServiceContainer(
        repository=repository,
        registry=registry,
        executor=executor,
        committer=committer,
        ranker=ranker,
        ingestion=ingestion,
        closers=closers,
    )


def get_services(request: Request) -> ServiceContainer:
    services = getattr(request.app.state, "services", None)
    if services is None:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Service is starting up")
    return services


def get_ingestion_service(request: Request) -> RecipeIngestionService:
    return get_services(request).ingestion
