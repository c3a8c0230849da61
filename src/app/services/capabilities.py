# src/app/services/capabilities.py
"""
External operations invoked by the pipeline steps and the source registry.

Each capability wraps one low-level client and translates its errors
(src/services/errors.py) into the step error taxonomy of the domain.
All methods are synchronous; callers run them in a thread pool.
"""
from __future__ import annotations

import logging
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Callable, Iterator, Protocol

from src.app.domain.errors import (
    ContentUnextractableError,
    InvocationError,
    MalformedOutputError,
    RecipeRejectedError,
    StepError,
    UpstreamUnavailableError,
)
from src.services.embedding import embedding_document, embedding_query
from src.services.errors import (
    FetchFailedError,
    GeminiResponseError,
    InvalidURLError,
    NetworkTimeoutError,
    PrivateOrUnavailableError,
    RateLimitedError,
    RecipeRejectedByModelError,
    RecipeValidationError,
    ServiceError,
    TranscriptUnavailableError,
)
from src.services.fetcher import YoutubeClient
from src.services.gemini_client import GeminiClient
from src.services.recipe_agent import run_recipe_agent
from src.services.recipe_schema import ParsedRecipe

logger = logging.getLogger(__name__)


def translate_service_error(error: Exception) -> StepError:
    if isinstance(error, StepError):
        return error
    if isinstance(error, (PrivateOrUnavailableError, InvalidURLError)):
        return UpstreamUnavailableError(str(error) or "Video unavailable or invalid")
    if isinstance(error, TranscriptUnavailableError):
        return ContentUnextractableError(str(error) or "Video has no extractable text")
    if isinstance(error, RecipeRejectedByModelError):
        return RecipeRejectedError(error.reason)
    if isinstance(error, (RecipeValidationError, GeminiResponseError)):
        return MalformedOutputError(str(error) or "Structured output failed validation")
    if isinstance(error, (RateLimitedError, NetworkTimeoutError, FetchFailedError, ServiceError)):
        return InvocationError(str(error) or type(error).__name__)
    return InvocationError(f"{type(error).__name__}: {error}")


def translate_embedding_error(error: Exception) -> StepError:
    """Embedding failures are always invocation failures, whatever the client raised."""
    if isinstance(error, StepError):
        return error
    return InvocationError(str(error) or type(error).__name__)


@contextmanager
def capability_errors(
    operation: str, translate: Callable[[Exception], StepError] = translate_service_error
) -> Iterator[None]:
    """Re-raise anything the wrapped client throws as a StepError."""
    try:
        yield
    except StepError:
        raise
    except Exception as error:
        translated = translate(error)
        logger.warning(
            "capability.%s_failed kind=%s error=%s", operation, translated.kind.value, error
        )
        raise translated from error


class ContentExtractor(Protocol):
    def extract_text(self, external_ref: str) -> str: ...


class RecipeStructurer(Protocol):
    def structure(self, text: str) -> ParsedRecipe: ...


class RecipeEmbedder(Protocol):
    def embed(self, recipe: ParsedRecipe) -> list[float]: ...

    def embed_query(self, text: str) -> list[float]: ...


class SourceVerifier(Protocol):
    def verify(self, external_ref: str) -> dict[str, Any]: ...


class YoutubeTranscriptExtractor:
    def __init__(self, youtube: YoutubeClient):
        self._youtube = youtube

    def extract_text(self, external_ref: str) -> str:
        with capability_errors("extract_text"):
            text = self._youtube.get_transcript(external_ref)
        if not text or not text.strip():
            raise ContentUnextractableError(f"Empty transcript for video {external_ref}")
        return text


class YoutubeSourceVerifier:
    """Existence check used before a source is registered. Returns metadata."""

    def __init__(self, youtube: YoutubeClient):
        self._youtube = youtube

    def verify(self, external_ref: str) -> dict[str, Any]:
        with capability_errors("verify_source"):
            return self._youtube.get_video_info(external_ref).to_metadata()


class GeminiRecipeStructurer:
    def __init__(self, client: GeminiClient):
        self._client = client

    def structure(self, text: str) -> ParsedRecipe:
        if not text or not text.strip():
            raise ContentUnextractableError("Nothing to structure: extracted text is empty")
        with capability_errors("structure"):
            return run_recipe_agent(self._client, text)


class GeminiRecipeEmbedder:
    def __init__(self, client: GeminiClient, dimensions: int | None = None):
        self._client = client
        self.dimensions = dimensions

    def _check(self, vector: list[float]) -> list[float]:
        if self.dimensions is not None and len(vector) != self.dimensions:
            raise InvocationError(
                f"Embedding has {len(vector)} dimensions, expected {self.dimensions}"
            )
        return vector

    def embed(self, recipe: ParsedRecipe) -> list[float]:
        with capability_errors("embed", translate_embedding_error):
            vector = embedding_document(self._client, recipe)
        return self._check(vector)

    def embed_query(self, text: str) -> list[float]:
        with capability_errors("embed_query", translate_embedding_error):
            vector = embedding_query(self._client, text)
        return self._check(vector)


@dataclass(frozen=True)
class StepCapabilities:
    """The external operation behind each step kind."""
    extractor: ContentExtractor
    structurer: RecipeStructurer
    embedder: RecipeEmbedder
