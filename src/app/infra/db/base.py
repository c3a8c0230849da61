# src/app/infra/db/base.py
"""
Abstract base classes for the recipe store.
This interface allows swapping between the Supabase backend and the in-memory one.
"""
from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Optional, Sequence

from src.app.domain.models import (
    ContentItem,
    Ingredient,
    JobStatus,
    Recipe,
    RecipeJob,
    RecipeSource,
    SearchCandidate,
    StepType,
)


class SourceRepository(ABC):
    """
    Deduplicated external origins of recipes.

    Implementations:
    - SupabaseRecipeRepository: Postgres tables through PostgREST
    - InMemoryRecipeRepository: local runs and tests
    """

    @abstractmethod
    def create_source(
        self,
        external_ref: str,
        kind: str,
        metadata: Optional[dict[str, Any]] = None,
    ) -> RecipeSource:
        """
        Insert a new source.

        Raises:
            DuplicateSourceError: a source with the same (external_ref, kind) exists
        """
        pass

    @abstractmethod
    def get_source_by_ref(self, external_ref: str, kind: str) -> Optional[RecipeSource]:
        pass

    @abstractmethod
    def discard_failed_source(self, source_id: int) -> bool:
        """
        Atomically delete a source whose job failed, together with its job,
        steps and content items. Does nothing when the job is not failed or
        a recipe was committed for the source.

        Returns:
            True if the source was deleted
        """
        pass


class JobRepository(ABC):
    """
    Jobs and their ordered steps.

    Transitions are guarded: a step or job that is not in the expected
    state raises InvalidStepTransitionError / InvalidJobTransitionError.
    """

    @abstractmethod
    def create_job(self, source_id: int, step_types: Sequence[StepType]) -> RecipeJob:
        """
        Atomically create a job in CREATED status with one CREATED step per
        type, ordered 0..n-1 in the given order.
        """
        pass

    @abstractmethod
    def get_job(self, job_id: int) -> Optional[RecipeJob]:
        """Job with its source and steps sorted by order, or None."""
        pass

    @abstractmethod
    def get_job_by_source(self, source_id: int) -> Optional[RecipeJob]:
        pass

    @abstractmethod
    def list_jobs_by_status(self, status: JobStatus) -> list[RecipeJob]:
        pass

    @abstractmethod
    def mark_job_processing(self, job_id: int) -> None:
        """created -> processing, sets started_at."""
        pass

    @abstractmethod
    def mark_step_processing(self, step_id: int) -> None:
        """created -> processing, sets started_at."""
        pass

    @abstractmethod
    def mark_step_completed(self, step_id: int) -> None:
        """processing -> completed, sets completed_at."""
        pass

    @abstractmethod
    def mark_step_failed(self, step_id: int, message: str) -> None:
        pass

    @abstractmethod
    def mark_job_completed(self, job_id: int) -> None:
        pass

    @abstractmethod
    def mark_job_failed(self, job_id: int, message: str) -> None:
        pass

    @abstractmethod
    def mark_step_and_job_failed(
        self,
        step_id: int,
        job_id: int,
        step_message: str,
        job_message: str,
    ) -> None:
        """Fail a step and its job in one transaction."""
        pass

    @abstractmethod
    def fail_interrupted_jobs(self, message: str) -> int:
        """
        Mark every job left in PROCESSING (and its processing step) as
        FAILED. Used at startup, when no run can still own them.

        Returns:
            Number of jobs failed
        """
        pass


class ArtifactRepository(ABC):
    """Recipes, embeddings and intermediate content items."""

    @abstractmethod
    def save_content_item(self, item: ContentItem) -> int:
        """Store a step output and return its id."""
        pass

    @abstractmethod
    def commit_recipe(
        self,
        job_id: int,
        source_id: int,
        name: str,
        instructions: str,
        ingredients: list[Ingredient],
        tags: list[str],
        vector: list[float],
        embedding_type: str,
    ) -> int:
        """
        In one transaction: insert the recipe, insert its embedding and move
        the job from processing to completed. Nothing is written on failure.

        Returns:
            The new recipe id
        """
        pass

    @abstractmethod
    def get_recipe(self, recipe_id: int) -> Optional[Recipe]:
        pass

    @abstractmethod
    def get_recipe_by_source_ref(self, external_ref: str, kind: str) -> Optional[Recipe]:
        """Committed recipe for a source reference. Never writes."""
        pass

    @abstractmethod
    def search_candidates(
        self,
        query_text: str,
        query_vector: list[float],
        name_weight: float,
        tags_weight: float,
        ingredients_weight: float,
    ) -> list[SearchCandidate]:
        """
        Every recipe that has an embedding, with its cosine similarity to
        the query vector and its full text keyword score. Unordered.
        """
        pass


class RecipeRepository(SourceRepository, JobRepository, ArtifactRepository, ABC):
    """The complete store used by the ingestion service."""
