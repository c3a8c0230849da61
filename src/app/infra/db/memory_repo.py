from __future__ import annotations

import copy
import itertools
import logging
import math
import re
import threading
from contextlib import contextmanager
from dataclasses import replace
from datetime import datetime, timezone
from typing import Any, Iterator, Optional, Sequence

from src.app.domain.errors import (
    DuplicateSourceError,
    InvalidJobTransitionError,
    InvalidStepTransitionError,
    JobNotFoundError,
    JobRepositoryError,
)
from src.app.domain.models import (
    ContentItem,
    Ingredient,
    JobStatus,
    Recipe,
    RecipeEmbedding,
    RecipeJob,
    RecipeJobStep,
    RecipeSource,
    SearchCandidate,
    StepStatus,
    StepType,
)
from src.app.infra.db.base import RecipeRepository

logger = logging.getLogger(__name__)

TOKEN_PATTERN = re.compile(r"[a-z0-9]+")
STOP_WORDS = frozenset({
    "a", "an", "and", "are", "as", "at", "be", "by", "for", "from", "how", "in",
    "is", "it", "of", "on", "or", "the", "to", "with",
})


def _now_utc() -> datetime:
    return datetime.now(timezone.utc)


def _tokens(text: str) -> set[str]:
    return {token for token in TOKEN_PATTERN.findall(text.lower()) if token not in STOP_WORDS}


def cosine_similarity(left: Sequence[float], right: Sequence[float]) -> float:
    if len(left) != len(right):
        raise ValueError(f"Vector dimensions differ: {len(left)} != {len(right)}")
    dot = sum(a * b for a, b in zip(left, right))
    norm = math.sqrt(sum(a * a for a in left)) * math.sqrt(sum(b * b for b in right))
    if norm == 0:
        return 0.0
    return dot / norm


def keyword_score(
    query_text: str,
    recipe: Recipe,
    name_weight: float,
    tags_weight: float,
    ingredients_weight: float,
) -> float:
    """
    Approximation of ts_rank_cd for the in-memory store: every query term
    counts with the highest weight among the fields it appears in,
    averaged over the query terms.
    """
    terms = _tokens(query_text)
    if not terms:
        return 0.0

    fields = (
        (_tokens(recipe.name), name_weight),
        (_tokens(" ".join(recipe.tags)), tags_weight),
        (_tokens(" ".join(i.name for i in recipe.ingredients)), ingredients_weight),
    )
    total = 0.0
    for term in terms:
        total += max((weight for tokens, weight in fields if term in tokens), default=0.0)
    return total / len(terms)


class InMemoryRecipeRepository(RecipeRepository):
    """
    Process-local store with the same contract as the Supabase one.
    A single lock serialises every operation; multi-row writes run inside
    `_transaction()` and roll back on any exception.
    """

    def __init__(self, embedding_dimensions: Optional[int] = None):
        self.embedding_dimensions = embedding_dimensions
        self._lock = threading.RLock()
        self._ids = {
            name: itertools.count(1)
            for name in ("sources", "jobs", "steps", "content_items", "recipes")
        }
        self._sources: dict[int, RecipeSource] = {}
        self._jobs: dict[int, RecipeJob] = {}
        self._steps: dict[int, RecipeJobStep] = {}
        self._content_items: dict[int, ContentItem] = {}
        self._recipes: dict[int, Recipe] = {}
        self._embeddings: dict[int, RecipeEmbedding] = {}

    # ------------------------------------------------------------------
    # helpers
    # ------------------------------------------------------------------

    def _tables(self) -> dict[str, dict]:
        return {
            "sources": self._sources,
            "jobs": self._jobs,
            "steps": self._steps,
            "content_items": self._content_items,
            "recipes": self._recipes,
            "embeddings": self._embeddings,
        }

    @contextmanager
    def _transaction(self) -> Iterator[None]:
        with self._lock:
            snapshot = copy.deepcopy(self._tables())
            try:
                yield
            except Exception:
                for name, rows in snapshot.items():
                    table = self._tables()[name]
                    table.clear()
                    table.update(rows)
                raise

    def row_counts(self) -> dict[str, int]:
        with self._lock:
            return {name: len(rows) for name, rows in self._tables().items()}

    def _assemble_job(self, job: RecipeJob) -> RecipeJob:
        steps = sorted(
            (step for step in self._steps.values() if step.job_id == job.id),
            key=lambda step: step.order,
        )
        return copy.deepcopy(replace(job, source=self._sources[job.source.id], steps=steps))

    def _require_job(self, job_id: int) -> RecipeJob:
        job = self._jobs.get(job_id)
        if job is None:
            raise JobNotFoundError(job_id)
        return job

    def _require_step(self, step_id: int) -> RecipeJobStep:
        step = self._steps.get(step_id)
        if step is None:
            raise JobRepositoryError("step_update", f"Step not found: {step_id}")
        return step

    def _transition_step(
        self,
        step_id: int,
        allowed: tuple[StepStatus, ...],
        target: StepStatus,
        **changes: Any,
    ) -> None:
        step = self._require_step(step_id)
        if step.status not in allowed:
            raise InvalidStepTransitionError(step_id, step.status.value, target.value)
        self._steps[step_id] = replace(step, status=target, **changes)

    def _transition_job(
        self,
        job_id: int,
        allowed: tuple[JobStatus, ...],
        target: JobStatus,
        **changes: Any,
    ) -> None:
        job = self._require_job(job_id)
        if job.status not in allowed:
            raise InvalidJobTransitionError(job_id, job.status.value, target.value)
        self._jobs[job_id] = replace(job, status=target, **changes)

    # ------------------------------------------------------------------
    # sources
    # ------------------------------------------------------------------

    def create_source(
        self,
        external_ref: str,
        kind: str,
        metadata: Optional[dict[str, Any]] = None,
    ) -> RecipeSource:
        with self._lock:
            if self._find_source(external_ref, kind) is not None:
                raise DuplicateSourceError(external_ref, kind)
            source = RecipeSource(
                id=next(self._ids["sources"]),
                external_ref=external_ref,
                kind=kind,
                created_at=_now_utc(),
                metadata=copy.deepcopy(metadata),
            )
            self._sources[source.id] = source
            logger.info("store.source_created id=%s ref=%s kind=%s", source.id, external_ref, kind)
            return copy.deepcopy(source)

    def _find_source(self, external_ref: str, kind: str) -> Optional[RecipeSource]:
        for source in self._sources.values():
            if source.external_ref == external_ref and source.kind == kind:
                return source
        return None

    def get_source_by_ref(self, external_ref: str, kind: str) -> Optional[RecipeSource]:
        with self._lock:
            source = self._find_source(external_ref, kind)
            return copy.deepcopy(source) if source else None

    def discard_failed_source(self, source_id: int) -> bool:
        with self._transaction():
            if source_id not in self._sources:
                return False
            if any(recipe.source_id == source_id for recipe in self._recipes.values()):
                return False
            job = next((j for j in self._jobs.values() if j.source.id == source_id), None)
            if job is not None and job.status != JobStatus.FAILED:
                return False

            if job is not None:
                step_ids = {s.id for s in self._steps.values() if s.job_id == job.id}
                for item_id in [i for i, item in self._content_items.items() if item.step_id in step_ids]:
                    del self._content_items[item_id]
                for step_id in step_ids:
                    del self._steps[step_id]
                del self._jobs[job.id]
            del self._sources[source_id]
            logger.info("store.source_discarded id=%s", source_id)
            return True

    # ------------------------------------------------------------------
    # jobs and steps
    # ------------------------------------------------------------------

    def create_job(self, source_id: int, step_types: Sequence[StepType]) -> RecipeJob:
        with self._transaction():
            source = self._sources.get(source_id)
            if source is None:
                raise JobRepositoryError("create_job", f"Source not found: {source_id}")
            if any(job.source.id == source_id for job in self._jobs.values()):
                raise JobRepositoryError("create_job", f"Source {source_id} already has a job")

            job = RecipeJob(
                id=next(self._ids["jobs"]),
                source=source,
                status=JobStatus.CREATED,
                created_at=_now_utc(),
            )
            self._jobs[job.id] = job
            for order, step_type in enumerate(step_types):
                step = RecipeJobStep(
                    id=next(self._ids["steps"]),
                    job_id=job.id,
                    type=StepType(step_type),
                    order=order,
                )
                self._steps[step.id] = step
            logger.info("store.job_created id=%s source=%s steps=%d", job.id, source_id, len(step_types))
            return self._assemble_job(job)

    def get_job(self, job_id: int) -> Optional[RecipeJob]:
        with self._lock:
            job = self._jobs.get(job_id)
            return self._assemble_job(job) if job else None

    def get_job_by_source(self, source_id: int) -> Optional[RecipeJob]:
        with self._lock:
            for job in self._jobs.values():
                if job.source.id == source_id:
                    return self._assemble_job(job)
            return None

    def list_jobs_by_status(self, status: JobStatus) -> list[RecipeJob]:
        with self._lock:
            return [
                self._assemble_job(job)
                for job in sorted(self._jobs.values(), key=lambda j: j.id)
                if job.status == status
            ]

    def mark_job_processing(self, job_id: int) -> None:
        with self._lock:
            self._transition_job(
                job_id, (JobStatus.CREATED,), JobStatus.PROCESSING, started_at=_now_utc()
            )

    def mark_step_processing(self, step_id: int) -> None:
        with self._lock:
            self._transition_step(
                step_id, (StepStatus.CREATED,), StepStatus.PROCESSING, started_at=_now_utc()
            )

    def mark_step_completed(self, step_id: int) -> None:
        with self._lock:
            self._transition_step(
                step_id, (StepStatus.PROCESSING,), StepStatus.COMPLETED, completed_at=_now_utc()
            )

    def mark_step_failed(self, step_id: int, message: str) -> None:
        with self._lock:
            self._transition_step(
                step_id,
                (StepStatus.CREATED, StepStatus.PROCESSING),
                StepStatus.FAILED,
                error_message=message,
            )

    def mark_job_completed(self, job_id: int) -> None:
        with self._lock:
            self._transition_job(
                job_id, (JobStatus.PROCESSING,), JobStatus.COMPLETED, completed_at=_now_utc()
            )

    def mark_job_failed(self, job_id: int, message: str) -> None:
        with self._lock:
            self._transition_job(
                job_id,
                (JobStatus.CREATED, JobStatus.PROCESSING),
                JobStatus.FAILED,
                error_message=message,
            )

    def mark_step_and_job_failed(
        self,
        step_id: int,
        job_id: int,
        step_message: str,
        job_message: str,
    ) -> None:
        with self._transaction():
            self.mark_step_failed(step_id, step_message)
            self.mark_job_failed(job_id, job_message)

    def fail_interrupted_jobs(self, message: str) -> int:
        with self._transaction():
            interrupted = [j.id for j in self._jobs.values() if j.status == JobStatus.PROCESSING]
            for job_id in interrupted:
                for step in list(self._steps.values()):
                    if step.job_id == job_id and step.status == StepStatus.PROCESSING:
                        self.mark_step_failed(step.id, message)
                self.mark_job_failed(job_id, message)
            if interrupted:
                logger.warning("store.interrupted_jobs_failed count=%d", len(interrupted))
            return len(interrupted)

    # ------------------------------------------------------------------
    # artifacts
    # ------------------------------------------------------------------

    def save_content_item(self, item: ContentItem) -> int:
        with self._lock:
            if item.step_id not in self._steps:
                raise JobRepositoryError("save_content_item", f"Step not found: {item.step_id}")
            stored = replace(
                item,
                id=next(self._ids["content_items"]),
                created_at=_now_utc(),
                data=copy.deepcopy(item.data),
            )
            self._content_items[stored.id] = stored
            return stored.id

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
        with self._transaction():
            if source_id not in self._sources:
                raise JobRepositoryError("commit_recipe", f"Source not found: {source_id}")
            if any(recipe.source_id == source_id for recipe in self._recipes.values()):
                raise JobRepositoryError("commit_recipe", f"Source {source_id} already has a recipe")

            recipe = Recipe(
                id=next(self._ids["recipes"]),
                source_id=source_id,
                name=name,
                instructions=instructions,
                ingredients=copy.deepcopy(ingredients),
                tags=list(tags),
            )
            self._recipes[recipe.id] = recipe
            self._insert_embedding(RecipeEmbedding(recipe_id=recipe.id, vector=list(vector), type=embedding_type))
            self._transition_job(
                job_id, (JobStatus.PROCESSING,), JobStatus.COMPLETED, completed_at=_now_utc()
            )
            logger.info("store.recipe_committed id=%s source=%s job=%s", recipe.id, source_id, job_id)
            return recipe.id

    def _insert_embedding(self, embedding: RecipeEmbedding) -> None:
        if self.embedding_dimensions is not None and len(embedding.vector) != self.embedding_dimensions:
            raise JobRepositoryError(
                "insert_embedding",
                f"expected {self.embedding_dimensions} dimensions, got {len(embedding.vector)}",
            )
        self._embeddings[embedding.recipe_id] = embedding

    def get_recipe(self, recipe_id: int) -> Optional[Recipe]:
        with self._lock:
            recipe = self._recipes.get(recipe_id)
            return copy.deepcopy(recipe) if recipe else None

    def get_recipe_by_source_ref(self, external_ref: str, kind: str) -> Optional[Recipe]:
        with self._lock:
            source = self._find_source(external_ref, kind)
            if source is None:
                return None
            for recipe in self._recipes.values():
                if recipe.source_id == source.id:
                    return copy.deepcopy(recipe)
            return None

    def search_candidates(
        self,
        query_text: str,
        query_vector: list[float],
        name_weight: float,
        tags_weight: float,
        ingredients_weight: float,
    ) -> list[SearchCandidate]:
        with self._lock:
            candidates = []
            for recipe_id, embedding in self._embeddings.items():
                recipe = self._recipes[recipe_id]
                candidates.append(
                    SearchCandidate(
                        recipe=copy.deepcopy(recipe),
                        similarity=cosine_similarity(embedding.vector, query_vector),
                        keyword_score=keyword_score(
                            query_text, recipe, name_weight, tags_weight, ingredients_weight
                        ),
                    )
                )
            return candidates
