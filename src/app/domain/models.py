# src/app/domain/models.py
"""
Domain models for the recipe ingestion pipeline.
These are pure data structures with no infrastructure dependencies.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Optional


class JobStatus(str, Enum):
    """Status enum for recipe jobs."""
    CREATED = "created"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class StepStatus(str, Enum):
    """Status enum for the steps of a recipe job."""
    CREATED = "created"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class StepType(str, Enum):
    """
    Closed set of pipeline stages.
    Declaration order is execution order.
    """
    EXTRACT_CONTENT = "extract_content"
    STRUCTURE_CONTENT = "structure_content"
    GENERATE_EMBEDDING = "generate_embedding"

    @classmethod
    def ordered(cls) -> tuple["StepType", ...]:
        return tuple(cls)


class SourceKind(str, Enum):
    YOUTUBE_SHORTS = "youtube-shorts"


RECIPE_JOB_STEPS: tuple[StepType, ...] = StepType.ordered()

EMBEDDING_TYPE_TEXT = "text"


@dataclass
class RecipeSource:
    """One deduplicated external origin, unique by (external_ref, kind)."""
    id: int
    external_ref: str
    kind: str
    created_at: Optional[datetime] = None
    metadata: Optional[dict[str, Any]] = None


@dataclass
class RecipeJobStep:
    id: int
    job_id: int
    type: StepType
    order: int
    status: StepStatus = StepStatus.CREATED
    error_message: Optional[str] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    @property
    def is_completed(self) -> bool:
        return self.status == StepStatus.COMPLETED


@dataclass
class RecipeJob:
    """
    One execution attempt of the pipeline for a source.
    Steps are always kept sorted by `order`.
    """
    id: int
    source: RecipeSource
    status: JobStatus
    steps: list[RecipeJobStep] = field(default_factory=list)
    created_at: Optional[datetime] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    error_message: Optional[str] = None

    @property
    def is_terminal(self) -> bool:
        return self.status in (JobStatus.COMPLETED, JobStatus.FAILED)

    def next_pending_step(self) -> Optional[RecipeJobStep]:
        """First step (by order) that has not completed yet."""
        for step in self.steps:
            if not step.is_completed:
                return step
        return None

    def pending_steps(self) -> list[RecipeJobStep]:
        first = self.next_pending_step()
        if first is None:
            return []
        return [step for step in self.steps if step.order >= first.order]


@dataclass
class Ingredient:
    name: str
    quantity: Optional[str] = None


@dataclass
class Recipe:
    id: int
    source_id: int
    name: str
    instructions: str
    ingredients: list[Ingredient] = field(default_factory=list)
    tags: list[str] = field(default_factory=list)


@dataclass
class RecipeEmbedding:
    recipe_id: int
    vector: list[float]
    type: str = EMBEDDING_TYPE_TEXT


@dataclass
class ContentItem:
    """Audit copy of a step's raw output. Never read back by the pipeline."""
    step_id: int
    source_id: int
    kind: str
    data: Any
    id: Optional[int] = None
    created_at: Optional[datetime] = None


@dataclass
class SearchCandidate:
    """Per-recipe scores as computed by the store's comparison primitives."""
    recipe: Recipe
    similarity: float
    keyword_score: float


@dataclass
class RankedRecipe:
    recipe: Recipe
    similarity: float
    keyword_score: float
    final_score: float
