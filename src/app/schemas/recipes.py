from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field

from src.app.domain.models import RankedRecipe, Recipe, RecipeJob, RecipeJobStep


class SourceData(BaseModel):
    url: str


class IngestRecipeRequest(BaseModel):
    type: str = Field(examples=["youtube-shorts"])
    data: SourceData


class IngredientItem(BaseModel):
    name: str
    quantity: Optional[str] = None


class RecipeResponse(BaseModel):
    id: int
    sourceId: int
    name: str
    instructions: str
    ingredients: list[IngredientItem] = Field(default_factory=list)
    tags: list[str] = Field(default_factory=list)

    @classmethod
    def from_domain(cls, recipe: Recipe) -> "RecipeResponse":
        return cls(
            id=recipe.id,
            sourceId=recipe.source_id,
            name=recipe.name,
            instructions=recipe.instructions,
            ingredients=[IngredientItem(name=i.name, quantity=i.quantity) for i in recipe.ingredients],
            tags=list(recipe.tags),
        )


class JobStepResponse(BaseModel):
    id: int
    type: str
    order: int
    status: str
    errorMessage: Optional[str] = None
    startedAt: Optional[datetime] = None
    completedAt: Optional[datetime] = None

    @classmethod
    def from_domain(cls, step: RecipeJobStep) -> "JobStepResponse":
        return cls(
            id=step.id,
            type=step.type.value,
            order=step.order,
            status=step.status.value,
            errorMessage=step.error_message,
            startedAt=step.started_at,
            completedAt=step.completed_at,
        )


class JobResponse(BaseModel):
    id: int
    sourceId: int
    externalRef: str
    kind: str
    status: str
    errorMessage: Optional[str] = None
    createdAt: Optional[datetime] = None
    startedAt: Optional[datetime] = None
    completedAt: Optional[datetime] = None
    steps: list[JobStepResponse] = Field(default_factory=list)

    @classmethod
    def from_domain(cls, job: RecipeJob) -> "JobResponse":
        return cls(
            id=job.id,
            sourceId=job.source.id,
            externalRef=job.source.external_ref,
            kind=job.source.kind,
            status=job.status.value,
            errorMessage=job.error_message,
            createdAt=job.created_at,
            startedAt=job.started_at,
            completedAt=job.completed_at,
            steps=[JobStepResponse.from_domain(step) for step in job.steps],
        )


class SearchResultItem(BaseModel):
    recipe: RecipeResponse
    similarity: float
    keywordScore: float
    finalScore: float

    @classmethod
    def from_domain(cls, ranked: RankedRecipe) -> "SearchResultItem":
        return cls(
            recipe=RecipeResponse.from_domain(ranked.recipe),
            similarity=ranked.similarity,
            keywordScore=ranked.keyword_score,
            finalScore=ranked.final_score,
        )


class SearchResponse(BaseModel):
    query: str
    items: list[SearchResultItem]
