# src/services/recipe_schema.py
from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, ConfigDict, field_validator, model_validator


def normalize_text(value: str) -> str:
    """Trim, collapse inner whitespace and lowercase."""
    return " ".join(value.split()).lower()


class RawIngredient(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: str
    quantity: Optional[str] = None


class RejectionReason(BaseModel):
    reason: str


class RawRecipe(BaseModel):
    """Shape the model is asked to answer with, before any cleanup."""
    model_config = ConfigDict(extra="forbid")

    name: Optional[str] = None
    instructions: Optional[str] = None
    ingredients: list[RawIngredient] = []
    tags: list[str] = []
    error: Optional[RejectionReason] = None


class ParsedIngredient(BaseModel):
    name: str
    quantity: Optional[str] = None

    @field_validator("name")
    @classmethod
    def _normalize_name(cls, value: str) -> str:
        normalized = normalize_text(value)
        if not normalized:
            raise ValueError("ingredient name cannot be empty")
        return normalized

    @field_validator("quantity")
    @classmethod
    def _clean_quantity(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        stripped = value.strip()
        return stripped or None


class ParsedRecipe(BaseModel):
    """
    Cleaned recipe: names and tags normalised, ingredients deduplicated by
    name keeping the first occurrence, tags deduplicated keeping order.
    """
    model_config = ConfigDict(extra="forbid")

    name: str
    instructions: str
    ingredients: list[ParsedIngredient]
    tags: list[str]

    @field_validator("name")
    @classmethod
    def _normalize_recipe_name(cls, value: str) -> str:
        normalized = normalize_text(value)
        if not normalized:
            raise ValueError("recipe name cannot be empty")
        return normalized

    @field_validator("instructions")
    @classmethod
    def _require_instructions(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("instructions cannot be empty")
        return value.strip()

    @field_validator("tags")
    @classmethod
    def _normalize_tags(cls, value: list[str]) -> list[str]:
        tags: list[str] = []
        for item in value:
            normalized = normalize_text(item)
            if normalized and normalized not in tags:
                tags.append(normalized)
        return tags

    @model_validator(mode="after")
    def _dedupe_ingredients(self) -> "ParsedRecipe":
        seen: set[str] = set()
        unique: list[ParsedIngredient] = []
        for ingredient in self.ingredients:
            if ingredient.name in seen:
                continue
            seen.add(ingredient.name)
            unique.append(ingredient)
        self.ingredients = unique
        return self
