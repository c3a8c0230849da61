from __future__ import annotations

from typing import Any

import pytest

from src.services.embedding import stringify_recipe
from src.services.errors import RecipeRejectedByModelError, RecipeValidationError
from src.services.recipe_agent import parse_model_payload, run_recipe_agent
from src.services.recipe_schema import ParsedRecipe, normalize_text


def _payload(**overrides: Any) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "name": "  Garlic   Butter Pasta ",
        "instructions": "Boil pasta. Melt butter with garlic. Toss.",
        "ingredients": [
            {"name": "Spaghetti", "quantity": "200 g"},
            {"name": "Garlic", "quantity": "3 cloves"},
            {"name": "  garlic ", "quantity": "1 head"},
            {"name": "Butter", "quantity": "  "},
        ],
        "tags": ["Italian", "pasta", " italian ", "Quick"],
        "error": None,
    }
    payload.update(overrides)
    return payload


class GeminiClientStub:
    def __init__(self, payload: dict[str, Any]) -> None:
        self.payload = payload
        self.prompts: list[Any] = []

    def generate_json(self, user_prompt: Any, system_instruction: str) -> dict[str, Any]:
        self.prompts.append(user_prompt)
        return self.payload


class TestNormalizeText:
    def test_trims_collapses_and_lowercases(self) -> None:
        assert normalize_text("  Olive \t OIL ") == "olive oil"


class TestParseModelPayload:
    def test_normalises_name_and_tags(self) -> None:
        recipe = parse_model_payload(_payload())
        assert recipe.name == "garlic butter pasta"
        assert recipe.tags == ["italian", "pasta", "quick"]

    def test_duplicate_ingredient_keeps_first_quantity(self) -> None:
        recipe = parse_model_payload(_payload())
        names = [i.name for i in recipe.ingredients]
        assert names == ["spaghetti", "garlic", "butter"]
        garlic = next(i for i in recipe.ingredients if i.name == "garlic")
        assert garlic.quantity == "3 cloves"

    def test_blank_quantity_becomes_none(self) -> None:
        recipe = parse_model_payload(_payload())
        butter = next(i for i in recipe.ingredients if i.name == "butter")
        assert butter.quantity is None

    def test_model_rejection(self) -> None:
        with pytest.raises(RecipeRejectedByModelError) as exc_info:
            parse_model_payload({"name": None, "instructions": None, "ingredients": [], "tags": [],
                                 "error": {"reason": "This is a travel vlog"}})
        assert exc_info.value.reason == "This is a travel vlog"

    def test_unexpected_key_is_malformed(self) -> None:
        with pytest.raises(RecipeValidationError):
            parse_model_payload(_payload(servings=4))

    def test_missing_instructions_is_malformed(self) -> None:
        with pytest.raises(RecipeValidationError) as exc_info:
            parse_model_payload(_payload(instructions=None))
        assert "instructions" in str(exc_info.value)

    def test_wrong_type_is_malformed(self) -> None:
        with pytest.raises(RecipeValidationError):
            parse_model_payload(_payload(ingredients="flour, water"))


class TestRunRecipeAgent:
    def test_sends_transcript_and_returns_recipe(self) -> None:
        client = GeminiClientStub(_payload())
        recipe = run_recipe_agent(client, "  today we make garlic pasta ")  # type: ignore[arg-type]
        assert isinstance(recipe, ParsedRecipe)
        assert client.prompts == [{"transcript": "today we make garlic pasta"}]

    def test_empty_transcript(self) -> None:
        with pytest.raises(ValueError):
            run_recipe_agent(GeminiClientStub(_payload()), "   ")  # type: ignore[arg-type]


class TestStringifyRecipe:
    def test_lines(self) -> None:
        text = stringify_recipe(parse_model_payload(_payload()))
        assert text.splitlines() == [
            "Name: garlic butter pasta",
            "Instructions: Boil pasta. Melt butter with garlic. Toss.",
            "Ingredients: spaghetti (200 g), garlic (3 cloves), butter",
            "Tags: italian, pasta, quick",
        ]
