from __future__ import annotations

import logging
from typing import Any

from pydantic import ValidationError

from src.services.errors import RecipeRejectedByModelError, RecipeValidationError
from src.services.gemini_client import GeminiClient
from src.services.recipe_schema import ParsedRecipe, RawRecipe

logger = logging.getLogger(__name__)

RECIPE_PARSER_PROMPT = """\
You analyse the transcript of a short cooking video and extract the recipe it describes.

Answer with a single JSON object with exactly these keys:
- "name": short name of the dish, or null
- "instructions": the preparation steps as plain text, in order, or null
- "ingredients": list of {"name": string, "quantity": string or null}
- "tags": list of short lowercase descriptors (cuisine, meal type, diet, main technique)
- "error": null, or {"reason": string} when the transcript does not describe a recipe

Rules:
- Only use information present in the transcript. Do not invent ingredients or quantities.
- Keep quantities as spoken ("2 cups", "a pinch"); use null when none is given.
- When the transcript is not a recipe (vlog, review, music, unrelated talk), set "error"
  with a one sentence reason and leave the other fields null or empty.
"""


def _build_user_prompt(transcript: str) -> dict[str, Any]:
    return {"transcript": transcript.strip()}


def _format_validation_error(error: ValidationError) -> str:
    return "; ".join(
        f"{'.'.join(str(part) for part in issue['loc']) or 'recipe'}: {issue['msg']}"
        for issue in error.errors()
    )


def parse_model_payload(payload: dict[str, Any]) -> ParsedRecipe:
    """
    Validates a raw model answer.

    Raises:
        RecipeRejectedByModelError: the model classified the text as not a recipe
        RecipeValidationError: the answer does not have the expected shape
    """
    try:
        raw = RawRecipe.model_validate(payload)
    except ValidationError as error:
        raise RecipeValidationError(f"Schema validation failed: {_format_validation_error(error)}") from error

    if raw.error is not None and raw.error.reason:
        raise RecipeRejectedByModelError(raw.error.reason)

    try:
        return ParsedRecipe.model_validate(raw.model_dump(exclude={"error"}))
    except ValidationError as error:
        raise RecipeValidationError(f"Schema validation failed: {_format_validation_error(error)}") from error


def run_recipe_agent(client: GeminiClient, transcript: str) -> ParsedRecipe:
    if not transcript or not transcript.strip():
        raise ValueError("Transcript cannot be empty.")

    payload = client.generate_json(_build_user_prompt(transcript), RECIPE_PARSER_PROMPT)
    recipe = parse_model_payload(payload)
    logger.info(
        "recipe_agent.parsed name=%s ingredients=%d tags=%d",
        recipe.name,
        len(recipe.ingredients),
        len(recipe.tags),
    )
    return recipe
