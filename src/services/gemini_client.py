from __future__ import annotations

import json
import logging
from typing import Any

from google import genai
from google.genai import types
from google.genai.errors import APIError

from src.services.errors import GeminiConfigurationError, GeminiResponseError, RateLimitedError

logger = logging.getLogger(__name__)

TASK_RETRIEVAL_DOCUMENT = "RETRIEVAL_DOCUMENT"
TASK_RETRIEVAL_QUERY = "RETRIEVAL_QUERY"


def _is_rate_limited_error(exc: Exception) -> bool:
    status_code = getattr(exc, "code", None) or getattr(exc, "status_code", None)
    if status_code == 429:
        return True
    return "RESOURCE_EXHAUSTED" in str(exc)


class GeminiClient:
    """
    Thin wrapper around the google-genai client.
    Constructed once per application and injected where needed.
    """

    def __init__(
        self,
        api_key: str,
        model_name: str = "gemini-2.5-flash",
        embedding_model: str = "text-embedding-004",
        embedding_dimensions: int | None = None,
    ) -> None:
        if not api_key:
            raise GeminiConfigurationError("Missing Google API key.")
        self.model_name = model_name
        self.embedding_model = embedding_model
        self.embedding_dimensions = embedding_dimensions
        self._client = genai.Client(api_key=api_key)

    def _serialize_prompt(self, user_prompt: str | dict[str, Any]) -> str:
        if isinstance(user_prompt, str):
            return user_prompt
        try:
            return json.dumps(user_prompt, indent=2, ensure_ascii=False)
        except TypeError:
            return str(user_prompt)

    def generate_json(self, user_prompt: str | dict[str, Any], system_instruction: str) -> dict[str, Any]:
        """Runs the model in JSON mode and returns the decoded object."""
        try:
            response = self._client.models.generate_content(
                model=self.model_name,
                contents=self._serialize_prompt(user_prompt),
                config=types.GenerateContentConfig(
                    system_instruction=system_instruction,
                    response_mime_type="application/json",
                    temperature=0,
                ),
            )
        except APIError as err:
            if _is_rate_limited_error(err):
                raise RateLimitedError("Gemini API rate limit reached.") from err
            raise

        text = response.text
        if not text:
            raise GeminiResponseError("Model response did not include text content.")
        try:
            decoded = json.loads(text)
        except json.JSONDecodeError as err:
            raise GeminiResponseError(f"Model response is not valid JSON: {err}") from err
        if not isinstance(decoded, dict):
            raise GeminiResponseError("Model response is not a JSON object.")
        return decoded

    def embed(self, text: str, task_type: str = TASK_RETRIEVAL_DOCUMENT) -> list[float]:
        config = types.EmbedContentConfig(
            task_type=task_type,
            output_dimensionality=self.embedding_dimensions,
        )
        try:
            result = self._client.models.embed_content(
                model=self.embedding_model,
                contents=text,
                config=config,
            )
        except APIError as err:
            if _is_rate_limited_error(err):
                raise RateLimitedError("Gemini API rate limit reached.") from err
            raise

        if not result.embeddings or not result.embeddings[0].values:
            raise GeminiResponseError("Embedding response was empty.")
        return list(result.embeddings[0].values)
