from __future__ import annotations

import logging
from typing import Optional

from src.app.domain.errors import CommitError
from src.app.domain.models import EMBEDDING_TYPE_TEXT, Ingredient
from src.app.infra.db.base import ArtifactRepository
from src.services.recipe_schema import ParsedRecipe

logger = logging.getLogger(__name__)


class ArtifactCommitter:
    """
    Single atomic write of the final recipe, its embedding and the job's
    completion. No retries; every failure surfaces as CommitError.
    """

    def __init__(self, repository: ArtifactRepository, embedding_dimensions: Optional[int] = None):
        self._repository = repository
        self.embedding_dimensions = embedding_dimensions

    def commit(
        self,
        source_id: int,
        recipe: ParsedRecipe,
        embedding: list[float],
        *,
        job_id: int,
    ) -> int:
        if not embedding:
            raise CommitError("embedding is empty")
        if self.embedding_dimensions is not None and len(embedding) != self.embedding_dimensions:
            raise CommitError(
                f"embedding has {len(embedding)} dimensions, expected {self.embedding_dimensions}"
            )

        ingredients = [Ingredient(name=i.name, quantity=i.quantity) for i in recipe.ingredients]
        try:
            recipe_id = self._repository.commit_recipe(
                job_id=job_id,
                source_id=source_id,
                name=recipe.name,
                instructions=recipe.instructions,
                ingredients=ingredients,
                tags=list(recipe.tags),
                vector=list(embedding),
                embedding_type=EMBEDDING_TYPE_TEXT,
            )
        except Exception as error:
            logger.error("committer.failed job=%s source=%s error=%s", job_id, source_id, error)
            raise CommitError(str(error)) from error

        logger.info("committer.committed job=%s source=%s recipe=%s", job_id, source_id, recipe_id)
        return recipe_id
