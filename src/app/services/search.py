from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterable, Optional

from src.app.domain.models import RankedRecipe, SearchCandidate
from src.app.infra.db.base import ArtifactRepository
from src.app.services.capabilities import RecipeEmbedder

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SearchWeights:
    semantic: float = 0.7
    keyword: float = 0.3
    # field weights of the keyword rank, name and ingredients share the top label
    name: float = 1.0
    tags: float = 0.4
    ingredients: float = 1.0


def hybrid_score(similarity: float, keyword_score: float, weights: SearchWeights) -> float:
    return weights.semantic * similarity + weights.keyword * keyword_score


def order_candidates(candidates: Iterable[SearchCandidate], weights: SearchWeights) -> list[RankedRecipe]:
    ranked = [
        RankedRecipe(
            recipe=candidate.recipe,
            similarity=candidate.similarity,
            keyword_score=candidate.keyword_score,
            final_score=hybrid_score(candidate.similarity, candidate.keyword_score, weights),
        )
        for candidate in candidates
    ]
    ranked.sort(key=lambda item: (-item.final_score, item.recipe.id))
    return ranked


class SearchRanker:
    def __init__(
        self,
        repository: ArtifactRepository,
        embedder: RecipeEmbedder,
        weights: SearchWeights = SearchWeights(),
        default_limit: Optional[int] = None,
    ):
        self._repository = repository
        self._embedder = embedder
        self.weights = weights
        self.default_limit = default_limit

    def rank(
        self,
        query_text: str,
        query_embedding: list[float],
        limit: Optional[int] = None,
    ) -> list[RankedRecipe]:
        candidates = self._repository.search_candidates(
            query_text,
            query_embedding,
            name_weight=self.weights.name,
            tags_weight=self.weights.tags,
            ingredients_weight=self.weights.ingredients,
        )
        ranked = order_candidates(candidates, self.weights)
        limit = limit or self.default_limit
        return ranked[:limit] if limit else ranked

    def search(self, query_text: str, limit: Optional[int] = None) -> list[RankedRecipe]:
        query = (query_text or "").strip()
        if not query:
            raise ValueError("Search query cannot be empty.")

        query_embedding = self._embedder.embed_query(query)
        results = self.rank(query, query_embedding, limit)
        logger.info("search.ranked query=%r results=%d", query, len(results))
        return results
