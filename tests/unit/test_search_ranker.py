from __future__ import annotations

from typing import Any

import pytest

from pipeline_stubs import DIMENSIONS, EmbedderStub, new_job
from src.app.domain.models import Ingredient, Recipe, SearchCandidate
from src.app.infra.db.memory_repo import InMemoryRecipeRepository
from src.app.services.search import SearchRanker, SearchWeights, hybrid_score, order_candidates


def _recipe(recipe_id: int, name: str = "recipe") -> Recipe:
    return Recipe(id=recipe_id, source_id=recipe_id, name=name, instructions="")


class CandidateRepositoryStub:
    def __init__(self, candidates: list[SearchCandidate]) -> None:
        self.candidates = candidates
        self.calls: list[dict[str, Any]] = []

    def search_candidates(self, query_text: str, query_vector: list[float], **weights: float) -> list[SearchCandidate]:
        self.calls.append({"query_text": query_text, "query_vector": query_vector, **weights})
        return list(self.candidates)


class TestHybridScore:
    def test_default_weights(self) -> None:
        assert hybrid_score(0.9, 0.1, SearchWeights()) == pytest.approx(0.66)
        assert hybrid_score(0.6, 0.66, SearchWeights()) == pytest.approx(0.618)

    def test_order_prefers_higher_final_score(self) -> None:
        candidates = [
            SearchCandidate(_recipe(2, "B"), similarity=0.6, keyword_score=0.66),
            SearchCandidate(_recipe(1, "A"), similarity=0.9, keyword_score=0.1),
        ]
        ranked = order_candidates(candidates, SearchWeights())

        assert [r.recipe.name for r in ranked] == ["A", "B"]
        assert ranked[0].final_score == pytest.approx(0.66)
        assert ranked[1].final_score == pytest.approx(0.618)

    def test_ties_break_by_recipe_id(self) -> None:
        candidates = [SearchCandidate(_recipe(i), similarity=0.5, keyword_score=0.5) for i in (7, 3, 5)]
        assert [r.recipe.id for r in order_candidates(candidates, SearchWeights())] == [3, 5, 7]

    def test_custom_weights(self) -> None:
        candidates = [
            SearchCandidate(_recipe(1), similarity=0.9, keyword_score=0.0),
            SearchCandidate(_recipe(2), similarity=0.1, keyword_score=1.0),
        ]
        ranked = order_candidates(candidates, SearchWeights(semantic=0.2, keyword=0.8))
        assert [r.recipe.id for r in ranked] == [2, 1]


class TestSearchRanker:
    def test_rank_passes_field_weights_and_limits(self) -> None:
        repo = CandidateRepositoryStub([SearchCandidate(_recipe(i), 0.1 * i, 0.0) for i in range(1, 6)])
        ranker = SearchRanker(repo, EmbedderStub(), weights=SearchWeights(tags=0.2), default_limit=3)  # type: ignore[arg-type]

        ranked = ranker.rank("pasta", [1.0, 0.0, 0.0])

        assert [r.recipe.id for r in ranked] == [5, 4, 3]
        assert repo.calls == [{
            "query_text": "pasta",
            "query_vector": [1.0, 0.0, 0.0],
            "name_weight": 1.0,
            "tags_weight": 0.2,
            "ingredients_weight": 1.0,
        }]
        assert len(ranker.rank("pasta", [1.0, 0.0, 0.0], limit=10)) == 5

    def test_search_embeds_the_query(self) -> None:
        repo = CandidateRepositoryStub([])
        embedder = EmbedderStub(query_vector=[0.0, 1.0, 0.0])
        ranker = SearchRanker(repo, embedder)  # type: ignore[arg-type]

        assert ranker.search("  garlic pasta ") == []
        assert embedder.queries == ["garlic pasta"]
        assert repo.calls[0]["query_vector"] == [0.0, 1.0, 0.0]

    @pytest.mark.parametrize("query", ["", "   "])
    def test_blank_query(self, query: str) -> None:
        embedder = EmbedderStub()
        ranker = SearchRanker(CandidateRepositoryStub([]), embedder)  # type: ignore[arg-type]
        with pytest.raises(ValueError):
            ranker.search(query)
        assert embedder.queries == []

    def test_search_over_committed_recipes(self) -> None:
        repo = InMemoryRecipeRepository(embedding_dimensions=DIMENSIONS)
        rows = (
            ("video001", "garlic pasta", ["italian"], [1.0, 0.0, 0.0]),
            ("video002", "tofu bowl", ["vegan"], [0.0, 1.0, 0.0]),
        )
        for ref, name, tags, vector in rows:
            job = new_job(repo, ref)
            repo.mark_job_processing(job.id)
            repo.commit_recipe(job.id, job.source.id, name, "Cook.", [Ingredient("salt")], tags, vector, "text")

        ranker = SearchRanker(repo, EmbedderStub(query_vector=[0.0, 1.0, 0.0]))

        ranked = ranker.search("vegan tofu")
        assert [r.recipe.name for r in ranked] == ["tofu bowl", "garlic pasta"]
        assert ranked[0].similarity == pytest.approx(1.0)
        assert ranked[0].keyword_score == pytest.approx(0.7)
        assert ranked[0].final_score == pytest.approx(0.7 + 0.3 * 0.7)
