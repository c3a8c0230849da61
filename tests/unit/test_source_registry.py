from __future__ import annotations

import threading

import pytest

from pipeline_stubs import DIMENSIONS, KIND, VIDEO_ID, VerifierStub, new_job
from src.app.domain.errors import UpstreamUnavailableError
from src.app.domain.models import Ingredient
from src.app.infra.db.memory_repo import InMemoryRecipeRepository
from src.app.services.source_registry import (
    RecipeAlreadyExists,
    SourceCreated,
    SourceInProgress,
    SourceRegistry,
    SourceUnavailable,
    SourceValidationFailed,
    validate_reference,
)


def _repo() -> InMemoryRecipeRepository:
    return InMemoryRecipeRepository(embedding_dimensions=DIMENSIONS)


def _commit(repo: InMemoryRecipeRepository, external_ref: str = VIDEO_ID) -> int:
    job = new_job(repo, external_ref)
    repo.mark_job_processing(job.id)
    return repo.commit_recipe(
        job.id, job.source.id, "garlic pasta", "Mix.", [Ingredient("garlic")], ["quick"], [1.0, 0.0, 0.0], "text"
    )


class TestValidateReference:
    def test_well_formed(self) -> None:
        assert validate_reference(VIDEO_ID, KIND) is None

    def test_unknown_kind(self) -> None:
        assert "Unsupported source kind" in validate_reference(VIDEO_ID, "video")

    @pytest.mark.parametrize("external_ref", ["", "ab", "has space", "semi;colon"])
    def test_bad_video_id(self, external_ref: str) -> None:
        assert "Invalid video id" in validate_reference(external_ref, KIND)


class TestRegisterSource:
    def test_fresh_reference_creates_source(self) -> None:
        repo = _repo()
        verifier = VerifierStub()
        outcome = SourceRegistry(repo, verifier).register_source(VIDEO_ID, KIND)

        assert isinstance(outcome, SourceCreated)
        assert outcome.job is None
        assert outcome.source.external_ref == VIDEO_ID
        assert outcome.source.kind == KIND
        assert outcome.source.metadata["title"] == "Garlic pasta"
        assert verifier.calls == [VIDEO_ID]
        assert repo.get_source_by_ref(VIDEO_ID, KIND).id == outcome.source.id

    def test_validation_failure_writes_nothing(self) -> None:
        repo = _repo()
        verifier = VerifierStub()
        outcome = SourceRegistry(repo, verifier).register_source(VIDEO_ID, "video")

        assert isinstance(outcome, SourceValidationFailed)
        assert verifier.calls == []
        assert repo.row_counts()["sources"] == 0

    def test_existing_recipe_is_reported_without_writes(self) -> None:
        repo = _repo()
        recipe_id = _commit(repo)
        before = repo.row_counts()
        verifier = VerifierStub()

        outcome = SourceRegistry(repo, verifier).register_source(VIDEO_ID, KIND)

        assert outcome == RecipeAlreadyExists(recipe_id)
        assert repo.row_counts() == before
        assert verifier.calls == []

    def test_unknown_kind_is_rejected_for_a_known_ref(self) -> None:
        repo = _repo()
        _commit(repo)
        outcome = SourceRegistry(repo, VerifierStub()).register_source(VIDEO_ID, "tiktok")
        assert isinstance(outcome, SourceValidationFailed)

    def test_unavailable_source(self) -> None:
        repo = _repo()
        verifier = VerifierStub(error=UpstreamUnavailableError("Video is private"))
        outcome = SourceRegistry(repo, verifier).register_source(VIDEO_ID, KIND)

        assert outcome == SourceUnavailable("Video is private")
        assert repo.row_counts()["sources"] == 0

    def test_concurrent_registration_creates_one_source(self) -> None:
        repo = _repo()
        registry = SourceRegistry(repo, VerifierStub(barrier=threading.Barrier(2)))
        outcomes = []
        lock = threading.Lock()

        def register() -> None:
            outcome = registry.register_source(VIDEO_ID, KIND)
            with lock:
                outcomes.append(outcome)

        threads = [threading.Thread(target=register) for _ in range(2)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join(timeout=10)

        assert sorted(type(o).__name__ for o in outcomes) == ["SourceCreated", "SourceInProgress"]
        assert repo.row_counts()["sources"] == 1


class TestIncompleteSource:
    def test_source_without_job_is_reentered(self) -> None:
        repo = _repo()
        source = repo.create_source(VIDEO_ID, KIND)
        verifier = VerifierStub()

        outcome = SourceRegistry(repo, verifier).register_source(VIDEO_ID, KIND)

        assert outcome == SourceCreated(source, job=None)
        assert verifier.calls == [VIDEO_ID]
        assert repo.row_counts()["sources"] == 1

    def test_created_job_is_reentered(self) -> None:
        repo = _repo()
        job = new_job(repo)
        outcome = SourceRegistry(repo, VerifierStub()).register_source(VIDEO_ID, KIND)

        assert isinstance(outcome, SourceCreated)
        assert outcome.job is not None
        assert outcome.job.id == job.id
        assert repo.row_counts()["jobs"] == 1

    def test_reentry_checks_the_source_again(self) -> None:
        repo = _repo()
        new_job(repo)
        counts = repo.row_counts()
        verifier = VerifierStub(error=UpstreamUnavailableError("Video was removed"))

        outcome = SourceRegistry(repo, verifier).register_source(VIDEO_ID, KIND)

        assert outcome == SourceUnavailable("Video was removed")
        assert verifier.calls == [VIDEO_ID]
        assert repo.row_counts() == counts

    def test_processing_job_is_in_progress(self) -> None:
        repo = _repo()
        job = new_job(repo)
        repo.mark_job_processing(job.id)

        outcome = SourceRegistry(repo, VerifierStub()).register_source(VIDEO_ID, KIND)

        assert outcome == SourceInProgress(job.id)

    def test_failed_job_is_discarded_and_registered_again(self) -> None:
        repo = _repo()
        job = new_job(repo)
        repo.mark_job_failed(job.id, "boom")

        outcome = SourceRegistry(repo, VerifierStub()).register_source(VIDEO_ID, KIND)

        assert isinstance(outcome, SourceCreated)
        assert outcome.source.id != job.source.id
        assert repo.get_job(job.id) is None
        counts = repo.row_counts()
        assert counts["sources"] == 1
        assert counts["jobs"] == 0
        assert counts["steps"] == 0

    def test_failed_job_with_unavailable_source_keeps_nothing(self) -> None:
        repo = _repo()
        job = new_job(repo)
        repo.mark_job_failed(job.id, "boom")
        verifier = VerifierStub(error=UpstreamUnavailableError())

        outcome = SourceRegistry(repo, verifier).register_source(VIDEO_ID, KIND)

        assert isinstance(outcome, SourceUnavailable)
        assert repo.row_counts()["sources"] == 0
