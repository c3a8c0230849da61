from __future__ import annotations

import pytest

from src.app.domain.errors import (
    CommitError,
    ConfigurationError,
    ContentUnextractableError,
    DuplicateSourceError,
    ErrorKind,
    InvalidJobTransitionError,
    InvalidStepTransitionError,
    InvocationError,
    JobNotFoundError,
    JobRepositoryError,
    MalformedOutputError,
    RecipeAlreadyExistsError,
    RecipePipelineError,
    RecipeRejectedError,
    SourceValidationError,
    StepError,
    StepTimeoutError,
    UpstreamUnavailableError,
    user_safe_message,
)


class TestErrorKinds:
    @pytest.mark.parametrize(
        "error, kind",
        [
            (SourceValidationError(), ErrorKind.VALIDATION),
            (RecipeAlreadyExistsError(7), ErrorKind.ALREADY_EXISTS),
            (UpstreamUnavailableError(), ErrorKind.UPSTREAM_UNAVAILABLE),
            (ContentUnextractableError(), ErrorKind.CONTENT_UNEXTRACTABLE),
            (RecipeRejectedError("vlog"), ErrorKind.REJECTED),
            (MalformedOutputError(), ErrorKind.MALFORMED_OUTPUT),
            (InvocationError(), ErrorKind.INVOCATION),
            (CommitError("db down"), ErrorKind.COMMIT),
            (JobNotFoundError(1), ErrorKind.INTERNAL),
        ],
    )
    def test_kind(self, error: RecipePipelineError, kind: ErrorKind) -> None:
        assert error.kind == kind

    def test_step_errors_share_base(self) -> None:
        for error in (
            UpstreamUnavailableError(),
            ContentUnextractableError(),
            RecipeRejectedError(),
            MalformedOutputError(),
            InvocationError(),
        ):
            assert isinstance(error, StepError)

    def test_retryable_only_for_transient_kinds(self) -> None:
        assert InvocationError().retryable
        assert MalformedOutputError().retryable
        assert CommitError("x").retryable
        assert not RecipeRejectedError().retryable
        assert not UpstreamUnavailableError().retryable
        assert not ContentUnextractableError().retryable


class TestUserSafeMessage:
    def test_rejected_is_distinct_from_generic_failures(self) -> None:
        assert user_safe_message(ErrorKind.REJECTED) == "The video does not describe a recipe."
        assert user_safe_message(ErrorKind.REJECTED) != user_safe_message(ErrorKind.INVOCATION)

    def test_unknown_kind_falls_back_to_internal(self) -> None:
        assert user_safe_message(ErrorKind.VALIDATION) == user_safe_message(ErrorKind.INTERNAL)


class TestStepTimeoutError:
    def test_is_invocation_error(self) -> None:
        error = StepTimeoutError("extract_content", 5.0)
        assert isinstance(error, InvocationError)
        assert error.kind == ErrorKind.INVOCATION
        assert "extract_content" in str(error)
        assert error.timeout_seconds == 5.0


class TestRecipeRejectedError:
    def test_keeps_reason(self) -> None:
        error = RecipeRejectedError("This is a travel vlog")
        assert error.reason == "This is a travel vlog"
        assert str(error) == "This is a travel vlog"


class TestCommitError:
    def test_includes_reason(self) -> None:
        error = CommitError("unique violation")
        assert "unique violation" in str(error)
        assert error.reason == "unique violation"


class TestJobRepositoryError:
    def test_includes_operation_and_reason(self) -> None:
        error = JobRepositoryError("create_job", "Connection refused")
        assert "create_job" in str(error)
        assert "Connection refused" in str(error)
        assert error.operation == "create_job"


class TestDuplicateSourceError:
    def test_includes_reference(self) -> None:
        error = DuplicateSourceError("abc123", "youtube-shorts")
        assert error.external_ref == "abc123"
        assert error.source_kind == "youtube-shorts"
        assert "youtube-shorts/abc123" in str(error)


class TestTransitionErrors:
    def test_step_transition(self) -> None:
        error = InvalidStepTransitionError(3, "completed", "processing")
        assert "completed -> processing" in str(error)
        assert error.step_id == 3

    def test_job_transition(self) -> None:
        error = InvalidJobTransitionError(9, "failed", "processing")
        assert "failed -> processing" in str(error)
        assert error.job_id == 9


class TestConfigurationError:
    def test_lists_errors(self) -> None:
        error = ConfigurationError(["GEMINI_API_KEY is required", "SUPABASE_URL is required"])
        assert "GEMINI_API_KEY" in str(error)
        assert len(error.errors) == 2
