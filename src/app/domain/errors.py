from __future__ import annotations

from enum import Enum


class ErrorKind(str, Enum):
    VALIDATION = "validation"
    ALREADY_EXISTS = "already_exists"
    UPSTREAM_UNAVAILABLE = "upstream_unavailable"
    CONTENT_UNEXTRACTABLE = "content_unextractable"
    REJECTED = "rejected"
    MALFORMED_OUTPUT = "malformed_output"
    INVOCATION = "invocation"
    COMMIT = "commit"
    INTERNAL = "internal"


# Summaries exposed on the job row, safe to show to callers.
USER_SAFE_MESSAGES: dict[ErrorKind, str] = {
    ErrorKind.UPSTREAM_UNAVAILABLE: "The video is unavailable or does not exist.",
    ErrorKind.CONTENT_UNEXTRACTABLE: "No transcript could be extracted from the video.",
    ErrorKind.REJECTED: "The video does not describe a recipe.",
    ErrorKind.MALFORMED_OUTPUT: "The recipe could not be structured. Please try again later.",
    ErrorKind.INVOCATION: "An external service failed while processing the video. Please try again later.",
    ErrorKind.COMMIT: "The recipe could not be saved. Please try again later.",
    ErrorKind.INTERNAL: "Unexpected error while processing the video.",
}

RETRYABLE_KINDS = frozenset({
    ErrorKind.MALFORMED_OUTPUT,
    ErrorKind.INVOCATION,
    ErrorKind.COMMIT,
})


def user_safe_message(kind: ErrorKind) -> str:
    return USER_SAFE_MESSAGES.get(kind, USER_SAFE_MESSAGES[ErrorKind.INTERNAL])


class RecipePipelineError(Exception):
    kind: ErrorKind = ErrorKind.INTERNAL

    @property
    def retryable(self) -> bool:
        return self.kind in RETRYABLE_KINDS


class SourceValidationError(RecipePipelineError):
    kind = ErrorKind.VALIDATION

    def __init__(self, message: str = "Invalid source reference"):
        super().__init__(message)


class RecipeAlreadyExistsError(RecipePipelineError):
    kind = ErrorKind.ALREADY_EXISTS

    def __init__(self, recipe_id: int):
        super().__init__(f"Recipe already exists: {recipe_id}")
        self.recipe_id = recipe_id


class StepError(RecipePipelineError):
    """Failure of an external capability invoked by a pipeline step."""


class UpstreamUnavailableError(StepError):
    kind = ErrorKind.UPSTREAM_UNAVAILABLE

    def __init__(self, message: str = "Video unavailable or invalid"):
        super().__init__(message)


class ContentUnextractableError(StepError):
    kind = ErrorKind.CONTENT_UNEXTRACTABLE

    def __init__(self, message: str = "Video has no extractable text"):
        super().__init__(message)


class RecipeRejectedError(StepError):
    kind = ErrorKind.REJECTED

    def __init__(self, reason: str = "Input is not a valid recipe"):
        super().__init__(reason)
        self.reason = reason


class MalformedOutputError(StepError):
    kind = ErrorKind.MALFORMED_OUTPUT

    def __init__(self, message: str = "Structured output failed validation"):
        super().__init__(message)


class InvocationError(StepError):
    kind = ErrorKind.INVOCATION

    def __init__(self, message: str = "Unexpected error while invoking an external service"):
        super().__init__(message)


class StepTimeoutError(InvocationError):
    def __init__(self, step_type: str, timeout_seconds: float):
        super().__init__(f"Step {step_type} timed out after {timeout_seconds}s")
        self.step_type = step_type
        self.timeout_seconds = timeout_seconds


class CommitError(RecipePipelineError):
    kind = ErrorKind.COMMIT

    def __init__(self, reason: str):
        super().__init__(f"Failed to commit recipe artifacts: {reason}")
        self.reason = reason


class JobNotFoundError(RecipePipelineError):
    def __init__(self, job_id: int):
        super().__init__(f"Job not found: {job_id}")
        self.job_id = job_id


class JobRepositoryError(RecipePipelineError):
    def __init__(self, operation: str, reason: str):
        super().__init__(f"Job repository error during {operation}: {reason}")
        self.operation = operation
        self.reason = reason


class DuplicateSourceError(RecipePipelineError):
    def __init__(self, external_ref: str, kind: str):
        super().__init__(f"Source already registered: {kind}/{external_ref}")
        self.external_ref = external_ref
        self.source_kind = kind


class InvalidStepTransitionError(RecipePipelineError):
    def __init__(self, step_id: int, current: str, target: str):
        super().__init__(f"Invalid transition for step {step_id}: {current} -> {target}")
        self.step_id = step_id
        self.current = current
        self.target = target


class InvalidJobTransitionError(RecipePipelineError):
    def __init__(self, job_id: int, current: str, target: str):
        super().__init__(f"Invalid transition for job {job_id}: {current} -> {target}")
        self.job_id = job_id
        self.current = current
        self.target = target


class ConfigurationError(RecipePipelineError):
    def __init__(self, errors: list[str]):
        super().__init__(f"Configuration errors: {', '.join(errors)}")
        self.errors = errors
