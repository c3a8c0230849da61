# src/app/domain/events.py
"""
Typed notifications emitted by the pipeline executor, in execution order.
"""
from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Any, ClassVar, Optional, Union

from src.app.domain.errors import ErrorKind
from src.app.domain.models import StepType


@dataclass(frozen=True)
class StepStarted:
    event: ClassVar[str] = "step_started"
    step_type: StepType


@dataclass(frozen=True)
class StepSucceeded:
    event: ClassVar[str] = "step_succeeded"
    step_type: StepType
    output_ref: Optional[int] = None  # content item id, when the audit copy was stored


@dataclass(frozen=True)
class StepFailed:
    event: ClassVar[str] = "step_failed"
    step_type: StepType
    error_kind: ErrorKind
    message: str


@dataclass(frozen=True)
class PipelineCompleted:
    event: ClassVar[str] = "pipeline_completed"
    recipe_id: int


@dataclass(frozen=True)
class PipelineFailed:
    event: ClassVar[str] = "pipeline_failed"
    error_kind: ErrorKind
    message: str


PipelineEvent = Union[StepStarted, StepSucceeded, StepFailed, PipelineCompleted, PipelineFailed]

TERMINAL_EVENTS = (PipelineCompleted, PipelineFailed)


def event_to_dict(event: PipelineEvent) -> dict[str, Any]:
    payload = {"event": event.event}
    for key, value in asdict(event).items():
        payload[key] = value.value if hasattr(value, "value") else value
    return payload
