# src/app/services/pipeline.py
"""
Pipeline executor for recipe jobs.

A job is claimed (created -> processing) when it is submitted, then run as a
background task bounded by a semaphore. Steps run strictly in order; each one
invokes its capability in a thread pool under a timeout. Every transition is
written to the store. Events are published to an optional single observer.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Callable, Optional

import anyio
from starlette.concurrency import run_in_threadpool

from src.app.domain.errors import (
    CommitError,
    ErrorKind,
    InvalidJobTransitionError,
    RecipePipelineError,
    StepError,
    StepTimeoutError,
    user_safe_message,
)
from src.app.domain.events import (
    TERMINAL_EVENTS,
    PipelineCompleted,
    PipelineEvent,
    PipelineFailed,
    StepFailed,
    StepStarted,
    StepSucceeded,
)
from src.app.domain.models import (
    ContentItem,
    JobStatus,
    RecipeJob,
    RecipeJobStep,
    RecipeSource,
    StepType,
)
from src.app.infra.db.base import RecipeRepository
from src.app.services.artifact_committer import ArtifactCommitter
from src.app.services.capabilities import StepCapabilities

logger = logging.getLogger(__name__)

INTERRUPTED_MESSAGE = "Processing was interrupted before it finished."


@dataclass
class PipelineContext:
    """Outputs of the steps of one run, kept in memory only."""
    source: RecipeSource
    outputs: dict[StepType, Any] = field(default_factory=dict)

    def require(self, step_type: StepType) -> Any:
        if step_type not in self.outputs:
            raise RuntimeError(f"Output of step {step_type.value} is not available")
        return self.outputs[step_type]


StepHandler = Callable[[PipelineContext], Any]


@dataclass(frozen=True)
class StepBinding:
    handler: StepHandler
    content_kind: str
    # audit copy of the output stored as a content item
    to_content: Callable[[Any], Any]


def build_step_bindings(capabilities: StepCapabilities) -> dict[StepType, StepBinding]:
    return {
        StepType.EXTRACT_CONTENT: StepBinding(
            handler=lambda ctx: capabilities.extractor.extract_text(ctx.source.external_ref),
            content_kind="transcript",
            to_content=lambda text: {"text": text},
        ),
        StepType.STRUCTURE_CONTENT: StepBinding(
            handler=lambda ctx: capabilities.structurer.structure(ctx.require(StepType.EXTRACT_CONTENT)),
            content_kind="parsed_recipe",
            to_content=lambda recipe: recipe.model_dump(),
        ),
        StepType.GENERATE_EMBEDDING: StepBinding(
            handler=lambda ctx: capabilities.embedder.embed(ctx.require(StepType.STRUCTURE_CONTENT)),
            content_kind="embedding",
            to_content=lambda vector: {"dimensions": len(vector), "vector": list(vector)},
        ),
    }


class PipelineEventStream:
    """
    Buffered tap over the events of one run.

    At most one observer may attach. Events published before the observer
    attaches are kept; once the observer goes away further events are dropped.
    Publishing never blocks the run.
    """

    def __init__(self) -> None:
        self._queue: "asyncio.Queue[PipelineEvent]" = asyncio.Queue()
        self._attached = False
        self._detached = False
        self.closed = False

    def publish(self, event: PipelineEvent) -> None:
        if isinstance(event, TERMINAL_EVENTS):
            self.closed = True
        if self._detached:
            return
        self._queue.put_nowait(event)

    def attach(self) -> AsyncIterator[PipelineEvent]:
        if self._attached:
            raise RuntimeError("An observer is already attached to this pipeline run")
        self._attached = True
        return self._iterate()

    async def _iterate(self) -> AsyncIterator[PipelineEvent]:
        try:
            while True:
                event = await self._queue.get()
                yield event
                if isinstance(event, TERMINAL_EVENTS):
                    return
        finally:
            self._detached = True
            while not self._queue.empty():
                self._queue.get_nowait()


@dataclass
class PipelineRun:
    job_id: int
    stream: PipelineEventStream
    task: "asyncio.Task[PipelineEvent]"

    def events(self) -> AsyncIterator[PipelineEvent]:
        return self.stream.attach()

    async def wait(self) -> PipelineEvent:
        """Terminal event of the run. Cancelling the waiter does not cancel the run."""
        return await asyncio.shield(self.task)


class PipelineExecutor:
    def __init__(
        self,
        repository: RecipeRepository,
        capabilities: StepCapabilities,
        committer: ArtifactCommitter,
        max_concurrent_jobs: int = 4,
        step_timeout_seconds: float = 120.0,
    ):
        bindings = build_step_bindings(capabilities)
        missing = set(StepType) - set(bindings)
        if missing:
            raise ValueError(f"No capability bound for steps: {sorted(s.value for s in missing)}")

        self._repository = repository
        self._committer = committer
        self._bindings = bindings
        self._semaphore = asyncio.Semaphore(max_concurrent_jobs)
        self.step_timeout_seconds = step_timeout_seconds
        self._tasks: set[asyncio.Task] = set()
        self._closing = False

    @property
    def active_runs(self) -> int:
        return sum(1 for task in self._tasks if not task.done())

    async def _store(self, operation: Callable[..., Any], *args: Any) -> Any:
        return await run_in_threadpool(operation, *args)

    # ------------------------------------------------------------------
    # submission
    # ------------------------------------------------------------------

    async def submit(self, job: RecipeJob, context: Optional[PipelineContext] = None) -> PipelineRun:
        """
        Claim the job and start it in the background.

        Raises:
            InvalidJobTransitionError: the job is not in CREATED status, or it
                has completed steps whose outputs are not in `context`
            RuntimeError: the executor is shutting down
        """
        if self._closing:
            raise RuntimeError("Pipeline executor is shutting down")

        context = context or PipelineContext(source=job.source)
        self._check_resumable(job, context)
        await self._store(self._repository.mark_job_processing, job.id)

        stream = PipelineEventStream()
        task = asyncio.create_task(self._run(job, context, stream), name=f"recipe-job-{job.id}")
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        logger.info("pipeline.submitted job=%s source=%s", job.id, job.source.id)
        return PipelineRun(job_id=job.id, stream=stream, task=task)

    def _check_resumable(self, job: RecipeJob, context: PipelineContext) -> None:
        if job.status != JobStatus.CREATED:
            raise InvalidJobTransitionError(job.id, job.status.value, JobStatus.PROCESSING.value)
        for step in job.steps:
            if step.is_completed and step.type not in context.outputs:
                raise InvalidJobTransitionError(job.id, "output missing for completed steps", JobStatus.PROCESSING.value)

    async def run_pipeline(
        self, job: RecipeJob, context: Optional[PipelineContext] = None
    ) -> AsyncIterator[PipelineEvent]:
        """Streams the events of a run. Leaving the loop early does not stop the run."""
        run = await self.submit(job, context)
        async for event in run.events():
            yield event

    async def shutdown(self, grace_seconds: float) -> None:
        self._closing = True
        pending = [task for task in self._tasks if not task.done()]
        if not pending:
            return

        logger.info("pipeline.shutdown_waiting runs=%d grace=%ss", len(pending), grace_seconds)
        _, still_running = await asyncio.wait(pending, timeout=grace_seconds)
        for task in still_running:
            task.cancel()
        if still_running:
            logger.warning("pipeline.shutdown_cancelled runs=%d", len(still_running))
            await asyncio.gather(*still_running, return_exceptions=True)

    # ------------------------------------------------------------------
    # execution
    # ------------------------------------------------------------------

    async def _run(
        self, job: RecipeJob, context: PipelineContext, stream: PipelineEventStream
    ) -> PipelineEvent:
        current_step: Optional[RecipeJobStep] = None
        # the job is already processing while it waits for a slot
        try:
            async with self._semaphore:
                logger.info("pipeline.start job=%s steps=%d", job.id, len(job.pending_steps()))
                for step in job.pending_steps():
                    current_step = step
                    failure = await self._run_step(job, step, context, stream)
                    if failure is not None:
                        return failure
                    current_step = None
                return await self._commit(job, context, stream)
        except asyncio.CancelledError:
            await self._record_crash(job, current_step, stream, INTERRUPTED_MESSAGE)
            raise
        except Exception:
            logger.exception("pipeline.crashed job=%s step=%s", job.id, current_step.type.value if current_step else None)
            return await self._record_crash(job, current_step, stream, user_safe_message(ErrorKind.INTERNAL))

    async def _run_step(
        self,
        job: RecipeJob,
        step: RecipeJobStep,
        context: PipelineContext,
        stream: PipelineEventStream,
    ) -> Optional[PipelineEvent]:
        await self._store(self._repository.mark_step_processing, step.id)
        stream.publish(StepStarted(step.type))
        logger.info("pipeline.step_started job=%s step=%s", job.id, step.type.value)

        binding = self._bindings[step.type]
        try:
            output = await self._invoke(step, binding, context)
        except StepError as error:
            return await self._fail_step(job, step, error, stream)

        context.outputs[step.type] = output
        output_ref = await self._save_content_item(job, step, binding, output)
        await self._store(self._repository.mark_step_completed, step.id)
        stream.publish(StepSucceeded(step.type, output_ref))
        logger.info("pipeline.step_succeeded job=%s step=%s", job.id, step.type.value)
        return None

    async def _invoke(self, step: RecipeJobStep, binding: StepBinding, context: PipelineContext) -> Any:
        # a timed out call keeps its worker thread; the run moves on without it
        try:
            return await asyncio.wait_for(
                anyio.to_thread.run_sync(binding.handler, context, abandon_on_cancel=True),
                timeout=self.step_timeout_seconds,
            )
        except asyncio.TimeoutError as error:
            raise StepTimeoutError(step.type.value, self.step_timeout_seconds) from error

    async def _save_content_item(
        self, job: RecipeJob, step: RecipeJobStep, binding: StepBinding, output: Any
    ) -> Optional[int]:
        try:
            item = ContentItem(
                step_id=step.id,
                source_id=job.source.id,
                kind=binding.content_kind,
                data=binding.to_content(output),
            )
            return await self._store(self._repository.save_content_item, item)
        except Exception as error:
            logger.warning("pipeline.content_item_failed job=%s step=%s error=%s", job.id, step.type.value, error)
            return None

    async def _fail_step(
        self,
        job: RecipeJob,
        step: RecipeJobStep,
        error: StepError,
        stream: PipelineEventStream,
    ) -> PipelineEvent:
        job_message = user_safe_message(error.kind)
        logger.warning(
            "pipeline.step_failed job=%s step=%s kind=%s error=%s",
            job.id, step.type.value, error.kind.value, error,
        )
        await self._store(
            self._repository.mark_step_and_job_failed, step.id, job.id, str(error), job_message
        )
        stream.publish(StepFailed(step.type, error.kind, str(error)))
        terminal = PipelineFailed(error.kind, job_message)
        stream.publish(terminal)
        return terminal

    async def _commit(
        self, job: RecipeJob, context: PipelineContext, stream: PipelineEventStream
    ) -> PipelineEvent:
        recipe = context.require(StepType.STRUCTURE_CONTENT)
        embedding = context.require(StepType.GENERATE_EMBEDDING)
        try:
            recipe_id = await run_in_threadpool(
                lambda: self._committer.commit(job.source.id, recipe, embedding, job_id=job.id)
            )
        except CommitError as error:
            job_message = user_safe_message(ErrorKind.COMMIT)
            logger.error("pipeline.commit_failed job=%s error=%s", job.id, error)
            await self._store(self._repository.mark_job_failed, job.id, job_message)
            terminal = PipelineFailed(ErrorKind.COMMIT, job_message)
            stream.publish(terminal)
            return terminal

        terminal = PipelineCompleted(recipe_id)
        stream.publish(terminal)
        logger.info("pipeline.completed job=%s recipe=%s", job.id, recipe_id)
        return terminal

    async def _record_crash(
        self,
        job: RecipeJob,
        step: Optional[RecipeJobStep],
        stream: PipelineEventStream,
        message: str,
    ) -> PipelineEvent:
        try:
            if step is not None:
                try:
                    await self._store(
                        self._repository.mark_step_and_job_failed, step.id, job.id, message, message
                    )
                except RecipePipelineError:
                    await self._store(self._repository.mark_job_failed, job.id, message)
            else:
                await self._store(self._repository.mark_job_failed, job.id, message)
        except Exception:
            logger.exception("pipeline.failure_not_recorded job=%s", job.id)

        if step is not None:
            stream.publish(StepFailed(step.type, ErrorKind.INTERNAL, message))
        terminal = PipelineFailed(ErrorKind.INTERNAL, message)
        stream.publish(terminal)
        return terminal
