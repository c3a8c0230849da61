from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Optional, Sequence

from supabase import Client, PostgrestAPIError, create_client

from src.app.domain.errors import (
    DuplicateSourceError,
    InvalidJobTransitionError,
    InvalidStepTransitionError,
    JobNotFoundError,
    JobRepositoryError,
)
from src.app.domain.models import (
    ContentItem,
    Ingredient,
    JobStatus,
    Recipe,
    RecipeJob,
    RecipeJobStep,
    RecipeSource,
    SearchCandidate,
    StepStatus,
    StepType,
)
from src.app.infra.db.base import RecipeRepository

logger = logging.getLogger(__name__)

UNIQUE_VIOLATION = "23505"
JOB_SELECT = "*, source:recipe_sources(*), steps:recipe_job_steps(*)"


def _now_utc() -> datetime:
    return datetime.now(timezone.utc)


def _parse_datetime(value: str | datetime | None) -> datetime | None:
    if value is None:
        return None
    if isinstance(value, datetime):
        return value
    if not isinstance(value, str):
        return None

    try:
        normalized = value.replace("Z", "+00:00") if value.endswith("Z") else value
        return datetime.fromisoformat(normalized)
    except ValueError:
        return None


def _safe_str(value: object) -> str | None:
    return str(value) if value else None


def _first_row(data: Any) -> Optional[dict[str, Any]]:
    if not data:
        return None
    return data[0] if isinstance(data, list) else data


def _row_to_source(row: dict[str, Any]) -> RecipeSource:
    return RecipeSource(
        id=int(row["id"]),
        external_ref=str(row["external_ref"]),
        kind=str(row["kind"]),
        created_at=_parse_datetime(row.get("created_at")),
        metadata=row.get("metadata"),
    )


def _row_to_step(row: dict[str, Any]) -> RecipeJobStep:
    return RecipeJobStep(
        id=int(row["id"]),
        job_id=int(row["job_id"]),
        type=StepType(str(row["type"])),
        order=int(row["step_order"]),
        status=StepStatus(str(row["status"])),
        error_message=_safe_str(row.get("error_message")),
        started_at=_parse_datetime(row.get("started_at")),
        completed_at=_parse_datetime(row.get("completed_at")),
    )


def _row_to_job(row: dict[str, Any]) -> RecipeJob:
    steps = sorted((_row_to_step(step) for step in row.get("steps") or []), key=lambda s: s.order)
    return RecipeJob(
        id=int(row["id"]),
        source=_row_to_source(row["source"]),
        status=JobStatus(str(row["status"])),
        steps=steps,
        created_at=_parse_datetime(row.get("created_at")),
        started_at=_parse_datetime(row.get("started_at")),
        completed_at=_parse_datetime(row.get("completed_at")),
        error_message=_safe_str(row.get("error_message")),
    )


def _row_to_recipe(row: dict[str, Any]) -> Recipe:
    ingredients = [
        Ingredient(name=str(item.get("name")), quantity=item.get("quantity"))
        for item in row.get("ingredients") or []
        if isinstance(item, dict) and item.get("name")
    ]
    return Recipe(
        id=int(row.get("recipe_id") or row["id"]),
        source_id=int(row["recipe_source_id"]),
        name=str(row["name"]),
        instructions=str(row.get("instructions") or ""),
        ingredients=ingredients,
        tags=list(row.get("tags") or []),
    )


def _ingredients_payload(ingredients: list[Ingredient]) -> list[dict[str, Any]]:
    return [{"name": i.name, "quantity": i.quantity} for i in ingredients]


def create_supabase_client(url: str, key: str) -> Client:
    if not url or not key:
        raise ValueError("SUPABASE_URL and SUPABASE_SERVICE_ROLE_KEY required")
    return create_client(url, key)


class SupabaseRecipeRepository(RecipeRepository):
    SOURCES_TABLE = "recipe_sources"
    JOBS_TABLE = "recipe_jobs"
    STEPS_TABLE = "recipe_job_steps"
    CONTENT_ITEMS_TABLE = "content_items"
    RECIPES_TABLE = "recipes"

    def __init__(self, client: Client):
        self._client = client
        logger.info("SupabaseRecipeRepository initialized")

    def _execute(self, operation: str, query: Any) -> Any:
        try:
            return query.execute()
        except PostgrestAPIError as error:
            logger.error("store.%s_failed code=%s error=%s", operation, error.code, error.message)
            raise JobRepositoryError(operation, str(error.message or error)) from error
        except (ConnectionError, TimeoutError) as error:
            logger.error("store.%s_network_error error=%s", operation, error)
            raise JobRepositoryError(operation, str(error)) from error

    # ------------------------------------------------------------------
    # sources
    # ------------------------------------------------------------------

    def create_source(
        self,
        external_ref: str,
        kind: str,
        metadata: Optional[dict[str, Any]] = None,
    ) -> RecipeSource:
        payload = {"external_ref": external_ref, "kind": kind, "metadata": metadata}
        try:
            result = self._client.table(self.SOURCES_TABLE).insert(payload).execute()
        except PostgrestAPIError as error:
            if error.code == UNIQUE_VIOLATION:
                raise DuplicateSourceError(external_ref, kind) from error
            raise JobRepositoryError("create_source", str(error.message or error)) from error
        except (ConnectionError, TimeoutError) as error:
            raise JobRepositoryError("create_source", str(error)) from error

        row = _first_row(result.data)
        if row is None:
            raise JobRepositoryError("create_source", "insert returned no row")
        source = _row_to_source(row)
        logger.info("store.source_created id=%s ref=%s kind=%s", source.id, external_ref, kind)
        return source

    def get_source_by_ref(self, external_ref: str, kind: str) -> Optional[RecipeSource]:
        result = self._execute(
            "get_source_by_ref",
            self._client.table(self.SOURCES_TABLE)
            .select("*")
            .eq("external_ref", external_ref)
            .eq("kind", kind)
            .limit(1),
        )
        row = _first_row(result.data)
        return _row_to_source(row) if row else None

    def discard_failed_source(self, source_id: int) -> bool:
        result = self._execute(
            "discard_failed_source",
            self._client.rpc("discard_failed_recipe_source", {"p_source_id": source_id}),
        )
        discarded = bool(result.data)
        if discarded:
            logger.info("store.source_discarded id=%s", source_id)
        return discarded

    # ------------------------------------------------------------------
    # jobs and steps
    # ------------------------------------------------------------------

    def create_job(self, source_id: int, step_types: Sequence[StepType]) -> RecipeJob:
        result = self._execute(
            "create_job",
            self._client.rpc(
                "create_recipe_job",
                {"p_source_id": source_id, "p_step_types": [StepType(t).value for t in step_types]},
            ),
        )
        if result.data is None:
            raise JobRepositoryError("create_job", "function returned no job id")
        job_id = int(result.data)
        job = self.get_job(job_id)
        if job is None:
            raise JobRepositoryError("create_job", f"created job {job_id} could not be read back")
        logger.info("store.job_created id=%s source=%s steps=%d", job.id, source_id, len(job.steps))
        return job

    def get_job(self, job_id: int) -> Optional[RecipeJob]:
        result = self._execute(
            "get_job",
            self._client.table(self.JOBS_TABLE).select(JOB_SELECT).eq("id", job_id).limit(1),
        )
        row = _first_row(result.data)
        return _row_to_job(row) if row else None

    def get_job_by_source(self, source_id: int) -> Optional[RecipeJob]:
        result = self._execute(
            "get_job_by_source",
            self._client.table(self.JOBS_TABLE)
            .select(JOB_SELECT)
            .eq("recipe_source_id", source_id)
            .limit(1),
        )
        row = _first_row(result.data)
        return _row_to_job(row) if row else None

    def list_jobs_by_status(self, status: JobStatus) -> list[RecipeJob]:
        result = self._execute(
            "list_jobs_by_status",
            self._client.table(self.JOBS_TABLE)
            .select(JOB_SELECT)
            .eq("status", status.value)
            .order("id"),
        )
        return [_row_to_job(row) for row in (result.data or [])]

    def _guarded_job_update(
        self,
        job_id: int,
        allowed: tuple[JobStatus, ...],
        target: JobStatus,
        changes: dict[str, Any],
    ) -> None:
        result = self._execute(
            f"mark_job_{target.value}",
            self._client.table(self.JOBS_TABLE)
            .update({"status": target.value, "updated_at": _now_utc().isoformat(), **changes})
            .eq("id", job_id)
            .in_("status", [s.value for s in allowed]),
        )
        if result.data:
            return

        current = self._execute(
            "get_job_status",
            self._client.table(self.JOBS_TABLE).select("status").eq("id", job_id).limit(1),
        )
        row = _first_row(current.data)
        if row is None:
            raise JobNotFoundError(job_id)
        raise InvalidJobTransitionError(job_id, str(row["status"]), target.value)

    def _guarded_step_update(
        self,
        step_id: int,
        allowed: tuple[StepStatus, ...],
        target: StepStatus,
        changes: dict[str, Any],
    ) -> None:
        result = self._execute(
            f"mark_step_{target.value}",
            self._client.table(self.STEPS_TABLE)
            .update({"status": target.value, "updated_at": _now_utc().isoformat(), **changes})
            .eq("id", step_id)
            .in_("status", [s.value for s in allowed]),
        )
        if result.data:
            return

        current = self._execute(
            "get_step_status",
            self._client.table(self.STEPS_TABLE).select("status").eq("id", step_id).limit(1),
        )
        row = _first_row(current.data)
        if row is None:
            raise JobRepositoryError("step_update", f"Step not found: {step_id}")
        raise InvalidStepTransitionError(step_id, str(row["status"]), target.value)

    def mark_job_processing(self, job_id: int) -> None:
        self._guarded_job_update(
            job_id, (JobStatus.CREATED,), JobStatus.PROCESSING,
            {"started_at": _now_utc().isoformat()},
        )

    def mark_step_processing(self, step_id: int) -> None:
        self._guarded_step_update(
            step_id, (StepStatus.CREATED,), StepStatus.PROCESSING,
            {"started_at": _now_utc().isoformat()},
        )

    def mark_step_completed(self, step_id: int) -> None:
        self._guarded_step_update(
            step_id, (StepStatus.PROCESSING,), StepStatus.COMPLETED,
            {"completed_at": _now_utc().isoformat()},
        )

    def mark_step_failed(self, step_id: int, message: str) -> None:
        self._guarded_step_update(
            step_id, (StepStatus.CREATED, StepStatus.PROCESSING), StepStatus.FAILED,
            {"error_message": message},
        )

    def mark_job_completed(self, job_id: int) -> None:
        self._guarded_job_update(
            job_id, (JobStatus.PROCESSING,), JobStatus.COMPLETED,
            {"completed_at": _now_utc().isoformat()},
        )

    def mark_job_failed(self, job_id: int, message: str) -> None:
        self._guarded_job_update(
            job_id, (JobStatus.CREATED, JobStatus.PROCESSING), JobStatus.FAILED,
            {"error_message": message},
        )

    def mark_step_and_job_failed(
        self,
        step_id: int,
        job_id: int,
        step_message: str,
        job_message: str,
    ) -> None:
        result = self._execute(
            "mark_step_and_job_failed",
            self._client.rpc(
                "fail_recipe_job_step",
                {
                    "p_step_id": step_id,
                    "p_job_id": job_id,
                    "p_step_message": step_message,
                    "p_job_message": job_message,
                },
            ),
        )
        if not result.data:
            raise InvalidJobTransitionError(job_id, "unknown", JobStatus.FAILED.value)

    def fail_interrupted_jobs(self, message: str) -> int:
        result = self._execute(
            "fail_interrupted_jobs",
            self._client.rpc("fail_interrupted_recipe_jobs", {"p_message": message}),
        )
        count = int(result.data or 0)
        if count:
            logger.warning("store.interrupted_jobs_failed count=%d", count)
        return count

    # ------------------------------------------------------------------
    # artifacts
    # ------------------------------------------------------------------

    def save_content_item(self, item: ContentItem) -> int:
        result = self._execute(
            "save_content_item",
            self._client.table(self.CONTENT_ITEMS_TABLE).insert({
                "job_step_id": item.step_id,
                "recipe_source_id": item.source_id,
                "kind": item.kind,
                "data": item.data,
            }),
        )
        row = _first_row(result.data)
        if row is None:
            raise JobRepositoryError("save_content_item", "insert returned no row")
        return int(row["id"])

    def commit_recipe(
        self,
        job_id: int,
        source_id: int,
        name: str,
        instructions: str,
        ingredients: list[Ingredient],
        tags: list[str],
        vector: list[float],
        embedding_type: str,
    ) -> int:
        result = self._execute(
            "commit_recipe",
            self._client.rpc(
                "commit_recipe_artifacts",
                {
                    "p_job_id": job_id,
                    "p_source_id": source_id,
                    "p_name": name,
                    "p_instructions": instructions,
                    "p_ingredients": _ingredients_payload(ingredients),
                    "p_tags": list(tags),
                    "p_embedding": list(vector),
                    "p_embedding_type": embedding_type,
                },
            ),
        )
        if result.data is None:
            raise JobRepositoryError("commit_recipe", "function returned no recipe id")
        recipe_id = int(result.data)
        logger.info("store.recipe_committed id=%s source=%s job=%s", recipe_id, source_id, job_id)
        return recipe_id

    def get_recipe(self, recipe_id: int) -> Optional[Recipe]:
        result = self._execute(
            "get_recipe",
            self._client.table(self.RECIPES_TABLE).select("*").eq("id", recipe_id).limit(1),
        )
        row = _first_row(result.data)
        return _row_to_recipe(row) if row else None

    def get_recipe_by_source_ref(self, external_ref: str, kind: str) -> Optional[Recipe]:
        result = self._execute(
            "get_recipe_by_source_ref",
            self._client.table(self.RECIPES_TABLE)
            .select("*, source:recipe_sources!inner(external_ref, kind)")
            .eq("source.external_ref", external_ref)
            .eq("source.kind", kind)
            .limit(1),
        )
        row = _first_row(result.data)
        return _row_to_recipe(row) if row else None

    def search_candidates(
        self,
        query_text: str,
        query_vector: list[float],
        name_weight: float,
        tags_weight: float,
        ingredients_weight: float,
    ) -> list[SearchCandidate]:
        result = self._execute(
            "search_candidates",
            self._client.rpc(
                "search_recipe_candidates",
                {
                    "p_query": query_text,
                    "p_query_embedding": list(query_vector),
                    "p_name_weight": name_weight,
                    "p_tags_weight": tags_weight,
                    "p_ingredients_weight": ingredients_weight,
                },
            ),
        )
        return [
            SearchCandidate(
                recipe=_row_to_recipe(row),
                similarity=float(row.get("similarity") or 0.0),
                keyword_score=float(row.get("keyword_score") or 0.0),
            )
            for row in (result.data or [])
        ]
