"""HTTP API routes for the task runner backend.

This module defines the task CRUD endpoints, the execute endpoint that runs
a task's command through the execution orchestrator, and the health check.
"""

from __future__ import annotations

import asyncio
import time
from typing import TYPE_CHECKING, Annotated

import structlog
from fastapi import APIRouter, HTTPException, Path, Query, status
from fastapi.responses import JSONResponse, Response

from config import settings
from models.database import TaskStoreError
from models.schemas import HealthResponse, Task, TaskExecution
from sandbox.errors import CommandRejected
from sandbox.security import validate_command

if TYPE_CHECKING:
    from models.database import TaskStore
    from sandbox.orchestrator import ExecutionOrchestrator

logger = structlog.get_logger(__name__)

router = APIRouter()

# Dependencies (set during application startup)
_task_store: TaskStore | None = None
_orchestrator: ExecutionOrchestrator | None = None


def set_task_store(store: TaskStore) -> None:
    """Set the task store used by all routes.

    Args:
        store: An initialized TaskStore.
    """
    global _task_store
    _task_store = store
    logger.info("task_store_configured")


def get_task_store() -> TaskStore:
    """Get the task store instance.

    Raises:
        RuntimeError: If the task store has not been configured.
    """
    if _task_store is None:
        logger.error("task_store_not_configured")
        raise RuntimeError("TaskStore not configured. Call set_task_store() during startup.")
    return _task_store


def set_orchestrator(orchestrator: ExecutionOrchestrator) -> None:
    """Set the execution orchestrator used by the execute endpoint."""
    global _orchestrator
    _orchestrator = orchestrator
    logger.info("orchestrator_configured")


def get_orchestrator() -> ExecutionOrchestrator:
    """Get the execution orchestrator instance.

    Raises:
        RuntimeError: If the orchestrator has not been configured.
    """
    if _orchestrator is None:
        logger.error("orchestrator_not_configured")
        raise RuntimeError(
            "ExecutionOrchestrator not configured. Call set_orchestrator() during startup."
        )
    return _orchestrator


def _store_failure(e: TaskStoreError) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail=f"Task storage failed: {e}",
    )


async def _load_task(task_id: str) -> Task:
    try:
        task = await get_task_store().find_by_id(task_id)
    except TaskStoreError as e:
        raise _store_failure(e) from e

    if task is None:
        logger.warning("task_not_found", task_id=task_id)
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Task {task_id} not found",
        )
    return task


@router.get(
    "/tasks",
    response_model=list[Task],
    summary="List tasks",
)
async def list_tasks() -> list[Task]:
    """Return every stored task with its execution history."""
    try:
        return await get_task_store().find_all()
    except TaskStoreError as e:
        raise _store_failure(e) from e


# Registered before /tasks/{task_id} so "search" is not taken for an id.
@router.get(
    "/tasks/search",
    response_model=list[Task],
    summary="Search tasks by name",
    description="Case-insensitive substring match on the task name.",
)
async def search_tasks(
    name: Annotated[str, Query(min_length=1, description="Name fragment to match")],
) -> list[Task]:
    """Find tasks whose name contains the given fragment.

    Raises:
        HTTPException: 404 if no task matches.
    """
    try:
        tasks = await get_task_store().find_by_name(name)
    except TaskStoreError as e:
        raise _store_failure(e) from e

    if not tasks:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"No tasks found matching '{name}'",
        )
    return tasks


@router.get(
    "/tasks/{task_id}",
    response_model=Task,
    summary="Get a task",
)
async def get_task(
    task_id: Annotated[str, Path(description="The task ID")],
) -> Task:
    """Return a single task by id."""
    return await _load_task(task_id)


@router.put(
    "/tasks",
    response_model=Task,
    summary="Create or replace a task",
    description="Upserts a task. Commands that fail validation are rejected.",
)
async def upsert_task(task: Task) -> Task:
    """Validate and store a task.

    Stored execution history is kept; executions sent by the client are
    ignored.

    Raises:
        HTTPException: 400 if the command is unsafe.
    """
    ok, reason = validate_command(task.command)
    if not ok:
        logger.warning("task_rejected", task_id=task.id, reason=reason)
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Unsafe command: {reason}",
        )

    try:
        saved = await get_task_store().upsert(task)
    except TaskStoreError as e:
        raise _store_failure(e) from e

    logger.info("task_upserted", task_id=saved.id, name=saved.name)
    return saved


@router.delete(
    "/tasks/{task_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Delete a task",
)
async def delete_task(
    task_id: Annotated[str, Path(description="The task ID")],
) -> Response:
    """Delete a task and its execution history.

    Raises:
        HTTPException: 404 if the task does not exist.
    """
    try:
        deleted = await get_task_store().delete(task_id)
    except TaskStoreError as e:
        raise _store_failure(e) from e

    if not deleted:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Task {task_id} not found",
        )
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.put(
    "/tasks/{task_id}/execute",
    response_model=TaskExecution,
    summary="Execute a task",
    description=(
        "Runs the task's command in a sandbox unit, falling back to local "
        "execution if the sandbox fails. The execution record is appended to "
        "the task. Responds 500 with the record when both paths failed."
    ),
)
async def execute_task(
    task_id: Annotated[str, Path(description="The task ID")],
) -> TaskExecution | JSONResponse:
    """Execute a stored task's command and persist the resulting record.

    Returns:
        The completed TaskExecution.

    Raises:
        HTTPException: 404 if the task is missing, 400 if its command is unsafe.
    """
    task = await _load_task(task_id)
    orchestrator = get_orchestrator()

    try:
        record = await orchestrator.execute(task)
    except CommandRejected as e:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(e),
        ) from e

    try:
        await get_task_store().append_execution(task_id, record)
    except TaskStoreError as e:
        raise _store_failure(e) from e

    logger.info(
        "task_executed",
        task_id=task_id,
        executed_by=str(record.executed_by),
    )

    if record.failed:
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content=record.model_dump(mode="json"),
        )
    return record


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Health check",
    description="Health check endpoint with sandbox substrate status.",
)
async def health_check() -> HealthResponse:
    """Report whether the sandbox substrate is reachable.

    The service is 'degraded' when the substrate is unavailable, since
    commands would then only run on the local fallback (if enabled).
    """
    sandbox_available = False
    fallback_enabled = False

    try:
        orchestrator = get_orchestrator()
        fallback_enabled = orchestrator.fallback is not None
        if orchestrator.runtime is not None:
            loop = asyncio.get_running_loop()
            sandbox_available = await loop.run_in_executor(
                None, orchestrator.runtime.substrate.is_available
            )
    except RuntimeError:
        # Orchestrator not configured yet (e.g., during startup)
        pass
    except Exception as e:
        logger.warning("health_check_partial_failure", error=str(e))

    return HealthResponse(
        status="healthy" if sandbox_available else "degraded",
        timestamp=time.time(),
        sandbox_backend=settings.sandbox_backend,
        sandbox_available=sandbox_available,
        local_fallback_enabled=fallback_enabled,
    )
