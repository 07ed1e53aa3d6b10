"""Pydantic schemas for tasks, execution records and API responses.

All models use Pydantic v2. ``Task`` doubles as the upsert request body and
the stored representation, as in the task API it models.
"""

from datetime import datetime
from enum import StrEnum
from typing import Literal
from uuid import uuid4

from pydantic import BaseModel, Field, field_validator


class ExecutionPath(StrEnum):
    """Which execution path produced a record's output."""

    SANDBOX = "sandbox"
    LOCAL_FALLBACK = "local_fallback"
    NONE = "none"


class TaskExecution(BaseModel):
    """Timestamped result of one attempt to run a task's command.

    Created and filled in by the execution orchestrator only; callers
    receive it completed and persist it with the task.
    """

    start_time: datetime = Field(
        description="When execution began, before any provisioning",
    )
    end_time: datetime | None = Field(
        default=None,
        description="When the attempt concluded; never earlier than start_time",
    )
    output: str | None = Field(
        default=None,
        description="Captured output, or an error message on hard failure",
    )
    executed_by: ExecutionPath | None = Field(
        default=None,
        description="Path that produced the output; 'none' marks a hard failure",
        examples=["sandbox", "local_fallback", "none"],
    )

    @property
    def failed(self) -> bool:
        """True if neither the sandbox nor the fallback produced output."""
        return self.executed_by == ExecutionPath.NONE


def generate_task_id() -> str:
    """Generate a new opaque task identifier."""
    return uuid4().hex


class Task(BaseModel):
    """A stored shell command and its execution history."""

    id: str = Field(
        default_factory=generate_task_id,
        min_length=1,
        max_length=128,
        description="Unique task identifier (generated when omitted)",
        examples=["123"],
    )
    name: str = Field(
        min_length=1,
        max_length=200,
        description="Human-readable task name",
        examples=["Print Hello"],
    )
    owner: str = Field(
        default="",
        max_length=200,
        description="Owner of the task",
        examples=["John Smith"],
    )
    command: str = Field(
        max_length=10000,
        description="Shell command to execute",
        examples=["echo Hello World!"],
    )
    task_executions: list[TaskExecution] = Field(
        default_factory=list,
        description="Execution records, oldest first",
    )

    @field_validator("id", mode="before")
    @classmethod
    def default_blank_id(cls, v: object) -> object:
        """Treat a null or blank id as 'generate one'."""
        if v is None or (isinstance(v, str) and not v.strip()):
            return generate_task_id()
        return v


class HealthResponse(BaseModel):
    """Health check response with execution substrate status."""

    status: Literal["healthy", "degraded"] = Field(
        description="'degraded' when commands would run on the local fallback",
    )
    timestamp: float = Field(
        description="Current server timestamp",
    )
    version: str = Field(
        default="0.1.0",
        description="API version",
    )
    sandbox_backend: str = Field(
        description="Configured sandbox substrate",
        examples=["kubernetes", "docker", "none"],
    )
    sandbox_available: bool = Field(
        default=False,
        description="Whether the sandbox substrate is reachable",
    )
    local_fallback_enabled: bool = Field(
        default=True,
        description="Whether commands may run locally when the substrate fails",
    )
