"""Models module for Pydantic schemas and task persistence.

This module exposes the task models used by the API and the store.
"""

from models.schemas import (
    ExecutionPath,
    HealthResponse,
    Task,
    TaskExecution,
)

__all__ = [
    "ExecutionPath",
    "HealthResponse",
    "Task",
    "TaskExecution",
]
