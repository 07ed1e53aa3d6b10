"""Execution orchestrator: validate, run in a sandbox, fall back locally.

The orchestrator is the single entry point for running a task's command.
Commands that fail validation are rejected with ``CommandRejected`` before
any record exists. Every validated command yields a completed
``TaskExecution``: sandbox and fallback failures are folded into the record
instead of being raised, so the caller can always persist a result.
"""

from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Literal, Protocol

import structlog

from models.schemas import ExecutionPath, TaskExecution
from sandbox.errors import (
    CommandRejected,
    ProvisionError,
    RetrievalError,
    SandboxTimeoutError,
    SpawnError,
)
from sandbox.local_executor import LocalFallbackExecutor
from sandbox.runtime import SandboxRuntimeClient
from sandbox.security import sanitize_output, validate_command
from sandbox.types import CommandSpec

logger = structlog.get_logger(__name__)

FailureKind = Literal[
    "provision", "timeout", "retrieval", "unavailable", "spawn", "unexpected"
]

_RUNTIME_FAILURE_KINDS: list[tuple[type[Exception], FailureKind]] = [
    (ProvisionError, "provision"),
    (SandboxTimeoutError, "timeout"),
    (RetrievalError, "retrieval"),
]


class CommandSource(Protocol):
    """Anything carrying a command string, typically a stored ``Task``."""

    command: str | None


@dataclass(frozen=True)
class AttemptOutcome:
    """Tagged result of one execution attempt.

    Attributes:
        output: Captured output when the attempt succeeded.
        failure: Kind of failure, or None on success.
        error: Human-readable failure description.
    """

    output: str | None = None
    failure: FailureKind | None = None
    error: str = ""

    @property
    def ok(self) -> bool:
        return self.failure is None

    @classmethod
    def success(cls, output: str) -> "AttemptOutcome":
        return cls(output=output)

    @classmethod
    def failed(cls, failure: FailureKind, error: str) -> "AttemptOutcome":
        return cls(failure=failure, error=error)


def _now() -> datetime:
    return datetime.now(UTC)


class ExecutionOrchestrator:
    """Coordinates validation, sandboxed execution and the local fallback.

    Attributes:
        runtime: Sandbox runtime client for the primary path, or None when
            no substrate is configured (every command then falls back).
        fallback: Local executor for the secondary path, or None to disable it.
        timeout: Seconds granted to the primary path.
        shell: Shell used to interpret command strings.
        max_output_chars: Output is truncated beyond this length.
    """

    def __init__(
        self,
        runtime: SandboxRuntimeClient | None,
        fallback: LocalFallbackExecutor | None = None,
        *,
        timeout: float = 60.0,
        shell: str = "sh",
        max_output_chars: int = 50000,
    ) -> None:
        self.runtime = runtime
        self.fallback = fallback
        self.timeout = timeout
        self.shell = shell
        self.max_output_chars = max_output_chars

    async def execute(self, task: CommandSource) -> TaskExecution:
        """Run a task's command and return the completed execution record.

        Args:
            task: Object whose ``command`` attribute holds the shell command.

        Returns:
            A TaskExecution with start_time, end_time and output set.

        Raises:
            CommandRejected: If the command fails validation. No record is
                created in that case.
        """
        command = task.command
        ok, reason = validate_command(command)
        if not ok:
            logger.warning(
                "command_rejected",
                reason=reason,
                command=(command or "")[:50],
            )
            raise CommandRejected(reason, command)

        record = TaskExecution(start_time=_now())
        spec = CommandSpec.shell(command, shell=self.shell)

        primary = await self._attempt_sandbox(spec)
        if primary.ok:
            record.output = primary.output
            record.executed_by = ExecutionPath.SANDBOX
        else:
            logger.warning(
                "sandbox_primary_failed",
                failure=primary.failure,
                error=primary.error,
            )
            secondary = await self._attempt_fallback(spec, primary)
            if secondary.ok:
                record.output = secondary.output
                record.executed_by = ExecutionPath.LOCAL_FALLBACK
            else:
                record.output = f"Error: {secondary.error}"
                record.executed_by = ExecutionPath.NONE
                logger.error(
                    "execution_failed",
                    sandbox_failure=primary.failure,
                    fallback_failure=secondary.failure,
                    error=secondary.error,
                )

        record.output = sanitize_output(record.output or "", self.max_output_chars)
        record.end_time = max(_now(), record.start_time)

        logger.info(
            "execution_finished",
            executed_by=str(record.executed_by),
            duration_ms=int(
                (record.end_time - record.start_time).total_seconds() * 1000
            ),
        )
        return record

    async def _attempt_sandbox(self, spec: CommandSpec) -> AttemptOutcome:
        if self.runtime is None:
            return AttemptOutcome.failed("unavailable", "No sandbox substrate configured")

        try:
            output = await self.runtime.run(spec, timeout=self.timeout)
        except Exception as e:
            kind = next(
                (k for cls, k in _RUNTIME_FAILURE_KINDS if isinstance(e, cls)),
                "unexpected",
            )
            return AttemptOutcome.failed(kind, str(e))
        return AttemptOutcome.success(output)

    async def _attempt_fallback(
        self, spec: CommandSpec, primary: AttemptOutcome
    ) -> AttemptOutcome:
        if self.fallback is None:
            return AttemptOutcome.failed(
                "unavailable",
                f"Sandbox execution failed ({primary.error}) and local fallback is disabled",
            )

        try:
            output = await self.fallback.run(spec)
        except SpawnError as e:
            return AttemptOutcome.failed("spawn", str(e))
        except Exception as e:
            return AttemptOutcome.failed("unexpected", str(e))
        return AttemptOutcome.success(output)
