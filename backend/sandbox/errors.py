"""Exception hierarchy for sandboxed command execution.

Only ``CommandRejected`` is ever surfaced to callers of the orchestrator.
Runtime client errors are recovered by the local fallback, and a
``SpawnError`` ends up as a hard-failure execution record.
"""


class SandboxError(Exception):
    """Base class for all execution engine errors."""


class CommandRejected(SandboxError):
    """Raised when a command fails validation, before anything runs.

    Attributes:
        reason: Human-readable description of the matching rule.
        command: The rejected command text (may be None).
    """

    def __init__(self, reason: str, command: str | None = None) -> None:
        self.reason = reason
        self.command = command
        super().__init__(f"Unsafe command: {reason}")


class RuntimeClientError(SandboxError):
    """Failure somewhere in the remote sandbox path.

    Attributes:
        unit_name: Name of the sandbox unit involved, when one was generated.
    """

    def __init__(self, message: str, unit_name: str | None = None) -> None:
        self.unit_name = unit_name
        super().__init__(message)


class ProvisionError(RuntimeClientError):
    """The substrate rejected or failed the unit create call."""


class SandboxTimeoutError(RuntimeClientError):
    """The unit did not reach a terminal phase within the timeout."""


class RetrievalError(RuntimeClientError):
    """The unit's phase or logs could not be read back."""


class SpawnError(SandboxError):
    """The local fallback process could not be started or did not finish."""
