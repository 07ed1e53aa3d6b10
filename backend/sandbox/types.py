"""Value types shared by the sandbox execution components."""

from collections.abc import Iterator
from dataclasses import dataclass
from enum import StrEnum


class SandboxPhase(StrEnum):
    """Lifecycle phase of a sandbox unit.

    Values match the Kubernetes pod phase strings so the pod substrate can
    map them directly.
    """

    PENDING = "Pending"
    RUNNING = "Running"
    SUCCEEDED = "Succeeded"
    FAILED = "Failed"
    UNKNOWN = "Unknown"

    @property
    def is_terminal(self) -> bool:
        """True once the unit has finished, successfully or not."""
        return self in (SandboxPhase.SUCCEEDED, SandboxPhase.FAILED)


@dataclass(frozen=True)
class CommandSpec:
    """Immutable argument vector for one command execution.

    Attributes:
        argv: The program followed by its arguments. Never empty.
    """

    argv: tuple[str, ...]

    def __post_init__(self) -> None:
        if not self.argv:
            raise ValueError("CommandSpec requires at least one argument")
        if not all(isinstance(arg, str) for arg in self.argv):
            raise TypeError("CommandSpec arguments must be strings")

    @classmethod
    def shell(cls, command: str, *, shell: str = "sh") -> "CommandSpec":
        """Wrap a single command string for interpretation by ``shell -c``."""
        return cls(argv=(shell, "-c", command))

    def __iter__(self) -> Iterator[str]:
        return iter(self.argv)

    def __len__(self) -> int:
        return len(self.argv)
