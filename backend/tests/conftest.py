"""Shared test fixtures for backend tests.

Provides an in-memory sandbox substrate and a stub local executor so that
tests never touch a real cluster or Docker daemon.
"""

import sys
import threading
import time
from collections.abc import Sequence

import pytest

# Ensure the backend package root is on sys.path so that absolute imports
# like ``from sandbox.security import ...`` resolve correctly when running
# pytest from the repository root.
_backend_root = str(
    __import__("pathlib").Path(__file__).resolve().parent.parent
)
if _backend_root not in sys.path:
    sys.path.insert(0, _backend_root)

from sandbox.errors import SpawnError  # noqa: E402
from sandbox.types import CommandSpec, SandboxPhase  # noqa: E402

# ---------------------------------------------------------------------------
# Fake substrate
# ---------------------------------------------------------------------------


class FakeSubstrate:
    """In-memory RuntimeSubstrate.

    Methods are called from executor threads, so bookkeeping is guarded by
    a lock.

    Args:
        phases: Phases reported by successive read_phase calls for a unit.
            The last phase repeats once the sequence is exhausted.
        logs: Output returned by read_logs.
        create_error: Raised by create_unit when set.
        phase_error: Raised by read_phase when set.
        logs_error: Raised by read_logs when set.
        delete_error: Raised by delete_unit when set.
        available: Value returned by is_available.
        create_delay: Seconds create_unit blocks before returning.
        logs_delay: Seconds read_logs blocks before returning.
    """

    def __init__(
        self,
        phases: Sequence[SandboxPhase | None] = (SandboxPhase.SUCCEEDED,),
        logs: str = "",
        *,
        create_error: Exception | None = None,
        phase_error: Exception | None = None,
        logs_error: Exception | None = None,
        delete_error: Exception | None = None,
        available: bool = True,
        create_delay: float = 0.0,
        logs_delay: float = 0.0,
    ) -> None:
        self.phases = list(phases)
        self.logs = logs
        self.create_error = create_error
        self.phase_error = phase_error
        self.logs_error = logs_error
        self.delete_error = delete_error
        self.available = available
        self.create_delay = create_delay
        self.logs_delay = logs_delay

        self._lock = threading.Lock()
        self._reads: dict[str, int] = {}
        self.created: list[tuple[str, tuple[str, ...]]] = []
        self.deleted: list[str] = []
        # Units deleted while their create call had not yet returned.
        self.premature_deletes: list[str] = []
        self._created_done: set[str] = set()

    @property
    def created_names(self) -> list[str]:
        with self._lock:
            return [name for name, _ in self.created]

    def create_unit(self, name: str, argv: Sequence[str]) -> None:
        with self._lock:
            self.created.append((name, tuple(argv)))
            self._reads[name] = 0
        if self.create_delay:
            time.sleep(self.create_delay)
        with self._lock:
            self._created_done.add(name)
        if self.create_error is not None:
            raise self.create_error

    def read_phase(self, name: str) -> SandboxPhase | None:
        if self.phase_error is not None:
            raise self.phase_error
        with self._lock:
            index = self._reads.get(name, 0)
            self._reads[name] = index + 1
        return self.phases[min(index, len(self.phases) - 1)]

    def read_logs(self, name: str) -> str:
        if self.logs_delay:
            time.sleep(self.logs_delay)
        if self.logs_error is not None:
            raise self.logs_error
        return self.logs

    def delete_unit(self, name: str) -> None:
        with self._lock:
            self.deleted.append(name)
            if name not in self._created_done:
                self.premature_deletes.append(name)
        if self.delete_error is not None:
            raise self.delete_error

    def is_available(self) -> bool:
        return self.available


@pytest.fixture()
def fake_substrate() -> FakeSubstrate:
    """A substrate whose units succeed immediately with output 'hello'."""
    return FakeSubstrate(logs="hello\n")


# ---------------------------------------------------------------------------
# Stub local executor
# ---------------------------------------------------------------------------


class StubFallback:
    """Stands in for LocalFallbackExecutor and records each invocation."""

    def __init__(self, output: str = "", error: Exception | None = None) -> None:
        self.output = output
        self.error = error
        self.calls: list[CommandSpec] = []

    async def run(self, command: CommandSpec) -> str:
        self.calls.append(command)
        if self.error is not None:
            raise self.error
        return self.output


@pytest.fixture()
def stub_fallback() -> StubFallback:
    """A fallback that succeeds with output 'local'."""
    return StubFallback(output="local\n")


@pytest.fixture()
def failing_fallback() -> StubFallback:
    """A fallback whose process cannot be spawned."""
    return StubFallback(error=SpawnError("Failed to start 'sh': not found"))


@pytest.fixture()
def make_substrate() -> type[FakeSubstrate]:
    """Return the FakeSubstrate class for tests needing custom behaviour."""
    return FakeSubstrate


@pytest.fixture()
def make_fallback() -> type[StubFallback]:
    """Return the StubFallback class for tests needing custom behaviour."""
    return StubFallback
