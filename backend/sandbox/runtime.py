"""Sandbox runtime client: one disposable unit per command.

The client provisions a fresh execution unit on a runtime substrate
(Kubernetes pod or Docker container), waits for it to reach a terminal
phase, reads its combined log stream and deletes it again. Deletion runs on
every exit path, including timeouts, retrieval failures and cancellation.
When the deadline expires while the create call is still blocked, deletion
is deferred to a background task that waits for that call to return.

Substrate SDKs are blocking, so every substrate call is dispatched to the
default thread pool executor and the event loop stays free.
"""

import asyncio
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from typing import Protocol, TypeVar
from uuid import uuid4

import structlog

from sandbox.errors import ProvisionError, RetrievalError, SandboxTimeoutError
from sandbox.types import CommandSpec, SandboxPhase

logger = structlog.get_logger(__name__)

T = TypeVar("T")


class RuntimeSubstrate(Protocol):
    """The four namespace-scoped operations a sandbox backend must provide.

    All methods are blocking. ``read_phase`` returns None while the unit is
    not observable yet (not found, no status reported). ``delete_unit`` must
    treat an already missing unit as success.
    """

    def create_unit(self, name: str, argv: Sequence[str]) -> None: ...

    def read_phase(self, name: str) -> SandboxPhase | None: ...

    def read_logs(self, name: str) -> str: ...

    def delete_unit(self, name: str) -> None: ...

    def is_available(self) -> bool: ...


@dataclass
class SandboxHandle:
    """A provisioned sandbox unit. Never leaves the runtime client."""

    name: str
    phase: SandboxPhase = SandboxPhase.PENDING
    # Completes when the substrate's create call returns, even if the caller
    # stopped waiting for it.
    creation: asyncio.Future | None = None


class SandboxRuntimeClient:
    """Runs commands inside ephemeral units on a runtime substrate.

    Attributes:
        substrate: Backend that creates, observes and deletes units.
        poll_interval: Seconds between phase observations.
        name_prefix: Prefix for generated unit names.
    """

    def __init__(
        self,
        substrate: RuntimeSubstrate,
        *,
        poll_interval: float = 1.0,
        name_prefix: str = "task-run",
    ) -> None:
        if poll_interval <= 0:
            raise ValueError("poll_interval must be positive")
        self.substrate = substrate
        self.poll_interval = poll_interval
        self.name_prefix = name_prefix
        self._deferred_releases: set[asyncio.Task] = set()

    def new_unit_name(self) -> str:
        """Generate a collision-resistant, DNS-1123 compatible unit name."""
        return f"{self.name_prefix}-{uuid4().hex[:16]}"

    async def run(self, command: CommandSpec, timeout: float = 60.0) -> str:
        """Execute a command in a fresh unit and return its output.

        The timeout is one deadline covering creation, phase polling and
        log retrieval. A non-zero exit status is not an error here; it shows
        up in the output and the final phase.

        Args:
            command: The argument vector to run as the unit's command.
            timeout: Seconds allowed for the whole create/wait/read sequence.

        Returns:
            The unit's combined log output.

        Raises:
            ProvisionError: If the unit could not be created.
            SandboxTimeoutError: If the sequence did not finish in time.
            RetrievalError: If the phase or logs could not be read.
        """
        handle = SandboxHandle(name=self.new_unit_name())
        try:
            try:
                return await asyncio.wait_for(
                    self._run_unit(handle, command), timeout=timeout
                )
            except TimeoutError as e:
                handle.phase = SandboxPhase.UNKNOWN
                logger.warning(
                    "sandbox_unit_timeout",
                    unit=handle.name,
                    timeout=timeout,
                )
                raise SandboxTimeoutError(
                    f"Sandbox unit {handle.name} did not finish within {timeout} seconds",
                    unit_name=handle.name,
                ) from e
        finally:
            if handle.creation is not None and not handle.creation.done():
                # The create call is still blocked in a worker thread. Delete
                # once it returns, without holding up the caller.
                release = asyncio.ensure_future(self._release_after_creation(handle))
                self._deferred_releases.add(release)
                release.add_done_callback(self._deferred_releases.discard)
            else:
                # Shielded so a cancelled caller still releases the unit.
                await asyncio.shield(self._release(handle))

    async def _run_unit(self, handle: SandboxHandle, command: CommandSpec) -> str:
        handle.creation = asyncio.get_running_loop().run_in_executor(
            None, self.substrate.create_unit, handle.name, command.argv
        )
        try:
            await asyncio.shield(handle.creation)
        except Exception as e:
            logger.error(
                "sandbox_unit_create_failed",
                unit=handle.name,
                error=str(e),
            )
            raise ProvisionError(
                f"Failed to create sandbox unit {handle.name}: {e}",
                unit_name=handle.name,
            ) from e

        logger.info("sandbox_unit_created", unit=handle.name)

        handle.phase = await self._wait_for_terminal_phase(handle)

        try:
            output = await self._call(self.substrate.read_logs, handle.name)
        except Exception as e:
            logger.error(
                "sandbox_unit_logs_failed",
                unit=handle.name,
                error=str(e),
            )
            raise RetrievalError(
                f"Failed to read logs of sandbox unit {handle.name}: {e}",
                unit_name=handle.name,
            ) from e

        logger.info(
            "sandbox_unit_finished",
            unit=handle.name,
            phase=str(handle.phase),
            output_chars=len(output),
        )
        return output

    async def _wait_for_terminal_phase(self, handle: SandboxHandle) -> SandboxPhase:
        """Poll until the unit reports Succeeded or Failed."""
        while True:
            try:
                phase = await self._call(self.substrate.read_phase, handle.name)
            except Exception as e:
                raise RetrievalError(
                    f"Failed to observe sandbox unit {handle.name}: {e}",
                    unit_name=handle.name,
                ) from e

            if phase is not None:
                handle.phase = phase
                if phase.is_terminal:
                    return phase

            await asyncio.sleep(self.poll_interval)

    async def _release_after_creation(self, handle: SandboxHandle) -> None:
        await asyncio.wait([handle.creation])
        if not handle.creation.cancelled() and handle.creation.exception() is not None:
            logger.warning(
                "sandbox_unit_late_create_failed",
                unit=handle.name,
                error=str(handle.creation.exception()),
            )
        await self._release(handle)

    async def _release(self, handle: SandboxHandle) -> None:
        """Delete the unit, logging instead of raising on failure."""
        try:
            await self._call(self.substrate.delete_unit, handle.name)
            logger.info("sandbox_unit_deleted", unit=handle.name)
        except Exception as e:
            logger.error(
                "sandbox_unit_delete_failed",
                unit=handle.name,
                error=str(e),
            )

    async def _call(self, func: Callable[..., T], *args: object) -> T:
        return await asyncio.get_running_loop().run_in_executor(None, func, *args)
