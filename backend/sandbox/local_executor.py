"""Local subprocess execution, used when the sandbox substrate fails.

This is a degraded-availability mode with no isolation beyond that of the
server process itself. Every run is logged at warning level so operators
can notice that the substrate is unavailable.
"""

import asyncio

import structlog

from sandbox.errors import SpawnError
from sandbox.types import CommandSpec

logger = structlog.get_logger(__name__)


class LocalFallbackExecutor:
    """Runs a command as a child process of the server.

    Attributes:
        timeout: Seconds to wait for the child to exit, or None to wait
            indefinitely.
    """

    def __init__(self, timeout: float | None = 60.0) -> None:
        self.timeout = timeout

    async def run(self, command: CommandSpec) -> str:
        """Spawn the command, wait for it to exit and return its output.

        stderr is merged into stdout rather than discarded, so the result
        reads like a sandbox unit's log, which interleaves both streams.
        Plain stdout capture would drop the error text of a failing command.
        A non-zero exit status is not an error.

        Args:
            command: The argument vector to execute.

        Returns:
            The decoded output of the child process.

        Raises:
            SpawnError: If the process cannot be started or exceeds the timeout.
        """
        logger.warning(
            "local_fallback_used",
            program=command.argv[0],
            command=" ".join(command.argv)[:50],
        )

        try:
            proc = await asyncio.create_subprocess_exec(
                *command.argv,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.STDOUT,
            )
        except OSError as e:
            logger.error("local_spawn_failed", program=command.argv[0], error=str(e))
            raise SpawnError(f"Failed to start {command.argv[0]!r}: {e}") from e

        try:
            stdout_bytes, _ = await asyncio.wait_for(
                proc.communicate(), timeout=self.timeout
            )
        except TimeoutError as e:
            proc.kill()
            await proc.wait()  # Ensure process is reaped
            logger.warning("local_fallback_timeout", timeout=self.timeout)
            raise SpawnError(
                f"Local process did not exit within {self.timeout} seconds"
            ) from e
        except asyncio.CancelledError:
            if proc.returncode is None:
                proc.kill()
            raise

        logger.info("local_fallback_finished", exit_code=proc.returncode)
        return stdout_bytes.decode("utf-8", errors="replace") if stdout_bytes else ""
