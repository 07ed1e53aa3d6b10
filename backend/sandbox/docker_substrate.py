"""Docker container substrate for sandbox units.

Each unit is a detached, locked-down container that runs the command as its
entrypoint and exits. Container state is mapped onto the sandbox lifecycle
phases, and the container's stdout/stderr log is the unit's output.
"""

from collections.abc import Sequence

import docker
import structlog
from docker.errors import NotFound

from sandbox.types import SandboxPhase

logger = structlog.get_logger(__name__)

# Container security configuration
CONTAINER_CONFIG: dict[str, object] = {
    "mem_limit": "256m",
    "cpu_period": 100000,
    "cpu_quota": 50000,  # 50% of one CPU core
    "network_mode": "none",
    "security_opt": ["no-new-privileges"],
    "cap_drop": ["ALL"],
    "pids_limit": 128,
}

UNIT_LABELS: dict[str, str] = {
    "task-runner.managed-by": "task-runner",
    "task-runner.component": "sandbox-unit",
}

_RUNNING_STATES = {"running", "restarting", "paused", "removing"}


class DockerContainerSubstrate:
    """Runs sandbox units as containers on the local Docker daemon.

    Attributes:
        image: Container image for every unit.
        request_timeout: Seconds allowed for each Docker API request.
    """

    def __init__(
        self,
        image: str = "busybox:1.36",
        client: docker.DockerClient | None = None,
        request_timeout: float = 10.0,
    ) -> None:
        self.image = image
        self.request_timeout = request_timeout
        self._client = client

    @property
    def client(self) -> docker.DockerClient:
        """Lazy initialization of Docker client."""
        if self._client is None:
            self._client = docker.from_env(timeout=max(1, int(self.request_timeout)))
        return self._client

    def create_unit(self, name: str, argv: Sequence[str]) -> None:
        container = self.client.containers.run(
            self.image,
            command=list(argv),
            name=name,
            detach=True,
            remove=False,
            restart_policy={"Name": "no"},
            labels=dict(UNIT_LABELS),
            mem_limit=CONTAINER_CONFIG["mem_limit"],
            cpu_period=CONTAINER_CONFIG["cpu_period"],
            cpu_quota=CONTAINER_CONFIG["cpu_quota"],
            network_mode=CONTAINER_CONFIG["network_mode"],
            security_opt=CONTAINER_CONFIG["security_opt"],
            cap_drop=CONTAINER_CONFIG["cap_drop"],
            pids_limit=CONTAINER_CONFIG["pids_limit"],
        )
        logger.debug("container_created", unit=name, container_id=container.id[:12])

    def read_phase(self, name: str) -> SandboxPhase | None:
        try:
            container = self.client.containers.get(name)
        except NotFound:
            return None

        status = container.status
        if status == "created":
            return SandboxPhase.PENDING
        if status in _RUNNING_STATES:
            return SandboxPhase.RUNNING
        if status == "exited":
            state = (container.attrs or {}).get("State", {})
            exit_code = state.get("ExitCode")
            if exit_code == 0:
                return SandboxPhase.SUCCEEDED
            return SandboxPhase.FAILED
        if status == "dead":
            return SandboxPhase.FAILED
        return SandboxPhase.UNKNOWN

    def read_logs(self, name: str) -> str:
        container = self.client.containers.get(name)
        raw = container.logs(stdout=True, stderr=True)
        return raw.decode("utf-8", errors="replace") if raw else ""

    def delete_unit(self, name: str) -> None:
        try:
            container = self.client.containers.get(name)
            container.remove(force=True)
        except NotFound:
            logger.debug("container_already_removed", unit=name)

    def is_available(self) -> bool:
        """Check if the Docker daemon is reachable."""
        try:
            self.client.ping()
            return True
        except Exception:
            return False
