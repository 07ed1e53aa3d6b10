"""Kubernetes pod substrate for sandbox units.

Each unit is a bare pod with a single ``runner`` container and
``restartPolicy: Never``. The pod's phase is its lifecycle phase and its
container log is the unit's combined output.
"""

from collections.abc import Sequence
from pathlib import Path

import structlog
from kubernetes import client as k8s_client
from kubernetes import config as k8s_config
from kubernetes.client.rest import ApiException
from kubernetes.config.config_exception import ConfigException

from sandbox.types import SandboxPhase

logger = structlog.get_logger(__name__)

RUNNER_CONTAINER = "runner"

_SERVICE_ACCOUNT_NAMESPACE = Path(
    "/var/run/secrets/kubernetes.io/serviceaccount/namespace"
)

# Labels let operators find (and garbage-collect) units left by a crashed process.
UNIT_LABELS: dict[str, str] = {
    "app.kubernetes.io/managed-by": "task-runner",
    "app.kubernetes.io/component": "sandbox-unit",
}


class KubernetesPodSubstrate:
    """Runs sandbox units as pods in a single namespace.

    Attributes:
        image: Container image for every unit.
        namespace: Namespace the pods are created in.
    """

    def __init__(
        self,
        image: str = "busybox:1.36",
        namespace: str | None = None,
        core_api: k8s_client.CoreV1Api | None = None,
        request_timeout: float = 10.0,
    ) -> None:
        """Initialize the substrate.

        Args:
            image: Container image for every unit.
            namespace: Target namespace. Resolved from the environment when
                omitted (service account, kubeconfig context, "default").
            core_api: Preconfigured API client. Loaded lazily from the
                in-cluster or kubeconfig configuration when omitted.
            request_timeout: Seconds allowed for each API server request.
        """
        self.image = image
        self._namespace = namespace
        self._core_api = core_api
        self.request_timeout = request_timeout

    @property
    def core_api(self) -> k8s_client.CoreV1Api:
        """Lazy initialization of the Kubernetes API client."""
        if self._core_api is None:
            try:
                k8s_config.load_incluster_config()
            except ConfigException:
                k8s_config.load_kube_config()
            self._core_api = k8s_client.CoreV1Api()
        return self._core_api

    @property
    def namespace(self) -> str:
        if self._namespace is None:
            self._namespace = _detect_namespace()
        return self._namespace

    def build_pod(self, name: str, argv: Sequence[str]) -> k8s_client.V1Pod:
        """Build the minimal single-container pod manifest for a unit."""
        return k8s_client.V1Pod(
            api_version="v1",
            kind="Pod",
            metadata=k8s_client.V1ObjectMeta(name=name, labels=dict(UNIT_LABELS)),
            spec=k8s_client.V1PodSpec(
                restart_policy="Never",
                automount_service_account_token=False,
                containers=[
                    k8s_client.V1Container(
                        name=RUNNER_CONTAINER,
                        image=self.image,
                        command=list(argv),
                    )
                ],
            ),
        )

    def create_unit(self, name: str, argv: Sequence[str]) -> None:
        self.core_api.create_namespaced_pod(
            namespace=self.namespace,
            body=self.build_pod(name, argv),
            _request_timeout=self.request_timeout,
        )
        logger.debug("pod_created", pod=name, namespace=self.namespace)

    def read_phase(self, name: str) -> SandboxPhase | None:
        try:
            pod = self.core_api.read_namespaced_pod(
                name=name,
                namespace=self.namespace,
                _request_timeout=self.request_timeout,
            )
        except ApiException as e:
            if e.status == 404:
                return None
            raise

        if pod is None or pod.status is None or not pod.status.phase:
            return None
        try:
            return SandboxPhase(pod.status.phase)
        except ValueError:
            return SandboxPhase.UNKNOWN

    def read_logs(self, name: str) -> str:
        logs = self.core_api.read_namespaced_pod_log(
            name=name,
            namespace=self.namespace,
            container=RUNNER_CONTAINER,
            _request_timeout=self.request_timeout,
        )
        return logs or ""

    def delete_unit(self, name: str) -> None:
        try:
            self.core_api.delete_namespaced_pod(
                name=name,
                namespace=self.namespace,
                grace_period_seconds=0,
                _request_timeout=self.request_timeout,
            )
        except ApiException as e:
            if e.status == 404:
                logger.debug("pod_already_removed", pod=name, namespace=self.namespace)
                return
            raise

    def is_available(self) -> bool:
        """Check if the API server answers for the target namespace."""
        try:
            self.core_api.list_namespaced_pod(
                namespace=self.namespace,
                limit=1,
                _request_timeout=self.request_timeout,
            )
            return True
        except Exception:
            return False


def _detect_namespace() -> str:
    """Pick the namespace the way kubectl would, defaulting to "default"."""
    try:
        namespace = _SERVICE_ACCOUNT_NAMESPACE.read_text(encoding="utf-8").strip()
        if namespace:
            return namespace
    except OSError:
        pass

    try:
        _, active_context = k8s_config.list_kube_config_contexts()
    except (ConfigException, OSError):
        return "default"

    context = (active_context or {}).get("context") or {}
    return context.get("namespace") or "default"
