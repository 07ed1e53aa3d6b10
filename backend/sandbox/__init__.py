"""Sandboxed command execution.

This module provides the command validator, the sandbox runtime client and
its Kubernetes and Docker substrates, the local fallback executor, and the
orchestrator that ties them together.
"""

from sandbox.docker_substrate import DockerContainerSubstrate
from sandbox.errors import (
    CommandRejected,
    ProvisionError,
    RetrievalError,
    RuntimeClientError,
    SandboxError,
    SandboxTimeoutError,
    SpawnError,
)
from sandbox.kubernetes_substrate import KubernetesPodSubstrate
from sandbox.local_executor import LocalFallbackExecutor
from sandbox.orchestrator import ExecutionOrchestrator
from sandbox.runtime import RuntimeSubstrate, SandboxRuntimeClient
from sandbox.security import is_safe, validate_command
from sandbox.types import CommandSpec, SandboxPhase

__all__ = [
    "CommandRejected",
    "CommandSpec",
    "DockerContainerSubstrate",
    "ExecutionOrchestrator",
    "KubernetesPodSubstrate",
    "LocalFallbackExecutor",
    "ProvisionError",
    "RetrievalError",
    "RuntimeClientError",
    "RuntimeSubstrate",
    "SandboxError",
    "SandboxPhase",
    "SandboxRuntimeClient",
    "SandboxTimeoutError",
    "SpawnError",
    "is_safe",
    "validate_command",
]
