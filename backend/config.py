"""Application configuration using Pydantic Settings.

This module provides centralized configuration for the task runner backend.
All settings can be overridden via environment variables or a .env file.
"""

import json
import logging
import re
from typing import Any, Literal

import structlog
from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

_DNS_LABEL = re.compile(r"[a-z0-9]([-a-z0-9]*[a-z0-9])?")


class Settings(BaseSettings):
    """Application settings loaded from environment variables.

    Attributes:
        sandbox_backend: Runtime substrate for the primary execution path
            ("kubernetes", "docker", or "none" to always run locally).
        sandbox_namespace: Kubernetes namespace for sandbox pods. When unset,
            the in-cluster or kubeconfig namespace is used, then "default".
        sandbox_image: Base image every sandbox unit runs.
        sandbox_name_prefix: Prefix for generated sandbox unit names.
        sandbox_timeout_seconds: Upper bound on waiting for a unit to finish.
        sandbox_poll_interval_seconds: Delay between phase observations.
        sandbox_request_timeout_seconds: Upper bound on a single substrate API
            request.
        local_fallback_enabled: Run commands as local subprocesses when the
            sandbox substrate cannot complete.
        local_fallback_timeout_seconds: Upper bound on a local fallback run.
        shell_executable: Shell used to interpret task commands.
        max_output_chars: Captured output is truncated beyond this length.
        database_path: SQLite file backing the task store.
        backend_port: Port for the FastAPI server.
        cors_origins: Allowed origins for CORS.
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR).
        log_format: Log format (json or text).
    """

    # Sandbox Configuration
    sandbox_backend: Literal["kubernetes", "docker", "none"] = "kubernetes"
    sandbox_namespace: str | None = None
    sandbox_image: str = "busybox:1.36"
    sandbox_name_prefix: str = "task-run"
    sandbox_timeout_seconds: float = 60.0
    sandbox_poll_interval_seconds: float = 1.0
    sandbox_request_timeout_seconds: float = 10.0

    # Local Fallback
    local_fallback_enabled: bool = True
    local_fallback_timeout_seconds: float = 60.0

    # Execution
    shell_executable: str = "sh"
    max_output_chars: int = 50000

    # Database Configuration
    database_path: str = "./data/tasks.db"

    # Server Configuration
    backend_port: int = 8080
    cors_origins: str | list[str] = ["http://localhost:3000"]
    log_level: str = "INFO"
    log_format: str = "json"

    @field_validator("cors_origins", mode="before")
    @classmethod
    def parse_cors_origins(cls, v: Any) -> list[str]:
        """Parse CORS origins from a JSON array, a comma list, or a list."""
        if isinstance(v, list):
            return v
        if isinstance(v, str):
            v = v.strip()
            if v.startswith("["):
                try:
                    return json.loads(v)
                except json.JSONDecodeError:
                    pass
            return [origin.strip() for origin in v.split(",") if origin.strip()]
        return ["http://localhost:3000"]

    @field_validator("sandbox_name_prefix")
    @classmethod
    def validate_name_prefix(cls, v: str) -> str:
        """Unit names must stay valid DNS-1123 labels for Kubernetes."""
        prefix = v.strip().lower()
        if not _DNS_LABEL.fullmatch(prefix):
            raise ValueError(
                "sandbox_name_prefix must contain only lowercase ASCII letters, "
                "digits and '-', and start and end with a letter or digit"
            )
        if len(prefix) > 40:
            raise ValueError("sandbox_name_prefix must be at most 40 characters")
        return prefix

    model_config = SettingsConfigDict(
        # Support running `uvicorn` from either the repo root or `backend/`
        env_file=(".env", "../.env"),
        env_file_encoding="utf-8",
        case_sensitive=False,
    )


def configure_logging(log_level: str = "INFO", log_format: str = "json") -> None:
    """Configure structured logging for the application.

    Sets up structlog with appropriate processors for either JSON or console output.

    Args:
        log_level: The minimum log level to emit (DEBUG, INFO, WARNING, ERROR).
        log_format: Output format - 'json' for production, 'text' for development.
    """
    processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
    ]

    if log_format == "json":
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=True))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(
            getattr(logging, log_level.upper(), logging.INFO)
        ),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )


# Global settings instance
settings = Settings()

# Configure logging on module import
configure_logging(settings.log_level, settings.log_format)
