"""FastAPI application entry point for the task runner backend.

This module initializes the FastAPI application, wiring the task store and
the execution orchestrator (sandbox runtime client plus local fallback)
into the routes at startup.

Usage:
    uv run uvicorn main:app --reload
"""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from api.routes import router, set_orchestrator, set_task_store
from config import Settings, configure_logging, settings
from models.database import TaskStore
from sandbox import (
    DockerContainerSubstrate,
    ExecutionOrchestrator,
    KubernetesPodSubstrate,
    LocalFallbackExecutor,
    RuntimeSubstrate,
    SandboxRuntimeClient,
)

# Configure structured logging
configure_logging(settings.log_level, settings.log_format)

logger = structlog.get_logger(__name__)


def build_substrate(config: Settings) -> RuntimeSubstrate | None:
    """Create the sandbox substrate selected by ``sandbox_backend``.

    Returns None for the 'none' backend, in which case every command runs
    on the local fallback.
    """
    if config.sandbox_backend == "kubernetes":
        return KubernetesPodSubstrate(
            image=config.sandbox_image,
            namespace=config.sandbox_namespace,
            request_timeout=config.sandbox_request_timeout_seconds,
        )
    if config.sandbox_backend == "docker":
        return DockerContainerSubstrate(
            image=config.sandbox_image,
            request_timeout=config.sandbox_request_timeout_seconds,
        )
    return None


def build_orchestrator(config: Settings) -> ExecutionOrchestrator:
    """Assemble the execution orchestrator from settings."""
    substrate = build_substrate(config)
    runtime = (
        SandboxRuntimeClient(
            substrate,
            poll_interval=config.sandbox_poll_interval_seconds,
            name_prefix=config.sandbox_name_prefix,
        )
        if substrate is not None
        else None
    )
    fallback = (
        LocalFallbackExecutor(timeout=config.local_fallback_timeout_seconds)
        if config.local_fallback_enabled
        else None
    )
    return ExecutionOrchestrator(
        runtime,
        fallback,
        timeout=config.sandbox_timeout_seconds,
        shell=config.shell_executable,
        max_output_chars=config.max_output_chars,
    )


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan manager for startup and shutdown events.

    Args:
        app: The FastAPI application instance.

    Yields:
        None during application runtime.
    """
    logger.info(
        "application_starting",
        backend_port=settings.backend_port,
        log_level=settings.log_level,
        sandbox_backend=settings.sandbox_backend,
        local_fallback_enabled=settings.local_fallback_enabled,
    )

    task_store = TaskStore(settings.database_path)
    await task_store.init()

    orchestrator = build_orchestrator(settings)

    set_task_store(task_store)
    set_orchestrator(orchestrator)

    # Store on app.state for access
    app.state.task_store = task_store
    app.state.orchestrator = orchestrator

    logger.info("application_started")

    yield

    logger.info("application_shutdown_complete")


# Create FastAPI application
app = FastAPI(
    title="Sandboxed Task Runner",
    description="Stores shell command tasks and runs them in short-lived "
    "sandbox units, falling back to local execution when the sandbox fails.",
    version="0.1.0",
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/openapi.json",
)

# Configure CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "PUT", "DELETE", "OPTIONS"],
    allow_headers=["*"],
)

app.include_router(router, tags=["tasks"])


@app.get("/", include_in_schema=False)
async def root() -> dict[str, str]:
    """Root endpoint pointing at the API documentation."""
    return {
        "message": "Sandboxed Task Runner API",
        "docs": "/docs",
        "health": "/health",
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "main:app",
        host="0.0.0.0",
        port=settings.backend_port,
        reload=True,
        log_level=settings.log_level.lower(),
    )
