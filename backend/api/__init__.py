"""API module for HTTP routes.

This module exposes the FastAPI router for the task runner backend.
"""

from api.routes import router

__all__ = ["router"]
