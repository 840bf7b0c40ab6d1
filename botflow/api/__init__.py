"""HTTP API of the workflow service."""

from .endpoints import router, init_dependencies

__all__ = ["router", "init_dependencies"]
