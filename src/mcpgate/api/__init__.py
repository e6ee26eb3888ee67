"""HTTP API for mcpgate."""

from mcpgate.api.app import create_app

__all__ = ["create_app"]
