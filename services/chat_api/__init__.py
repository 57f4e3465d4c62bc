"""Room provisioning, submission and admin HTTP API."""

from .server import ChatApiServer

__all__ = ["ChatApiServer"]
