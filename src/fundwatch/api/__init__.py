"""HTTP binding of the query service."""

from fundwatch.api.app import create_app

__all__ = ["create_app"]
