"""HTTP API layer."""

from peekstash.api.app import create_app

__all__ = ["create_app"]
