"""External service integrations."""

from peekstash.infrastructure.integrations.stash_client import (
    StashApiError,
    StashClient,
    StashPage,
    StashResponseError,
)

__all__ = ["StashApiError", "StashClient", "StashPage", "StashResponseError"]
