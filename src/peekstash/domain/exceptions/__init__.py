"""Domain exceptions.

Everything the services raise on purpose derives from DomainException. The API layer
turns each family into a status code (see peekstash.api.exception_handlers), so nothing
in here imports FastAPI.
"""

from typing import Any


class DomainException(Exception):
    """Base of every deliberate peekstash error; ``message`` is safe to show a client."""

    def __init__(self, message: str, *args: Any) -> None:
        super().__init__(message, *args)
        self.message = message


class _KeyedException(DomainException):
    """Error about one identifiable record."""

    template = "{entity_type} {entity_id}"

    def __init__(self, entity_type: str, entity_id: Any) -> None:
        super().__init__(self.template.format(entity_type=entity_type, entity_id=entity_id))
        self.entity_type = entity_type
        self.entity_id = entity_id


class EntityNotFoundException(_KeyedException):
    template = "{entity_type} with id {entity_id} not found"


class DuplicateEntityException(_KeyedException):
    template = "{entity_type} with id {entity_id} already exists"


class ValidationException(DomainException):
    """Input breaks a domain rule: unknown entity kind, malformed URL, bad restriction mode."""


class InvalidStateException(DomainException):
    """The operation is fine in general but not right now."""


class ConfigurationError(DomainException):
    """The app is up but not set up far enough to serve the request."""


class ExternalServiceError(DomainException):
    """A Stash server answered with an error or could not be reached."""


# Hey future me, the three below carry default messages so call sites can raise them bare.
class NoInstanceConfiguredError(ConfigurationError):
    """No enabled Stash instance exists yet, so there is nothing to sync or browse."""

    def __init__(self, message: str = "No Stash instance configured") -> None:
        super().__init__(message)


class SyncInProgressError(InvalidStateException):
    def __init__(self, message: str = "Sync already in progress") -> None:
        super().__init__(message)


class SyncAbortedError(DomainException):
    """The running sync pass was cancelled through abort()."""

    def __init__(self, message: str = "Sync aborted") -> None:
        super().__init__(message)


__all__ = [
    "ConfigurationError",
    "DomainException",
    "DuplicateEntityException",
    "EntityNotFoundException",
    "ExternalServiceError",
    "InvalidStateException",
    "NoInstanceConfiguredError",
    "SyncAbortedError",
    "SyncInProgressError",
    "ValidationException",
]
