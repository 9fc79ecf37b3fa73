"""Domain error taxonomy.

Services raise these; ``app.main`` turns them into JSON error responses.
``DeliveryError`` is the exception: it is raised by notification channels and
always caught inside the fanout dispatcher.
"""

from __future__ import annotations

from fastapi import status


class DomainError(Exception):
    """Base class for errors surfaced to API callers."""

    status_code: int = status.HTTP_400_BAD_REQUEST

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ValidationError(DomainError):
    """Malformed or missing input."""

    status_code = status.HTTP_400_BAD_REQUEST


class AuthorizationError(DomainError):
    """Actor may not act on the resource."""

    status_code = status.HTTP_403_FORBIDDEN


class ConflictError(DomainError):
    """Invariant violation: duplicate in-progress journey, invalid transition, duplicate open alert."""

    status_code = status.HTTP_400_BAD_REQUEST


class NotFoundError(DomainError):
    """Referenced journey, user or alert is absent."""

    status_code = status.HTTP_404_NOT_FOUND


class DependencyUnavailableError(DomainError):
    """Storage or another hard dependency is unreachable."""

    status_code = status.HTTP_503_SERVICE_UNAVAILABLE


class DeliveryError(Exception):
    """A notification channel failed for one recipient."""

    def __init__(self, channel: str, message: str) -> None:
        super().__init__(f"{channel}: {message}")
        self.channel = channel
