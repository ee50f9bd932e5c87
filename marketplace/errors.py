"""
Workflow error taxonomy.

Services raise these; main.py translates them to JSON `{"error": ...}`
responses with the matching status code. Nothing here is retried.
"""
from fastapi import status


class MarketplaceError(Exception):
    """Base class carrying the HTTP status the handler boundary responds with."""
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(MarketplaceError):
    """Missing or malformed required field."""
    status_code = status.HTTP_400_BAD_REQUEST


class AuthenticationError(MarketplaceError):
    """Missing, invalid or expired bearer token."""
    status_code = status.HTTP_401_UNAUTHORIZED


class PermissionDeniedError(MarketplaceError):
    """Actor is not the owner of the entity."""
    status_code = status.HTTP_403_FORBIDDEN


class NotFoundError(MarketplaceError):
    status_code = status.HTTP_404_NOT_FOUND


class ConflictError(MarketplaceError):
    status_code = status.HTTP_409_CONFLICT


class InvalidTransitionError(ConflictError):
    """Requested status change is not in the lifecycle's transition table."""

    def __init__(self, entity: str, current, requested):
        current_value = getattr(current, "value", current)
        requested_value = getattr(requested, "value", requested)
        super().__init__(
            f"Cannot move {entity} from '{current_value}' to '{requested_value}'"
        )
        self.current = current
        self.requested = requested


class UpstreamServiceError(MarketplaceError):
    """Payment gateway or object storage call failed."""
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR


