"""
Error taxonomy for the marketplace API.

Every failure a handler can report is one of these exceptions; the
application installs handlers that render them as JSON bodies.
"""

from typing import Any, Dict, Optional

from fastapi import status


class MarketplaceError(Exception):
    """Base class for errors that map onto a single HTTP response."""

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_message: str = "Internal server error"

    def __init__(self, message: Optional[str] = None, **extra: Any):
        self.message = message or self.default_message
        self.extra: Dict[str, Any] = extra
        super().__init__(self.message)

    def to_content(self) -> Dict[str, Any]:
        """Build the JSON body sent to the client."""
        content = {"message": self.message, "status_code": self.status_code}
        content.update(self.extra)
        return content


class Unauthenticated(MarketplaceError):
    status_code = status.HTTP_401_UNAUTHORIZED
    default_message = "Unauthorized Access!"


class Forbidden(MarketplaceError):
    status_code = status.HTTP_403_FORBIDDEN
    default_message = "Forbidden Access!"


class InvalidInput(MarketplaceError):
    status_code = status.HTTP_400_BAD_REQUEST
    default_message = "Invalid input"


class NotFound(MarketplaceError):
    status_code = status.HTTP_404_NOT_FOUND
    default_message = "Not found"


class AlreadyExists(MarketplaceError):
    status_code = status.HTTP_409_CONFLICT
    default_message = "Already exists"


class PaymentNotSettled(MarketplaceError):
    status_code = status.HTTP_400_BAD_REQUEST
    default_message = "Payment session status is not 'paid'."


class UpstreamFailure(MarketplaceError):
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_message = "Upstream service failure"
