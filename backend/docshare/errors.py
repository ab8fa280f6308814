"""
Typed failures raised by the share-link core.

Each carries the HTTP status the boundary layer maps it to and a public
message that is safe to show to callers.
"""

from typing import Optional


class ShareLinkError(Exception):
    """Base error for share-link operations."""

    status_code = 500
    message = "Internal server error"

    def __init__(self, message: Optional[str] = None) -> None:
        super().__init__(message or self.message)
        if message:
            self.message = message


class ValidationError(ShareLinkError):
    status_code = 400
    message = "Invalid request"


class NotFoundError(ShareLinkError):
    status_code = 404
    message = "Share link not found"


class ExpiredError(ShareLinkError):
    status_code = 410
    message = "Share link has expired"


class AuthorizationError(ShareLinkError):
    status_code = 401
    message = "Authentication required"


class ForbiddenError(AuthorizationError):
    status_code = 403
    message = "Access denied"


class RateLimitError(ShareLinkError):
    status_code = 429
    message = "Rate limit exceeded. Please try again later."


class InternalError(ShareLinkError):
    status_code = 500
    message = "Internal server error"


class ConflictError(InternalError):
    """Identifier generation kept colliding with existing links."""

    message = "Failed to create share link"
