"""
Shared error handling for the phones marketplace API.
"""

from typing import Dict, Any, Optional
from pydantic import BaseModel

from shared.logging import current_request_id


NOT_FOUND_MESSAGE = "Requested URI not found: please check path and parameters type or value."
TECHNICAL_ERROR_MESSAGE = "Technical error: please contact us if necessary!"


class ErrorResponse(BaseModel):
    """Standard error response format."""

    status: int
    code: str
    message: str
    details: Dict[str, Any] = {}
    request_id: Optional[str] = None


class MarketplaceException(Exception):
    """Base exception for marketplace API errors that reach the client."""

    status_code = 400

    def __init__(
        self,
        code: str,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        status_code: Optional[int] = None
    ):
        self.code = code
        self.message = message
        self.details = details or {}
        if status_code is not None:
            self.status_code = status_code
        super().__init__(message)

    def to_response(self) -> ErrorResponse:
        """Convert to error response."""
        return ErrorResponse(
            status=self.status_code,
            code=self.code,
            message=self.message,
            details=self.details,
            request_id=current_request_id()
        )


class BadRequestError(MarketplaceException):
    """Malformed or inconsistent request."""

    def __init__(self, message: str = "Bad request", details: Optional[Dict[str, Any]] = None):
        super().__init__("BAD_REQUEST", message, details, status_code=400)


class ValidationError(MarketplaceException):
    """Validation-related errors, carrying a field to message map."""

    def __init__(
        self,
        message: str = "Validation failed: please check the submitted data.",
        errors: Optional[Dict[str, str]] = None
    ):
        self.errors = errors or {}
        super().__init__("VALIDATION_ERROR", message, {"errors": self.errors}, status_code=400)


class AuthenticationError(MarketplaceException):
    """Authentication-related errors."""

    def __init__(self, message: str = "Authentication failed", details: Optional[Dict[str, Any]] = None):
        super().__init__("AUTHENTICATION_ERROR", message, details, status_code=401)


class AuthorizationError(MarketplaceException):
    """Authorization-related errors."""

    def __init__(self, message: str = "Access Denied.", details: Optional[Dict[str, Any]] = None):
        super().__init__("AUTHORIZATION_ERROR", message, details, status_code=403)


class NotFoundError(MarketplaceException):
    """Unknown route or resource."""

    def __init__(self, message: str = NOT_FOUND_MESSAGE, details: Optional[Dict[str, Any]] = None):
        super().__init__("NOT_FOUND", message, details, status_code=404)


class CacheBackendError(Exception):
    """A cache backend operation failed.

    Not a MarketplaceException: cache failures abort the surrounding write
    and surface as a technical error.
    """

    def __init__(self, message: str, key: Optional[str] = None):
        self.key = key
        super().__init__(message)


class CacheInvalidArgumentError(CacheBackendError):
    """A cache key or tag is not acceptable for the backend."""
