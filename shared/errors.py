"""
Shared error handling for the Chat Relay service.

Every error surfaced to a caller carries a generic message. ``details`` are
kept for logs only and are never serialized into a response body.
"""

from typing import Dict, Any, Optional
from pydantic import BaseModel

from shared.logging import get_request_id


class ErrorResponse(BaseModel):
    """Standard error response format."""

    error: str
    code: str
    request_id: Optional[str] = None


class ChatRelayException(Exception):
    """Base exception for Chat Relay services."""

    status_code: int = 500
    # Label for the chat_requests_total metric; defaults to the lowercased code
    outcome: Optional[str] = None

    def __init__(
        self,
        code: str,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None,
    ):
        self.code = code
        self.message = message
        self.details = details or {}
        self.headers = headers or {}
        self.outcome = self.outcome or code.lower()
        super().__init__(message)

    def to_response(self) -> ErrorResponse:
        """Convert to error response."""
        return ErrorResponse(
            error=self.message,
            code=self.code,
            request_id=get_request_id(),
        )


class AuthenticationError(ChatRelayException):
    """Missing, malformed, expired or otherwise invalid credential."""

    status_code = 401

    def __init__(self, message: str = "Authentication failed", details: Optional[Dict[str, Any]] = None):
        super().__init__("UNAUTHENTICATED", message, details)


class ValidationError(ChatRelayException):
    """Request body failed validation."""

    status_code = 400

    def __init__(self, message: str = "Validation failed", details: Optional[Dict[str, Any]] = None):
        super().__init__("VALIDATION_ERROR", message, details)


class MethodNotAllowedError(ChatRelayException):
    """HTTP method not supported by the endpoint."""

    status_code = 405

    def __init__(self, message: str = "Method not allowed", allowed: str = "POST"):
        super().__init__("METHOD_NOT_ALLOWED", message, headers={"Allow": allowed})


class RateLimitError(ChatRelayException):
    """Rate limiting errors."""

    status_code = 429

    def __init__(
        self,
        message: str = "Rate limit exceeded",
        details: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None,
    ):
        super().__init__("RATE_LIMITED", message, details, headers)


class PersistenceError(ChatRelayException):
    """Exchange persistence failure. Logged, never surfaced."""

    status_code = 500

    def __init__(self, message: str = "Persistence failed", details: Optional[Dict[str, Any]] = None):
        super().__init__("PERSISTENCE_ERROR", message, details)


class InternalServiceError(ChatRelayException):
    """Unexpected failure anywhere in request processing."""

    status_code = 500

    def __init__(self, message: str = "Internal server error", details: Optional[Dict[str, Any]] = None):
        super().__init__("INTERNAL_ERROR", message, details)


class RateLimitStoreError(InternalServiceError):
    """Rate limit store unreachable while failing closed.

    Surfaces to the caller as a plain internal error; only logs and metrics
    tell it apart.
    """

    outcome = "rate_limit_unavailable"


class UpstreamServiceError(InternalServiceError):
    """Generation service errors. Surfaces as a plain internal error."""

    outcome = "upstream_error"

    def __init__(self, service: str, message: str = "Internal server error", details: Optional[Dict[str, Any]] = None):
        self.service = service
        super().__init__(message, details)
