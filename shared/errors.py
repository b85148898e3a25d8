"""
Shared error handling for the Chain RPC Gateway.
"""

from typing import Dict, Any, Optional
from pydantic import BaseModel, Field


class ErrorResponse(BaseModel):
    """Standard error response format."""

    error: str
    code: str
    message: str
    details: Dict[str, Any] = Field(default_factory=dict)


class GatewayException(Exception):
    """Base exception for gateway services."""

    status_code = 400
    error = "Bad Request"

    def __init__(self, code: str, message: str, details: Optional[Dict[str, Any]] = None):
        self.code = code
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_response(self) -> ErrorResponse:
        """Convert to error response."""
        return ErrorResponse(
            error=self.error,
            code=self.code,
            message=self.message,
            details=self.details
        )

    def to_payload(self) -> Dict[str, Any]:
        """JSON body for this error."""
        return self.to_response().model_dump()

    def headers(self) -> Dict[str, str]:
        """Extra response headers for this error."""
        return {}


class AuthenticationError(GatewayException):
    """Authentication-related errors."""

    status_code = 401
    error = "Unauthorized"

    def __init__(self, message: str = "Authentication failed", code: str = "UNAUTHORIZED",
                 details: Optional[Dict[str, Any]] = None):
        super().__init__(code, message, details)


class ValidationError(GatewayException):
    """Validation-related errors."""

    status_code = 400
    error = "Bad Request"

    def __init__(self, message: str = "Validation failed", details: Optional[Dict[str, Any]] = None):
        super().__init__("BAD_REQUEST", message, details)


class NotFoundError(GatewayException):
    """Lookup of an unknown resource."""

    status_code = 404
    error = "Not Found"

    def __init__(self, message: str = "Not found", details: Optional[Dict[str, Any]] = None):
        super().__init__("NOT_FOUND", message, details)


class ServiceError(GatewayException):
    """A local dependency of the gateway failed, such as the key file."""

    status_code = 503
    error = "Service Unavailable"

    def __init__(self, message: str = "Service error", code: str = "SERVICE_ERROR",
                 details: Optional[Dict[str, Any]] = None):
        super().__init__(code, message, details)


class ExternalServiceError(GatewayException):
    """External service errors."""

    status_code = 502
    error = "Bad Gateway"

    def __init__(self, service: str, message: str = "External service error", details: Optional[Dict[str, Any]] = None):
        super().__init__("EXTERNAL_SERVICE_ERROR", f"{service}: {message}", details)


class RpcError(GatewayException):
    """JSON-RPC error object returned by the node."""

    error = "RPC Error"

    def __init__(self, rpc_code: int, message: str, data: Any = None):
        details: Dict[str, Any] = {"rpc_code": rpc_code}
        if data is not None:
            details["data"] = data
        super().__init__("RPC_ERROR", message, details)
        self.rpc_code = rpc_code
        # -32600/-32602: malformed request or params, 3: execution reverted
        self.status_code = 400 if rpc_code in (-32600, -32602, 3) else 502


class RateLimitError(GatewayException):
    """Rate limiting errors."""

    status_code = 429
    error = "Rate limit exceeded"

    def __init__(self, window: str, retry_after: int, remaining: Dict[str, int],
                 message: Optional[str] = None, details: Optional[Dict[str, Any]] = None):
        super().__init__(
            "RATE_LIMITED",
            message or f"Rate limit exceeded for the {window} window",
            details,
        )
        self.window = window
        self.retry_after = retry_after
        self.remaining = remaining

    def to_payload(self) -> Dict[str, Any]:
        payload = super().to_payload()
        payload.update({
            "limitExceeded": self.window,
            "retryAfter": self.retry_after,
            "remaining": dict(self.remaining),
        })
        return payload

    def headers(self) -> Dict[str, str]:
        return {"Retry-After": str(self.retry_after)}
