"""
Shared error handling for the Access Identity services.
"""

from typing import Dict, Any, Optional
from pydantic import BaseModel, Field

from shared.logging import request_id_var


class ErrorResponse(BaseModel):
    """Standard error response format."""

    request_id: Optional[str] = None
    code: str
    message: str
    details: Dict[str, Any] = Field(default_factory=dict)


class ServiceException(Exception):
    """Base exception for Access Identity services."""

    status_code: int = 400

    def __init__(self, code: str, message: str, details: Optional[Dict[str, Any]] = None):
        self.code = code
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_response(self) -> ErrorResponse:
        """Convert to error response."""
        return ErrorResponse(
            request_id=request_id_var.get(),
            code=self.code,
            message=self.message,
            details=self.details
        )


class AuthenticationError(ServiceException):
    """Authentication-related errors."""

    status_code = 401

    def __init__(self, message: str = "Authentication failed", details: Optional[Dict[str, Any]] = None,
                 code: str = "AUTHENTICATION_ERROR"):
        super().__init__(code, message, details)


class ExternalServiceError(ServiceException):
    """External service errors."""

    status_code = 502

    def __init__(self, service: str, message: str = "External service error", details: Optional[Dict[str, Any]] = None):
        super().__init__("EXTERNAL_SERVICE_ERROR", f"{service}: {message}", details)
