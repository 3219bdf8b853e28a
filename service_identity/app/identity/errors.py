"""
Failure taxonomy for identity token verification.

Every failure is an :class:`AuthError`. The ``reason`` distinguishes the
cases for logs and tests; the public rendering is identical for all of them
so a token holder cannot learn which check failed.
"""

from enum import Enum
from typing import Any, Dict, Optional

from shared.errors import AuthenticationError, ErrorResponse


class AuthFailure(str, Enum):
    """Reasons a token was rejected."""

    MISSING_TOKEN = "missing_token"
    MALFORMED_TOKEN = "malformed_token"
    UNKNOWN_KEY = "unknown_key"
    FETCH_ERROR = "fetch_error"
    INVALID_TOKEN = "invalid_token"


class AuthError(AuthenticationError):
    """Base class for all token verification failures."""

    reason: AuthFailure

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, details, code=self.reason.name)

    def to_response(self) -> ErrorResponse:
        """Render the single caller-visible outcome."""
        return ErrorResponse(code="UNAUTHORIZED", message="Unauthorized")


class MissingTokenError(AuthError):
    reason = AuthFailure.MISSING_TOKEN


class MalformedTokenError(AuthError):
    reason = AuthFailure.MALFORMED_TOKEN


class UnknownKeyError(AuthError):
    reason = AuthFailure.UNKNOWN_KEY


class FetchError(AuthError):
    """Raised when the published key set cannot be retrieved or parsed."""

    reason = AuthFailure.FETCH_ERROR


class InvalidTokenError(AuthError):
    reason = AuthFailure.INVALID_TOKEN
