"""
Shared error handling for the PBX dashboard gateway.

Every failure surfaced by the gateway client is one of a fixed set of
kinds. Callers branch on ``exc.kind`` (or the exception class) instead of
inspecting transport errors.
"""

from enum import Enum
from typing import Dict, Any, Optional, Union

from pydantic import BaseModel, Field


class ErrorKind(str, Enum):
    """Actionable error categories."""
    UNAUTHENTICATED = "unauthenticated"
    MALFORMED_RESPONSE = "malformed_response"
    AUTH_EXPIRED = "auth_expired"
    REMOTE_REJECTED = "remote_rejected"
    UNREACHABLE = "unreachable"
    UNSUPPORTED = "unsupported"
    VALIDATION = "validation"


class ErrorResponse(BaseModel):
    """Standard error response format."""

    request_id: Optional[str] = None
    kind: ErrorKind
    code: str
    message: str
    details: Dict[str, Any] = Field(default_factory=dict)


class DashboardException(Exception):
    """Base exception for the dashboard gateway."""

    kind: ErrorKind = ErrorKind.REMOTE_REJECTED

    def __init__(self, code: str, message: str, details: Optional[Dict[str, Any]] = None):
        self.code = code
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_response(self, request_id: Optional[str] = None) -> ErrorResponse:
        """Convert to error response."""
        return ErrorResponse(
            request_id=request_id,
            kind=self.kind,
            code=self.code,
            message=self.message,
            details=self.details
        )


class UnauthenticatedError(DashboardException):
    """No access token is held and the call is not the authentication bypass."""

    kind = ErrorKind.UNAUTHENTICATED

    def __init__(self, message: str = "Not authenticated with the PBX", details: Optional[Dict[str, Any]] = None):
        super().__init__("UNAUTHENTICATED", message, details)


class AuthExpiredError(DashboardException):
    """The appliance reported the access token as expired; the token was cleared."""

    kind = ErrorKind.AUTH_EXPIRED

    def __init__(self, message: str = "Authentication expired. Please reconnect.", details: Optional[Dict[str, Any]] = None):
        super().__init__("AUTH_EXPIRED", message, details)


class MalformedResponseError(DashboardException):
    """Response body could not be parsed as a structured record."""

    kind = ErrorKind.MALFORMED_RESPONSE

    def __init__(self, message: str = "PBX returned a non-JSON response", details: Optional[Dict[str, Any]] = None):
        super().__init__("MALFORMED_RESPONSE", message, details)


class RemoteRejectedError(DashboardException):
    """The relay or the appliance rejected the request."""

    kind = ErrorKind.REMOTE_REJECTED

    def __init__(self, remote_code: Union[int, str], message: str = "PBX rejected the request", details: Optional[Dict[str, Any]] = None):
        self.remote_code = remote_code
        details = dict(details or {})
        details.setdefault("remote_code", remote_code)
        super().__init__("REMOTE_REJECTED", f"API Error {remote_code}: {message}", details)


class UnreachableError(DashboardException):
    """Transport-level failure reaching the relay or the appliance."""

    kind = ErrorKind.UNREACHABLE

    def __init__(self, message: str = "PBX is unreachable", details: Optional[Dict[str, Any]] = None):
        super().__init__("UNREACHABLE", message, details)


class UnsupportedError(DashboardException):
    """A per-feature query the current firmware does not support."""

    kind = ErrorKind.UNSUPPORTED

    def __init__(self, remote_code: Union[int, str], message: str = "Feature not supported by this PBX", details: Optional[Dict[str, Any]] = None):
        self.remote_code = remote_code
        details = dict(details or {})
        details.setdefault("remote_code", remote_code)
        super().__init__("UNSUPPORTED", message, details)


class ValidationError(DashboardException):
    """Caller input rejected before any request was made."""

    kind = ErrorKind.VALIDATION

    def __init__(self, message: str = "Validation failed", details: Optional[Dict[str, Any]] = None):
        super().__init__("VALIDATION_ERROR", message, details)
