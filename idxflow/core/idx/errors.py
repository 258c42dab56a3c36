"""Errors reported by the interaction code authentication flow.

Every public flow operation reports failures using one of the classes
defined here. Transport and parsing failures are wrapped in ``ApiError`` or
``InternalError`` so callers only ever handle this closed set.
"""

from __future__ import annotations

from enum import StrEnum
from typing import Any


class IDXFlowError(Exception):
    """Base class for all authentication flow errors."""


class InvalidContext(IDXFlowError):
    """No usable context exists, or the context does not match the request."""

    def __init__(self, message: str = "No valid authentication context") -> None:
        super().__init__(message)


class PlatformUnsupported(IDXFlowError):
    """PKCE material could not be generated on this platform."""

    def __init__(self, message: str = "Secure random source unavailable") -> None:
        super().__init__(message)


class InvalidRedirectUrl(IDXFlowError):
    """A redirect URL does not match the registered redirect URI."""

    def __init__(self, message: str = "Invalid redirect URL") -> None:
        super().__init__(message)


class StatusClass(StrEnum):
    """Coarse classification of an API failure."""

    CLIENT_ERROR = "client_error"
    SERVER_ERROR = "server_error"
    TRANSPORT = "transport"
    INVALID_RESPONSE = "invalid_response"


class ApiError(IDXFlowError):
    """A request to the authorization server failed."""

    def __init__(
        self,
        message: str,
        status_class: StatusClass = StatusClass.TRANSPORT,
        status_code: int | None = None,
        error_code: str | None = None,
        error_summaries: list[str] | None = None,
        cause: BaseException | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.status_class = status_class
        self.status_code = status_code
        self.error_code = error_code
        self.error_summaries = error_summaries or []
        self.cause = cause

    @classmethod
    def from_payload(cls, status_code: int, payload: dict[str, Any] | None) -> ApiError:
        """Build an error from an HTTP error response body.

        Understands both OAuth2 error bodies (``error``/``error_description``)
        and Identity Engine bodies (``errorCode``/``errorSummary`` or an Ion
        ``messages`` collection).
        """
        payload = payload or {}
        status_class = StatusClass.SERVER_ERROR if status_code >= 500 else StatusClass.CLIENT_ERROR

        summaries: list[str] = []
        messages = payload.get("messages")
        if isinstance(messages, dict):
            summaries = [m.get("message", "") for m in messages.get("value", []) if isinstance(m, dict)]

        error_code = payload.get("error") or payload.get("errorCode")
        message = (
            payload.get("error_description")
            or payload.get("errorSummary")
            or "; ".join(s for s in summaries if s)
            or f"Request failed with status {status_code}"
        )
        return cls(
            message,
            status_class=status_class,
            status_code=status_code,
            error_code=error_code,
            error_summaries=summaries,
        )

    def __str__(self) -> str:
        if self.status_code is not None:
            return f"{self.message} (HTTP {self.status_code})"
        return self.message


class InternalError(IDXFlowError):
    """An unexpected failure occurred while processing a request or response."""

    def __init__(self, cause: BaseException | str) -> None:
        super().__init__(str(cause))
        self.cause = cause if isinstance(cause, BaseException) else None


class _NamedError(IDXFlowError):
    """Error that refers to a named parameter or remediation."""

    description = ""

    def __init__(self, name: str) -> None:
        super().__init__(name)
        self.name = name

    def __str__(self) -> str:
        return f"{self.description}: {self.name}"


class InvalidParameter(_NamedError):
    description = "Unknown parameter"


class MissingRequiredParameter(_NamedError):
    description = "Missing required parameter"


class ParameterImmutable(_NamedError):
    description = "Parameter is immutable"


class MissingRemediationOption(_NamedError):
    description = "Remediation option not present in response"


class UnknownRemediationOption(_NamedError):
    description = "Unknown remediation option"


class SuccessResponseMissing(IDXFlowError):
    """The response does not contain a successful login remediation."""

    def __init__(self, message: str = "Response does not indicate a successful login") -> None:
        super().__init__(message)


class MissingRefreshToken(IDXFlowError):
    """A refresh was requested for a token that has no refresh token."""

    def __init__(self, message: str = "Token does not contain a refresh token") -> None:
        super().__init__(message)


def wrap_error(error: BaseException) -> IDXFlowError:
    """Return ``error`` as a member of the flow error taxonomy."""
    if isinstance(error, IDXFlowError):
        return error
    return InternalError(error)
