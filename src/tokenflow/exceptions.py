"""
Exception classes for the tokenflow library.
"""

from __future__ import annotations

from typing import Any


class TokenFlowError(Exception):
    """Base exception for tokenflow errors."""

    cacheable = True

    def __init__(
        self,
        message: str,
        code: str = "UNKNOWN_ERROR",
        details: Any | None = None,
        status_code: int | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code
        self.details = details
        self.status_code = status_code


class ConfigurationError(TokenFlowError):
    """Raised when a configuration value is missing, malformed or disallowed."""

    def __init__(self, message: str, details: Any | None = None) -> None:
        super().__init__(message, "CONFIGURATION_ERROR", details)


class RetrieveError(TokenFlowError):
    """Raised when a token or impersonation endpoint answers with an error status.

    The raw body is always preserved; the RFC 6749 section 5.2 fields are
    populated when the body could be parsed.
    """

    def __init__(
        self,
        status_code: int,
        body: bytes,
        content_type: str = "",
        error_code: str = "",
        error_description: str = "",
        error_uri: str = "",
    ) -> None:
        self.body = body
        self.content_type = content_type
        self.error_code = error_code
        self.error_description = error_description
        self.error_uri = error_uri
        super().__init__(self._format(status_code), "RETRIEVE_ERROR", None, status_code)

    def _format(self, status_code: int) -> str:
        if self.error_code:
            message = f'oauth2: "{self.error_code}"'
            if self.error_description:
                message += f' "{self.error_description}"'
            if self.error_uri:
                message += f' "{self.error_uri}"'
            return message
        body = self.body.decode("utf-8", errors="replace")
        return f"oauth2: cannot fetch token: {status_code}\nResponse: {body}"


class InvalidResponseError(TokenFlowError):
    """Raised when a successful response is missing required fields or is unparseable."""

    def __init__(
        self,
        message: str,
        details: Any | None = None,
        code: str = "INVALID_RESPONSE",
    ) -> None:
        super().__init__(message, code, details)


class TimeoutError(TokenFlowError):  # noqa: A001
    """Raised when a request or an executable runs past its deadline."""

    def __init__(
        self, message: str = "Request timeout", details: Any | None = None
    ) -> None:
        super().__init__(message, "TIMEOUT_ERROR", details)


class NetworkError(TokenFlowError):
    """Raised when a network error occurs."""

    def __init__(
        self, message: str = "Network error", details: Any | None = None
    ) -> None:
        super().__init__(message, "NETWORK_ERROR", details)


class SourceError(TokenFlowError):
    """Raised when a subject-token source fails to produce a token."""

    def __init__(
        self,
        message: str,
        details: Any | None = None,
        code: str = "SOURCE_ERROR",
    ) -> None:
        super().__init__(message, code, details)


class ExecutableExitCodeError(SourceError):
    """Raised when a credential executable exits with a non-zero status."""

    def __init__(self, exit_code: int) -> None:
        super().__init__(
            f"oauth2/google: executable command failed with exit code {exit_code}",
            {"exit_code": exit_code},
            "EXECUTABLE_EXIT_CODE",
        )
        self.exit_code = exit_code


class UserDefinedError(SourceError):
    """Raised when a credential executable reports ``success=false``."""

    cacheable = False

    def __init__(self, error_code: str, error_message: str) -> None:
        super().__init__(
            f"oauth2/google: response contains unsuccessful response: ({error_code}) {error_message}",
            {"code": error_code, "message": error_message},
            "USER_DEFINED_ERROR",
        )
        self.error_code = error_code
        self.error_message = error_message


class MalformedFailureError(InvalidResponseError):
    """Raised when an unsuccessful executable response lacks ``code`` or ``message``."""

    cacheable = False

    def __init__(self) -> None:
        super().__init__(
            "oauth2/google: response must include `error` and `message` fields when unsuccessful",
            code="MALFORMED_FAILURE",
        )


class ExpiredTokenError(InvalidResponseError):
    """Raised when an executable returns an already expired token."""

    cacheable = False

    def __init__(self) -> None:
        super().__init__(
            "oauth2/google: the token returned by the executable is expired", code="EXPIRED_TOKEN"
        )


class InternalError(TokenFlowError):
    """Raised when signing or random generation fails."""

    def __init__(self, message: str, details: Any | None = None) -> None:
        super().__init__(message, "INTERNAL_ERROR", details)


def create_error_from_response(
    status_code: int,
    body: bytes,
    content_type: str = "",
    error_response: dict[str, Any] | None = None,
) -> RetrieveError:
    """Create a RetrieveError from an error status and its (possibly parsed) body."""
    fields = error_response or {}

    def _field(name: str) -> str:
        value = fields.get(name)
        return str(value) if isinstance(value, str) else ""

    return RetrieveError(
        status_code,
        body,
        content_type,
        error_code=_field("error"),
        error_description=_field("error_description"),
        error_uri=_field("error_uri"),
    )


def is_cacheable_error(error: Exception) -> bool:
    """Check if an error read from a cached executable response must be surfaced."""
    return getattr(error, "cacheable", True)
