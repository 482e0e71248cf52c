"""
Custom error types for the SMART on FHIR client.

Every failure of the authorization lifecycle is surfaced to the caller as one
of these errors, carrying the HTTP status and server message where there is
one. Nothing in the client retries on its own.
"""

from typing import Any


class SmartClientError(Exception):
    """Base exception for all SMART on FHIR client errors."""

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        """Convert error to dictionary for serialization."""
        return {
            "error": self.__class__.__name__,
            "message": self.message,
            "details": self.details,
        }


# Authorization lifecycle errors


class AuthenticationError(SmartClientError):
    """Raised when the authorization flow cannot complete."""

    pass


class ConformanceError(AuthenticationError):
    """Raised when the capability statement is unreachable or malformed."""

    def __init__(self, status: int | None, message: str, url: str | None = None):
        self.status = status
        self.url = url
        text = f"Conformance statement could not be resolved: {message}"
        if status is not None:
            text = f"Conformance statement could not be resolved ({status}): {message}"
        super().__init__(text, details={"status": status, "url": url})


class StateMismatchError(AuthenticationError):
    """Raised when the callback state does not match the pending request."""

    def __init__(self, message: str = "Server response state differs from local state"):
        super().__init__(message)


class TokenExchangeError(AuthenticationError):
    """Raised when the token endpoint rejects a code or refresh token."""

    def __init__(self, status: int | None, message: str, grant_type: str | None = None):
        self.status = status
        self.grant_type = grant_type
        text = f"Token request failed: {message}"
        if status is not None:
            text = f"Token request failed ({status}): {message}"
        super().__init__(text, details={"status": status, "grant_type": grant_type})


class InvalidRefreshTokenError(AuthenticationError):
    """Raised when a refresh is requested without a stored refresh token."""

    def __init__(self, message: str = "No refresh token available, re-authentication required"):
        super().__init__(message)


class AuthorizationDeniedError(AuthenticationError):
    """Raised when the authorization server redirects back with an error."""

    def __init__(self, error: str, description: str | None = None):
        self.error = error
        self.description = description
        message = f"Authorization denied: {error}"
        if description:
            message += f" ({description})"
        super().__init__(message, details={"error": error, "error_description": description})


class AuthorizationCancelledError(AuthenticationError):
    """Raised when the authorization UI closes without delivering a callback."""

    def __init__(self, message: str = "Authorization window closed before the callback arrived"):
        super().__init__(message)


# Resource access errors


class NotAuthenticatedError(SmartClientError):
    """Raised when an authorized request is attempted while logged out."""

    def __init__(self, message: str = "Not logged in"):
        super().__init__(message)


class UnauthorizedError(SmartClientError):
    """Raised when the resource server rejects the access token."""

    def __init__(self, status: int, message: str = "Access token rejected by the resource server"):
        self.status = status
        super().__init__(message, details={"status": status})


class ResourceRequestError(SmartClientError):
    """Raised when a resource operation returns an unexpected status."""

    def __init__(self, status: int, message: str, body: Any = None):
        self.status = status
        self.body = body
        super().__init__(f"Resource request failed ({status}): {message}", details={"status": status})


# Transport errors


class TransportError(SmartClientError):
    """Raised when an HTTP request could not be performed at all."""

    def __init__(self, url: str, original_error: str | None = None):
        self.url = url
        super().__init__(
            f"HTTP request failed: {url}",
            details={"url": url, "original_error": original_error},
        )


# Configuration errors


class ConfigurationError(SmartClientError):
    """Raised when the client is configured with invalid values."""

    pass
