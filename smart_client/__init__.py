"""
SMART on FHIR OAuth 2.0 client.

Authorization code flow with PKCE, token refresh and session persistence
for applications talking to a FHIR resource server.
"""

from smart_client.client import SmartOnFhirClient
from smart_client.errors import (
    AuthenticationError,
    AuthorizationCancelledError,
    AuthorizationDeniedError,
    ConfigurationError,
    ConformanceError,
    InvalidRefreshTokenError,
    NotAuthenticatedError,
    ResourceRequestError,
    SmartClientError,
    StateMismatchError,
    TokenExchangeError,
    TransportError,
    UnauthorizedError,
)
from smart_client.models import AuthResult, FlowStep, Session

__version__ = "0.1.0"

__all__ = [
    "SmartOnFhirClient",
    "AuthResult",
    "FlowStep",
    "Session",
    "AuthenticationError",
    "AuthorizationCancelledError",
    "AuthorizationDeniedError",
    "ConfigurationError",
    "ConformanceError",
    "InvalidRefreshTokenError",
    "NotAuthenticatedError",
    "ResourceRequestError",
    "SmartClientError",
    "StateMismatchError",
    "TokenExchangeError",
    "TransportError",
    "UnauthorizedError",
]
