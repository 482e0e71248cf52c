"""
Service layer for the SMART on FHIR client.

Contains conformance discovery, the authorization flow, token refresh,
the HTTP transport and FHIR resource operations.
"""

from smart_client.services.authorization import AuthorizationFlow, parse_callback_params
from smart_client.services.conformance import ConformanceResolver
from smart_client.services.fhir_client import FHIRResourceClient
from smart_client.services.oauth import TokenEndpointClient
from smart_client.services.presenter import (
    AuthorizationPresenter,
    BrowserRedirectPresenter,
    LoopbackCallbackPresenter,
)
from smart_client.services.refresh import TokenRefresher
from smart_client.services.transport import AiohttpTransport, HttpTransport, TransportResponse

__all__ = [
    "AuthorizationFlow",
    "parse_callback_params",
    "ConformanceResolver",
    "FHIRResourceClient",
    "TokenEndpointClient",
    "AuthorizationPresenter",
    "BrowserRedirectPresenter",
    "LoopbackCallbackPresenter",
    "TokenRefresher",
    "AiohttpTransport",
    "HttpTransport",
    "TransportResponse",
]
