"""
Shared pytest fixtures for SMART on FHIR client tests.
"""

import os
from typing import Any

import pytest

# Set test environment variables before importing client modules
# Ensure no Redis in tests - use in-memory storage
# Set to empty string to override any .env file value
os.environ["SMART_CLIENT_REDIS_URL"] = ""
os.environ["SMART_CLIENT_MASTER_KEY"] = ""

from smart_client.auth.secure_session_store import (  # noqa: E402
    InMemorySessionStorage,
    SecureSessionStore,
)
from smart_client.models.session import Session  # noqa: E402
from smart_client.services.presenter import AuthorizationPresenter  # noqa: E402
from smart_client.services.transport import HttpTransport, TransportResponse  # noqa: E402

SERVICE_URL = "https://fhir.example.com/baseR4"
CLIENT_ID = "test-client"
REDIRECT_URL = "https://app.example.com/callback"
TOKEN_URL = "https://auth.example.com/oauth/token"
AUTHORIZE_URL = "https://auth.example.com/oauth/authorize"


class FakeTransport(HttpTransport):
    """
    In-memory HttpTransport.

    Responses are queued per (method, url). The last queued response of a
    route keeps being returned once the others are used up.
    """

    def __init__(self):
        self.calls: list[dict[str, Any]] = []
        self._routes: dict[tuple[str, str], list[TransportResponse | Exception]] = {}

    def add(self, method: str, url: str, status: int = 200, body: Any = None, message: str = ""):
        self._routes.setdefault((method, url), []).append(
            TransportResponse(status=status, body=body, message=message)
        )

    def add_error(self, method: str, url: str, error: Exception):
        self._routes.setdefault((method, url), []).append(error)

    def calls_to(self, url: str, method: str | None = None) -> list[dict[str, Any]]:
        return [
            call
            for call in self.calls
            if call["url"] == url and (method is None or call["method"] == method)
        ]

    async def call(self, url, method="GET", headers=None, body=None):
        self.calls.append({"url": url, "method": method, "headers": headers or {}, "body": body})
        queue = self._routes.get((method, url))
        if not queue:
            raise AssertionError(f"Unexpected request: {method} {url}")
        response = queue.pop(0) if len(queue) > 1 else queue[0]
        if isinstance(response, Exception):
            raise response
        return response


class FakePresenter(AuthorizationPresenter):
    """Records presented URLs; returns ``callback`` (None means full navigation)."""

    def __init__(self, callback: str | None = None):
        self.callback = callback
        self.presented: list[str] = []
        self.resets: list[str] = []

    async def present(self, authorization_url: str) -> str | None:
        self.presented.append(authorization_url)
        if callable(self.callback):
            return self.callback(authorization_url)
        return self.callback

    async def reset(self, redirect_url: str) -> None:
        self.resets.append(redirect_url)


@pytest.fixture(autouse=True)
def reset_settings_cache():
    """Reset cached settings between tests to avoid state leakage."""
    from smart_client.config.settings import reset_settings

    reset_settings()
    yield
    reset_settings()


@pytest.fixture
def transport() -> FakeTransport:
    """Fake HTTP transport with no routes."""
    return FakeTransport()


@pytest.fixture
def presenter() -> FakePresenter:
    """Presenter that performs a full-page navigation."""
    return FakePresenter()


@pytest.fixture
def store() -> SecureSessionStore:
    """Unencrypted in-memory session store."""
    return SecureSessionStore(backend=InMemorySessionStorage())


@pytest.fixture
def session() -> Session:
    """Fresh session for the test server and client."""
    return Session.new(
        SecureSessionStore.make_key(SERVICE_URL, CLIENT_ID),
        SERVICE_URL,
        CLIENT_ID,
        REDIRECT_URL,
    )


@pytest.fixture
def resolved_session(session: Session) -> Session:
    """Session whose OAuth endpoints are already known."""
    session.urls.token_endpoint = TOKEN_URL
    session.urls.authorize_endpoint = AUTHORIZE_URL
    return session


@pytest.fixture
def capability_statement() -> dict[str, Any]:
    """CapabilityStatement with the SMART oauth-uris extension."""
    return {
        "resourceType": "CapabilityStatement",
        "status": "active",
        "fhirVersion": "4.0.1",
        "rest": [
            {
                "mode": "server",
                "security": {
                    "extension": [
                        {
                            "url": "http://fhir-registry.smarthealthit.org/StructureDefinition/oauth-uris",
                            "extension": [
                                {"url": "token", "valueUri": TOKEN_URL},
                                {"url": "authorize", "valueUri": AUTHORIZE_URL},
                            ],
                        }
                    ],
                    "service": [{"text": "OAuth2 using SMART-on-FHIR profile"}],
                },
                "resource": [
                    {"type": "Patient"},
                    {"type": "Observation"},
                    {"type": "Condition"},
                ],
            }
        ],
    }


@pytest.fixture
def token_response() -> dict[str, Any]:
    """Successful token endpoint response."""
    return {
        "access_token": "abc",
        "expires_in": 3600,
        "refresh_token": "r1",
        "token_type": "Bearer",
        "patient": "Patient/1",
    }
