"""
The persisted Session record.

A Session is plain data. The components in ``smart_client.services`` and
``smart_client.auth`` operate on a Session passed to them and persist it
through the SecureSessionStore after every mutation.
"""

import time
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field

from smart_client.constants import DEFAULT_TOKEN_TYPE, METADATA_PATH, RESPONSE_TYPE_CODE


class FlowStep(str, Enum):
    """Steps of the authorization state machine."""

    IDLE = "idle"
    CONFORMANCE_RESOLVING = "conformance_resolving"
    AWAITING_AUTHORIZATION = "awaiting_authorization"
    EXCHANGING_TOKEN = "exchanging_token"
    AUTHENTICATED = "authenticated"
    FAILED = "failed"


class SessionUrls(BaseModel):
    """Endpoints known for the session."""

    service: str
    conformance: str = ""
    authorize_endpoint: str = ""
    token_endpoint: str = ""
    redirect: str = ""

    @property
    def endpoints_resolved(self) -> bool:
        return bool(self.authorize_endpoint and self.token_endpoint)


class SessionSettings(BaseModel):
    """Client registration and server capabilities."""

    client_id: str
    scope: str = "user/*.*"
    response_type: str = RESPONSE_TYPE_CODE
    language: str | None = None
    supported_resource_types: set[str] = Field(default_factory=set)
    fhir_version: str | None = None
    no_auth_required: bool = False
    pkce_disabled: bool = False


class PendingFlow(BaseModel):
    """Material of an authorization request in flight."""

    state: str
    code_verifier: str | None = None
    code_challenge: str | None = None
    created_at: float = Field(default_factory=time.time)


class AuthState(BaseModel):
    """Tokens of the authenticated principal."""

    access_token: str = ""
    token_type: str = DEFAULT_TOKEN_TYPE
    expires_at_epoch_ms: int | None = None
    refresh_token: str = ""
    subject_id: str | None = None
    scope: str | None = None
    id_token: str | None = None

    def ms_until_expiry(self, now_ms: int | None = None) -> int | None:
        """Milliseconds left before the access token expires, None if unknown."""
        if self.expires_at_epoch_ms is None:
            return None
        if now_ms is None:
            now_ms = int(time.time() * 1000)
        return self.expires_at_epoch_ms - now_ms

    def is_active(self, now_ms: int | None = None) -> bool:
        """Check the token is present and not yet expired."""
        if not self.access_token:
            return False
        remaining = self.ms_until_expiry(now_ms)
        return remaining is None or remaining > 0


class Session(BaseModel):
    """Persisted state of one server + client connection."""

    key: str
    urls: SessionUrls
    settings: SessionSettings
    pending_flow: PendingFlow | None = None
    auth: AuthState = Field(default_factory=AuthState)
    step: FlowStep = FlowStep.IDLE

    @classmethod
    def new(
        cls,
        key: str,
        service_url: str,
        client_id: str,
        redirect_url: str,
        scope: str = "user/*.*",
        language: str | None = None,
        conformance_url: str | None = None,
    ) -> "Session":
        """Create a fresh session for a server + client identity."""
        service = service_url.rstrip("/")
        return cls(
            key=key,
            urls=SessionUrls(
                service=service,
                conformance=conformance_url or f"{service}{METADATA_PATH}",
                redirect=redirect_url,
            ),
            settings=SessionSettings(client_id=client_id, scope=scope, language=language),
        )

    def matches(self, service_url: str, client_id: str, redirect_url: str) -> bool:
        """Check a stored session belongs to the given identity and redirect target."""
        return (
            self.urls.service == service_url.rstrip("/")
            and self.settings.client_id == client_id
            and self.urls.redirect == redirect_url
        )

    def clear_pending_flow(self) -> None:
        """Wipe state, verifier and challenge of the request in flight."""
        self.pending_flow = None

    def clear_auth(self) -> None:
        """Forget tokens and the authenticated subject."""
        self.auth = AuthState()

    def to_dict(self) -> dict[str, Any]:
        """Serialize session to a JSON-compatible dictionary."""
        return self.model_dump(mode="json")

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Session":
        """Deserialize session from dictionary."""
        return cls.model_validate(data)
