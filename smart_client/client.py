"""
SMART on FHIR client facade.

``SmartOnFhirClient.create`` loads the Session of a server + client identity
from the store (or initialises a new one) and wires the resolver, flow,
refresher, gate and resource client around it.
"""

from collections.abc import Mapping
from typing import Any

from smart_client.auth.secure_session_store import SecureSessionStore, create_session_store
from smart_client.auth.session_gate import SessionGate
from smart_client.config.logging import get_logger
from smart_client.config.settings import get_settings
from smart_client.errors import ConfigurationError
from smart_client.models.auth import AuthResult
from smart_client.models.session import FlowStep, Session
from smart_client.services.authorization import AuthorizationFlow
from smart_client.services.conformance import ConformanceResolver
from smart_client.services.fhir_client import FHIRResourceClient
from smart_client.services.oauth import TokenEndpointClient
from smart_client.services.presenter import AuthorizationPresenter, BrowserRedirectPresenter
from smart_client.services.refresh import TokenRefresher
from smart_client.services.transport import AiohttpTransport, HttpTransport

logger = get_logger(__name__)


class SmartOnFhirClient:
    """
    Authorization lifecycle and resource access for one FHIR server.

    Use ``create`` rather than the constructor so the persisted Session is
    picked up.
    """

    def __init__(
        self,
        session: Session,
        store: SecureSessionStore,
        transport: HttpTransport,
        presenter: AuthorizationPresenter,
    ):
        self._session = session
        self._store = store
        self._transport = transport

        self._resolver = ConformanceResolver(transport, store)
        self._token_client = TokenEndpointClient(transport)
        self._flow = AuthorizationFlow(self._resolver, self._token_client, store, presenter)
        self._refresher = TokenRefresher(self._token_client, self._resolver, store)
        self._gate = SessionGate(session, store)
        self._resources = FHIRResourceClient(self._gate)

    @classmethod
    async def create(
        cls,
        server_url: str,
        client_id: str,
        redirect_url: str,
        store: SecureSessionStore | None = None,
        transport: HttpTransport | None = None,
        presenter: AuthorizationPresenter | None = None,
        scope: str | None = None,
        conformance_url: str | None = None,
    ) -> "SmartOnFhirClient":
        """
        Load or initialise the client for a server + client identity.

        A stored session is reused only if it was created for the same redirect
        target; otherwise it is replaced by a fresh one.

        Args:
            server_url: FHIR service base URL
            client_id: OAuth client identifier
            redirect_url: Registered redirect URI
            store: Session store (built from settings if not provided)
            transport: HTTP transport (aiohttp if not provided)
            presenter: Authorization presenter (system browser if not provided)
            scope: Requested scope (uses settings default if not provided)
            conformance_url: Capability statement URL (defaults to ``{server}/metadata``)
        """
        settings = get_settings()
        store = store or create_session_store()
        key = SecureSessionStore.make_key(server_url, client_id)

        session = await store.load(key)
        if session is not None and session.matches(server_url, client_id, redirect_url):
            logger.debug("Rehydrated stored session", step=session.step.value)
            changed = False
            if scope and scope != session.settings.scope:
                session.settings.scope = scope
                changed = True
            if conformance_url and conformance_url != session.urls.conformance:
                session.urls.conformance = conformance_url
                changed = True
            if changed:
                await store.save(key, session)
        else:
            session = Session.new(
                key,
                server_url,
                client_id,
                redirect_url,
                scope=scope or settings.default_scope,
                language=settings.default_language,
                conformance_url=conformance_url,
            )
            await store.save(key, session)
            logger.debug("Initialised new session", service=session.urls.service)

        return cls(
            session,
            store,
            transport or AiohttpTransport(),
            presenter or BrowserRedirectPresenter(),
        )

    @property
    def session(self) -> Session:
        return self._session

    @property
    def resources(self) -> FHIRResourceClient:
        return self._resources

    @property
    def gate(self) -> SessionGate:
        return self._gate

    @property
    def step(self) -> FlowStep:
        return self._session.step

    # Authorization lifecycle

    async def start(self, extra_params: Mapping[str, str] | None = None) -> AuthResult | None:
        """Begin authorization; see ``AuthorizationFlow.start``."""
        return await self._flow.start(self._session, extra_params)

    async def complete_from_callback(self, callback: str | Mapping[str, Any]) -> AuthResult | None:
        """Finish authorization from the redirect; see ``AuthorizationFlow.complete_from_callback``."""
        return await self._flow.complete_from_callback(self._session, callback)

    async def refresh(self) -> AuthResult | None:
        return await self._refresher.refresh(self._session)

    async def resolve_conformance(self) -> Session:
        return await self._resolver.resolve(self._session)

    def is_logged_in(self) -> bool:
        return self._gate.is_logged_in()

    def get_access_token(self) -> str | None:
        return self._gate.get_access_token()

    def authorization_header(self) -> str:
        return self._gate.authorization_header()

    async def logout(self) -> None:
        await self._gate.logout()

    # Configuration

    async def set_scope(self, scope: str) -> None:
        self._session.settings.scope = scope
        await self._save()

    async def set_conformance_url(self, conformance_url: str) -> None:
        """Use a capability statement URL other than ``{server}/metadata``."""
        self._session.urls.conformance = conformance_url
        self._session.urls.authorize_endpoint = ""
        self._session.urls.token_endpoint = ""
        await self._save()

    async def set_language(self, language: str | None) -> None:
        """
        Set the language hint of the authorization page.

        Raises:
            ConfigurationError: If ``language`` is not a two-letter code
        """
        if language is not None and len(language) != 2:
            raise ConfigurationError(
                f"Language must be a two-letter code, got {language!r}",
                details={"language": language},
            )
        self._session.settings.language = language
        await self._save()

    async def set_pkce_enabled(self, enabled: bool) -> None:
        self._session.settings.pkce_disabled = not enabled
        await self._save()

    async def set_no_auth_required(self, no_auth_required: bool) -> None:
        """Mark the server as open; authorization calls then become no-ops."""
        self._session.settings.no_auth_required = no_auth_required
        await self._save()

    async def _save(self) -> None:
        await self._store.save(self._session.key, self._session)
