"""
SMART on FHIR authorization code flow.

The flow leaves the application between the authorization request and the
callback, so it is modelled as a state machine whose current step is
persisted with the Session:

    IDLE -> CONFORMANCE_RESOLVING -> AWAITING_AUTHORIZATION
         -> EXCHANGING_TOKEN -> AUTHENTICATED

FAILED is reachable from every step. A fresh process resumes the flow by
loading the Session and calling ``complete_from_callback``.
"""

import hmac
from collections.abc import Mapping
from typing import Any
from urllib.parse import parse_qsl, quote, urlencode, urlparse

from smart_client.audit import AuditEvent, audit_log
from smart_client.auth.pkce import create_pkce_pair, generate_random_token
from smart_client.auth.secure_session_store import SecureSessionStore
from smart_client.config.logging import get_logger, set_flow_id, truncate_secret
from smart_client.config.settings import get_settings
from smart_client.constants import DEFAULT_RANDOM_TOKEN_LENGTH, PKCE_CHALLENGE_METHOD
from smart_client.errors import (
    AuthenticationError,
    AuthorizationDeniedError,
    ConfigurationError,
    StateMismatchError,
    TokenExchangeError,
)
from smart_client.models.auth import AuthResult
from smart_client.models.session import FlowStep, PendingFlow, Session
from smart_client.services.conformance import ConformanceResolver
from smart_client.services.oauth import TokenEndpointClient
from smart_client.services.presenter import AuthorizationPresenter

logger = get_logger(__name__)

# Parameters owned by the flow; caller extras cannot replace them
RESERVED_AUTHORIZATION_PARAMS = frozenset(
    {
        "response_type",
        "client_id",
        "redirect_uri",
        "state",
        "code_challenge",
        "code_challenge_method",
    }
)


def parse_callback_params(callback: str | Mapping[str, Any]) -> dict[str, str]:
    """
    Extract the parameters of an authorization callback.

    Query parameters are read first. When the query carries neither ``state``
    nor ``code`` the fragment is read instead, which also covers servers that
    answer with ``#/?state=...&code=...``.

    Args:
        callback: Callback URL, or an already parsed parameter mapping

    Returns:
        Parameter name to first value
    """
    if isinstance(callback, Mapping):
        params = {}
        for name, value in callback.items():
            if isinstance(value, (list, tuple)):
                value = value[0] if value else ""
            params[name] = str(value)
        return params

    parsed = urlparse(callback)
    params = dict(parse_qsl(parsed.query))
    if "state" in params or "code" in params or "error" in params:
        return params

    fragment = parsed.fragment.lstrip("/").lstrip("?")
    return dict(parse_qsl(fragment))


class AuthorizationFlow:
    """
    Runs the authorization code flow (with PKCE unless disabled) for a Session.

    Every step persists the Session before control leaves the flow.
    """

    def __init__(
        self,
        resolver: ConformanceResolver,
        token_client: TokenEndpointClient,
        store: SecureSessionStore,
        presenter: AuthorizationPresenter,
        state_length: int | None = None,
        verifier_length: int | None = None,
    ):
        """
        Args:
            resolver: Conformance resolver for endpoint discovery
            token_client: Token endpoint client for the code exchange
            store: Session store
            presenter: Shows the authorization page to the user
            state_length: Length of the state token (uses settings default if not provided)
            verifier_length: Length of the PKCE verifier (uses settings default if not provided)

        Raises:
            ConfigurationError: If ``state_length`` is below the default length
        """
        settings = get_settings()
        state_length = state_length or settings.state_length
        if state_length < DEFAULT_RANDOM_TOKEN_LENGTH:
            raise ConfigurationError(
                f"State length must be at least {DEFAULT_RANDOM_TOKEN_LENGTH}, got {state_length}",
                details={"state_length": state_length},
            )

        self._resolver = resolver
        self._token_client = token_client
        self._store = store
        self._presenter = presenter
        self._state_length = state_length
        self._verifier_length = verifier_length or settings.pkce_verifier_length

    @property
    def presenter(self) -> AuthorizationPresenter:
        return self._presenter

    def _new_pending_flow(self, session: Session) -> PendingFlow:
        """Generate fresh state and, with PKCE enabled, a verifier and challenge."""
        if session.settings.pkce_disabled:
            return PendingFlow(state=generate_random_token(self._state_length))

        pkce = create_pkce_pair(self._verifier_length)
        return PendingFlow(
            state=generate_random_token(self._state_length),
            code_verifier=pkce.code_verifier,
            code_challenge=pkce.code_challenge,
        )

    def build_authorization_url(
        self,
        session: Session,
        extra_params: Mapping[str, str] | None = None,
    ) -> str:
        """
        Build the authorization URL for the pending request of ``session``.

        Args:
            session: Session with resolved endpoints and a pending flow
            extra_params: Additional query parameters (may override ``aud``)

        Returns:
            Authorization URL with every parameter URL-component encoded

        Raises:
            ValueError: If endpoints are unresolved or no request is pending
        """
        if not session.urls.authorize_endpoint:
            raise ValueError("authorize endpoint not resolved")
        pending = session.pending_flow
        if pending is None:
            raise ValueError("no authorization request pending")

        params: dict[str, str] = {
            "response_type": session.settings.response_type,
            "client_id": session.settings.client_id,
            "scope": session.settings.scope,
            "redirect_uri": session.urls.redirect,
            "state": pending.state,
        }

        if not session.settings.pkce_disabled and pending.code_challenge:
            params["code_challenge"] = pending.code_challenge
            params["code_challenge_method"] = PKCE_CHALLENGE_METHOD

        language = session.settings.language
        if language and len(language) == 2:
            params["language"] = language

        # SMART audience: the FHIR server the token is meant for
        params["aud"] = session.urls.service

        for name, value in (extra_params or {}).items():
            if name in RESERVED_AUTHORIZATION_PARAMS:
                logger.warning("Ignoring reserved authorization parameter", param=name)
                continue
            params[name] = str(value)

        authorize_url = session.urls.authorize_endpoint
        separator = "&" if "?" in authorize_url else "?"
        return f"{authorize_url}{separator}{urlencode(params, safe='', quote_via=quote)}"

    async def _fail(self, session: Session, reason: str) -> None:
        """Roll back the pending request and persist the FAILED step."""
        session.clear_pending_flow()
        session.step = FlowStep.FAILED
        await self._store.save(session.key, session)
        audit_log(
            AuditEvent.AUTH_FAILURE,
            session_key=session.key,
            success=False,
            error=reason,
        )

    async def start(
        self,
        session: Session,
        extra_params: Mapping[str, str] | None = None,
    ) -> AuthResult | None:
        """
        Begin an authorization attempt.

        Any earlier pending request is replaced, so its callback will fail the
        state check.

        Args:
            session: Session to authorize
            extra_params: Additional authorization query parameters

        Returns:
            The token response when the presenter captured the callback,
            otherwise None (the application resumes with ``complete_from_callback``)

        Raises:
            ConformanceError: If the endpoints cannot be resolved
            AuthorizationCancelledError: If the presenter gave up waiting
            OSError: If the presenter could not listen for the callback
        """
        if session.settings.no_auth_required:
            logger.debug("Server requires no authorization, skipping flow")
            return None

        set_flow_id()
        session.pending_flow = self._new_pending_flow(session)
        session.step = FlowStep.CONFORMANCE_RESOLVING
        await self._store.save(session.key, session)

        audit_log(
            AuditEvent.AUTH_START,
            session_key=session.key,
            details={"pkce": not session.settings.pkce_disabled},
        )

        try:
            await self._resolver.resolve(session)
        except AuthenticationError as e:
            await self._fail(session, e.message)
            raise

        authorization_url = self.build_authorization_url(session, extra_params)
        session.step = FlowStep.AWAITING_AUTHORIZATION
        await self._store.save(session.key, session)

        logger.info(
            "Presenting authorization page",
            authorize_url=session.urls.authorize_endpoint,
            client_id=session.settings.client_id,
            scope=session.settings.scope,
            state=truncate_secret(session.pending_flow.state),
        )

        try:
            callback_url = await self._presenter.present(authorization_url)
        except AuthenticationError as e:
            await self._fail(session, e.message)
            raise
        except Exception as e:
            await self._fail(session, f"presenter failed: {e}")
            raise

        if callback_url is None:
            return None
        return await self.complete_from_callback(session, callback_url)

    async def complete_from_callback(
        self,
        session: Session,
        callback: str | Mapping[str, Any],
    ) -> AuthResult | None:
        """
        Finish the flow from the authorization server's redirect.

        Args:
            session: Session holding the pending request
            callback: Callback URL or its parsed parameters

        Returns:
            The token response, or None if ``callback`` is not an authorization callback

        Raises:
            AuthorizationDeniedError: If the server redirected with an OAuth error
            StateMismatchError: If the state differs from the pending request
            TokenExchangeError: If the code cannot be exchanged
        """
        params = parse_callback_params(callback)

        if "error" in params:
            error = AuthorizationDeniedError(params["error"], params.get("error_description"))
            logger.warning("Authorization server returned an error", error=params["error"])
            await self._fail(session, error.message)
            raise error

        state = params.get("state")
        code = params.get("code")
        if not state and not code:
            return None

        audit_log(AuditEvent.AUTH_CALLBACK, session_key=session.key)

        pending = session.pending_flow
        if pending is None or not hmac.compare_digest(
            (state or "").encode(), pending.state.encode()
        ):
            audit_log(
                AuditEvent.SECURITY_INVALID_STATE,
                session_key=session.key,
                success=False,
                error="callback state does not match a pending request",
            )
            error = StateMismatchError()
            await self._fail(session, error.message)
            raise error

        if not code:
            error = TokenExchangeError(None, "callback carries no authorization code")
            await self._fail(session, error.message)
            raise error

        session.step = FlowStep.EXCHANGING_TOKEN
        await self._store.save(session.key, session)

        try:
            result = await self._token_client.exchange_code(session, code)
        except AuthenticationError as e:
            await self._fail(session, e.message)
            raise

        auth = self._token_client.apply(session, result)
        session.clear_pending_flow()
        session.step = FlowStep.AUTHENTICATED
        await self._store.save(session.key, session)

        await self._presenter.reset(session.urls.redirect)

        audit_log(
            AuditEvent.AUTH_SUCCESS,
            session_key=session.key,
            subject_id=auth.subject_id,
        )
        logger.info(
            "Authorization complete",
            subject_id=auth.subject_id,
            expires_in_ms=auth.ms_until_expiry(),
        )
        return result
