"""
Token endpoint calls shared by the authorization flow and token refresh.

Provides:
- Authorization code exchange (with PKCE code_verifier when enabled)
- Refresh token exchange
- Writing token responses into the Session
"""

import time
from urllib.parse import urlencode

from smart_client.config.logging import get_logger, truncate_secret
from smart_client.config.settings import get_settings
from smart_client.constants import (
    FORM_URLENCODED_CONTENT_TYPE,
    GRANT_TYPE_AUTHORIZATION_CODE,
    GRANT_TYPE_REFRESH_TOKEN,
)
from smart_client.errors import InvalidRefreshTokenError, TokenExchangeError, TransportError
from smart_client.models.auth import AuthResult
from smart_client.models.session import AuthState, Session
from smart_client.services.transport import HttpTransport

logger = get_logger(__name__)


class TokenEndpointClient:
    """
    Client for the OAuth token endpoint of a session.

    Handles code exchange and refresh; both POST a form-urlencoded body and
    parse the same JSON response.
    """

    def __init__(self, transport: HttpTransport, expiry_margin_seconds: int | None = None):
        """
        Args:
            transport: HTTP transport
            expiry_margin_seconds: Subtracted from expires_in so a token is not
                used while it expires in flight (uses settings default if not provided)
        """
        self._transport = transport
        if expiry_margin_seconds is None:
            expiry_margin_seconds = get_settings().token_expiry_margin_seconds
        self._expiry_margin_ms = expiry_margin_seconds * 1000

    async def exchange_code(self, session: Session, code: str) -> AuthResult:
        """
        Exchange an authorization code for tokens.

        Raises:
            TokenExchangeError: If the token endpoint does not answer 200
        """
        data = {
            "grant_type": GRANT_TYPE_AUTHORIZATION_CODE,
            "redirect_uri": session.urls.redirect,
            "client_id": session.settings.client_id,
            "code": code,
        }

        pending = session.pending_flow
        if not session.settings.pkce_disabled and pending and pending.code_verifier:
            data["code_verifier"] = pending.code_verifier

        logger.debug(
            "Exchanging authorization code",
            token_url=session.urls.token_endpoint,
            code=truncate_secret(code),
            pkce=("code_verifier" in data),
        )
        return await self._post(session, data, GRANT_TYPE_AUTHORIZATION_CODE)

    async def refresh(self, session: Session) -> AuthResult:
        """
        Exchange the stored refresh token for a new token pair.

        Raises:
            InvalidRefreshTokenError: If the session holds no refresh token
            TokenExchangeError: If the token endpoint does not answer 200
        """
        refresh_token = session.auth.refresh_token
        if not refresh_token:
            raise InvalidRefreshTokenError()

        data = {
            "grant_type": GRANT_TYPE_REFRESH_TOKEN,
            "refresh_token": refresh_token,
        }
        return await self._post(session, data, GRANT_TYPE_REFRESH_TOKEN)

    async def _post(self, session: Session, data: dict[str, str], grant_type: str) -> AuthResult:
        """POST a token request and parse the response."""
        token_url = session.urls.token_endpoint
        if not token_url:
            raise TokenExchangeError(None, "token endpoint not resolved", grant_type)

        try:
            response = await self._transport.call(
                token_url,
                "POST",
                headers={"Content-Type": FORM_URLENCODED_CONTENT_TYPE},
                body=urlencode(data),
            )
        except TransportError as e:
            raise TokenExchangeError(None, "token endpoint unreachable", grant_type) from e

        if response.status != 200:
            message = response.message or str(response.body)
            logger.error(
                "Token request failed",
                grant_type=grant_type,
                status_code=response.status,
                error=str(response.body)[:200],
            )
            raise TokenExchangeError(response.status, message, grant_type)

        try:
            token_data = response.json()
            if not isinstance(token_data, dict):
                raise ValueError("token response is not a JSON object")
            return AuthResult.from_token_response(token_data)
        except ValueError as e:
            logger.error("Invalid token response", grant_type=grant_type, error=str(e))
            raise TokenExchangeError(
                response.status, "token endpoint returned an invalid response", grant_type
            ) from e

    def apply(
        self,
        session: Session,
        result: AuthResult,
        keep_previous: bool = False,
        now_ms: int | None = None,
    ) -> AuthState:
        """
        Overwrite ``session.auth`` with a token response.

        With ``keep_previous`` (refresh), fields the response omits keep their
        earlier values.
        """
        if now_ms is None:
            now_ms = int(time.time() * 1000)

        expires_at = None
        if result.expires_in is not None:
            expires_at = now_ms + result.expires_in * 1000 - self._expiry_margin_ms

        previous = session.auth if keep_previous else AuthState()
        session.auth = AuthState(
            access_token=result.access_token,
            token_type=result.token_type or previous.token_type,
            expires_at_epoch_ms=expires_at,
            refresh_token=result.refresh_token or previous.refresh_token,
            subject_id=result.subject_id or previous.subject_id,
            scope=result.scope or previous.scope,
            id_token=result.id_token or previous.id_token,
        )
        return session.auth
