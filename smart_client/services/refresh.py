"""
Access token refresh.

Only one refresh_token exchange can succeed: the server invalidates the old
refresh token as soon as it issues a new one. Refreshes of this process are
therefore serialized, and a caller that waited on the lock uses the refresh
token written by the one before it.
"""

import asyncio

from smart_client.audit import AuditEvent, audit_log
from smart_client.auth.secure_session_store import SecureSessionStore
from smart_client.config.logging import get_logger
from smart_client.errors import AuthenticationError
from smart_client.models.auth import AuthResult
from smart_client.models.session import FlowStep, Session
from smart_client.services.conformance import ConformanceResolver
from smart_client.services.oauth import TokenEndpointClient

logger = get_logger(__name__)


class TokenRefresher:
    """Exchanges a session's refresh token for a new token pair."""

    def __init__(
        self,
        token_client: TokenEndpointClient,
        resolver: ConformanceResolver,
        store: SecureSessionStore,
    ):
        self._token_client = token_client
        self._resolver = resolver
        self._store = store
        self._lock = asyncio.Lock()

    async def refresh(self, session: Session) -> AuthResult | None:
        """
        Refresh the access token of ``session``.

        Args:
            session: Session holding the refresh token

        Returns:
            The token response, or None when the server needs no authorization

        Raises:
            InvalidRefreshTokenError: If the session holds no refresh token
            TokenExchangeError: If the token endpoint rejects the refresh token
            ConformanceError: If the token endpoint had to be resolved and could not be
        """
        if session.settings.no_auth_required:
            return None

        async with self._lock:
            try:
                if not session.urls.token_endpoint:
                    await self._resolver.resolve(session)

                result = await self._token_client.refresh(session)
            except AuthenticationError as e:
                audit_log(
                    AuditEvent.TOKEN_REFRESH_FAILURE,
                    session_key=session.key,
                    subject_id=session.auth.subject_id,
                    success=False,
                    error=e.message,
                )
                logger.warning("Token refresh failed", error=e.message)
                raise

            auth = self._token_client.apply(session, result, keep_previous=True)
            session.step = FlowStep.AUTHENTICATED
            await self._store.save(session.key, session)

        audit_log(
            AuditEvent.TOKEN_REFRESH,
            session_key=session.key,
            subject_id=auth.subject_id,
        )
        logger.info("Refreshed access token", expires_in_ms=auth.ms_until_expiry())
        return result
