"""
Login status and access token of a Session.

Resource collaborators check ``is_logged_in`` before authorized requests and
report 401 / invalid-token responses through ``handle_unauthorized`` so that a
rejected token is dropped instead of being sent again.
"""

import json
from typing import Any

from smart_client.audit import AuditEvent, audit_log
from smart_client.auth.secure_session_store import SecureSessionStore
from smart_client.config.logging import get_logger
from smart_client.errors import NotAuthenticatedError, UnauthorizedError
from smart_client.models.session import FlowStep, Session

logger = get_logger(__name__)

# Markers of a rejected token in error bodies (RFC 6750 error codes, OperationOutcome issue codes)
TOKEN_REJECTION_MARKERS = ("invalid_token", "expired_token", "token expired", "token is expired")
TOKEN_REJECTION_ISSUE_CODES = frozenset({"expired", "login"})


def is_token_rejection(status: int, body: Any = None) -> bool:
    """Check whether a resource response means the access token was not accepted."""
    if status == 401:
        return True
    if body is None:
        return False

    if isinstance(body, dict):
        issues = body.get("issue") if body.get("resourceType") == "OperationOutcome" else None
        if isinstance(issues, list):
            for issue in issues:
                if isinstance(issue, dict) and issue.get("code") in TOKEN_REJECTION_ISSUE_CODES:
                    return True
        text = json.dumps(body)
    else:
        text = str(body)

    text = text.lower()
    return any(marker in text for marker in TOKEN_REJECTION_MARKERS)


class SessionGate:
    """Answers login questions for a Session and performs local logout."""

    def __init__(self, session: Session, store: SecureSessionStore):
        self._session = session
        self._store = store

    @property
    def session(self) -> Session:
        return self._session

    @property
    def base_url(self) -> str:
        """FHIR service base URL resource requests go to."""
        return self._session.urls.service

    @property
    def subject_id(self) -> str | None:
        """Authenticated principal (e.g. ``Patient/1``), if known."""
        return self._session.auth.subject_id

    def is_logged_in(self, now_ms: int | None = None) -> bool:
        """True iff auth is required, a token is held and it has not expired."""
        if self._session.settings.no_auth_required:
            return False
        return self._session.auth.is_active(now_ms)

    def get_access_token(self) -> str | None:
        return self._session.auth.access_token or None

    def authorization_header(self) -> str:
        """
        Value of the ``Authorization`` request header.

        Raises:
            NotAuthenticatedError: If the session is not logged in
        """
        token = self.require_access_token()
        token_type = self._session.auth.token_type or "Bearer"
        return f"{token_type} {token}"

    def require_access_token(self) -> str:
        """
        Return the access token of a logged-in session.

        Raises:
            NotAuthenticatedError: If the session is not logged in
        """
        if not self.is_logged_in():
            raise NotAuthenticatedError()
        return self._session.auth.access_token

    async def logout(self) -> None:
        """Forget tokens and subject locally. The server is not contacted."""
        subject_id = self._session.auth.subject_id
        self._session.clear_auth()
        self._session.clear_pending_flow()
        self._session.step = FlowStep.IDLE
        await self._store.save(self._session.key, self._session)

        audit_log(AuditEvent.AUTH_LOGOUT, session_key=self._session.key, subject_id=subject_id)
        logger.info("Logged out", subject_id=subject_id)

    async def handle_unauthorized(self, status: int, body: Any = None) -> UnauthorizedError | None:
        """
        Log out if a resource response rejected the access token.

        Returns:
            The error the caller should raise, or None if the token was not rejected
        """
        if not is_token_rejection(status, body):
            return None

        audit_log(
            AuditEvent.SECURITY_INVALID_TOKEN,
            session_key=self._session.key,
            subject_id=self._session.auth.subject_id,
            success=False,
            details={"status": status},
        )
        await self.logout()
        return UnauthorizedError(status)
