"""
Audit logging for security-relevant events.

Provides structured audit logging for authorization attempts, token
operations, logout and resource access.
"""

import logging
from typing import Any

import structlog

# Create dedicated audit logger
_audit_logger = structlog.wrap_logger(
    logging.getLogger("smart.audit"),
    wrapper_class=structlog.stdlib.BoundLogger,
)


class AuditEvent:
    """Constants for audit event types."""

    # Authentication events
    AUTH_START = "auth.start"
    AUTH_CALLBACK = "auth.callback"
    AUTH_SUCCESS = "auth.success"
    AUTH_FAILURE = "auth.failure"
    AUTH_LOGOUT = "auth.logout"

    # Token events
    TOKEN_REFRESH = "token.refresh"
    TOKEN_REFRESH_FAILURE = "token.refresh_failure"

    # Conformance events
    CONFORMANCE_RESOLVED = "conformance.resolved"
    CONFORMANCE_FAILURE = "conformance.failure"

    # Resource access events
    RESOURCE_READ = "resource.read"
    RESOURCE_SEARCH = "resource.search"
    RESOURCE_CREATE = "resource.create"
    RESOURCE_UPDATE = "resource.update"

    # Security events
    SECURITY_INVALID_STATE = "security.invalid_state"
    SECURITY_INVALID_TOKEN = "security.invalid_token"


# Logging constants
SESSION_KEY_VISIBLE_CHARS = 24


def truncate_session_key(session_key: str, visible_chars: int = SESSION_KEY_VISIBLE_CHARS) -> str:
    """Truncate a session key for logging while preserving enough for correlation."""
    if len(session_key) > visible_chars:
        return session_key[:visible_chars] + "..."
    return session_key


def audit_log(
    event: str,
    *,
    session_key: str | None = None,
    subject_id: str | None = None,
    resource_type: str | None = None,
    resource_id: str | None = None,
    success: bool = True,
    error: str | None = None,
    details: dict[str, Any] | None = None,
) -> None:
    """
    Log an audit event.

    Args:
        event: Event type from AuditEvent constants
        session_key: Optional session storage key
        subject_id: Optional authenticated principal (Patient/Practitioner id)
        resource_type: Optional FHIR resource type
        resource_id: Optional resource ID
        success: Whether the operation succeeded
        error: Optional error message if failed
        details: Optional additional details
    """
    log_data: dict[str, Any] = {
        "audit_event": event,
        "success": success,
    }

    if session_key:
        log_data["session_key"] = truncate_session_key(session_key)
    if subject_id:
        log_data["subject_id"] = subject_id
    if resource_type:
        log_data["resource_type"] = resource_type
    if resource_id:
        log_data["resource_id"] = resource_id
    if error:
        log_data["error"] = error
    if details:
        log_data["details"] = details

    if success:
        _audit_logger.info(event, **log_data)
    else:
        _audit_logger.warning(event, **log_data)
