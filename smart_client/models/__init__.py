"""
Pydantic models for the SMART on FHIR client.

This module contains models for:
- The persisted Session record
- Token endpoint responses
"""

from smart_client.models.auth import AuthResult
from smart_client.models.session import (
    AuthState,
    FlowStep,
    PendingFlow,
    Session,
    SessionSettings,
    SessionUrls,
)

__all__ = [
    "AuthResult",
    "AuthState",
    "FlowStep",
    "PendingFlow",
    "Session",
    "SessionSettings",
    "SessionUrls",
]
