"""
Authentication module for the SMART on FHIR client.

Provides PKCE helpers, secure session storage and the session gate.
"""

from smart_client.auth.pkce import (
    PKCEChallenge,
    create_pkce_pair,
    derive_code_challenge,
    generate_random_token,
)
from smart_client.auth.secure_session_store import (
    InMemorySessionStorage,
    RedisSessionStorage,
    SecureSessionStore,
    SessionStorageBackend,
    create_session_store,
)
from smart_client.auth.session_gate import SessionGate

__all__ = [
    "PKCEChallenge",
    "create_pkce_pair",
    "derive_code_challenge",
    "generate_random_token",
    "InMemorySessionStorage",
    "RedisSessionStorage",
    "SecureSessionStore",
    "SessionStorageBackend",
    "create_session_store",
    "SessionGate",
]
