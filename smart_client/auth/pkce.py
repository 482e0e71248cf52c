"""
Random tokens and PKCE (RFC 7636) helpers.

State values and code verifiers are drawn from the unreserved URL alphabet
with the ``secrets`` CSPRNG; they guard against CSRF and authorization-code
injection.
"""

import base64
import hashlib
import secrets
from dataclasses import dataclass

from smart_client.constants import (
    DEFAULT_RANDOM_TOKEN_LENGTH,
    PKCE_CHALLENGE_METHOD,
    PKCE_VERIFIER_MAX_LENGTH,
    PKCE_VERIFIER_MIN_LENGTH,
    UNRESERVED_CHARACTERS,
)


@dataclass
class PKCEChallenge:
    """PKCE code verifier and challenge pair."""

    code_verifier: str
    code_challenge: str
    code_challenge_method: str = PKCE_CHALLENGE_METHOD


def generate_random_token(length: int | None = None) -> str:
    """
    Generate a URL-safe random string.

    Args:
        length: Number of characters; None or <= 0 gives 122

    Returns:
        String drawn from ``A-Za-z0-9-._~``
    """
    if not length or length <= 0:
        length = DEFAULT_RANDOM_TOKEN_LENGTH
    return "".join(secrets.choice(UNRESERVED_CHARACTERS) for _ in range(length))


def derive_code_challenge(verifier: str) -> str:
    """Compute the S256 code challenge for a verifier."""
    digest = hashlib.sha256(verifier.encode("utf-8")).digest()
    encoded = base64.urlsafe_b64encode(digest).rstrip(b"=")
    return encoded.decode("ascii")


def create_pkce_pair(verifier_length: int = DEFAULT_RANDOM_TOKEN_LENGTH) -> PKCEChallenge:
    """
    Create a PKCE code verifier and challenge pair.

    Args:
        verifier_length: Length of code verifier (43-128 per RFC 7636)

    Returns:
        PKCEChallenge containing verifier and S256 challenge

    Raises:
        ValueError: If verifier_length is outside valid range
    """
    if not (PKCE_VERIFIER_MIN_LENGTH <= verifier_length <= PKCE_VERIFIER_MAX_LENGTH):
        raise ValueError(
            f"Verifier length must be {PKCE_VERIFIER_MIN_LENGTH}-{PKCE_VERIFIER_MAX_LENGTH}, "
            f"got {verifier_length}"
        )

    verifier = generate_random_token(verifier_length)
    return PKCEChallenge(
        code_verifier=verifier,
        code_challenge=derive_code_challenge(verifier),
    )
