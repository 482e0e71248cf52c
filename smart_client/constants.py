"""
Client constants.

These values are intentionally not configurable via environment variables.
"""

# Unreserved URL characters (RFC 3986 section 2.3)
UNRESERVED_CHARACTERS = "ABCDEFGHIJKLMNOPQRSTUVWXYZabcdefghijklmnopqrstuvwxyz0123456789-._~"

# Random tokens (state, PKCE verifier)
DEFAULT_RANDOM_TOKEN_LENGTH = 122

# RFC 7636 PKCE
PKCE_VERIFIER_MIN_LENGTH = 43
PKCE_VERIFIER_MAX_LENGTH = 128
PKCE_CHALLENGE_METHOD = "S256"

# OAuth
RESPONSE_TYPE_CODE = "code"
GRANT_TYPE_AUTHORIZATION_CODE = "authorization_code"
GRANT_TYPE_REFRESH_TOKEN = "refresh_token"
DEFAULT_TOKEN_TYPE = "Bearer"

# Session storage
SESSION_KEY_PREFIX = "smart:session:"

# Media types
FHIR_JSON_CONTENT_TYPE = "application/fhir+json"
FORM_URLENCODED_CONTENT_TYPE = "application/x-www-form-urlencoded"

# Capability statement
METADATA_PATH = "/metadata"
