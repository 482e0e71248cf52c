"""
Secure session storage with optional encryption.

Persists the Session record of each server + client connection so that the
pending authorization request survives the navigation to the authorization
server and back. Backends are in-memory (scoped to the running process) and
Redis; records can be encrypted at rest with a master key.
"""

import base64
import hashlib
import json
import os
import time
from abc import ABC, abstractmethod

from cryptography.fernet import Fernet, InvalidToken
from pydantic import ValidationError

from smart_client.audit import truncate_session_key
from smart_client.config.logging import get_logger
from smart_client.config.settings import get_settings
from smart_client.constants import SESSION_KEY_PREFIX
from smart_client.models.session import Session

logger = get_logger(__name__)


class MasterKeyEncryption:
    """
    Encryption using a master key with PBKDF2-derived Fernet keys.

    Every record gets its own random salt, so two saves of the same session
    never share a key.
    """

    def __init__(self, master_key: str, pbkdf2_iterations: int | None = None):
        """
        Initialize encryption with master key.

        Args:
            master_key: Master key for deriving per-record keys
            pbkdf2_iterations: Number of PBKDF2 iterations (uses settings default if not provided)
        """
        if not master_key:
            raise ValueError("Master key cannot be empty")
        self._master_key = master_key.encode() if isinstance(master_key, str) else master_key
        self._pbkdf2_iterations = pbkdf2_iterations or get_settings().pbkdf2_iterations

    def _derive_key(self, salt: bytes) -> bytes:
        """Derive a Fernet-compatible key using PBKDF2."""
        dk = hashlib.pbkdf2_hmac(
            "sha256",
            self._master_key,
            salt,
            iterations=self._pbkdf2_iterations,
            dklen=32,
        )
        # Fernet requires base64-encoded 32-byte key
        return base64.urlsafe_b64encode(dk)

    def encrypt(self, data: str) -> str:
        """
        Encrypt data.

        Returns:
            Encrypted data with format: v1:salt:ciphertext
        """
        salt = os.urandom(16)
        f = Fernet(self._derive_key(salt))

        encrypted = f.encrypt(data.encode())
        salt_b64 = base64.urlsafe_b64encode(salt).decode()
        return f"v1:{salt_b64}:{encrypted.decode()}"

    def decrypt(self, encrypted_data: str) -> str:
        """
        Decrypt data produced by ``encrypt``.

        Raises:
            ValueError: If decryption fails or format is invalid
        """
        parts = encrypted_data.split(":", 2)
        if len(parts) != 3 or parts[0] != "v1":
            raise ValueError("Invalid encrypted data format")

        try:
            salt = base64.urlsafe_b64decode(parts[1])
            f = Fernet(self._derive_key(salt))
            return f.decrypt(parts[2].encode()).decode()
        except InvalidToken as e:
            raise ValueError("Decryption failed: invalid token or key") from e
        except (TypeError, ValueError) as e:
            raise ValueError(f"Decryption failed: {e}") from e


class SessionStorageBackend(ABC):
    """Abstract base class for key-value session storage backends."""

    @abstractmethod
    async def get(self, key: str) -> str | None:
        """Get value by key."""
        ...

    @abstractmethod
    async def set(self, key: str, value: str, ttl: int | None = None) -> None:
        """Set key-value pair with optional TTL."""
        ...

    @abstractmethod
    async def delete(self, key: str) -> None:
        """Delete key."""
        ...


class InMemorySessionStorage(SessionStorageBackend):
    """In-memory storage, scoped to the running process."""

    def __init__(self):
        self._store: dict[str, tuple[str, float | None]] = {}  # key -> (value, expires_at)

    async def get(self, key: str) -> str | None:
        if key not in self._store:
            return None
        value, expires_at = self._store[key]
        if expires_at and time.time() > expires_at:
            del self._store[key]
            return None
        return value

    async def set(self, key: str, value: str, ttl: int | None = None) -> None:
        expires_at = time.time() + ttl if ttl else None
        self._store[key] = (value, expires_at)

    async def delete(self, key: str) -> None:
        self._store.pop(key, None)


class RedisSessionStorage(SessionStorageBackend):
    """Redis-backed session storage."""

    def __init__(self, redis_url: str, require_tls: bool = False):
        """
        Initialize Redis storage.

        Args:
            redis_url: Redis connection URL
            require_tls: If True, require rediss:// scheme
        """
        self._redis_url = redis_url
        self._client = None

        if require_tls and not redis_url.startswith("rediss://"):
            raise ValueError(
                "Redis TLS required but URL does not use rediss:// scheme. "
                "Set SMART_CLIENT_REQUIRE_REDIS_TLS=false to disable this check."
            )

        if not redis_url.startswith("rediss://"):
            logger.warning(
                "Redis connection not using TLS",
                redis_url=redis_url[:20] + "...",
            )

    async def _get_client(self):
        """Lazily initialize Redis client."""
        if self._client is None:
            import redis.asyncio as redis

            self._client = redis.from_url(self._redis_url, decode_responses=True)
        return self._client

    async def get(self, key: str) -> str | None:
        client = await self._get_client()
        return await client.get(key)

    async def set(self, key: str, value: str, ttl: int | None = None) -> None:
        client = await self._get_client()
        if ttl:
            await client.setex(key, ttl, value)
        else:
            await client.set(key, value)

    async def delete(self, key: str) -> None:
        client = await self._get_client()
        await client.delete(key)

    async def close(self) -> None:
        """Close Redis connection."""
        if self._client:
            await self._client.aclose()
            self._client = None


class SecureSessionStore:
    """
    Secure session storage with optional encryption.

    Provides:
    - One record per server URL + client ID pair
    - Optional encryption at rest using master key
    - Optional expiration
    - Support for multiple storage backends
    """

    KEY_PREFIX = SESSION_KEY_PREFIX

    def __init__(
        self,
        backend: SessionStorageBackend,
        master_key: str | None = None,
        session_ttl: int | None = None,
        pbkdf2_iterations: int | None = None,
    ):
        """
        Initialize secure session store.

        Args:
            backend: Storage backend (InMemorySessionStorage or RedisSessionStorage)
            master_key: Optional master key for encryption
            session_ttl: Optional record TTL in seconds
            pbkdf2_iterations: Optional PBKDF2 iteration override
        """
        self._backend = backend
        self._session_ttl = session_ttl
        self._encryption: MasterKeyEncryption | None = None

        if master_key:
            self._encryption = MasterKeyEncryption(master_key, pbkdf2_iterations)
            logger.info("Session encryption enabled with master key")
        else:
            logger.debug("Session encryption disabled - no master key configured")

    @property
    def backend(self) -> SessionStorageBackend:
        return self._backend

    @classmethod
    def make_key(cls, service_url: str, client_id: str) -> str:
        """Create the storage key for a server URL + client ID pair."""
        identity = f"{service_url.rstrip('/')}|{client_id}"
        return f"{cls.KEY_PREFIX}{hashlib.sha256(identity.encode()).hexdigest()}"

    def _serialize(self, session: Session) -> str:
        """Serialize session data, optionally encrypting."""
        data = json.dumps(session.to_dict())
        if self._encryption:
            return self._encryption.encrypt(data)
        return data

    def _deserialize(self, data: str) -> Session:
        """Deserialize session data, decrypting if needed."""
        if data.startswith("v1:"):
            if not self._encryption:
                raise ValueError("Encrypted session found but no master key configured")
            data = self._encryption.decrypt(data)
        return Session.from_dict(json.loads(data))

    async def load(self, key: str) -> Session | None:
        """Load the session stored under ``key``."""
        data = await self._backend.get(key)
        if not data:
            return None

        try:
            return self._deserialize(data)
        except (ValueError, ValidationError) as e:
            # json.JSONDecodeError is a ValueError
            logger.error(
                "Failed to deserialize session",
                session_key=truncate_session_key(key),
                error=str(e),
            )
            await self._backend.delete(key)
            return None

    async def save(self, key: str, session: Session) -> None:
        """Persist ``session`` under ``key``."""
        await self._backend.set(key, self._serialize(session), ttl=self._session_ttl)
        logger.debug(
            "Session saved",
            session_key=truncate_session_key(key),
            step=session.step.value,
        )

    async def clear(self, key: str) -> None:
        """Delete the session stored under ``key``."""
        await self._backend.delete(key)
        logger.debug("Session deleted", session_key=truncate_session_key(key))


def create_session_store() -> SecureSessionStore:
    """
    Build a session store from settings.

    Uses Redis if configured, otherwise falls back to in-memory storage.
    """
    settings = get_settings()

    backend: SessionStorageBackend
    if settings.redis_url:
        backend = RedisSessionStorage(
            redis_url=settings.redis_url,
            require_tls=settings.require_redis_tls,
        )
        logger.info("Using Redis session storage")
    else:
        backend = InMemorySessionStorage()
        logger.info("Using in-memory session storage - sessions end with the process")

    return SecureSessionStore(
        backend=backend,
        master_key=settings.master_key,
        session_ttl=settings.session_ttl,
        pbkdf2_iterations=settings.pbkdf2_iterations,
    )
