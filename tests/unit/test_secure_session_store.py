"""
Tests for secure session storage.
"""

import json
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from smart_client.auth.secure_session_store import (
    InMemorySessionStorage,
    MasterKeyEncryption,
    RedisSessionStorage,
    SecureSessionStore,
    create_session_store,
)
from smart_client.models.session import FlowStep, PendingFlow


class TestMasterKeyEncryption:
    """Tests for MasterKeyEncryption."""

    def test_round_trip(self):
        """Should decrypt what it encrypted."""
        encryption = MasterKeyEncryption("master-key", pbkdf2_iterations=1000)
        encrypted = encryption.encrypt("secret data")

        assert encrypted.startswith("v1:")
        assert "secret data" not in encrypted
        assert encryption.decrypt(encrypted) == "secret data"

    def test_fresh_salt_per_record(self):
        """Two encryptions of the same data should differ."""
        encryption = MasterKeyEncryption("master-key", pbkdf2_iterations=1000)
        assert encryption.encrypt("same") != encryption.encrypt("same")

    def test_wrong_key_fails(self):
        """Should refuse data encrypted with another key."""
        encrypted = MasterKeyEncryption("key-one", pbkdf2_iterations=1000).encrypt("data")

        with pytest.raises(ValueError, match="Decryption failed"):
            MasterKeyEncryption("key-two", pbkdf2_iterations=1000).decrypt(encrypted)

    def test_invalid_format(self):
        """Should reject data without the version prefix."""
        encryption = MasterKeyEncryption("master-key", pbkdf2_iterations=1000)
        with pytest.raises(ValueError, match="Invalid encrypted data format"):
            encryption.decrypt("not-encrypted")

    def test_empty_key_rejected(self):
        """Should reject an empty master key."""
        with pytest.raises(ValueError, match="Master key cannot be empty"):
            MasterKeyEncryption("")


class TestInMemorySessionStorage:
    """Tests for InMemorySessionStorage."""

    @pytest.mark.asyncio
    async def test_set_get_delete(self):
        """Should store, return and delete values."""
        storage = InMemorySessionStorage()

        await storage.set("k", "v")
        assert await storage.get("k") == "v"

        await storage.delete("k")
        assert await storage.get("k") is None

    @pytest.mark.asyncio
    async def test_ttl_expiry(self):
        """Should drop values once their TTL passed."""
        storage = InMemorySessionStorage()

        with patch("smart_client.auth.secure_session_store.time.time", return_value=1000.0):
            await storage.set("k", "v", ttl=10)
        with patch("smart_client.auth.secure_session_store.time.time", return_value=1011.0):
            assert await storage.get("k") is None

    @pytest.mark.asyncio
    async def test_delete_missing_key(self):
        """Deleting an unknown key should not fail."""
        await InMemorySessionStorage().delete("missing")


class TestRedisSessionStorage:
    """Tests for RedisSessionStorage."""

    def test_tls_required(self):
        """Should reject plain redis:// when TLS is required."""
        with pytest.raises(ValueError, match="Redis TLS required"):
            RedisSessionStorage("redis://localhost:6379", require_tls=True)

    @pytest.mark.asyncio
    async def test_set_with_ttl_uses_setex(self):
        """Should use SETEX when a TTL is given."""
        storage = RedisSessionStorage("rediss://localhost:6379")
        client = MagicMock()
        client.setex = AsyncMock()
        client.set = AsyncMock()
        storage._client = client

        await storage.set("k", "v", ttl=60)
        await storage.set("k2", "v2")

        client.setex.assert_awaited_once_with("k", 60, "v")
        client.set.assert_awaited_once_with("k2", "v2")

    @pytest.mark.asyncio
    async def test_close(self):
        """Should close and drop the client."""
        storage = RedisSessionStorage("rediss://localhost:6379")
        client = MagicMock()
        client.aclose = AsyncMock()
        storage._client = client

        await storage.close()

        client.aclose.assert_awaited_once()
        assert storage._client is None


class TestSecureSessionStore:
    """Tests for SecureSessionStore."""

    def test_make_key_is_per_server_and_client(self):
        """Different server or client should give different keys."""
        key = SecureSessionStore.make_key("https://a.example.com", "client")

        assert key.startswith("smart:session:")
        assert key == SecureSessionStore.make_key("https://a.example.com/", "client")
        assert key != SecureSessionStore.make_key("https://b.example.com", "client")
        assert key != SecureSessionStore.make_key("https://a.example.com", "other")

    @pytest.mark.asyncio
    async def test_save_and_load(self, store, session):
        """Should return an equal session after saving."""
        session.pending_flow = PendingFlow(state="s", code_verifier="v", code_challenge="c")
        session.settings.supported_resource_types = {"Patient", "Observation"}
        session.step = FlowStep.AWAITING_AUTHORIZATION

        await store.save(session.key, session)
        loaded = await store.load(session.key)

        assert loaded == session
        assert loaded is not session

    @pytest.mark.asyncio
    async def test_load_missing(self, store):
        """Should return None for unknown keys."""
        assert await store.load("smart:session:missing") is None

    @pytest.mark.asyncio
    async def test_clear(self, store, session):
        """Should delete the stored session."""
        await store.save(session.key, session)
        await store.clear(session.key)

        assert await store.load(session.key) is None

    @pytest.mark.asyncio
    async def test_encrypted_at_rest(self, session):
        """Stored record should not contain the plain session."""
        backend = InMemorySessionStorage()
        store = SecureSessionStore(backend, master_key="master", pbkdf2_iterations=1000)
        session.auth.access_token = "very-secret-token"

        await store.save(session.key, session)
        raw = await backend.get(session.key)

        assert raw.startswith("v1:")
        assert "very-secret-token" not in raw
        assert (await store.load(session.key)).auth.access_token == "very-secret-token"

    @pytest.mark.asyncio
    async def test_encrypted_record_without_key_is_dropped(self, session):
        """Should delete an encrypted record it cannot read."""
        backend = InMemorySessionStorage()
        encrypted_store = SecureSessionStore(backend, master_key="master", pbkdf2_iterations=1000)
        await encrypted_store.save(session.key, session)

        plain_store = SecureSessionStore(backend)

        assert await plain_store.load(session.key) is None
        assert await backend.get(session.key) is None

    @pytest.mark.asyncio
    async def test_corrupt_record_is_dropped(self, store):
        """Should treat undecodable records as absent."""
        await store.backend.set("smart:session:bad", "{not json")

        assert await store.load("smart:session:bad") is None
        assert await store.backend.get("smart:session:bad") is None

    @pytest.mark.asyncio
    async def test_invalid_record_is_dropped(self, store):
        """Should treat records that fail validation as absent."""
        await store.backend.set("smart:session:bad", json.dumps({"key": "x"}))

        assert await store.load("smart:session:bad") is None

    @pytest.mark.asyncio
    async def test_ttl_passed_to_backend(self, session):
        """Should pass the session TTL on every save."""
        backend = MagicMock()
        backend.set = AsyncMock()
        store = SecureSessionStore(backend, session_ttl=600)

        await store.save(session.key, session)

        assert backend.set.call_args.kwargs["ttl"] == 600


class TestCreateSessionStore:
    """Tests for create_session_store factory."""

    def test_in_memory_by_default(self):
        """Should use in-memory storage without a Redis URL."""
        store = create_session_store()
        assert isinstance(store.backend, InMemorySessionStorage)

    def test_redis_when_configured(self, monkeypatch):
        """Should use Redis storage when a URL is configured."""
        from smart_client.config.settings import reset_settings

        monkeypatch.setenv("SMART_CLIENT_REDIS_URL", "rediss://cache.example.com:6380")
        reset_settings()

        store = create_session_store()
        assert isinstance(store.backend, RedisSessionStorage)
