"""
Tests for conformance resolution.
"""

import json
from unittest.mock import patch

import pytest

from smart_client.errors import ConformanceError, TransportError
from smart_client.services.conformance import (
    ConformanceResolver,
    extract_oauth_endpoints,
    extract_resource_types,
)


def _oauth_extension(*sub_extensions):
    return {"rest": [{"security": {"extension": [{"extension": list(sub_extensions)}]}}]}


class TestExtractOAuthEndpoints:
    """Tests for extract_oauth_endpoints function."""

    def test_named_sub_extensions(self, capability_statement):
        """Should read token and authorize URIs by url."""
        token_url, authorize_url = extract_oauth_endpoints(capability_statement)

        assert token_url == "https://auth.example.com/oauth/token"
        assert authorize_url == "https://auth.example.com/oauth/authorize"

    def test_named_in_reverse_order(self):
        """Named sub-extensions should win over position."""
        capability = _oauth_extension(
            {"url": "authorize", "valueUri": "A"},
            {"url": "token", "valueUri": "T"},
        )
        assert extract_oauth_endpoints(capability) == ("T", "A")

    def test_positional_token_then_authorize(self):
        """Unnamed sub-extensions should be read token first."""
        capability = _oauth_extension({"valueUri": "T"}, {"valueUri": "A"})
        assert extract_oauth_endpoints(capability) == ("T", "A")

    @pytest.mark.parametrize(
        "capability",
        [
            {},
            {"rest": []},
            {"rest": [{}]},
            {"rest": [{"security": {}}]},
            {"rest": [{"security": {"extension": []}}]},
            _oauth_extension({"valueUri": "T"}),
            _oauth_extension({"url": "token"}, {"url": "authorize"}),
            _oauth_extension({"valueUri": ""}, {"valueUri": "A"}),
        ],
    )
    def test_unexpected_shape(self, capability):
        """Should reject statements without both URIs."""
        with pytest.raises(ValueError):
            extract_oauth_endpoints(capability)


class TestExtractResourceTypes:
    """Tests for extract_resource_types function."""

    def test_reads_types(self, capability_statement):
        """Should collect rest[0].resource[*].type."""
        assert extract_resource_types(capability_statement) == {
            "Patient",
            "Observation",
            "Condition",
        }

    def test_no_rest(self):
        """Should return an empty set."""
        assert extract_resource_types({}) == set()

    def test_skips_entries_without_type(self):
        """Should ignore resource entries that name no type."""
        capability = {"rest": [{"resource": [{"type": "Patient"}, {"interaction": []}]}]}
        assert extract_resource_types(capability) == {"Patient"}

    @pytest.mark.parametrize(
        "capability",
        [
            {"rest": ["server"]},
            {"rest": [{"resource": "Patient"}]},
            {"rest": [{"resource": ["Patient", "Observation"]}]},
            {"rest": [{"resource": [{"type": ["Patient"]}]}]},
        ],
    )
    def test_malformed_resource_list(self, capability):
        """Should reject resource lists that are not objects with string types."""
        with pytest.raises(ValueError):
            extract_resource_types(capability)


class TestConformanceResolver:
    """Tests for ConformanceResolver."""

    @pytest.mark.asyncio
    async def test_resolve_sets_endpoints_and_persists(
        self, transport, store, session, capability_statement
    ):
        """Should write endpoints, version and resource types, then save."""
        transport.add("GET", session.urls.conformance, body=capability_statement)
        resolver = ConformanceResolver(transport, store)

        await resolver.resolve(session)

        assert session.urls.token_endpoint == "https://auth.example.com/oauth/token"
        assert session.urls.authorize_endpoint == "https://auth.example.com/oauth/authorize"
        assert session.settings.fhir_version == "4.0.1"
        assert "Patient" in session.settings.supported_resource_types

        stored = await store.load(session.key)
        assert stored.urls.token_endpoint == "https://auth.example.com/oauth/token"
        assert stored.urls.authorize_endpoint == "https://auth.example.com/oauth/authorize"

    @pytest.mark.asyncio
    async def test_requests_fhir_json(self, transport, store, session, capability_statement):
        """Should GET the metadata URL with a FHIR JSON Accept header."""
        transport.add("GET", session.urls.conformance, body=capability_statement)

        await ConformanceResolver(transport, store).resolve(session)

        call = transport.calls[0]
        assert call["url"] == "https://fhir.example.com/baseR4/metadata"
        assert call["method"] == "GET"
        assert call["headers"]["Accept"] == "application/fhir+json"

    @pytest.mark.asyncio
    async def test_accepts_json_text(self, transport, store, session, capability_statement):
        """Should parse a statement delivered as a JSON string."""
        transport.add("GET", session.urls.conformance, body=json.dumps(capability_statement))

        await ConformanceResolver(transport, store).resolve(session)

        assert session.urls.endpoints_resolved

    @pytest.mark.asyncio
    async def test_overridden_conformance_url(self, transport, store, session, capability_statement):
        """Should fetch the configured conformance URL."""
        session.urls.conformance = "https://fhir.example.com/custom/metadata"
        transport.add("GET", "https://fhir.example.com/custom/metadata", body=capability_statement)

        await ConformanceResolver(transport, store).resolve(session)

        assert session.urls.endpoints_resolved

    @pytest.mark.asyncio
    async def test_non_200(self, transport, store, session):
        """Should raise ConformanceError with the status."""
        transport.add("GET", session.urls.conformance, status=503, message="Service Unavailable")

        with pytest.raises(ConformanceError) as exc_info:
            await ConformanceResolver(transport, store).resolve(session)

        assert exc_info.value.status == 503
        assert "Service Unavailable" in exc_info.value.message
        assert not session.urls.endpoints_resolved

    @pytest.mark.asyncio
    async def test_missing_security_extension(self, transport, store, session):
        """Should raise ConformanceError when the OAuth extension is missing."""
        transport.add("GET", session.urls.conformance, body={"resourceType": "CapabilityStatement"})

        with pytest.raises(ConformanceError) as exc_info:
            await ConformanceResolver(transport, store).resolve(session)

        assert exc_info.value.status == 200
        assert await store.load(session.key) is None

    @pytest.mark.asyncio
    async def test_malformed_resource_list(self, transport, store, session, capability_statement):
        """Should raise ConformanceError and leave endpoints unset for a malformed resource list."""
        capability_statement["rest"][0]["resource"] = ["Patient", "Observation"]
        transport.add("GET", session.urls.conformance, body=capability_statement)

        with pytest.raises(ConformanceError) as exc_info:
            await ConformanceResolver(transport, store).resolve(session)

        assert exc_info.value.status == 200
        assert not session.urls.endpoints_resolved
        assert await store.load(session.key) is None

    @pytest.mark.asyncio
    async def test_invalid_json(self, transport, store, session):
        """Should raise ConformanceError for non-JSON bodies."""
        transport.add("GET", session.urls.conformance, body="<html>oops</html>")

        with pytest.raises(ConformanceError, match="not valid JSON"):
            await ConformanceResolver(transport, store).resolve(session)

    @pytest.mark.asyncio
    async def test_unreachable(self, transport, store, session):
        """Should wrap transport failures in ConformanceError."""
        transport.add_error("GET", session.urls.conformance, TransportError(session.urls.conformance))

        with pytest.raises(ConformanceError, match="server unreachable") as exc_info:
            await ConformanceResolver(transport, store).resolve(session)

        assert exc_info.value.status is None

    @pytest.mark.asyncio
    async def test_audits_outcome(self, transport, store, session, capability_statement):
        """Should audit resolution success."""
        transport.add("GET", session.urls.conformance, body=capability_statement)

        with patch("smart_client.services.conformance.audit_log") as mock_audit:
            await ConformanceResolver(transport, store).resolve(session)

        assert mock_audit.call_args[0][0] == "conformance.resolved"
