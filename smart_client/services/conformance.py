"""
Conformance (CapabilityStatement) resolution.

Discovers the OAuth authorize and token endpoints, the FHIR version and the
supported resource types from the server's ``/metadata`` document.
"""

from typing import Any

from smart_client.audit import AuditEvent, audit_log
from smart_client.auth.secure_session_store import SecureSessionStore
from smart_client.config.logging import get_logger
from smart_client.constants import FHIR_JSON_CONTENT_TYPE, METADATA_PATH
from smart_client.errors import ConformanceError, TransportError
from smart_client.models.session import Session
from smart_client.services.transport import HttpTransport

logger = get_logger(__name__)

# Sub-extension URLs of the SMART oauth-uris extension
TOKEN_EXTENSION_URL = "token"
AUTHORIZE_EXTENSION_URL = "authorize"


def extract_oauth_endpoints(capability: dict[str, Any]) -> tuple[str, str]:
    """
    Read the token and authorize URIs from a capability statement.

    The oauth-uris extension sits at ``rest[0].security.extension[0]``. Its
    sub-extensions are matched by ``url`` when the server names them, and by
    position (token first, authorize second) otherwise.

    Returns:
        Tuple of (token_url, authorize_url)

    Raises:
        ValueError: If the statement does not have the expected shape
    """
    try:
        security = capability["rest"][0]["security"]
        sub_extensions = security["extension"][0]["extension"]
    except (KeyError, IndexError, TypeError) as e:
        raise ValueError("capability statement has no OAuth security extension") from e

    if not isinstance(sub_extensions, list) or len(sub_extensions) < 2:
        raise ValueError("OAuth security extension must carry token and authorize URIs")

    by_url = {
        ext.get("url"): ext.get("valueUri")
        for ext in sub_extensions
        if isinstance(ext, dict)
    }
    if by_url.get(TOKEN_EXTENSION_URL) and by_url.get(AUTHORIZE_EXTENSION_URL):
        return by_url[TOKEN_EXTENSION_URL], by_url[AUTHORIZE_EXTENSION_URL]

    try:
        token_url = sub_extensions[0]["valueUri"]
        authorize_url = sub_extensions[1]["valueUri"]
    except (KeyError, TypeError) as e:
        raise ValueError("OAuth security extension has no valueUri entries") from e

    if not token_url or not authorize_url:
        raise ValueError("OAuth security extension has empty endpoint URIs")

    return token_url, authorize_url


def extract_resource_types(capability: dict[str, Any]) -> set[str]:
    """
    Read ``rest[0].resource[*].type`` from a capability statement.

    Raises:
        ValueError: If the resource list does not have the expected shape
    """
    rest_list = capability.get("rest") or []
    if not rest_list:
        return set()
    if not isinstance(rest_list, list) or not isinstance(rest_list[0], dict):
        raise ValueError("capability statement rest entry must be an object")

    resources = rest_list[0].get("resource") or []
    if not isinstance(resources, list):
        raise ValueError("capability statement resource list must be an array")

    resource_types = set()
    for resource in resources:
        if not isinstance(resource, dict):
            raise ValueError("capability statement resource entries must be objects")
        resource_type = resource.get("type")
        if resource_type is None:
            continue
        if not isinstance(resource_type, str):
            raise ValueError("capability statement resource type must be a string")
        if resource_type:
            resource_types.add(resource_type)
    return resource_types


class ConformanceResolver:
    """Fetches the capability statement and writes its findings into a Session."""

    def __init__(self, transport: HttpTransport, store: SecureSessionStore):
        self._transport = transport
        self._store = store

    async def fetch(self, session: Session) -> dict[str, Any]:
        """
        Fetch and decode the capability statement.

        Raises:
            ConformanceError: On non-200 responses or undecodable bodies
        """
        url = session.urls.conformance or f"{session.urls.service}{METADATA_PATH}"

        try:
            response = await self._transport.call(
                url,
                "GET",
                headers={"Accept": FHIR_JSON_CONTENT_TYPE},
            )
        except TransportError as e:
            raise ConformanceError(None, "server unreachable", url) from e

        if response.status != 200:
            raise ConformanceError(response.status, response.message or str(response.body), url)

        try:
            capability = response.json()
        except ValueError as e:
            raise ConformanceError(response.status, "response is not valid JSON", url) from e

        if not isinstance(capability, dict):
            raise ConformanceError(response.status, "response is not a JSON object", url)

        return capability

    async def resolve(self, session: Session) -> Session:
        """
        Resolve endpoints and capabilities for ``session`` and persist it.

        Raises:
            ConformanceError: If the statement is unreachable or malformed
        """
        try:
            capability = await self.fetch(session)
            try:
                token_url, authorize_url = extract_oauth_endpoints(capability)
                resource_types = extract_resource_types(capability)
            except ValueError as e:
                raise ConformanceError(200, str(e), session.urls.conformance) from e
        except ConformanceError as e:
            audit_log(
                AuditEvent.CONFORMANCE_FAILURE,
                session_key=session.key,
                success=False,
                error=e.message,
            )
            logger.error("Conformance resolution failed", url=e.url, status=e.status)
            raise

        session.urls.token_endpoint = token_url
        session.urls.authorize_endpoint = authorize_url
        session.settings.fhir_version = capability.get("fhirVersion")
        session.settings.supported_resource_types = resource_types
        await self._store.save(session.key, session)

        audit_log(AuditEvent.CONFORMANCE_RESOLVED, session_key=session.key)
        logger.info(
            "Resolved OAuth endpoints from conformance statement",
            authorize_url=authorize_url,
            token_url=token_url,
            fhir_version=session.settings.fhir_version,
            resource_types=len(session.settings.supported_resource_types),
        )
        return session
