"""
FHIR resource operations authorized through a SessionGate.

Requests are refused outright while the session is not logged in. A response
that rejects the token logs the session out and raises UnauthorizedError; the
request is never repeated with the same token.
"""

import asyncio
from collections.abc import Mapping
from typing import Any

import aiohttp
from fhirpy import AsyncFHIRClient
from fhirpy.base.exceptions import BaseFHIRError, OperationOutcome, ResourceNotFound

from smart_client.audit import AuditEvent, audit_log
from smart_client.auth.session_gate import SessionGate
from smart_client.config.logging import get_logger
from smart_client.config.settings import get_settings
from smart_client.constants import FHIR_JSON_CONTENT_TYPE
from smart_client.errors import ResourceRequestError, TransportError

logger = get_logger(__name__)


class ResponseStatus:
    """
    Remembers the HTTP status of the last response of a fhirpy client.

    fhirpy reports failures as OperationOutcome without the status code, so
    this is installed as the aiohttp ``raise_for_status`` hook, which aiohttp
    awaits for every response before fhirpy reads it.
    """

    def __init__(self) -> None:
        self.status: int | None = None

    async def __call__(self, response: aiohttp.ClientResponse) -> None:
        self.status = response.status


class FHIRResourceClient:
    """Create, update, search and read FHIR resources on the session's server."""

    def __init__(self, gate: SessionGate, timeout: float | None = None):
        self._gate = gate
        self._timeout = timeout

    def get_client(self, response_status: ResponseStatus) -> AsyncFHIRClient:
        """
        Build a fhirpy client for the session's server.

        Authorizes with the session's token unless the server needs no auth.

        Raises:
            NotAuthenticatedError: If the session is not logged in
        """
        timeout_val = self._timeout or get_settings().request_timeout
        client_kwargs: dict[str, Any] = {
            "url": self._gate.base_url,
            "aiohttp_config": {
                "timeout": aiohttp.ClientTimeout(total=timeout_val),
                "raise_for_status": response_status,
            },
            "extra_headers": {
                "Accept": FHIR_JSON_CONTENT_TYPE,
                "Content-Type": FHIR_JSON_CONTENT_TYPE,
            },
        }
        if not self._gate.session.settings.no_auth_required:
            client_kwargs["authorization"] = self._gate.authorization_header()

        return AsyncFHIRClient(**client_kwargs)

    async def _request(
        self,
        event: str,
        method: str,
        path: str,
        resource_type: str,
        resource_id: str | None = None,
        body: dict[str, Any] | None = None,
        params: Mapping[str, str] | None = None,
    ) -> Any:
        """Perform an authorized request and return the decoded body."""
        response_status = ResponseStatus()
        client = self.get_client(response_status)

        try:
            result = await client.execute(
                path,
                method=method,
                data=body,
                params=dict(params) if params else None,
            )
        except ResourceNotFound as e:
            await self._reject(event, response_status.status or 404, str(e), None, resource_type, resource_id)
        except OperationOutcome as e:
            await self._reject(
                event,
                response_status.status or 400,
                str(e),
                e.resource,
                resource_type,
                resource_id,
            )
        except BaseFHIRError as e:
            await self._reject(event, response_status.status or 400, str(e), None, resource_type, resource_id)
        except ValueError as e:
            # Success status with a body that is not JSON
            await self._reject(
                event,
                response_status.status or 200,
                f"invalid JSON response: {e}",
                None,
                resource_type,
                resource_id,
            )
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            url = f"{self._gate.base_url}/{path}"
            self._audit(event, resource_type, resource_id, self._gate.subject_id, error=str(e))
            raise TransportError(url, str(e)) from e

        self._audit(event, resource_type, resource_id, self._gate.subject_id)
        return result

    async def _reject(
        self,
        event: str,
        status: int,
        message: str,
        body: Any,
        resource_type: str,
        resource_id: str | None,
    ) -> None:
        """Log out on a rejected token, otherwise raise ResourceRequestError."""
        subject_id = self._gate.subject_id
        unauthorized = await self._gate.handle_unauthorized(status, body if body is not None else message)
        self._audit(event, resource_type, resource_id, subject_id, error=f"HTTP {status}")
        if unauthorized is not None:
            raise unauthorized

        logger.warning(
            "FHIR request failed",
            resource_type=resource_type,
            resource_id=resource_id,
            status_code=status,
        )
        raise ResourceRequestError(status, message, body=body)

    def _audit(
        self,
        event: str,
        resource_type: str,
        resource_id: str | None,
        subject_id: str | None,
        error: str | None = None,
    ) -> None:
        audit_log(
            event,
            session_key=self._gate.session.key,
            subject_id=subject_id,
            resource_type=resource_type,
            resource_id=resource_id,
            success=error is None,
            error=error,
        )

    async def create(self, resource: dict[str, Any]) -> Any:
        """
        Create a resource with POST ``[base]/[type]``.

        Raises:
            NotAuthenticatedError: If the session is not logged in
            UnauthorizedError: If the server rejected the access token
            ResourceRequestError: On any other failure response
        """
        resource_type = _resource_type_of(resource)
        return await self._request(
            AuditEvent.RESOURCE_CREATE,
            "POST",
            resource_type,
            resource_type,
            body=resource,
        )

    async def update(self, resource: dict[str, Any]) -> Any:
        """
        Update a resource with PUT ``[base]/[type]/[id]``.

        Raises:
            ValueError: If the resource has no ``id``
        """
        resource_type = _resource_type_of(resource)
        resource_id = resource.get("id")
        if not resource_id:
            raise ValueError("Resource to update must carry an id")
        return await self._request(
            AuditEvent.RESOURCE_UPDATE,
            "PUT",
            f"{resource_type}/{resource_id}",
            resource_type,
            resource_id=resource_id,
            body=resource,
        )

    async def read(self, resource_type: str, resource_id: str) -> Any:
        """Read a resource with GET ``[base]/[type]/[id]``."""
        return await self._request(
            AuditEvent.RESOURCE_READ,
            "GET",
            f"{resource_type}/{resource_id}",
            resource_type,
            resource_id=resource_id,
        )

    async def search(
        self,
        resource_type: str,
        params: Mapping[str, str] | None = None,
    ) -> Any:
        """Search with GET ``[base]/[type]?params``; returns the Bundle."""
        return await self._request(
            AuditEvent.RESOURCE_SEARCH,
            "GET",
            resource_type,
            resource_type,
            params=params,
        )


def _resource_type_of(resource: dict[str, Any]) -> str:
    resource_type = resource.get("resourceType")
    if not resource_type:
        raise ValueError("Resource must carry a resourceType")
    return resource_type
