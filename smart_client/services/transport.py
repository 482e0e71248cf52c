"""
HTTP transport used for conformance, token and resource requests.

The client only depends on the ``HttpTransport`` contract; ``AiohttpTransport``
is the default implementation.
"""

import asyncio
import json
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any

import aiohttp

from smart_client.config.logging import get_logger
from smart_client.config.settings import get_settings
from smart_client.errors import TransportError

logger = get_logger(__name__)


@dataclass
class TransportResponse:
    """Status and body of an HTTP response."""

    status: int
    body: Any = None
    message: str = ""

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300

    def json(self) -> Any:
        """
        Return the body decoded as JSON.

        Raises:
            ValueError: If a text body is not valid JSON
        """
        if isinstance(self.body, (str, bytes)):
            return json.loads(self.body)
        return self.body


class HttpTransport(ABC):
    """Contract for performing HTTP requests."""

    @abstractmethod
    async def call(
        self,
        url: str,
        method: str = "GET",
        headers: dict[str, str] | None = None,
        body: str | bytes | dict[str, Any] | None = None,
    ) -> TransportResponse:
        """
        Perform a request.

        Args:
            url: Absolute request URL
            method: HTTP method
            headers: Request headers
            body: Raw body, or a mapping to send as JSON

        Returns:
            TransportResponse with the decoded body

        Raises:
            TransportError: If no response could be obtained
        """
        ...


class AiohttpTransport(HttpTransport):
    """HttpTransport backed by aiohttp."""

    def __init__(self, timeout: float | None = None):
        """
        Args:
            timeout: Total request timeout in seconds (uses settings default if not provided)
        """
        self._timeout = timeout or get_settings().request_timeout

    async def call(
        self,
        url: str,
        method: str = "GET",
        headers: dict[str, str] | None = None,
        body: str | bytes | dict[str, Any] | None = None,
    ) -> TransportResponse:
        request_kwargs: dict[str, Any] = {"headers": headers or {}}
        if isinstance(body, dict):
            request_kwargs["json"] = body
        elif body is not None:
            request_kwargs["data"] = body

        client_timeout = aiohttp.ClientTimeout(total=self._timeout)

        try:
            async with aiohttp.ClientSession(timeout=client_timeout) as session:
                async with session.request(method, url, **request_kwargs) as resp:
                    text = await resp.text()
                    return TransportResponse(
                        status=resp.status,
                        body=_decode_body(text),
                        message=resp.reason or "",
                    )
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.warning("HTTP request failed", url=url, method=method, error=str(e))
            raise TransportError(url, str(e)) from e


def _decode_body(text: str) -> Any:
    """Decode a JSON body, keeping the raw text if it is not JSON."""
    if not text:
        return None
    try:
        return json.loads(text)
    except ValueError:
        return text
