"""
Authorization UI presenters.

A presenter takes the authorization URL to the user. A full-page navigation
presenter leaves the application and returns nothing; the application later
hands the callback to ``AuthorizationFlow.complete_from_callback``. A
capturing presenter (embedded browser, loopback listener) returns the callback
URL so the flow can finish in the same call.
"""

import asyncio
import webbrowser
from abc import ABC, abstractmethod
from urllib.parse import urlparse

from aiohttp import web

from smart_client.config.logging import get_logger
from smart_client.config.settings import get_settings
from smart_client.errors import AuthorizationCancelledError, ConfigurationError

logger = get_logger(__name__)


class AuthorizationPresenter(ABC):
    """Contract for showing the authorization page to the user."""

    @abstractmethod
    async def present(self, authorization_url: str) -> str | None:
        """
        Navigate to the authorization page.

        Returns:
            The callback URL if the presenter captured it, otherwise None
        """
        ...

    async def reset(self, redirect_url: str) -> None:
        """Show the bare redirect target once the callback was consumed."""
        return None


class BrowserRedirectPresenter(AuthorizationPresenter):
    """Opens the system browser and leaves the callback to the application."""

    def __init__(self, new_tab: bool = True):
        self._new = 2 if new_tab else 0

    async def present(self, authorization_url: str) -> str | None:
        opened = webbrowser.open(authorization_url, new=self._new)
        if not opened:
            logger.warning("No browser available to open the authorization page")
        return None


class LoopbackCallbackPresenter(AuthorizationPresenter):
    """
    Opens the system browser and listens on the loopback redirect URI.

    The redirect URI must be an ``http://localhost`` or ``http://127.0.0.1``
    address with an explicit port. The first request to its path is taken as
    the callback.
    """

    def __init__(
        self,
        redirect_url: str,
        timeout: float | None = None,
        open_browser: bool = True,
    ):
        parsed = urlparse(redirect_url)
        if parsed.scheme != "http" or parsed.hostname not in ("localhost", "127.0.0.1"):
            raise ConfigurationError(
                "Loopback presenter requires an http://localhost or http://127.0.0.1 redirect URI"
            )
        if not parsed.port:
            raise ConfigurationError("Loopback redirect URI needs an explicit port")

        self._host = parsed.hostname
        self._port = parsed.port
        self._path = parsed.path or "/"
        self._timeout = timeout or get_settings().callback_timeout_seconds
        self._open_browser = open_browser

    async def _serve_until_callback(self, callback: asyncio.Future) -> web.AppRunner:
        async def handle(request: web.Request) -> web.Response:
            if not callback.done():
                callback.set_result(str(request.url))
            return web.Response(
                text="Authorization complete. You can close this window.",
                content_type="text/plain",
            )

        app = web.Application()
        app.router.add_get(self._path, handle)

        runner = web.AppRunner(app)
        await runner.setup()
        site = web.TCPSite(runner, self._host, self._port)
        await site.start()
        return runner

    async def present(self, authorization_url: str) -> str | None:
        loop = asyncio.get_running_loop()
        callback: asyncio.Future = loop.create_future()

        runner = await self._serve_until_callback(callback)
        try:
            if self._open_browser:
                webbrowser.open(authorization_url, new=2)
            logger.info("Waiting for authorization callback", port=self._port, path=self._path)
            return await asyncio.wait_for(callback, timeout=self._timeout)
        except asyncio.TimeoutError as e:
            raise AuthorizationCancelledError(
                f"No authorization callback within {self._timeout} seconds"
            ) from e
        finally:
            await runner.cleanup()
