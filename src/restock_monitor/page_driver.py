"""
Page Driver module for the restock monitor.

The engine talks to the browser only through the ``PageDriver`` protocol:
navigate, read the resulting page, and open or discard browsing contexts.
``PlaywrightPageDriver`` implements it on top of ``playwright.async_api``
(installed with the ``browser`` extra).
"""

import uuid
from abc import abstractmethod
from dataclasses import dataclass, field
from typing import Any, Optional, Protocol, runtime_checkable

from .audit_logger import AuditLogger
from .exceptions import NavigationError
from .models import ProxySettings
from .proxy_provider import ProxyProvider


@dataclass
class NavigationResponse:
    """Main-frame response of a navigation."""

    status: Optional[int]
    url: str = ""


@dataclass
class BrowserIdentity:
    """
    The rotation identity of a browsing context.

    A new identity (fresh session id) is drawn on every rotation. The proxy,
    when set, is applied to contexts opened with this identity; identities
    drawn from a ProxyProvider carry proxy credentials keyed by their
    session id.
    """

    session_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    proxy: Optional[ProxySettings] = None

    @classmethod
    def from_provider(cls, provider: Optional[ProxyProvider]) -> "BrowserIdentity":
        session_id = uuid.uuid4().hex
        proxy = provider.proxy_for(session_id) if provider is not None else None
        return cls(session_id=session_id, proxy=proxy)


@runtime_checkable
class PageDriver(Protocol):
    """Capabilities the engine needs from a browser."""

    @abstractmethod
    async def new_context(
        self,
        identity: BrowserIdentity,
        storage_state: Optional[dict] = None,
    ) -> None:
        """Open a browsing context and page, replacing any current one."""
        ...

    @abstractmethod
    async def navigate(self, url: str, wait_until: str, timeout_ms: int) -> NavigationResponse:
        """
        Navigate the current page.

        Raises:
            NavigationError: On timeout or any driver failure
        """
        ...

    @abstractmethod
    async def current_url(self) -> str:
        ...

    @abstractmethod
    async def read_content(self) -> str:
        ...

    @abstractmethod
    async def text_content(self, selector: str) -> Optional[str]:
        """Text of the first element matching ``selector``, or None."""
        ...

    @abstractmethod
    async def has_selector(self, selector: str) -> bool:
        ...

    @abstractmethod
    async def wait_for_idle(self, timeout_ms: int) -> None:
        """Wait for network activity to settle. Never raises on timeout."""
        ...

    @abstractmethod
    async def storage_state(self) -> dict:
        """Cookies and origin storage of the current context."""
        ...

    @abstractmethod
    async def close_context(self) -> None:
        """Close the page then the context. Tolerates already-closed resources."""
        ...

    @abstractmethod
    async def close(self) -> None:
        """Close any context, then the browser. Tolerates already-closed resources."""
        ...


class PlaywrightPageDriver:
    """PageDriver backed by a Playwright Chromium instance."""

    def __init__(
        self,
        headless: bool = True,
        locale: str = "en-SG",
        timezone_id: str = "Asia/Singapore",
        logger: Optional[AuditLogger] = None,
    ) -> None:
        self._headless = headless
        self._locale = locale
        self._timezone_id = timezone_id
        self._logger = logger
        self._playwright: Any = None
        self._browser: Any = None
        self._context: Any = None
        self._page: Any = None

    async def start(self) -> "PlaywrightPageDriver":
        """Launch the browser."""
        from playwright.async_api import async_playwright

        self._playwright = await async_playwright().start()
        self._browser = await self._playwright.chromium.launch(headless=self._headless)
        return self

    async def __aenter__(self) -> "PlaywrightPageDriver":
        return await self.start()

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    def _require_page(self) -> Any:
        if self._page is None:
            raise NavigationError(code="no_context", message="No browsing context is open")
        return self._page

    async def new_context(
        self,
        identity: BrowserIdentity,
        storage_state: Optional[dict] = None,
    ) -> None:
        if self._browser is None:
            await self.start()
        await self.close_context()

        options: dict[str, Any] = {
            "locale": self._locale,
            "timezone_id": self._timezone_id,
        }
        if identity.proxy is not None:
            options["proxy"] = {
                "server": identity.proxy.server,
                "username": identity.proxy.username,
                "password": identity.proxy.password,
            }
        if storage_state is not None:
            options["storage_state"] = storage_state

        self._context = await self._browser.new_context(**options)
        self._page = await self._context.new_page()
        if self._logger:
            self._logger.debug("PageDriver", "Browsing context opened", {"session_id": identity.session_id})

    async def navigate(self, url: str, wait_until: str, timeout_ms: int) -> NavigationResponse:
        from playwright.async_api import Error as PlaywrightError

        page = self._require_page()
        try:
            response = await page.goto(url, wait_until=wait_until, timeout=timeout_ms)
        except PlaywrightError as e:
            # TimeoutError is a subclass of Error
            raise NavigationError(
                code="navigation_failed",
                message=str(e).splitlines()[0] if str(e) else type(e).__name__,
                details={"url": url},
            ) from e
        return NavigationResponse(
            status=response.status if response is not None else None,
            url=page.url,
        )

    async def current_url(self) -> str:
        return self._require_page().url

    async def read_content(self) -> str:
        return await self._require_page().content()

    async def text_content(self, selector: str) -> Optional[str]:
        from playwright.async_api import Error as PlaywrightError

        try:
            return await self._require_page().text_content(selector, timeout=5_000)
        except PlaywrightError:
            return None

    async def has_selector(self, selector: str) -> bool:
        from playwright.async_api import Error as PlaywrightError

        try:
            return await self._require_page().query_selector(selector) is not None
        except PlaywrightError:
            return False

    async def wait_for_idle(self, timeout_ms: int) -> None:
        from playwright.async_api import Error as PlaywrightError

        try:
            await self._require_page().wait_for_load_state("networkidle", timeout=timeout_ms)
        except PlaywrightError:
            pass

    async def storage_state(self) -> dict:
        if self._context is None:
            raise NavigationError(code="no_context", message="No browsing context is open")
        return await self._context.storage_state()

    async def close_context(self) -> None:
        from playwright.async_api import Error as PlaywrightError

        page, context = self._page, self._context
        self._page = None
        self._context = None
        for resource in (page, context):
            if resource is None:
                continue
            try:
                await resource.close()
            except PlaywrightError:
                pass

    async def close(self) -> None:
        from playwright.async_api import Error as PlaywrightError

        await self.close_context()
        browser, playwright = self._browser, self._playwright
        self._browser = None
        self._playwright = None
        if browser is not None:
            try:
                await browser.close()
            except PlaywrightError:
                pass
        if playwright is not None:
            await playwright.stop()
