"""
Proxy Provider module for the restock monitor.

A provider turns the session id of a browsing identity into the proxy
credentials its context connects with. Gateway proxies choose the exit IP
from a session tag carried in the username, so a new identity also gets a
new exit IP. Plain proxies are passed through unchanged.
"""

from abc import abstractmethod
from dataclasses import replace
from typing import Optional, Protocol, runtime_checkable

from .audit_logger import AuditLogger
from .models import ProxySettings


@runtime_checkable
class ProxyProvider(Protocol):
    """Protocol for sources of per-session proxy credentials."""

    @abstractmethod
    def proxy_for(self, session_id: str) -> ProxySettings:
        """Proxy settings for a context opened under ``session_id``."""
        ...

    @abstractmethod
    def report_failure(self, session_id: str) -> None:
        """Note that traffic through ``session_id`` was detected or failed."""
        ...

    @abstractmethod
    def get_name(self) -> str:
        ...


class SessionProxyProvider:
    """
    Gateway proxy keyed by session.

    The username becomes ``<username>-session-<session_id>`` while host, port
    and password stay fixed. A proxy without a username cannot carry the tag
    and is used as is.
    """

    COMPONENT = "ProxyProvider"

    def __init__(self, base: ProxySettings, logger: Optional[AuditLogger] = None) -> None:
        self._base = base
        self._logger = logger

    def get_name(self) -> str:
        return "session"

    def proxy_for(self, session_id: str) -> ProxySettings:
        if not self._base.username:
            return self._base
        return replace(self._base, username=f"{self._base.username}-session-{session_id}")

    def report_failure(self, session_id: str) -> None:
        if self._logger:
            self._logger.warn(
                self.COMPONENT,
                "Proxy session reported failure, next identity gets a new session",
                {"session_id": session_id, "server": self._base.server},
            )


class StaticProxyProvider:
    """The same proxy for every session."""

    def __init__(self, base: ProxySettings) -> None:
        self._base = base

    def get_name(self) -> str:
        return "static"

    def proxy_for(self, session_id: str) -> ProxySettings:
        return self._base

    def report_failure(self, session_id: str) -> None:
        pass


def create_proxy_provider(
    kind: str,
    proxy: Optional[ProxySettings],
    logger: Optional[AuditLogger] = None,
) -> Optional[ProxyProvider]:
    """
    Build the provider named by ``browser.proxy_provider``.

    Returns:
        None when no proxy is configured

    Raises:
        ValueError: If ``kind`` is not a known provider
    """
    if proxy is None:
        return None
    if kind == "session":
        return SessionProxyProvider(proxy, logger=logger)
    if kind == "static":
        return StaticProxyProvider(proxy)
    raise ValueError(f"Unknown proxy provider: {kind}. Supported: session, static")
