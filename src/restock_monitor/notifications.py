"""
Notification Sink module for the restock monitor.

Provides the Telegram channel, a router that delivers messages to every
registered channel with exponential-backoff retry, and the formatters for
restock, sold-out, pause, startup and daily digest messages.

Delivery failures are reported as results and logged; they are never fatal
to the poll loop.
"""

import asyncio
import html
from abc import abstractmethod
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional, Protocol, runtime_checkable
from zoneinfo import ZoneInfo

import httpx

from .audit_logger import AuditLogger
from .config import RetryConfig, TelegramConfig
from .enums import LogLevel
from .exceptions import NotificationError

DEFAULT_TIMEZONE = "Asia/Singapore"


@dataclass
class SendResult:
    """Outcome of a single send call on a channel."""

    ok: bool
    error: Optional[str] = None


@dataclass
class NotificationResult:
    """Result of a notification delivery including retries."""

    channel: str
    success: bool
    error: Optional[str] = None
    attempts: int = 1


@runtime_checkable
class NotificationChannel(Protocol):
    """Protocol defining the interface for notification channels."""

    @abstractmethod
    async def send(self, text: str, parse_mode: str = "HTML") -> SendResult:
        """
        Send a message.

        Args:
            text: Message body, already formatted for ``parse_mode``
            parse_mode: 'HTML' or 'Markdown'

        Returns:
            SendResult describing success or the error
        """
        ...

    @abstractmethod
    def get_name(self) -> str:
        ...


class TelegramChannel:
    """Telegram notification channel using the Bot API."""

    API_BASE = "https://api.telegram.org"

    def __init__(
        self,
        config: TelegramConfig,
        client: Optional[httpx.AsyncClient] = None,
        timeout: float = 30.0,
    ) -> None:
        """
        Initialize Telegram channel.

        Args:
            config: Telegram configuration with bot_token and chat_id
            client: Optional shared HTTP client (one is created per send otherwise)
            timeout: Request timeout in seconds

        Raises:
            NotificationError: If the bot token or chat id is missing
        """
        if not config.configured:
            raise NotificationError(
                code="telegram_not_configured",
                message="Telegram bot token and chat id are required",
            )
        self._chat_id = config.chat_id
        self._url = f"{self.API_BASE}/bot{config.bot_token}/sendMessage"
        self._client = client
        self._timeout = timeout

    def get_name(self) -> str:
        return "telegram"

    async def send(self, text: str, parse_mode: str = "HTML") -> SendResult:
        """Send a message via Telegram sendMessage."""
        payload = {
            "chat_id": self._chat_id,
            "text": text,
            "parse_mode": parse_mode,
        }
        try:
            if self._client is not None:
                response = await self._client.post(self._url, json=payload, timeout=self._timeout)
            else:
                async with httpx.AsyncClient() as client:
                    response = await client.post(self._url, json=payload, timeout=self._timeout)
        except httpx.HTTPError as e:
            return SendResult(ok=False, error=str(e) or type(e).__name__)

        try:
            data = response.json()
        except ValueError:
            data = {}

        if not data.get("ok"):
            return SendResult(
                ok=False,
                error=data.get("description") or f"HTTP {response.status_code}",
            )
        return SendResult(ok=True)


@dataclass
class RetryAttempt:
    """Record of a single failed attempt."""

    attempt_number: int
    error: str
    timestamp: str


class NotificationRouter:
    """
    Routes messages to registered channels with retry logic.

    Each channel is retried with exponential backoff; when every attempt
    fails, the failure is logged with all attempts and the router moves on.
    """

    def __init__(
        self,
        retry_config: Optional[RetryConfig] = None,
        logger: Optional[AuditLogger] = None,
        sleep=asyncio.sleep,
    ) -> None:
        """
        Initialize the notification router.

        Args:
            retry_config: Configuration for retry behaviour
            logger: Optional audit logger for error logging
            sleep: Awaitable sleep used between attempts
        """
        self._channels: list[NotificationChannel] = []
        self._retry_config = retry_config or RetryConfig()
        self._logger = logger
        self._sleep = sleep

    def register_channel(self, channel: NotificationChannel) -> None:
        self._channels.append(channel)

    @property
    def channels(self) -> list[NotificationChannel]:
        """Get list of registered channels."""
        return self._channels.copy()

    async def notify(self, text: str, parse_mode: str = "HTML") -> list[NotificationResult]:
        """
        Send a message to all registered channels.

        Returns:
            List of NotificationResult, one per channel
        """
        results = []
        for channel in self._channels:
            results.append(await self._send_with_retry(channel, text, parse_mode))
        return results

    async def _send_with_retry(
        self,
        channel: NotificationChannel,
        text: str,
        parse_mode: str,
    ) -> NotificationResult:
        channel_name = channel.get_name()
        max_attempts = self._retry_config.max_retries + 1
        attempts = 0
        retry_attempts: list[RetryAttempt] = []
        last_error: Optional[str] = None

        while attempts < max_attempts:
            attempts += 1
            try:
                result = await channel.send(text, parse_mode)
            except Exception as e:
                result = SendResult(ok=False, error=str(e) or type(e).__name__)

            if result.ok:
                return NotificationResult(channel=channel_name, success=True, attempts=attempts)

            last_error = result.error or "Channel returned failure"
            retry_attempts.append(
                RetryAttempt(
                    attempt_number=attempts,
                    error=last_error,
                    timestamp=datetime.now(timezone.utc).isoformat(),
                )
            )

            # No delay after the last attempt
            if attempts < max_attempts:
                await self._sleep(self._calculate_delay(attempts - 1))

        self._log_all_retries_failed(channel_name, retry_attempts)
        return NotificationResult(
            channel=channel_name,
            success=False,
            error=last_error,
            attempts=attempts,
        )

    def _calculate_delay(self, attempt: int) -> float:
        delay = self._retry_config.base_delay_seconds * (2 ** attempt)
        return min(delay, self._retry_config.max_delay_seconds)

    def _log_all_retries_failed(
        self,
        channel_name: str,
        retry_attempts: list[RetryAttempt],
    ) -> None:
        if self._logger is None:
            return

        self._logger.log(
            level=LogLevel.ERROR,
            component="NotificationRouter",
            message=f"All notification retries failed for channel '{channel_name}'",
            data={
                "channel": channel_name,
                "total_attempts": len(retry_attempts),
                "attempts": [
                    {
                        "attempt": attempt.attempt_number,
                        "error": attempt.error,
                        "timestamp": attempt.timestamp,
                    }
                    for attempt in retry_attempts
                ],
            },
        )


def escape_html(text: str) -> str:
    """Escape the characters Telegram's HTML parse mode reserves."""
    return html.escape(text, quote=False)


def format_local_time(moment: datetime, tz_name: str = DEFAULT_TIMEZONE) -> str:
    """
    Render a timestamp in the configured zone.

    Naive datetimes are taken to be UTC.
    """
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(ZoneInfo(tz_name)).strftime("%d/%m/%Y, %H:%M:%S")


def format_uptime(elapsed_seconds: float) -> str:
    """Format an uptime as 'Xh Ym'."""
    total_minutes = int(elapsed_seconds // 60)
    hours, minutes = divmod(total_minutes, 60)
    return f"{hours}h {minutes}m"


def _link(url: str) -> str:
    return f'<a href="{html.escape(url, quote=True)}">View product</a>'


def format_restock_alert(
    title: Optional[str],
    price: Optional[str],
    url: str,
    detected_at: datetime,
    tz_name: str = DEFAULT_TIMEZONE,
) -> str:
    return "\n".join([
        "<b>RESTOCK DETECTED</b>",
        "",
        f"<b>{escape_html(title or 'Unknown product')}</b>",
        f"Price: {escape_html(price or 'N/A')}",
        _link(url),
        "",
        f"Detected: {format_local_time(detected_at, tz_name)}",
    ])


def format_sold_out_alert(
    title: Optional[str],
    url: str,
    detected_at: datetime,
    tz_name: str = DEFAULT_TIMEZONE,
) -> str:
    return "\n".join([
        "<b>SOLD OUT</b>",
        "",
        escape_html(title or "Unknown product"),
        _link(url),
        "",
        f"Detected: {format_local_time(detected_at, tz_name)}",
    ])


def format_digest(
    urls_monitored: int,
    restocks: int,
    sold_outs: int,
    errors: int,
    uptime: str,
) -> str:
    return "\n".join([
        "<b>Daily Digest</b>",
        "",
        f"URLs monitored: {urls_monitored}",
        f"Restocks detected: {restocks}",
        f"Sold outs: {sold_outs}",
        f"Errors: {errors}",
        f"Uptime: {escape_html(uptime)}",
    ])


def format_pause_notice(url: str, cooldown_seconds: float, signal: str) -> str:
    """Message sent before a detection cooldown starts."""
    return (
        f"Monitoring paused: detection event ({escape_html(signal)}) on "
        f"{escape_html(url)}. Retrying in {int(cooldown_seconds)}s."
    )


def format_startup_notice(urls_count: int) -> str:
    return f"<b>Restock Monitor Started</b>\nWatching {urls_count} URLs"
