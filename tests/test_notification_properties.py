"""
Property-based tests for the Notification Sink.

Covers router retry behaviour with channel doubles, the Telegram channel
against an in-process HTTP transport, and the message formatters.
"""

import asyncio
import json
from dataclasses import dataclass
from datetime import datetime, timezone
from io import StringIO

import httpx
import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from restock_monitor.audit_logger import AuditLogger
from restock_monitor.config import RetryConfig, TelegramConfig
from restock_monitor.enums import LogLevel
from restock_monitor.exceptions import NotificationError
from restock_monitor.notifications import (
    NotificationChannel,
    NotificationRouter,
    SendResult,
    TelegramChannel,
    escape_html,
    format_digest,
    format_pause_notice,
    format_restock_alert,
    format_sold_out_alert,
    format_startup_notice,
    format_uptime,
)


def run_async(coro):
    """Helper to run async code in tests."""
    return asyncio.new_event_loop().run_until_complete(coro)


class RecordingSleep:
    """Awaitable sleep replacement that records requested delays."""

    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


@dataclass
class MockChannelConfig:
    """Configuration for mock channel behavior."""

    name: str
    fail_count: int = 0  # Number of times to fail before succeeding
    always_fail: bool = False


class MockNotificationChannel:
    """Mock notification channel for testing."""

    def __init__(self, config: MockChannelConfig) -> None:
        self._config = config
        self.messages: list[tuple[str, str]] = []

    async def send(self, text: str, parse_mode: str = "HTML") -> SendResult:
        self.messages.append((text, parse_mode))
        if self._config.always_fail or len(self.messages) <= self._config.fail_count:
            return SendResult(ok=False, error=f"attempt {len(self.messages)} failed")
        return SendResult(ok=True)

    def get_name(self) -> str:
        return self._config.name

    @property
    def call_count(self) -> int:
        return len(self.messages)


class RaisingChannel:
    """Channel whose send always raises."""

    async def send(self, text: str, parse_mode: str = "HTML") -> SendResult:
        raise ConnectionError("socket closed")

    def get_name(self) -> str:
        return "raising"


class TestRouterRetryProperty:
    """Property 23: failed sends are retried with exponential backoff."""

    @given(
        fail_count=st.integers(min_value=0, max_value=5),
        max_retries=st.integers(min_value=0, max_value=4),
    )
    @settings(max_examples=50)
    def test_retries_until_success_or_exhaustion(self, fail_count: int, max_retries: int) -> None:
        sleep = RecordingSleep()
        router = NotificationRouter(
            retry_config=RetryConfig(max_retries=max_retries, base_delay_seconds=1.0, max_delay_seconds=30.0),
            sleep=sleep,
        )
        channel = MockNotificationChannel(MockChannelConfig(name="mock", fail_count=fail_count))
        router.register_channel(channel)

        results = run_async(router.notify("hello"))

        assert len(results) == 1
        if fail_count <= max_retries:
            assert results[0].success
            assert results[0].attempts == fail_count + 1
        else:
            assert not results[0].success
            assert results[0].attempts == max_retries + 1
            assert results[0].error == f"attempt {max_retries + 1} failed"
        assert sleep.delays == [2.0 ** i for i in range(results[0].attempts - 1)]

    def test_delay_is_capped(self) -> None:
        sleep = RecordingSleep()
        router = NotificationRouter(
            retry_config=RetryConfig(max_retries=5, base_delay_seconds=10.0, max_delay_seconds=30.0),
            sleep=sleep,
        )
        router.register_channel(MockNotificationChannel(MockChannelConfig(name="mock", always_fail=True)))

        run_async(router.notify("hello"))

        assert sleep.delays == [10.0, 20.0, 30.0, 30.0, 30.0]

    def test_exhausted_retries_are_logged(self) -> None:
        logger = AuditLogger(output_stream=StringIO())
        router = NotificationRouter(retry_config=RetryConfig(max_retries=1), logger=logger, sleep=RecordingSleep())
        router.register_channel(RaisingChannel())

        results = run_async(router.notify("hello"))

        assert results[0].error == "socket closed"
        errors = [e for e in logger.entries if e.level == LogLevel.ERROR]
        assert len(errors) == 1
        assert "raising" in errors[0].message
        assert errors[0].data["total_attempts"] == 2

    def test_every_channel_receives_the_message(self) -> None:
        router = NotificationRouter(retry_config=RetryConfig(max_retries=0), sleep=RecordingSleep())
        failing = MockNotificationChannel(MockChannelConfig(name="a", always_fail=True))
        healthy = MockNotificationChannel(MockChannelConfig(name="b"))
        router.register_channel(failing)
        router.register_channel(healthy)

        results = run_async(router.notify("<b>x</b>", parse_mode="HTML"))

        assert [r.success for r in results] == [False, True]
        assert healthy.messages == [("<b>x</b>", "HTML")]

    def test_channels_satisfy_protocol(self) -> None:
        assert isinstance(MockNotificationChannel(MockChannelConfig(name="m")), NotificationChannel)


TELEGRAM = TelegramConfig(bot_token="123:abc", chat_id="42")


def telegram_client(handler) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


class TestTelegramChannelProperty:
    """Property 24: the Telegram channel reports API failures as results."""

    def test_sends_html_message(self) -> None:
        requests = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            return httpx.Response(200, json={"ok": True, "result": {}})

        async def scenario():
            async with telegram_client(handler) as client:
                return await TelegramChannel(TELEGRAM, client=client).send("<b>hi</b>")

        result = run_async(scenario())

        assert result.ok
        assert requests[0].url.path == "/bot123:abc/sendMessage"
        assert json.loads(requests[0].content) == {
            "chat_id": "42",
            "text": "<b>hi</b>",
            "parse_mode": "HTML",
        }

    def test_api_error_description_is_returned(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(400, json={"ok": False, "description": "Bad Request: chat not found"})

        async def scenario():
            async with telegram_client(handler) as client:
                return await TelegramChannel(TELEGRAM, client=client).send("x")

        result = run_async(scenario())

        assert not result.ok
        assert result.error == "Bad Request: chat not found"

    def test_non_json_response_reports_status(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(502, text="Bad Gateway")

        async def scenario():
            async with telegram_client(handler) as client:
                return await TelegramChannel(TELEGRAM, client=client).send("x")

        assert run_async(scenario()).error == "HTTP 502"

    def test_transport_error_is_a_failed_result(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        async def scenario():
            async with telegram_client(handler) as client:
                return await TelegramChannel(TELEGRAM, client=client).send("x")

        result = run_async(scenario())

        assert not result.ok
        assert "connection refused" in result.error

    def test_missing_credentials_rejected(self) -> None:
        with pytest.raises(NotificationError) as exc_info:
            TelegramChannel(TelegramConfig(bot_token="123:abc"))
        assert exc_info.value.code == "telegram_not_configured"


class TestMessageFormattingProperty:
    """Property 25: user-provided text is escaped in HTML messages."""

    @given(
        title=st.text(alphabet=st.characters(blacklist_characters="\n\r"), max_size=60),
        price=st.text(alphabet=st.characters(blacklist_characters="\n\r"), max_size=20),
    )
    @settings(max_examples=100)
    def test_restock_alert_escapes_title_and_price(self, title: str, price: str) -> None:
        message = format_restock_alert(
            title or None,
            price or None,
            "https://shop.example/p?a=1&b=2",
            datetime(2024, 3, 1, 4, 5, 6, tzinfo=timezone.utc),
        )
        body = message.split("\n")[2]
        assert "<" not in body[3:-4]
        assert "&b=2" not in message
        assert "&amp;b=2" in message

    def test_restock_alert_uses_local_time(self) -> None:
        message = format_restock_alert(
            "Booster Box <Limited>",
            "S$59.90",
            "https://shop.example/p/1",
            datetime(2024, 3, 1, 16, 30, 0, tzinfo=timezone.utc),
            tz_name="Asia/Singapore",
        )
        assert message.startswith("<b>RESTOCK DETECTED</b>")
        assert "Booster Box &lt;Limited&gt;" in message
        assert "Price: S$59.90" in message
        assert "Detected: 02/03/2024, 00:30:00" in message
        assert '<a href="https://shop.example/p/1">View product</a>' in message

    def test_missing_fields_have_placeholders(self) -> None:
        message = format_restock_alert(None, None, "https://shop.example/p/1", datetime(2024, 1, 1))
        assert "Unknown product" in message
        assert "Price: N/A" in message

    def test_sold_out_alert_lines(self) -> None:
        message = format_sold_out_alert(
            "Booster Box & Sleeves",
            "https://shop.example/p/1",
            datetime(2024, 3, 1, 16, 30, 0, tzinfo=timezone.utc),
            tz_name="Asia/Singapore",
        )
        assert message.split("\n") == [
            "<b>SOLD OUT</b>",
            "",
            "Booster Box &amp; Sleeves",
            '<a href="https://shop.example/p/1">View product</a>',
            "",
            "Detected: 02/03/2024, 00:30:00",
        ]

    def test_sold_out_alert_without_title(self) -> None:
        message = format_sold_out_alert(None, "https://shop.example/p/1", datetime(2024, 1, 1))
        assert message.split("\n")[2] == "Unknown product"

    @given(seconds=st.integers(min_value=0, max_value=10 * 24 * 3600))
    @settings(max_examples=100)
    def test_uptime_format(self, seconds: int) -> None:
        hours, rest = format_uptime(seconds).split(" ")
        assert int(hours[:-1]) * 3600 + int(rest[:-1]) * 60 <= seconds
        assert int(rest[:-1]) < 60

    def test_digest_lines(self) -> None:
        message = format_digest(urls_monitored=3, restocks=2, sold_outs=1, errors=4, uptime="5h 7m")
        assert message.split("\n") == [
            "<b>Daily Digest</b>",
            "",
            "URLs monitored: 3",
            "Restocks detected: 2",
            "Sold outs: 1",
            "Errors: 4",
            "Uptime: 5h 7m",
        ]

    def test_pause_and_startup_notices(self) -> None:
        assert format_pause_notice("https://shop.example/p?a=1&b=2", 300.0, "captcha") == (
            "Monitoring paused: detection event (captcha) on "
            "https://shop.example/p?a=1&amp;b=2. Retrying in 300s."
        )
        assert format_startup_notice(2) == "<b>Restock Monitor Started</b>\nWatching 2 URLs"

    def test_escape_html_leaves_quotes(self) -> None:
        assert escape_html('"a" & <b>') == '"a" &amp; &lt;b&gt;'
