"""
Monitoring Engine for the restock monitor.

The engine owns the poll loop and all mutable monitoring state: the
per-URL StockState table, the detection cooldown, the daily counters and
the browsing identity. Lifecycle:

    INITIALIZING -> STEADY_POLLING <-> COOLING_DOWN
    any state -> SHUTTING_DOWN -> STOPPED

Targets are visited strictly in order, one at a time. A detection event
ends the current cycle early; after the cooldown the next cycle starts
again from the first target.

The daily digest runs as a separate task on the same event loop and only
touches the shared DailyCounters, so no locking is needed.
"""

import asyncio
import random
import time
from contextlib import suppress
from datetime import datetime, timezone
from typing import Awaitable, Callable, Optional

from .audit_logger import AuditLogger
from .backoff import AlertThrottle, CooldownPolicy, jittered_interval_ms
from .config import SystemConfig
from .detection import DetectionClassifier
from .digest import DailyDigest
from .enums import DetectionSignal, EngineState, StockStatus, TransitionKind
from .exceptions import PersistenceError
from .history import HistoryLog
from .models import (
    CooldownState,
    CycleOutcome,
    DailyCounters,
    DetectionEvent,
    HistoryEntry,
    ProductData,
    ProxySettings,
    StockState,
    TransitionEvent,
)
from .notifications import (
    NotificationRouter,
    format_pause_notice,
    format_restock_alert,
    format_sold_out_alert,
    format_startup_notice,
)
from .page_driver import BrowserIdentity, PageDriver
from .proxy_provider import create_proxy_provider
from .scheduler import Scheduler
from .scraper import extract_product_data
from .transitions import transition_event

WAIT_UNTIL = "domcontentloaded"


class MonitoringEngine:
    """
    Detection-aware restock poller.

    One engine instance is built per run; its state is never shared through
    module globals.
    """

    COMPONENT = "MonitoringEngine"

    def __init__(
        self,
        config: SystemConfig,
        driver: PageDriver,
        router: NotificationRouter,
        history: HistoryLog,
        classifier: Optional[DetectionClassifier] = None,
        extractor: Callable[[PageDriver], Awaitable[ProductData]] = extract_product_data,
        logger: Optional[AuditLogger] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
        now: Optional[Callable[[], datetime]] = None,
        rng: Optional[random.Random] = None,
        proxy: Optional[ProxySettings] = None,
    ) -> None:
        """
        Initialize the monitoring engine.

        Args:
            config: Validated system configuration
            driver: Page driver used for every fetch
            router: Notification router for alerts, pauses and digests
            history: Append-only transition log
            classifier: Detection classifier (built from config if omitted)
            extractor: Reads ProductData from the driver's current page
            logger: Optional audit logger
            sleep: Awaitable sleep, injectable for tests
            clock: Monotonic seconds clock for throttling and uptime
            now: Wall clock returning aware datetimes for timestamps
            rng: Random source for poll jitter
            proxy: Optional proxy; each identity gets credentials for it from
                the provider named by ``browser.proxy_provider``
        """
        self._config = config
        self._driver = driver
        self._router = router
        self._history = history
        self._classifier = classifier or DetectionClassifier(
            min_content_length=config.detection.min_content_length,
            logger=logger,
        )
        self._extractor = extractor
        self._logger = logger
        self._sleep = sleep
        self._clock = clock
        self._now = now or (lambda: datetime.now(timezone.utc))
        self._rng = rng or random.Random()
        self._proxy_provider = create_proxy_provider(config.browser.proxy_provider, proxy, logger=logger)

        self._urls = list(config.monitoring.urls)
        self._cooldown = CooldownPolicy(
            base_ms=config.detection.cooldown_ms,
            max_retries=config.detection.max_retries,
            cap_ms=config.detection.max_cooldown_ms,
        )
        self._throttle = AlertThrottle(config.telegram.alert_cooldown_ms, clock=clock)

        self.state = EngineState.INITIALIZING
        self.stock_states: dict[str, StockState] = {}
        self.counters = DailyCounters()
        self.cycle_count = 0
        self.identity = BrowserIdentity.from_provider(self._proxy_provider)

        self._stop_event = asyncio.Event()
        self._scheduler: Optional[Scheduler] = None
        self._digest_task: Optional[asyncio.Task] = None

    @property
    def cooldown(self) -> CooldownState:
        return self._cooldown.state

    @property
    def urls(self) -> list[str]:
        return self._urls.copy()

    def _stopping(self) -> bool:
        return self._stop_event.is_set()

    async def initialize(self) -> None:
        """
        Open the first browsing context and seed the StockState table.

        Seed failures are logged and the target starts as ``unknown``. The
        seed pass does no detection handling and records no transitions.
        """
        self.state = EngineState.INITIALIZING
        await self._driver.new_context(self.identity)

        for url in self._urls:
            if self._stopping():
                break
            try:
                await self._driver.navigate(
                    url,
                    wait_until=WAIT_UNTIL,
                    timeout_ms=self._config.monitoring.navigation_timeout_ms,
                )
                data = await self._extractor(self._driver)
                status, title, price = data.status, data.title, data.price
            except Exception as e:
                self._log_error("Initial check failed", e, url)
                status, title, price = StockStatus.UNKNOWN, None, None

            self.stock_states[url] = StockState(
                url=url,
                status=status,
                price=price,
                title=title,
                last_checked=self._now().isoformat(),
            )
            self._info("Initial stock state", {"url": url, "status": status.value, "price": price})

    async def rotate_identity(self) -> None:
        """Discard the browsing context and open a new one under a fresh identity."""
        await self._close_context()
        self.identity = BrowserIdentity.from_provider(self._proxy_provider)
        await self._driver.new_context(self.identity)

    async def _close_context(self) -> None:
        try:
            await self._driver.close_context()
        except Exception as e:
            self._log_error("Failed to close browsing context", e)

    async def poll_cycle(self) -> CycleOutcome:
        """
        Run one polling cycle over all targets.

        Returns early, carrying the DetectionEvent and URL, as soon as a
        fetch is classified as detected; the remaining targets are skipped.
        """
        self.state = EngineState.STEADY_POLLING
        self.cycle_count += 1
        outcome = CycleOutcome()

        if self.cycle_count % self._config.monitoring.context_rotation_cycles == 0:
            self._info("Proactive context rotation", {"cycle": self.cycle_count})
            try:
                await self.rotate_identity()
            except Exception as e:
                self._log_error("Context rotation failed", e)
                outcome.detection = DetectionEvent.for_navigation_error(e)
                return outcome

        monitoring = self._config.monitoring
        for url in self._urls:
            if self._stopping():
                break

            delay_ms = jittered_interval_ms(
                monitoring.base_poll_interval_ms,
                monitoring.jitter_ms,
                floor_ms=monitoring.min_poll_interval_ms,
                rng=self._rng,
            )
            await self._sleep(delay_ms / 1000)
            if self._stopping():
                break

            outcome.checked_urls.append(url)
            event = await self._fetch_and_classify(url)
            if event.detected:
                self._warn("Detection event", {
                    "url": url,
                    "signal": event.signal.value,
                    "details": event.details,
                })
                outcome.detection = event
                outcome.detected_url = url
                return outcome

            self._cooldown.record_success()

            try:
                data = await self._extractor(self._driver)
            except Exception as e:
                self._log_error("Product extraction failed", e, url)
                outcome.detection = DetectionEvent.for_navigation_error(e)
                outcome.detected_url = url
                return outcome

            outcome.transitions[url] = await self._apply_observation(url, data)

        return outcome

    async def _fetch_and_classify(self, url: str) -> DetectionEvent:
        try:
            response = await self._driver.navigate(
                url,
                wait_until=WAIT_UNTIL,
                timeout_ms=self._config.monitoring.navigation_timeout_ms,
            )
            content = await self._driver.read_content()
            current_url = await self._driver.current_url()
        except Exception as e:
            # Driver errors and timeouts are treated like a detection signal
            self._log_error("Navigation error", e, url)
            return DetectionEvent.for_navigation_error(e)

        return self._classifier.classify(content, response.status, current_url)

    async def _apply_observation(self, url: str, data: ProductData) -> TransitionEvent:
        previous = self.stock_states.get(url)
        observed_at = self._now()
        new_state = StockState(
            url=url,
            status=data.status,
            price=data.price,
            title=data.title,
            last_checked=observed_at.isoformat(),
            last_transition=previous.last_transition if previous else None,
        )

        event = transition_event(previous, new_state)
        transition = event.kind

        if transition != TransitionKind.NONE:
            new_state.last_transition = observed_at.isoformat()
            if transition == TransitionKind.RESTOCK:
                self.counters.restocks += 1
                self._info("Restock detected", {"url": url, "title": data.title, "price": data.price})
            else:
                self.counters.sold_outs += 1
                self._info("Sold out", {"url": url, "title": data.title})

            self._record_history(HistoryEntry(
                timestamp=observed_at.isoformat(),
                url=url,
                title=data.title,
                previous_status=event.previous_status.value if event.previous_status else None,
                new_status=event.new_status.value,
                price=data.price,
                transition=transition.value,
            ))

            telegram = self._config.telegram
            if transition == TransitionKind.RESTOCK and self._throttle.allow(url):
                await self._router.notify(format_restock_alert(
                    title=data.title or url,
                    price=data.price or "Unknown",
                    url=url,
                    detected_at=observed_at,
                    tz_name=telegram.timezone,
                ))
            elif transition == TransitionKind.SOLD_OUT and telegram.notify_sold_out:
                await self._router.notify(format_sold_out_alert(
                    title=data.title,
                    url=url,
                    detected_at=observed_at,
                    tz_name=telegram.timezone,
                ))

        self.stock_states[url] = new_state
        return event

    def _record_history(self, entry: HistoryEntry) -> None:
        try:
            self._history.append(entry)
        except PersistenceError as e:
            self._log_error("Failed to write history entry", e, entry.url)

    async def cool_down(self, outcome: CycleOutcome) -> bool:
        """
        Back off after a detection event.

        Closes the browsing context, grows the cooldown once failures pass
        the retry threshold, announces the pause, sleeps, and resumes with
        a fresh identity and context. If the new context cannot be opened,
        that counts as another failure and the next, longer cooldown starts.

        Returns:
            False when the configured hard stop was reached instead
        """
        url = outcome.detected_url or ""
        signal = outcome.detection.signal.value if outcome.detection else "unknown"

        if self._proxy_provider is not None:
            self._proxy_provider.report_failure(self.identity.session_id)
        await self._close_context()

        while True:
            self.state = EngineState.COOLING_DOWN
            cooldown_ms = self._cooldown.record_failure()
            self.counters.errors += 1
            failures = self._cooldown.state.consecutive_failures

            hard_stop = self._config.detection.hard_stop_after
            if hard_stop is not None and failures >= hard_stop:
                self._log_error(
                    "Consecutive failure limit reached, stopping",
                    None,
                    url,
                    {"consecutive_failures": failures},
                )
                return False

            self._warn("Detection: cooling down", {
                "url": url,
                "consecutive_failures": failures,
                "cooldown_seconds": cooldown_ms // 1000,
            })
            await self._router.notify(format_pause_notice(url, cooldown_ms / 1000, signal))

            await self._sleep(cooldown_ms / 1000)
            if self._stopping():
                return True

            self.identity = BrowserIdentity.from_provider(self._proxy_provider)
            try:
                await self._driver.new_context(self.identity)
            except Exception as e:
                self._log_error("Failed to open browsing context", e, url)
                signal = DetectionSignal.NAVIGATION_ERROR.value
                await self._close_context()
                continue

            self.state = EngineState.STEADY_POLLING
            return True

    def _start_digest(self) -> None:
        telegram = self._config.telegram
        self._scheduler = Scheduler(tz_name=telegram.timezone, logger=self._logger)
        digest = DailyDigest(
            counters=self.counters,
            router=self._router,
            urls_count=len(self._urls),
            clock=self._clock,
            logger=self._logger,
        )
        digest.attach(self._scheduler, telegram.daily_digest_hour)
        self._digest_task = asyncio.create_task(self._scheduler.run(self._stop_event))

    async def run(self, stop_event: Optional[asyncio.Event] = None) -> None:
        """
        Run until ``stop_event`` is set (or the optional hard stop triggers).

        Resources are always released through ``shutdown``.
        """
        if stop_event is not None:
            self._stop_event = stop_event

        try:
            await self.initialize()
            if self._stopping():
                return

            await self._router.notify(format_startup_notice(len(self._urls)))
            self._start_digest()
            self._info("Monitoring started", {"urls": len(self._urls)})

            while not self._stopping():
                outcome = await self.poll_cycle()
                if outcome.detected and not await self.cool_down(outcome):
                    break
        finally:
            await self.shutdown()

    async def shutdown(self) -> None:
        """Stop the digest timer, then close page, context and driver."""
        if self.state == EngineState.STOPPED:
            return
        self.state = EngineState.SHUTTING_DOWN
        self._stop_event.set()

        if self._scheduler is not None:
            self._scheduler.stop()
        if self._digest_task is not None:
            self._digest_task.cancel()
            with suppress(asyncio.CancelledError):
                await self._digest_task

        await self._close_context()
        await self._driver.close()

        self.state = EngineState.STOPPED
        self._info("Monitoring stopped", {"cycles": self.cycle_count})

    def _info(self, message: str, data: Optional[dict] = None) -> None:
        if self._logger:
            self._logger.info(self.COMPONENT, message, data)

    def _warn(self, message: str, data: Optional[dict] = None) -> None:
        if self._logger:
            self._logger.warn(self.COMPONENT, message, data)

    def _log_error(
        self,
        message: str,
        error: Optional[BaseException],
        url: Optional[str] = None,
        data: Optional[dict] = None,
    ) -> None:
        if self._logger:
            self._logger.log_error(self.COMPONENT, message, error=error, url=url, additional_data=data)
