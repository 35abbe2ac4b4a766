"""
Daily digest for the restock monitor.

Summarizes the per-day counters (restocks, sold outs, errors) once a day at
a configured hour, sends the summary through the notification router, and
resets the counters.
"""

import time
from typing import Callable, Optional

from .audit_logger import AuditLogger
from .models import DailyCounters
from .notifications import NotificationRouter, format_digest, format_uptime
from .scheduler import Scheduler

DIGEST_TASK_NAME = "daily_digest"


def digest_cron(hour: int) -> str:
    return f"0 {hour} * * *"


class DailyDigest:
    """Builds and sends the daily summary from shared counters."""

    def __init__(
        self,
        counters: DailyCounters,
        router: NotificationRouter,
        urls_count: int,
        clock: Callable[[], float] = time.monotonic,
        logger: Optional[AuditLogger] = None,
    ) -> None:
        self._counters = counters
        self._router = router
        self._urls_count = urls_count
        self._clock = clock
        self._logger = logger
        self._started_at = clock()

    def build_message(self) -> str:
        return format_digest(
            urls_monitored=self._urls_count,
            restocks=self._counters.restocks,
            sold_outs=self._counters.sold_outs,
            errors=self._counters.errors,
            uptime=format_uptime(self._clock() - self._started_at),
        )

    async def send(self) -> None:
        """Send the digest, then reset the counters for the next day."""
        message = self.build_message()
        await self._router.notify(message)
        if self._logger:
            self._logger.info("DailyDigest", "Daily digest sent", {
                "restocks": self._counters.restocks,
                "sold_outs": self._counters.sold_outs,
                "errors": self._counters.errors,
            })
        self._counters.reset()

    def attach(self, scheduler: Scheduler, hour: int) -> None:
        """Register the digest on a scheduler at ``hour`` in its zone."""
        scheduler.schedule(DIGEST_TASK_NAME, digest_cron(hour), self.send)
