"""
Scheduler module for the restock monitor.

Cron-compatible, time-zone aware scheduling of async callbacks on the
monitor's event loop. Used for the daily digest.
"""

import asyncio
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Awaitable, Callable, Optional
from zoneinfo import ZoneInfo

from .audit_logger import AuditLogger


class CronParseError(Exception):
    """Raised when a cron expression cannot be parsed."""

    def __init__(self, message: str, expression: str) -> None:
        self.message = message
        self.expression = expression
        super().__init__(f"{message}: '{expression}'")


@dataclass
class CronField:
    """A parsed cron field with its allowed values."""

    values: set[int]
    min_value: int
    max_value: int

    @property
    def is_wildcard(self) -> bool:
        return self.values == set(range(self.min_value, self.max_value + 1))

    def matches(self, value: int) -> bool:
        return value in self.values


@dataclass
class CronSchedule:
    """A parsed 5-field cron schedule."""

    minute: CronField
    hour: CronField
    day_of_month: CronField
    month: CronField
    day_of_week: CronField
    original_expression: str

    def matches(self, dt: datetime) -> bool:
        """Check if a datetime (in the schedule's zone) matches."""
        # Cron counts Sunday as 0, Python's weekday() counts Monday as 0.
        cron_weekday = (dt.weekday() + 1) % 7

        if self.day_of_month.is_wildcard and self.day_of_week.is_wildcard:
            day_match = True
        elif self.day_of_month.is_wildcard:
            day_match = self.day_of_week.matches(cron_weekday)
        elif self.day_of_week.is_wildcard:
            day_match = self.day_of_month.matches(dt.day)
        else:
            # Both restricted: either may match
            day_match = self.day_of_month.matches(dt.day) or self.day_of_week.matches(cron_weekday)

        return (
            self.minute.matches(dt.minute)
            and self.hour.matches(dt.hour)
            and self.month.matches(dt.month)
            and day_match
        )


class CronParser:
    """Parser for standard 5-field cron expressions."""

    FIELD_DEFS = [
        (0, 59, "minute"),
        (0, 23, "hour"),
        (1, 31, "day_of_month"),
        (1, 12, "month"),
        (0, 6, "day_of_week"),  # 0 = Sunday
    ]

    MONTH_NAMES = {
        "jan": 1, "feb": 2, "mar": 3, "apr": 4,
        "may": 5, "jun": 6, "jul": 7, "aug": 8,
        "sep": 9, "oct": 10, "nov": 11, "dec": 12,
    }

    DOW_NAMES = {
        "sun": 0, "mon": 1, "tue": 2, "wed": 3,
        "thu": 4, "fri": 5, "sat": 6,
    }

    def parse(self, expression: str) -> CronSchedule:
        """
        Parse a cron expression.

        Supports ``*``, value lists (``,``), ranges (``-``), steps (``/``),
        and month/weekday names. Day of week 7 is accepted as Sunday.

        Raises:
            CronParseError: If the expression is invalid
        """
        expression = expression.strip()
        if not expression:
            raise CronParseError("Empty cron expression", expression)

        fields = expression.split()
        if len(fields) != 5:
            raise CronParseError(
                f"Invalid number of fields (expected 5, got {len(fields)})",
                expression,
            )

        parsed_fields = []
        for field_str, (min_val, max_val, name) in zip(fields, self.FIELD_DEFS):
            try:
                parsed_fields.append(self._parse_field(field_str, min_val, max_val, name))
            except ValueError as e:
                raise CronParseError(f"Invalid {name} field: {e}", expression) from e

        return CronSchedule(
            minute=parsed_fields[0],
            hour=parsed_fields[1],
            day_of_month=parsed_fields[2],
            month=parsed_fields[3],
            day_of_week=parsed_fields[4],
            original_expression=expression,
        )

    def _value(self, token: str, field_name: str) -> int:
        token = token.lower()
        if field_name == "month" and token in self.MONTH_NAMES:
            return self.MONTH_NAMES[token]
        if field_name == "day_of_week":
            if token in self.DOW_NAMES:
                return self.DOW_NAMES[token]
            if token == "7":
                return 0
        try:
            return int(token)
        except ValueError as e:
            raise ValueError(f"Invalid value: {token}") from e

    def _parse_field(self, field_str: str, min_val: int, max_val: int, field_name: str) -> CronField:
        values: set[int] = set()

        for part in field_str.split(","):
            part = part.strip()
            if not part:
                continue

            step = 1
            if "/" in part:
                part, step_str = part.split("/", 1)
                try:
                    step = int(step_str)
                except ValueError as e:
                    raise ValueError(f"Invalid step value: {step_str}") from e
                if step < 1:
                    raise ValueError(f"Step must be >= 1, got {step}")

            if part == "*":
                values.update(range(min_val, max_val + 1, step))
                continue

            if "-" in part:
                start_str, end_str = part.split("-", 1)
                start = self._value(start_str, field_name)
                end = self._value(end_str, field_name)
                for bound in (start, end):
                    if bound < min_val or bound > max_val:
                        raise ValueError(f"Range bound {bound} out of bounds [{min_val}-{max_val}]")
                if start > end:
                    raise ValueError(f"Range start {start} > end {end}")
                values.update(range(start, end + 1, step))
                continue

            val = self._value(part, field_name)
            if val < min_val or val > max_val:
                raise ValueError(f"Value {val} out of bounds [{min_val}-{max_val}]")
            values.add(val)

        if not values:
            raise ValueError("No values parsed from field")

        return CronField(values=values, min_value=min_val, max_value=max_val)


@dataclass
class ScheduledTask:
    """A named callback bound to a cron schedule."""

    name: str
    schedule: CronSchedule
    callback: Callable[[], Awaitable[None]]
    last_run: Optional[datetime] = None


class Scheduler:
    """
    Cron scheduler running on the current event loop.

    Schedules are evaluated in ``tz_name``. A callback that raises is
    logged and the scheduler keeps running.
    """

    def __init__(
        self,
        tz_name: str = "UTC",
        logger: Optional[AuditLogger] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        """
        Initialize the scheduler.

        Args:
            tz_name: IANA zone the cron expressions are evaluated in
            logger: Optional audit logger
            clock: Returns the current aware datetime, injectable for tests
        """
        self._zone = ZoneInfo(tz_name)
        self._logger = logger
        self._clock = clock or (lambda: datetime.now(self._zone))
        self._parser = CronParser()
        self._tasks: dict[str, ScheduledTask] = {}
        self._running = False
        self._wakeup: Optional[asyncio.Event] = None

    def schedule(
        self,
        name: str,
        cron_expression: str,
        callback: Callable[[], Awaitable[None]],
    ) -> CronSchedule:
        """
        Schedule a task with a cron expression.

        Raises:
            CronParseError: If the cron expression is invalid
            ValueError: If a task with the same name already exists
        """
        if name in self._tasks:
            raise ValueError(f"Task '{name}' already exists")

        schedule = self._parser.parse(cron_expression)
        self._tasks[name] = ScheduledTask(name=name, schedule=schedule, callback=callback)
        return schedule

    def get_task(self, name: str) -> Optional[ScheduledTask]:
        return self._tasks.get(name)

    def _now(self) -> datetime:
        return self._clock().astimezone(self._zone)

    async def run_pending(self, now: Optional[datetime] = None) -> list[str]:
        """
        Run every task whose schedule matches the current minute.

        A task runs at most once per matching minute.

        Returns:
            Names of the tasks that were run
        """
        now_minute = (now or self._now()).astimezone(self._zone).replace(second=0, microsecond=0)
        ran = []
        for task in list(self._tasks.values()):
            if not task.schedule.matches(now_minute):
                continue
            if task.last_run is not None and task.last_run >= now_minute:
                continue
            task.last_run = now_minute
            ran.append(task.name)
            try:
                await task.callback()
            except Exception as e:
                if self._logger:
                    self._logger.log_error(
                        "Scheduler",
                        f"Scheduled task '{task.name}' failed",
                        error=e,
                    )
        return ran

    async def run(self, stop_event: Optional[asyncio.Event] = None) -> None:
        """
        Run the scheduler loop until ``stop()`` is called or the event is set.

        Wakes at each minute boundary in the scheduler's zone.
        """
        self._running = True
        self._wakeup = asyncio.Event()

        while self._running and not (stop_event is not None and stop_event.is_set()):
            await self.run_pending()

            now = self._now()
            next_minute = now.replace(second=0, microsecond=0) + timedelta(minutes=1)
            try:
                await asyncio.wait_for(
                    self._wakeup.wait(),
                    timeout=(next_minute - now).total_seconds(),
                )
            except asyncio.TimeoutError:
                pass

        self._running = False

    def stop(self) -> None:
        """Signal the scheduler to stop at its next wakeup."""
        self._running = False
        if self._wakeup is not None:
            self._wakeup.set()

    def is_running(self) -> bool:
        return self._running
