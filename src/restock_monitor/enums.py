"""
Enumeration types for the restock monitor.

These enums provide type-safe constants for stock states, transitions,
detection signals, engine lifecycle states and logging levels.
"""

from enum import Enum


class StockStatus(Enum):
    """Availability status of a watched product page."""

    IN_STOCK = "in_stock"
    OUT_OF_STOCK = "out_of_stock"
    PRE_ORDER = "pre_order"
    COMING_SOON = "coming_soon"
    UNKNOWN = "unknown"


class TransitionKind(Enum):
    """Classification of a change between two stock observations."""

    RESTOCK = "restock"
    SOLD_OUT = "sold_out"
    NONE = "none"


class DetectionSignal(Enum):
    """Observable indicator that automated access was blocked or challenged."""

    CAPTCHA = "captcha"
    BLOCK_403 = "block_403"
    REDIRECT = "redirect"
    EMPTY_PAGE = "empty_page"
    MISSING_DATA = "missing_data"
    NAVIGATION_ERROR = "navigation_error"
    NONE = "none"


class EngineState(Enum):
    """Lifecycle states of the monitoring engine."""

    INITIALIZING = "initializing"
    STEADY_POLLING = "steady_polling"
    COOLING_DOWN = "cooling_down"
    SHUTTING_DOWN = "shutting_down"
    STOPPED = "stopped"


class LogLevel(Enum):
    """Logging severity levels."""

    DEBUG = "debug"
    INFO = "info"
    WARN = "warn"
    ERROR = "error"

    @property
    def rank(self) -> int:
        """Numeric severity used for threshold filtering."""
        return _LEVEL_RANKS[self]


_LEVEL_RANKS = {
    LogLevel.DEBUG: 10,
    LogLevel.INFO: 20,
    LogLevel.WARN: 30,
    LogLevel.ERROR: 40,
}
