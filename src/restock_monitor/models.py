"""
Data models for the restock monitor.

This module defines the data structures shared by the monitoring engine,
the detection classifier, the history log and the secret store.
"""

from dataclasses import asdict, dataclass, field
from typing import Optional

from .enums import DetectionSignal, StockStatus, TransitionKind


@dataclass
class StockState:
    """Last observed state of a single watched URL."""

    url: str
    status: StockStatus
    price: Optional[str] = None
    title: Optional[str] = None
    last_checked: str = ""  # ISO 8601
    last_transition: Optional[str] = None  # ISO 8601


@dataclass
class ProductData:
    """Fields extracted from a product page."""

    url: str
    title: Optional[str]
    price: Optional[str]
    status: StockStatus
    scraped_at: str


@dataclass
class HistoryEntry:
    """A single append-only stock transition record."""

    timestamp: str
    url: str
    title: Optional[str]
    previous_status: Optional[str]
    new_status: str
    price: Optional[str]
    transition: str

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> "HistoryEntry":
        return cls(
            timestamp=data["timestamp"],
            url=data["url"],
            title=data.get("title"),
            previous_status=data.get("previous_status"),
            new_status=data["new_status"],
            price=data.get("price"),
            transition=data["transition"],
        )


@dataclass
class TransitionEvent:
    """A derived transition between two observations of one URL."""

    kind: TransitionKind
    previous_status: Optional[StockStatus]
    new_status: StockStatus


@dataclass
class DetectionEvent:
    """Result of classifying a fetched page for anti-automation signals."""

    detected: bool
    signal: DetectionSignal
    details: Optional[str] = None

    @classmethod
    def clean(cls) -> "DetectionEvent":
        """A not-detected event."""
        return cls(detected=False, signal=DetectionSignal.NONE)

    @classmethod
    def for_navigation_error(cls, error: Exception) -> "DetectionEvent":
        """Navigation failures count as a detection of unspecified kind."""
        return cls(
            detected=True,
            signal=DetectionSignal.NAVIGATION_ERROR,
            details=str(error) or type(error).__name__,
        )


@dataclass
class CooldownState:
    """Process-lifetime backoff counters."""

    consecutive_failures: int
    current_cooldown_ms: int


@dataclass
class DailyCounters:
    """Per-day event counters reported by the daily digest."""

    restocks: int = 0
    sold_outs: int = 0
    errors: int = 0

    def reset(self) -> None:
        self.restocks = 0
        self.sold_outs = 0
        self.errors = 0


@dataclass
class CycleOutcome:
    """
    Result of one poll cycle.

    A cycle either completes (``detection`` is None) or returns early with
    the detection event that aborted the remaining targets.
    """

    checked_urls: list[str] = field(default_factory=list)
    transitions: dict[str, TransitionEvent] = field(default_factory=dict)
    detection: Optional[DetectionEvent] = None
    detected_url: Optional[str] = None

    @property
    def detected(self) -> bool:
        return self.detection is not None and self.detection.detected


@dataclass
class ProxySettings:
    """Per-account proxy descriptor."""

    host: str
    port: int
    username: str = ""
    password: str = ""

    @property
    def server(self) -> str:
        return f"http://{self.host}:{self.port}"

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Optional[dict]) -> Optional["ProxySettings"]:
        if not data:
            return None
        return cls(
            host=data["host"],
            port=int(data["port"]),
            username=data.get("username", ""),
            password=data.get("password", ""),
        )


@dataclass
class AccountDraft:
    """Fields supplied by the user when adding an account."""

    login_id: str
    payment_label: str = ""
    proxy: Optional[ProxySettings] = None
    login_type: str = "phone"


@dataclass
class Account:
    """Identity and credentials for one target-site login."""

    id: str
    login_id: str
    login_type: str
    proxy: Optional[ProxySettings]
    payment_label: str
    created_at: str
    last_login_at: Optional[str] = None
    session_file: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "login_id": self.login_id,
            "login_type": self.login_type,
            "proxy": self.proxy.to_dict() if self.proxy else None,
            "payment_label": self.payment_label,
            "created_at": self.created_at,
            "last_login_at": self.last_login_at,
            "session_file": self.session_file,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Account":
        return cls(
            id=data["id"],
            login_id=data["login_id"],
            login_type=data.get("login_type", "phone"),
            proxy=ProxySettings.from_dict(data.get("proxy")),
            payment_label=data.get("payment_label", ""),
            created_at=data["created_at"],
            last_login_at=data.get("last_login_at"),
            session_file=data.get("session_file"),
        )
