"""
Restock Monitor - detection-aware product availability polling.

This package watches a small set of product pages for restocks, backs off
and rotates its browsing identity when anti-automation defenses respond,
and keeps account credentials and browser sessions encrypted at rest.
"""

__version__ = "0.1.0"
__author__ = "Restock Monitor Team"

from restock_monitor.exceptions import (
    RestockMonitorError,
    VaultError,
    VaultAuthenticationError,
    PersistenceError,
    StoreNotFoundError,
    NavigationError,
    ConfigValidationError,
    NotificationError,
)
from restock_monitor.enums import (
    StockStatus,
    TransitionKind,
    DetectionSignal,
    EngineState,
    LogLevel,
)
from restock_monitor.config import (
    MonitoringConfig,
    DetectionConfig,
    TelegramConfig,
    RetryConfig,
    BrowserConfig,
    StorageConfig,
    LoggingConfig,
    SystemConfig,
    load_config,
    save_config,
    validate_config,
)
from restock_monitor.models import (
    StockState,
    ProductData,
    HistoryEntry,
    TransitionEvent,
    DetectionEvent,
    CooldownState,
    DailyCounters,
    CycleOutcome,
    ProxySettings,
    AccountDraft,
    Account,
)
from restock_monitor.vault import Vault, KdfParams, encrypt, decrypt
from restock_monitor.secret_store import AccountStore, SessionStore, is_session_valid
from restock_monitor.detection import DetectionClassifier
from restock_monitor.transitions import detect_transition, is_buyable, transition_event
from restock_monitor.history import HistoryLog
from restock_monitor.backoff import AlertThrottle, CooldownPolicy, jittered_interval_ms
from restock_monitor.audit_logger import AuditLogger, LogEntry
from restock_monitor.notifications import (
    SendResult,
    NotificationResult,
    NotificationChannel,
    TelegramChannel,
    NotificationRouter,
)
from restock_monitor.scheduler import (
    Scheduler,
    CronSchedule,
    CronField,
    CronParser,
    CronParseError,
    ScheduledTask,
)
from restock_monitor.digest import DailyDigest
from restock_monitor.page_driver import (
    BrowserIdentity,
    NavigationResponse,
    PageDriver,
    PlaywrightPageDriver,
)
from restock_monitor.proxy_provider import (
    ProxyProvider,
    SessionProxyProvider,
    StaticProxyProvider,
    create_proxy_provider,
)
from restock_monitor.scraper import extract_product_data
from restock_monitor.engine import MonitoringEngine
from restock_monitor.cli import main as cli_main, create_parser

__all__ = [
    "__version__",
    # Exceptions
    "RestockMonitorError",
    "VaultError",
    "VaultAuthenticationError",
    "PersistenceError",
    "StoreNotFoundError",
    "NavigationError",
    "ConfigValidationError",
    "NotificationError",
    # Enums
    "StockStatus",
    "TransitionKind",
    "DetectionSignal",
    "EngineState",
    "LogLevel",
    # Config
    "MonitoringConfig",
    "DetectionConfig",
    "TelegramConfig",
    "RetryConfig",
    "BrowserConfig",
    "StorageConfig",
    "LoggingConfig",
    "SystemConfig",
    "load_config",
    "save_config",
    "validate_config",
    # Models
    "StockState",
    "ProductData",
    "HistoryEntry",
    "TransitionEvent",
    "DetectionEvent",
    "CooldownState",
    "DailyCounters",
    "CycleOutcome",
    "ProxySettings",
    "AccountDraft",
    "Account",
    # Vault
    "Vault",
    "KdfParams",
    "encrypt",
    "decrypt",
    # Secret Store
    "AccountStore",
    "SessionStore",
    "is_session_valid",
    # Detection and transitions
    "DetectionClassifier",
    "detect_transition",
    "is_buyable",
    "transition_event",
    # History
    "HistoryLog",
    # Backoff
    "AlertThrottle",
    "CooldownPolicy",
    "jittered_interval_ms",
    # Audit Logger
    "AuditLogger",
    "LogEntry",
    # Notifications
    "SendResult",
    "NotificationResult",
    "NotificationChannel",
    "TelegramChannel",
    "NotificationRouter",
    # Scheduler
    "Scheduler",
    "CronSchedule",
    "CronField",
    "CronParser",
    "CronParseError",
    "ScheduledTask",
    "DailyDigest",
    # Page driver
    "BrowserIdentity",
    "NavigationResponse",
    "PageDriver",
    "PlaywrightPageDriver",
    "ProxyProvider",
    "SessionProxyProvider",
    "StaticProxyProvider",
    "create_proxy_provider",
    "extract_product_data",
    # Engine
    "MonitoringEngine",
    # CLI
    "cli_main",
    "create_parser",
]
