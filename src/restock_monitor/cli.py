"""
Command-line interface for the restock monitor.

This module provides the main CLI entry point with commands for:
- monitor: Run the polling engine until interrupted
- watch: Manage the watched product URLs
- account: Manage encrypted accounts and saved sessions
- telegram: Send a test alert
- config: Configuration management
"""

import argparse
import asyncio
import getpass
import os
import signal
import sys
from contextlib import suppress
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

from . import __version__
from .audit_logger import AuditLogger
from .config import (
    DEFAULT_HOME,
    ENV_MASTER_PASSWORD,
    SystemConfig,
    apply_env_overrides,
    load_config,
    save_config,
    validate_config,
)
from .engine import MonitoringEngine
from .exceptions import RestockMonitorError, StoreNotFoundError
from .history import HistoryLog
from .models import Account, AccountDraft, ProxySettings
from .notifications import NotificationRouter, TelegramChannel, format_restock_alert
from .page_driver import BrowserIdentity, PlaywrightPageDriver
from .proxy_provider import create_proxy_provider
from .secret_store import AccountStore, SessionStore, is_session_valid

DEFAULT_CONFIG_PATH = DEFAULT_HOME / "config.json"


def _config_path(args: argparse.Namespace) -> Path:
    return Path(args.config) if args.config else DEFAULT_CONFIG_PATH


def _load(args: argparse.Namespace) -> SystemConfig:
    return apply_env_overrides(load_config(_config_path(args)))


def _error(message: str) -> int:
    print(f"Error: {message}", file=sys.stderr)
    return 1


def read_passphrase() -> Optional[str]:
    """Master passphrase from the environment, or a prompt on a terminal."""
    passphrase = os.getenv(ENV_MASTER_PASSWORD)
    if passphrase:
        return passphrase
    if sys.stdin.isatty():
        return getpass.getpass("Master password: ")
    return None


def parse_proxy(value: str) -> ProxySettings:
    """Parse ``host:port`` or ``host:port:username:password``."""
    parts = value.split(":")
    if len(parts) not in (2, 4):
        raise argparse.ArgumentTypeError("proxy must be host:port or host:port:username:password")
    try:
        port = int(parts[1])
    except ValueError as e:
        raise argparse.ArgumentTypeError(f"invalid proxy port: {parts[1]}") from e
    if len(parts) == 4:
        return ProxySettings(host=parts[0], port=port, username=parts[2], password=parts[3])
    return ProxySettings(host=parts[0], port=port)


def create_notification_router(
    config: SystemConfig,
    logger: Optional[AuditLogger] = None,
) -> NotificationRouter:
    router = NotificationRouter(retry_config=config.retry, logger=logger)
    router.register_channel(TelegramChannel(config.telegram))
    return router


def _stores(config: SystemConfig, passphrase: str) -> tuple[AccountStore, SessionStore]:
    return (
        AccountStore(passphrase, Path(config.storage.accounts_file)),
        SessionStore(passphrase, Path(config.storage.sessions_dir)),
    )


def _resolve_account(store: AccountStore, identifier: str) -> Account:
    account = store.find_by_identifier(identifier)
    if account is None:
        raise StoreNotFoundError(
            code="account_not_found",
            message=f"No account found matching: {identifier}",
            details={"identifier": identifier},
        )
    return account


async def run_monitor(config: SystemConfig, proxy: Optional[ProxySettings] = None) -> int:
    """Run the engine until SIGINT/SIGTERM."""
    logger = AuditLogger.from_config(config.logging)
    router = create_notification_router(config, logger)
    driver = PlaywrightPageDriver(
        headless=config.browser.headless,
        timezone_id=config.telegram.timezone,
        logger=logger,
    )
    engine = MonitoringEngine(
        config=config,
        driver=driver,
        router=router,
        history=HistoryLog(Path(config.monitoring.history_file)),
        logger=logger,
        proxy=proxy,
    )

    stop_event = asyncio.Event()
    task = asyncio.create_task(engine.run(stop_event))

    def request_shutdown() -> None:
        stop_event.set()
        task.cancel()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        with suppress(NotImplementedError):
            loop.add_signal_handler(sig, request_shutdown)

    print(f"Monitoring {len(config.monitoring.urls)} URLs. Press Ctrl+C to stop.")
    with suppress(asyncio.CancelledError):
        await task
    return 0


def cmd_monitor(args: argparse.Namespace) -> int:
    """Handle the 'monitor' command."""
    config = _load(args)
    if args.headless is not None:
        config.browser.headless = args.headless

    if not config.monitoring.urls:
        return _error("No URLs to monitor. Add URLs with: restock-monitor watch add URL")
    if not config.telegram.configured:
        return _error("Telegram not configured. Set TELEGRAM_BOT_TOKEN and TELEGRAM_CHAT_ID.")

    proxy = None
    if args.account:
        passphrase = read_passphrase()
        if not passphrase:
            return _error(f"Master password required (set {ENV_MASTER_PASSWORD})")
        accounts, _ = _stores(config, passphrase)
        proxy = _resolve_account(accounts, args.account).proxy

    return asyncio.run(run_monitor(config, proxy))


def cmd_watch(args: argparse.Namespace) -> int:
    """Handle the 'watch' command."""
    config_path = _config_path(args)
    config = load_config(config_path)
    urls = config.monitoring.urls

    if args.action == "add":
        url = args.url.strip()
        if not url.startswith(("http://", "https://")):
            return _error("Invalid URL. Must start with http:// or https://")
        if url in urls:
            return _error("URL already being monitored.")
        if len(urls) >= config.monitoring.max_urls:
            return _error(
                f"Maximum {config.monitoring.max_urls} URLs allowed. "
                "Remove one first with: restock-monitor watch remove INDEX"
            )
        urls.append(url)
        save_config(config, config_path)
        print(f"Added: {url}")
        print(f"Watching {len(urls)} URLs")
        return 0

    if args.action == "remove":
        if not 1 <= args.index <= len(urls):
            return _error(f"Invalid index. Must be between 1 and {len(urls)}.")
        removed = urls.pop(args.index - 1)
        save_config(config, config_path)
        print(f"Removed: {removed}")
        print(f"Watching {len(urls)} URLs")
        return 0

    if not urls:
        print("No URLs being monitored. Add one with: restock-monitor watch add URL")
        return 0
    for i, url in enumerate(urls, start=1):
        print(f"{i:>2}  {url}")
    m = config.monitoring
    min_interval = max(m.min_poll_interval_ms, m.base_poll_interval_ms - m.jitter_ms) / 1000
    max_interval = (m.base_poll_interval_ms + m.jitter_ms) / 1000
    print(f"\nPolling: {min_interval:g}s - {max_interval:g}s interval")
    print(f"Context rotation: every {m.context_rotation_cycles} cycles")
    print(f"History: {m.history_file}")
    return 0


def _print_account(index: int, account: Account) -> None:
    proxy = f"{account.proxy.host}:{account.proxy.port}" if account.proxy else "-"
    print(f"{index:>2}  {account.login_id}  ({account.login_type})")
    print(f"    id: {account.id}")
    print(f"    payment: {account.payment_label or '-'}  proxy: {proxy}")
    print(f"    created: {account.created_at}  last login: {account.last_login_at or 'never'}")
    print(f"    session: {'saved' if account.session_file else 'none'}")


async def _test_session(
    config: SystemConfig,
    account: Account,
    accounts: AccountStore,
    sessions: SessionStore,
) -> bool:
    state = sessions.load_session(account.id)
    if state is None:
        print("No saved session for this account.")
        return False

    async with PlaywrightPageDriver(headless=config.browser.headless) as driver:
        provider = create_proxy_provider(config.browser.proxy_provider, account.proxy)
        await driver.new_context(BrowserIdentity.from_provider(provider), storage_state=state)
        valid = await is_session_valid(driver, config.storage.session_check_url)
        if valid:
            path = sessions.save_session(account.id, await driver.storage_state())
            accounts.record_login(account.id, path)
    return valid


def cmd_account(args: argparse.Namespace) -> int:
    """Handle the 'account' command."""
    config = _load(args)
    passphrase = read_passphrase()
    if not passphrase:
        return _error(f"Master password required (set {ENV_MASTER_PASSWORD})")
    accounts, sessions = _stores(config, passphrase)

    if args.action == "add":
        account = accounts.add(AccountDraft(
            login_id=args.login_id,
            payment_label=args.payment_label or "",
            proxy=args.proxy,
            login_type=args.login_type or "phone",
        ))
        print(f"Account #{len(accounts.list())} added: {account.login_id}")
        return 0

    if args.action == "list":
        listed = accounts.list()
        if not listed:
            print("No accounts configured. Run `restock-monitor account add` to get started.")
            return 0
        for i, account in enumerate(listed, start=1):
            _print_account(i, account)
        return 0

    account = _resolve_account(accounts, args.identifier)

    if args.action == "show":
        _print_account(accounts.list().index(account) + 1, account)
        return 0

    if args.action == "edit":
        fields = {
            name: value
            for name, value in (
                ("login_id", args.login_id),
                ("login_type", args.login_type),
                ("payment_label", args.payment_label),
                ("proxy", args.proxy),
            )
            if value is not None
        }
        if args.clear_proxy:
            fields["proxy"] = None
        if not fields:
            return _error("Nothing to update.")
        updated = accounts.update(account.id, **fields)
        print(f"Account updated: {updated.login_id}")
        return 0

    if args.action == "remove":
        if not args.yes:
            answer = input(f"Remove account {account.login_id}? [y/N] ")
            if answer.strip().lower() not in ("y", "yes"):
                print("Cancelled")
                return 0
        accounts.remove(account.id)
        sessions.delete_session(account.id)
        print(f"Account removed: {account.login_id}")
        return 0

    print(f"Validating session for {account.login_id}...")
    if asyncio.run(_test_session(config, account, accounts, sessions)):
        print("Session valid")
        return 0
    print("Session expired, re-login needed")
    return 1


def cmd_telegram(args: argparse.Namespace) -> int:
    """Handle the 'telegram' command."""
    config = _load(args)
    if not config.telegram.configured:
        return _error("Telegram not configured. Set TELEGRAM_BOT_TOKEN and TELEGRAM_CHAT_ID.")

    message = format_restock_alert(
        title="Test Product",
        price="S$79.90",
        url="https://example.com/test-product",
        detected_at=datetime.now(timezone.utc),
        tz_name=config.telegram.timezone,
    )
    print("Sending test alert...")
    result = asyncio.run(TelegramChannel(config.telegram).send(message))
    if result.ok:
        print("Test alert sent successfully! Check your Telegram.")
        return 0
    return _error(f"Failed to send: {result.error}")


def cmd_config(args: argparse.Namespace) -> int:
    """Handle the 'config' command."""
    config_path = _config_path(args)

    if args.action == "init":
        if config_path.exists() and not args.force:
            print(f"Configuration already exists at: {config_path}")
            print("Use --force to overwrite.")
            return 1
        save_config(SystemConfig(), config_path)
        print(f"Configuration created at: {config_path}")
        return 0

    if not config_path.exists():
        print(f"No configuration found at: {config_path}")
        print("Use 'config init' to create a default configuration.")
        return 1

    config = load_config(config_path)

    if args.action == "show":
        print(f"Configuration from: {config_path}")
        print(f"  URLs: {len(config.monitoring.urls)}")
        print(f"  Poll interval: {config.monitoring.base_poll_interval_ms} ms (+/- {config.monitoring.jitter_ms} ms)")
        print(f"  Cooldown: {config.detection.cooldown_ms} ms, max retries {config.detection.max_retries}")
        print(f"  Telegram: {'configured' if apply_env_overrides(config).telegram.configured else 'not configured'}")
        print(f"  Digest: {config.telegram.daily_digest_hour:02d}:00 {config.telegram.timezone}")
        print(f"  Headless: {config.browser.headless}")
        print(f"  Log level: {config.logging.level}")
        return 0

    validate_config(config)
    print(f"Configuration at {config_path} is valid.")
    return 0


def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser for the CLI."""
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument(
        "--config", "-c",
        help=f"Path to configuration file (default: {DEFAULT_CONFIG_PATH})",
    )

    parser = argparse.ArgumentParser(
        prog="restock-monitor",
        description="Detection-aware product restock monitor",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # 'monitor' command
    monitor_parser = subparsers.add_parser(
        "monitor",
        parents=[common],
        help="Start monitoring watched URLs for restocks",
    )
    monitor_parser.add_argument(
        "--headless",
        action=argparse.BooleanOptionalAction,
        default=None,
        help="Run the browser headless (overrides config)",
    )
    monitor_parser.add_argument(
        "--account",
        help="Use this account's proxy (list position or login id)",
    )
    monitor_parser.set_defaults(func=cmd_monitor)

    # 'watch' command
    watch_parser = subparsers.add_parser("watch", help="Manage monitored URLs")
    watch_sub = watch_parser.add_subparsers(dest="action", required=True)
    watch_add = watch_sub.add_parser("add", parents=[common], help="Add a product URL")
    watch_add.add_argument("url")
    watch_remove = watch_sub.add_parser("remove", parents=[common], help="Remove a URL by list position")
    watch_remove.add_argument("index", type=int)
    watch_sub.add_parser("list", parents=[common], help="List monitored URLs")
    watch_parser.set_defaults(func=cmd_watch)

    # 'account' command
    account_parser = subparsers.add_parser("account", help="Manage accounts")
    account_sub = account_parser.add_subparsers(dest="action", required=True)

    account_add = account_sub.add_parser("add", parents=[common], help="Add an account")
    account_add.add_argument("--login-id", required=True, help="Phone number or email used to log in")
    account_add.add_argument("--login-type", choices=["phone", "email"], default="phone")
    account_add.add_argument("--payment-label", help="Free-text payment label")
    account_add.add_argument("--proxy", type=parse_proxy, help="host:port[:username:password]")

    account_sub.add_parser("list", parents=[common], help="List accounts")

    account_edit = account_sub.add_parser("edit", parents=[common], help="Edit an account")
    account_edit.add_argument("identifier", help="List position or exact login id")
    account_edit.add_argument("--login-id")
    account_edit.add_argument("--login-type", choices=["phone", "email"])
    account_edit.add_argument("--payment-label")
    account_edit.add_argument("--proxy", type=parse_proxy, help="host:port[:username:password]")
    account_edit.add_argument("--clear-proxy", action="store_true", help="Remove the proxy")

    account_remove = account_sub.add_parser("remove", parents=[common], help="Remove an account")
    account_remove.add_argument("identifier", help="List position or exact login id")
    account_remove.add_argument("--yes", "-y", action="store_true", help="Do not ask for confirmation")

    for action, help_text in (
        ("show", "Show one account"),
        ("test-session", "Check and refresh an account's saved session"),
    ):
        sub = account_sub.add_parser(action, parents=[common], help=help_text)
        sub.add_argument("identifier", help="List position or exact login id")

    account_parser.set_defaults(func=cmd_account)

    # 'telegram' command
    telegram_parser = subparsers.add_parser("telegram", help="Telegram notifications")
    telegram_sub = telegram_parser.add_subparsers(dest="action", required=True)
    telegram_sub.add_parser("test", parents=[common], help="Send a test restock alert")
    telegram_parser.set_defaults(func=cmd_telegram)

    # 'config' command
    config_parser = subparsers.add_parser(
        "config",
        parents=[common],
        help="Configuration management",
    )
    config_parser.add_argument(
        "action",
        choices=["init", "show", "validate"],
        help="Configuration action",
    )
    config_parser.add_argument(
        "--force", "-f",
        action="store_true",
        help="Force overwrite existing configuration",
    )
    config_parser.set_defaults(func=cmd_config)

    return parser


def main(argv: Optional[list[str]] = None) -> int:
    """
    Main entry point for the CLI.

    Args:
        argv: Command line arguments (defaults to sys.argv[1:])

    Returns:
        Exit code
    """
    load_dotenv()

    parser = create_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return 0

    try:
        return args.func(args)
    except RestockMonitorError as e:
        return _error(e.message)


if __name__ == "__main__":
    sys.exit(main())
