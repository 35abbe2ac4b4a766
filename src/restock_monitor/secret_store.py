"""
Secret Store module for account credentials and browser sessions.

Accounts and per-account session blobs are serialized to JSON, sealed with
the Vault, and written as single-record files readable only by the owner.

Every write replaces the whole file. The store assumes a single writer:
two processes saving the same file concurrently will silently lose the
earlier write.
"""

import json
import os
import uuid
from dataclasses import replace
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional
from urllib.parse import urlparse

from .audit_logger import AuditLogger
from .exceptions import NavigationError, PersistenceError, StoreNotFoundError
from .models import Account, AccountDraft
from .vault import Vault

PRIVATE_FILE_MODE = 0o600
UPDATABLE_FIELDS = frozenset({"login_id", "login_type", "proxy", "payment_label"})


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def write_private_file(path: Path, content: str) -> None:
    """
    Replace ``path`` with ``content`` using owner-only permissions.

    Raises:
        PersistenceError: If the file cannot be written
    """
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, PRIVATE_FILE_MODE)
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(content)
        # O_CREAT's mode is ignored for files that already existed.
        os.chmod(path, PRIVATE_FILE_MODE)
    except OSError as e:
        raise PersistenceError(
            code="io_error",
            message=f"Failed to write {path}: {e}",
            details={"file_path": str(path)},
        ) from e


def read_file(path: Path) -> str:
    try:
        return path.read_text(encoding="utf-8")
    except OSError as e:
        raise PersistenceError(
            code="io_error",
            message=f"Failed to read {path}: {e}",
            details={"file_path": str(path)},
        ) from e


class AccountStore:
    """
    Encrypted list of accounts.

    Accounts can be looked up two ways, which are kept separate on purpose:
    by 1-based position in the current list (unstable across add/remove)
    and by exact login identifier. See ``find_by_identifier``.
    """

    def __init__(
        self,
        passphrase: str,
        file_path: Path,
        vault: Optional[Vault] = None,
        logger: Optional[AuditLogger] = None,
    ) -> None:
        """
        Initialize the account store.

        Args:
            passphrase: Master passphrase for the vault
            file_path: Location of the encrypted accounts file
            vault: Vault instance (defaults to current cost parameters)
            logger: Optional audit logger
        """
        self._passphrase = passphrase
        self._file_path = file_path
        self._vault = vault or Vault()
        self._logger = logger

    @property
    def file_path(self) -> Path:
        return self._file_path

    def load(self) -> list[Account]:
        """
        Load and decrypt all accounts.

        Returns:
            Accounts in stored order, or an empty list if no file exists

        Raises:
            VaultAuthenticationError: Wrong passphrase or corrupted file
            PersistenceError: If the file cannot be read or parsed
        """
        if not self._file_path.exists():
            return []

        record = read_file(self._file_path)
        plaintext = self._vault.decrypt_text(record, self._passphrase)
        try:
            raw_accounts = json.loads(plaintext)
            return [Account.from_dict(item) for item in raw_accounts]
        except (json.JSONDecodeError, KeyError, TypeError, ValueError) as e:
            raise PersistenceError(
                code="parse_error",
                message=f"Failed to parse accounts file: {e}",
                details={"file_path": str(self._file_path)},
            ) from e

    def save(self, accounts: list[Account]) -> None:
        """Encrypt and write the full account list."""
        payload = json.dumps([account.to_dict() for account in accounts], indent=2)
        write_private_file(self._file_path, self._vault.encrypt(payload, self._passphrase))

    def list(self) -> list[Account]:
        return self.load()

    def add(self, draft: AccountDraft) -> Account:
        """Append a new account with a fresh id and creation timestamp."""
        accounts = self.load()
        account = Account(
            id=str(uuid.uuid4()),
            login_id=draft.login_id,
            login_type=draft.login_type,
            proxy=draft.proxy,
            payment_label=draft.payment_label,
            created_at=_now(),
            last_login_at=None,
            session_file=None,
        )
        accounts.append(account)
        self.save(accounts)
        self._log("Account added", {"account_id": account.id})
        return account

    def find_by_identifier(self, identifier: str) -> Optional[Account]:
        """
        Resolve an account from user input.

        Two strategies coexist:
        1. Positional: if ``identifier`` is an integer within 1..len(accounts),
           the account at that 1-based position in the current list.
        2. Exact match on ``login_id``.

        An out-of-range number falls through to the exact-match strategy.
        """
        accounts = self.load()
        text = identifier.strip()
        if text.isdecimal():
            index = int(text)
            if 1 <= index <= len(accounts):
                return accounts[index - 1]
        for account in accounts:
            if account.login_id == identifier:
                return account
        return None

    def get(self, account_id: str) -> Account:
        """
        Raises:
            StoreNotFoundError: If no account has this id
        """
        for account in self.load():
            if account.id == account_id:
                return account
        raise StoreNotFoundError(
            code="account_not_found",
            message=f"Account not found: {account_id}",
            details={"account_id": account_id},
        )

    def update(self, account_id: str, **fields) -> Account:
        """
        Merge updatable fields into an account and persist.

        Raises:
            StoreNotFoundError: If no account has this id
            ValueError: If a field cannot be updated
        """
        unknown = set(fields) - UPDATABLE_FIELDS
        if unknown:
            raise ValueError(f"Cannot update fields: {', '.join(sorted(unknown))}")

        accounts = self.load()
        for i, account in enumerate(accounts):
            if account.id == account_id:
                accounts[i] = replace(account, **fields)
                self.save(accounts)
                self._log("Account updated", {"account_id": account_id, "fields": sorted(fields)})
                return accounts[i]

        raise StoreNotFoundError(
            code="account_not_found",
            message=f"Account not found: {account_id}",
            details={"account_id": account_id},
        )

    def record_login(self, account_id: str, session_file: Optional[Path]) -> Account:
        """Stamp a successful login or session refresh."""
        accounts = self.load()
        for i, account in enumerate(accounts):
            if account.id == account_id:
                accounts[i] = replace(
                    account,
                    last_login_at=_now(),
                    session_file=str(session_file) if session_file else account.session_file,
                )
                self.save(accounts)
                return accounts[i]
        raise StoreNotFoundError(
            code="account_not_found",
            message=f"Account not found: {account_id}",
            details={"account_id": account_id},
        )

    def remove(self, account_id: str) -> None:
        """Delete an account and its session file, if any."""
        accounts = self.load()
        for account in accounts:
            if account.id == account_id and account.session_file:
                session_path = Path(account.session_file)
                if session_path.exists():
                    session_path.unlink()
        self.save([account for account in accounts if account.id != account_id])
        self._log("Account removed", {"account_id": account_id})

    def _log(self, message: str, data: dict) -> None:
        if self._logger:
            self._logger.info("AccountStore", message, data)


class SessionStore:
    """One encrypted browser session document per account id."""

    SUFFIX = ".session"

    def __init__(
        self,
        passphrase: str,
        directory: Path,
        vault: Optional[Vault] = None,
    ) -> None:
        self._passphrase = passphrase
        self._directory = directory
        self._vault = vault or Vault()

    def session_path(self, account_id: str) -> Path:
        return self._directory / f"{account_id}{self.SUFFIX}"

    def save_session(self, account_id: str, state: dict) -> Path:
        """
        Encrypt and write a session document (cookies and origin storage).

        Returns:
            Path of the written session file
        """
        path = self.session_path(account_id)
        write_private_file(path, self._vault.encrypt(json.dumps(state), self._passphrase))
        return path

    def load_session(self, account_id: str) -> Optional[dict]:
        """
        Returns:
            The decrypted session document, or None if none is stored

        Raises:
            VaultAuthenticationError: Wrong passphrase or corrupted file
        """
        path = self.session_path(account_id)
        if not path.exists():
            return None
        plaintext = self._vault.decrypt_text(read_file(path), self._passphrase)
        try:
            return json.loads(plaintext)
        except json.JSONDecodeError as e:
            raise PersistenceError(
                code="parse_error",
                message=f"Failed to parse session file: {e}",
                details={"file_path": str(path)},
            ) from e

    def delete_session(self, account_id: str) -> bool:
        path = self.session_path(account_id)
        if path.exists():
            path.unlink()
            return True
        return False


async def is_session_valid(driver, check_url: str, timeout_ms: int = 15_000) -> bool:
    """
    Check a logged-in session by visiting the login page.

    The site redirects authenticated visitors away from its login page, so
    the session is valid when the final URL's path is no longer the login
    path.
    """
    try:
        await driver.navigate(check_url, wait_until="domcontentloaded", timeout_ms=timeout_ms)
    except NavigationError:
        return False
    login_path = urlparse(check_url).path.rstrip("/")
    final_path = urlparse(await driver.current_url()).path.rstrip("/")
    return final_path != login_path
