"""
Exception classes for the restock monitor.

All exceptions inherit from RestockMonitorError and provide structured
error information with codes, messages, and optional details.
"""

from typing import Optional


class RestockMonitorError(Exception):
    """Base exception for all restock monitor errors."""

    def __init__(
        self,
        code: str,
        message: str,
        details: Optional[dict] = None,
    ) -> None:
        self.code = code
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(code={self.code!r}, message={self.message!r})"

    def to_dict(self) -> dict:
        """Convert exception to dictionary for serialization."""
        return {
            "error_type": self.__class__.__name__,
            "code": self.code,
            "message": self.message,
            "details": self.details,
        }


class VaultError(RestockMonitorError):
    """Raised when the vault cannot encrypt or decrypt a record."""

    pass


class VaultAuthenticationError(VaultError):
    """Raised on a wrong passphrase, a tampered record or a malformed record."""

    pass


class PersistenceError(RestockMonitorError):
    """Raised when secret store file operations fail."""

    pass


class StoreNotFoundError(PersistenceError):
    """Raised when an account cannot be found in the store."""

    pass


class NavigationError(RestockMonitorError):
    """Raised by page drivers when navigation fails or times out."""

    pass


class ConfigValidationError(RestockMonitorError):
    """Raised when the configuration is invalid."""

    pass


class NotificationError(RestockMonitorError):
    """Raised when a notification channel is misconfigured."""

    pass
