"""
Audit Logger module for the restock monitor.

Provides structured, component-tagged logging with dual-format output
(JSON lines and human-readable text), a severity threshold, an optional
log file, and masking of credentials and session material.
"""

import json
import sys
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional, TextIO

from .enums import LogLevel


@dataclass
class LogEntry:
    """A single recorded log line before rendering."""

    timestamp: str
    level: LogLevel
    component: str
    message: str
    data: dict = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "timestamp": self.timestamp,
            "level": self.level.value,
            "component": self.component,
            "message": self.message,
            "data": self.data,
        }


class AuditLogger:
    """
    Structured logger shared by every component of the monitor.

    Supports:
    - JSON, text, or both output formats
    - A minimum level below which entries are dropped
    - Mirroring output into a log file
    - Masking of passwords, tokens, cookies and passphrases at any depth
    """

    # Substrings that mark a key as sensitive (case-insensitive)
    SENSITIVE_KEYS = frozenset({
        'token', 'secret', 'password', 'passphrase', 'api_key',
        'bot_token', 'auth', 'authorization', 'credential', 'credentials',
        'cookie', 'cookies', 'session_state', 'private_key',
    })

    MASK_VALUE = "***MASKED***"

    def __init__(
        self,
        output_format: str = "text",
        output_stream: Optional[TextIO] = None,
        level: LogLevel = LogLevel.INFO,
        file_path: Optional[Path] = None,
    ):
        """
        Initialize the audit logger.

        Args:
            output_format: 'json', 'text', or 'both'
            output_stream: Console stream (defaults to sys.stderr)
            level: Minimum level that is recorded
            file_path: Optional file that receives the same lines
        """
        if output_format not in ("json", "text", "both"):
            raise ValueError(f"Invalid output_format: {output_format}")

        self._formats = ("json", "text") if output_format == "both" else (output_format,)
        self._stream = output_stream or sys.stderr
        self._level = level
        self._file_path = file_path
        self._entries: list[LogEntry] = []

    @classmethod
    def from_config(cls, config, output_stream: Optional[TextIO] = None) -> "AuditLogger":
        """Build a logger from a LoggingConfig."""
        return cls(
            output_format=config.output_format,
            output_stream=output_stream,
            level=LogLevel(config.level),
            file_path=Path(config.file) if config.file else None,
        )

    @property
    def entries(self) -> list[LogEntry]:
        """Entries recorded so far, oldest first."""
        return list(self._entries)

    def log(
        self,
        level: LogLevel,
        component: str,
        message: str,
        data: Optional[dict] = None,
    ) -> Optional[LogEntry]:
        """
        Record and write an entry.

        Returns:
            The LogEntry, or None when ``level`` is below the threshold
        """
        if level.rank < self._level.rank:
            return None

        entry = LogEntry(
            timestamp=datetime.now(timezone.utc).isoformat(),
            level=level,
            component=component,
            message=message,
            data=self.mask_sensitive_data(data or {}),
        )
        self._entries.append(entry)
        self._write(self._render(entry))
        return entry

    def debug(self, component: str, message: str, data: Optional[dict] = None) -> Optional[LogEntry]:
        return self.log(LogLevel.DEBUG, component, message, data)

    def info(self, component: str, message: str, data: Optional[dict] = None) -> Optional[LogEntry]:
        return self.log(LogLevel.INFO, component, message, data)

    def warn(self, component: str, message: str, data: Optional[dict] = None) -> Optional[LogEntry]:
        return self.log(LogLevel.WARN, component, message, data)

    def log_error(
        self,
        component: str,
        message: str,
        error: Optional[BaseException] = None,
        url: Optional[str] = None,
        additional_data: Optional[dict] = None,
    ) -> Optional[LogEntry]:
        """
        Log an error entry carrying the exception type, its message and the
        URL being processed.
        """
        data = dict(additional_data or {})
        if error is not None:
            data["error_type"] = type(error).__name__
            data["error_message"] = str(error)
        if url is not None:
            data["url"] = url
        return self.log(LogLevel.ERROR, component, message, data)

    def mask_sensitive_data(self, data: dict) -> dict:
        """Return a copy of ``data`` with sensitive values replaced."""
        return self._mask(data)

    def _is_sensitive(self, key: Any) -> bool:
        key_lower = str(key).lower()
        return any(sensitive in key_lower for sensitive in self.SENSITIVE_KEYS)

    def _mask(self, value: Any) -> Any:
        if isinstance(value, dict):
            return {
                k: self.MASK_VALUE if self._is_sensitive(k) else self._mask(v)
                for k, v in value.items()
            }
        if isinstance(value, (list, tuple)):
            return [self._mask(item) for item in value]
        return value

    def _render(self, entry: LogEntry) -> list[str]:
        lines = []
        for fmt in self._formats:
            if fmt == "json":
                lines.append(json.dumps(entry.to_dict(), ensure_ascii=False, default=str))
            else:
                # [TIMESTAMP] LEVEL [COMPONENT] MESSAGE {data}
                text = f"[{entry.timestamp}] {entry.level.value.upper()} [{entry.component}] {entry.message}"
                if entry.data:
                    text += " " + json.dumps(entry.data, ensure_ascii=False, default=str)
                lines.append(text)
        return lines

    def _write(self, lines: list[str]) -> None:
        payload = "".join(line + "\n" for line in lines)
        self._stream.write(payload)
        self._stream.flush()

        if self._file_path is not None:
            self._file_path.parent.mkdir(parents=True, exist_ok=True)
            with open(self._file_path, "a", encoding="utf-8") as f:
                f.write(payload)
