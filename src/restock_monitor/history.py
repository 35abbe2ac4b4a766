"""
History Sink for the restock monitor.

Stock transitions are appended to a JSON lines file, one record per line.
Existing lines are never rewritten.
"""

import json
from pathlib import Path

from .exceptions import PersistenceError
from .models import HistoryEntry


class HistoryLog:
    """Append-only JSONL log of restock and sold-out transitions."""

    def __init__(self, file_path: Path) -> None:
        self._file_path = file_path

    @property
    def file_path(self) -> Path:
        return self._file_path

    def append(self, entry: HistoryEntry) -> None:
        """
        Append one entry, creating the file and its directory if needed.

        Raises:
            PersistenceError: If the file cannot be written
        """
        try:
            self._file_path.parent.mkdir(parents=True, exist_ok=True)
            with open(self._file_path, "a", encoding="utf-8") as f:
                f.write(json.dumps(entry.to_dict(), ensure_ascii=False) + "\n")
        except OSError as e:
            raise PersistenceError(
                code="io_error",
                message=f"Failed to append history entry: {e}",
                details={"file_path": str(self._file_path)},
            ) from e

    def read_all(self) -> list[HistoryEntry]:
        """Read every entry in file order. Blank lines are skipped."""
        if not self._file_path.exists():
            return []

        entries = []
        with open(self._file_path, "r", encoding="utf-8") as f:
            for line in f:
                line = line.strip()
                if line:
                    entries.append(HistoryEntry.from_dict(json.loads(line)))
        return entries
