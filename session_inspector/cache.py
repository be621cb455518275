"""Caching of per-file line indices."""

import logging
import os
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

logger = logging.getLogger(__name__)


@dataclass
class LineIndex:
    """Byte offset and length (including newline) of every line in a file."""

    size: int = 0
    mtime: float = 0.0
    lines: list[tuple[int, int]] = field(default_factory=list)
    # False when the last line had no trailing newline yet (write in progress)
    tail_complete: bool = True

    def __len__(self) -> int:
        return len(self.lines)


def scan_lines(path: Path, start: int = 0) -> tuple[list[tuple[int, int]], bool]:
    """Scan a file from `start`.

    Returns the (offset, length) pairs and whether the last line ended
    with a newline.
    """
    entries = []
    offset = start
    tail_complete = True
    with open(path, "rb") as f:
        f.seek(start)
        for raw in f:
            entries.append((offset, len(raw)))
            offset += len(raw)
            tail_complete = raw.endswith(b"\n")
    return entries, tail_complete


class LineIndexCache:
    """Thread-safe cache of line indices keyed by file path.

    Session logs are append-only, so when a file only grew the cached index
    is extended from the previous end instead of being rebuilt. A shrinking
    file was rewritten and is indexed from scratch.
    """

    _instance = None
    _lock = threading.Lock()

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
            cls._instance._data = {}
        return cls._instance

    def get(self, file_path: Path) -> Optional[LineIndex]:
        """Return an up-to-date index, or None if the file cannot be read."""
        key = str(file_path)
        try:
            stat = os.stat(file_path)
        except OSError:
            with self._lock:
                self._data.pop(key, None)
            return None

        with self._lock:
            entry = self._data.get(key)
            if entry and entry.size == stat.st_size and entry.mtime == stat.st_mtime:
                return entry

            try:
                if entry and entry.size < stat.st_size:
                    entry = self._extend(file_path, entry, stat.st_size, stat.st_mtime)
                else:
                    lines, tail_complete = scan_lines(file_path)
                    entry = LineIndex(stat.st_size, stat.st_mtime, lines, tail_complete)
            except OSError as e:
                logger.warning(f"Failed to index {file_path}: {e}")
                self._data.pop(key, None)
                return None

            self._data[key] = entry
            return entry

    @staticmethod
    def _extend(file_path: Path, entry: LineIndex, size: int, mtime: float) -> LineIndex:
        kept = entry.lines
        resume = entry.size
        if not entry.tail_complete and kept:
            # re-read the partial line together with what was appended to it
            resume = kept[-1][0]
            kept = kept[:-1]
        appended, tail_complete = scan_lines(file_path, resume)
        if not appended:
            tail_complete = entry.tail_complete
        return LineIndex(size, mtime, kept + appended, tail_complete)

    def invalidate(self, file_path: Optional[Path] = None):
        """Drop one cached index, or all of them."""
        with self._lock:
            if file_path is None:
                self._data.clear()
            else:
                self._data.pop(str(file_path), None)
