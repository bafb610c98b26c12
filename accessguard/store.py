"""
Remembering what has already been processed.

Two pieces of state keep a restarted run from analysing the same lines
twice:

- HashStore: md5 hashes of every log line seen, optionally kept in a text
  file (one hash per line, append only).
- The state file (state/state.json): the timestamp of the last processed
  record (watermark) and the lock history of the lockout controller.
"""

import hashlib
import json
from datetime import datetime
from pathlib import Path
from typing import Optional, Set

from . import config
from . import logger
from .errors import StoreError


def hash_line(line: str) -> str:
    return hashlib.md5(line.encode("utf-8")).hexdigest()


class HashStore:
    """
    Set of line hashes, backed by an optional append-only file.

    add() returns False for a line hash that was seen before. The file is
    not allowed to grow past max_bytes; add() raises StoreError instead.
    """

    def __init__(self, path: Optional[Path] = None, max_bytes: int = None):
        self.path = path
        self.max_bytes = max_bytes if max_bytes is not None else config.MAX_STORE_BYTES
        self._hashes: Set[str] = set()
        if path is not None and path.exists():
            self._load(path)

    def _load(self, path: Path) -> None:
        try:
            with open(path, "r", encoding="utf-8") as f:
                self._hashes.update(line.strip() for line in f if line.strip())
        except (OSError, UnicodeDecodeError) as e:
            logger.log_warn("Could not read store file, starting empty", path=str(path), error=str(e))
            self._hashes.clear()

    def __contains__(self, line_hash: str) -> bool:
        return line_hash in self._hashes

    def __len__(self) -> int:
        return len(self._hashes)

    def add(self, line_hash: str) -> bool:
        if line_hash in self._hashes:
            return False
        if self.path is not None:
            self._append(line_hash)
        self._hashes.add(line_hash)
        return True

    def _append(self, line_hash: str) -> None:
        try:
            if self.path.exists() and self.path.stat().st_size > self.max_bytes:
                raise StoreError(f"store file '{self.path}' is too large")
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with open(self.path, "a", encoding="utf-8") as f:
                f.write(line_hash + "\n")
        except OSError as e:
            raise StoreError(f"cannot write store file '{self.path}': {e}") from e


def load_state(path: Path = None) -> dict:
    """
    Load {"last_time_local": datetime or None, "locks": [...]}.

    A missing or unreadable file yields an empty state.
    """
    path = path or config.STATE_FILE
    state = {"last_time_local": None, "locks": []}
    if not path.exists():
        return state
    try:
        with open(path, "r", encoding="utf-8") as f:
            saved = json.load(f)
        if saved.get("last_time_local"):
            state["last_time_local"] = datetime.fromisoformat(saved["last_time_local"])
        state["locks"] = list(saved.get("locks", []))
    except (ValueError, TypeError, AttributeError, OSError) as e:
        logger.log_warn("Could not read state file, starting fresh", path=str(path), error=str(e))
    return state


def save_state(last_time_local: Optional[datetime], locks: list, path: Path = None) -> None:
    path = path or config.STATE_FILE
    path.parent.mkdir(parents=True, exist_ok=True)
    data = {
        "last_time_local": last_time_local.isoformat() if last_time_local else None,
        "locks": locks,
    }
    with open(path, "w", encoding="utf-8") as f:
        json.dump(data, f, indent=2)
