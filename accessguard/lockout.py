"""
Locking offending addresses with ufw REJECT rules.

Every rule we add carries a comment (config.LOCK_COMMENT) so we can find our
own rules again after a restart and never touch rules added by an admin.

Each lock expires. The n-th lock of the same address lasts
base_delay * 2^n, with n capped at max_offenses:

    1st lock   2 * base_delay
    2nd lock   4 * base_delay
    ...
    capped at  2^max_offenses * base_delay

An address that is released keeps its offense count, so a repeat offender
is locked longer each time.

The in-memory map is the cache used by is_rejected(); ufw is only queried
once, in init().
"""

import threading
from dataclasses import asdict, dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, Iterable, List, Mapping, Optional

from . import config
from . import logger
from .errors import CommandError
from .firewall import Executor

UFW = "ufw"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class LockEntry:
    address: str
    locked: bool = False
    locked_from: Optional[datetime] = None
    locked_until: Optional[datetime] = None
    offense_count: int = 0

    def to_dict(self) -> dict:
        data = asdict(self)
        for key in ("locked_from", "locked_until"):
            if data[key] is not None:
                data[key] = data[key].isoformat()
        return data

    @classmethod
    def from_dict(cls, data: Mapping) -> "LockEntry":
        def _ts(value):
            return datetime.fromisoformat(value) if value else None

        return cls(
            address=str(data["address"]),
            locked=bool(data.get("locked", False)),
            locked_from=_ts(data.get("locked_from")),
            locked_until=_ts(data.get("locked_until")),
            offense_count=int(data.get("offense_count", 0)),
        )


def parse_status_output(output: str, comment: str) -> List[str]:
    """
    Addresses of REJECT rules tagged with `comment` in `ufw status` output.

        Anywhere                   REJECT      45.82.78.254               # accessguard
    """
    marker = f"# {comment}"
    addresses = []
    for line in output.splitlines():
        idx = line.rfind(marker)
        if idx <= 0 or line[idx:].strip() != marker:
            continue
        head = line[:idx]
        idx = head.rfind("REJECT")
        if idx <= 0:
            continue
        tokens = head[idx + len("REJECT"):].split()
        if tokens:
            addresses.append(tokens[-1])
    return addresses


class LockoutController:
    """
    Tracks locked addresses and issues ufw commands through an executor.

    Safe to call from several threads; all reads and writes of the address
    map happen under one lock.
    """

    def __init__(
        self,
        executor: Executor,
        comment: str = None,
        base_delay: timedelta = None,
        max_offenses: int = None,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.executor = executor
        self.comment = comment or config.LOCK_COMMENT
        self.base_delay = base_delay if base_delay is not None else timedelta(seconds=config.BASE_DELAY_SECONDS)
        self.max_offenses = max_offenses if max_offenses is not None else config.MAX_OFFENSES
        self.clock = clock
        self._entries: Dict[str, LockEntry] = {}
        self._lock = threading.RLock()

    # -----------------------------------------------------------------------
    # Commands
    # -----------------------------------------------------------------------
    def _reject_args(self, address: str) -> List[str]:
        return ["insert", "1", "reject", "from", address, "to", "any", "comment", self.comment]

    @staticmethod
    def _release_args(address: str) -> List[str]:
        return ["delete", "reject", "from", address, "to", "any"]

    def _run(self, args: List[str]) -> Optional[bytes]:
        """Run ufw; log and return None on failure."""
        try:
            return self.executor.run(UFW, args)
        except CommandError as e:
            logger.log_error(
                "Firewall command failed",
                command=" ".join([UFW, *args]),
                error=str(e),
                output=e.output.decode("utf-8", errors="replace"),
            )
            return None

    # -----------------------------------------------------------------------
    # Public API
    # -----------------------------------------------------------------------
    def init(self) -> None:
        """
        Seed the map from the REJECT rules that already exist in ufw.

        Recovered addresses get a single base_delay window starting now. The
        external listing has no offense history, so an address already known
        as locked (restored state) is left untouched.
        """
        output = self._run(["status"])
        if output is None:
            return
        now = self.clock()
        with self._lock:
            for address in parse_status_output(output.decode("utf-8", errors="replace"), self.comment):
                entry = self._entries.get(address)
                if entry is not None and entry.locked:
                    continue
                if entry is None:
                    entry = self._entries[address] = LockEntry(address=address)
                entry.locked = True
                entry.locked_from = now
                entry.locked_until = now + self.base_delay
                entry.offense_count = max(entry.offense_count, 1)
                logger.log_info("Recovered locked IP", ip=address, until=entry.locked_until)

    def is_rejected(self, address: str) -> bool:
        with self._lock:
            entry = self._entries.get(address)
            return entry is not None and entry.locked

    def reject(self, address: str) -> bool:
        """Add a REJECT rule for address. Returns False if ufw failed."""
        with self._lock:
            if self._run(self._reject_args(address)) is None:
                return False
            entry = self._entries.setdefault(address, LockEntry(address=address))
            entry.offense_count = min(entry.offense_count + 1, self.max_offenses)
            entry.locked = True
            entry.locked_from = self.clock()
            entry.locked_until = entry.locked_from + self.base_delay * (2 ** entry.offense_count)
            logger.log_info(
                "Locked IP",
                ip=address,
                until=entry.locked_until,
                offense_count=entry.offense_count,
            )
            return True

    def release(self, address: str) -> bool:
        """Delete the REJECT rule for address. Returns False if ufw failed."""
        with self._lock:
            if self._run(self._release_args(address)) is None:
                return False
            entry = self._entries.get(address)
            if entry is not None:
                entry.locked = False
            logger.log_info("Unlocked IP", ip=address)
            return True

    def release_if_expired(self) -> None:
        with self._lock:
            now = self.clock()
            expired = [
                e.address for e in self._entries.values()
                if e.locked and e.locked_until is not None and now > e.locked_until
            ]
            for address in expired:
                self.release(address)

    def release_all(self) -> None:
        with self._lock:
            for address in [e.address for e in self._entries.values() if e.locked]:
                self.release(address)

    # -----------------------------------------------------------------------
    # State
    # -----------------------------------------------------------------------
    def get(self, address: str) -> Optional[LockEntry]:
        """A copy of the entry for address, or None if never locked."""
        with self._lock:
            entry = self._entries.get(address)
            return None if entry is None else LockEntry(**asdict(entry))

    def locked_addresses(self) -> List[str]:
        with self._lock:
            return [e.address for e in self._entries.values() if e.locked]

    def export_state(self) -> List[dict]:
        with self._lock:
            return [e.to_dict() for e in self._entries.values()]

    def restore_state(self, entries: Iterable[Mapping]) -> None:
        """Load entries saved by export_state(); bad entries are skipped."""
        with self._lock:
            for data in entries:
                try:
                    entry = LockEntry.from_dict(data)
                except (KeyError, TypeError, ValueError) as e:
                    logger.log_warn("Skipping invalid lock entry in state", entry=data, error=str(e))
                    continue
                self._entries[entry.address] = entry
