"""
One analysis pass over the access log.

For each line, in file order:

1. Parse it. Broken timestamps are logged and skipped; non-log lines
   (blank lines) are ignored.
2. Skip records older than the watermark (last processed timestamp).
3. Offer the line hash to the store; lines seen before are not analysed
   again. A store failure is logged but the record is still analysed, so
   a malicious request is locked no matter what happens to persistence.
4. Ask the rule set whether the request is malicious and, if so, lock the
   address unless it is already locked.
5. Move the watermark to the record's timestamp.

At the end of the pass expired locks are released. Passes must not run
concurrently; the caller schedules them.
"""

from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Iterable, Optional

from . import logger
from .errors import MalformedTimestamp, StoreError
from .lockout import LockoutController
from .log_parser import LogRecord, parse_line
from .rules import Rule, RuleSet, record_fields
from .store import HashStore, hash_line


@dataclass
class AnalysisStats:
    inserted: int = 0
    skipped: int = 0
    errors: int = 0
    rejected: int = 0

    @property
    def total(self) -> int:
        return self.inserted + self.skipped + self.errors


def _alert(record: LogRecord, rule: Rule, lockout: LockoutController) -> dict:
    entry = lockout.get(record.remote_addr)
    return {
        "ip": record.remote_addr,
        "timestamp": record.time_local,
        "rule": rule.name,
        "condition": rule.condition_text,
        "method": record.request_method,
        "uri": record.request_uri,
        "protocol": record.request_protocol,
        "status": record.status,
        "user_agent": record.user_agent,
        "locked_until": entry.locked_until if entry else None,
        "offense_count": entry.offense_count if entry else None,
    }


def _is_new(store: HashStore, line: str, stats: AnalysisStats) -> bool:
    try:
        inserted = store.add(hash_line(line))
    except StoreError as e:
        logger.log_error("Failed to store log line", line=line, error=str(e))
        stats.errors += 1
        return True
    if inserted:
        stats.inserted += 1
    else:
        stats.skipped += 1
    return inserted


def analyze_lines(
    lines: Iterable[str],
    rules: RuleSet,
    lockout: LockoutController,
    store: HashStore,
    last_time_local: Optional[datetime] = None,
    alerts_file: Optional[Path] = None,
) -> tuple[Optional[datetime], AnalysisStats]:
    """
    Analyse lines and lock addresses of malicious requests.

    Returns (new watermark, statistics).
    """
    stats = AnalysisStats()
    for line in lines:
        try:
            record = parse_line(line)
        except MalformedTimestamp as e:
            logger.log_error("Failed to parse log line", line=line, error=str(e))
            stats.errors += 1
            continue
        if record.is_empty:
            continue
        if last_time_local is not None and record.time_local < last_time_local:
            continue

        if _is_new(store, line, stats):
            rule = rules.malicious_rule(record_fields(record))
            if rule is not None and not lockout.is_rejected(record.remote_addr):
                if lockout.reject(record.remote_addr):
                    stats.rejected += 1
                    if alerts_file is not None:
                        logger.append_alert(_alert(record, rule, lockout), alerts_file)

        last_time_local = record.time_local

    lockout.release_if_expired()
    return last_time_local, stats


def read_lines(path: Path) -> list[str]:
    """Read the log, dropping tabs and carriage returns."""
    with open(path, "r", encoding="utf-8", errors="replace") as f:
        data = f.read()
    return data.replace("\t", "").replace("\r", "").split("\n")


def analyze_file(
    path: Path,
    rules: RuleSet,
    lockout: LockoutController,
    store: HashStore,
    last_time_local: Optional[datetime] = None,
    alerts_file: Optional[Path] = None,
) -> tuple[Optional[datetime], AnalysisStats]:
    """
    Run one pass over the log file at path.

    If the file cannot be read the watermark is returned unchanged.
    """
    logger.log_debug(
        "Process log entries",
        path=str(path),
        last_time_local=last_time_local,
    )
    try:
        lines = read_lines(path)
    except OSError as e:
        logger.log_warn("Could not read log file", path=str(path), error=str(e))
        return last_time_local, AnalysisStats()

    last_time_local, stats = analyze_lines(
        lines, rules, lockout, store, last_time_local, alerts_file
    )
    if stats.total:
        logger.log_debug(
            "Analysis pass complete",
            inserted=stats.inserted,
            skipped=stats.skipped,
            errors=stats.errors,
            rejected=stats.rejected,
        )
    return last_time_local, stats
