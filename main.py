"""
Access Guard - Entry point.

Runs one analysis pass:
1. Compile the configured rules (an invalid rule stops here), check that the
   program log and store are writable and the access log readable
2. Restore watermark and lock history, recover our REJECT rules from ufw
3. Analyse new nginx access log lines, lock malicious addresses
4. Release expired locks and save state

`python main.py release` removes every lock we hold; run it when taking
the service down so no address stays locked by a dead process.
"""

import sys
from pathlib import Path

# Add project root so we can run: python main.py
PROJECT_ROOT = Path(__file__).resolve().parent
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from accessguard import __version__
from accessguard import config
from accessguard import logger
from accessguard import detector
from accessguard import firewall
from accessguard import store
from accessguard.errors import RuleError
from accessguard.lockout import LockoutController
from accessguard.rules import RuleSet


def find_log_path():
    """The nginx access log, or the project sample if it does not exist."""
    for candidate in (Path(config.ACCESS_LOG_PATH), config.SAMPLE_LOG_PATH):
        if candidate.exists():
            return candidate
    return None


def _check_file(filename, desc: str, readonly: bool):
    """Return an error message if the file cannot be opened, else None."""
    if not filename:
        return f"missing {desc} filename in config"
    path = Path(filename)
    try:
        if readonly:
            with open(path, "rb"):
                pass
        else:
            path.parent.mkdir(parents=True, exist_ok=True)
            with open(path, "a", encoding="utf-8"):
                pass
    except OSError as e:
        return f"cannot open {desc} file '{path}': {e}"
    return None


def check_files(log_path) -> bool:
    """The program log and store must be writable, the access log readable."""
    checks = (
        (config.LOG_FILE, "log", False),
        (config.STORE_FILE, "store", False),
        (log_path, "nginx access log", True),
    )
    for filename, desc, readonly in checks:
        error = _check_file(filename, desc, readonly)
        if error is not None:
            logger.log_error("Invalid file configuration", error=error)
            return False
    return True


def build_lockout(state: dict) -> LockoutController:
    """Lockout controller with restored history and recovered ufw rules."""
    lockout = LockoutController(firewall.default_executor())
    lockout.restore_state(state["locks"])
    lockout.init()
    return lockout


def run_detection() -> int:
    logger.log_info("Access Guard started", version=__version__, dry_run=config.DRY_RUN)
    try:
        rules = RuleSet.from_config()
    except RuleError as e:
        logger.log_error("Invalid rule configuration", error=str(e))
        return 1

    log_path = find_log_path()
    if log_path is None:
        logger.log_error("No access log available", tried=[config.ACCESS_LOG_PATH, str(config.SAMPLE_LOG_PATH)])
        return 1
    if not check_files(log_path):
        return 1

    logger.setup_file_logging(Path(config.LOG_FILE))
    try:
        return _run_pass(rules, log_path)
    finally:
        logger.close_file_logging()


def _run_pass(rules: RuleSet, log_path: Path) -> int:
    logger.log_info("Expected nginx log format", log_format=config.NGINX_LOG_FORMAT)
    for line in rules.describe():
        logger.log_info(line)

    state = store.load_state()
    lockout = build_lockout(state)
    seen = store.HashStore(config.STORE_FILE)

    last_time_local, stats = detector.analyze_file(
        log_path,
        rules,
        lockout,
        seen,
        last_time_local=state["last_time_local"],
        alerts_file=config.ALERTS_FILE,
    )
    store.save_state(last_time_local, lockout.export_state())
    logger.log_info(
        "Detection run complete",
        path=str(log_path),
        inserted=stats.inserted,
        skipped=stats.skipped,
        errors=stats.errors,
        rejected=stats.rejected,
        locked=len(lockout.locked_addresses()),
    )
    return 0


def release_all() -> int:
    """Shutdown path: unlock every address and keep the offense history."""
    state = store.load_state()
    lockout = build_lockout(state)
    lockout.release_all()
    store.save_state(state["last_time_local"], lockout.export_state())
    logger.log_info("Released all locked IPs")
    return 0


if __name__ == "__main__":
    if len(sys.argv) > 1 and sys.argv[1] == "release":
        sys.exit(release_all())
    sys.exit(run_detection())
