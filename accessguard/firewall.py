"""
Running firewall commands.

The lockout controller only needs something with a run(command, args)
method that returns the command's output or raises CommandError. Two
implementations:

- SubprocessExecutor: actually runs the command (ufw needs root).
- DryRunExecutor: only logs what would be run (default, see config.DRY_RUN).
"""

import subprocess
from typing import Protocol, Sequence

from . import config
from . import logger
from .errors import CommandError


class Executor(Protocol):
    def run(self, command: str, args: Sequence[str]) -> bytes:
        ...


class SubprocessExecutor:
    """Run commands synchronously, giving up after `timeout` seconds."""

    def __init__(self, timeout: float = None):
        self.timeout = timeout if timeout is not None else config.COMMAND_TIMEOUT_SECONDS

    def run(self, command: str, args: Sequence[str]) -> bytes:
        cmdline = [command, *args]
        try:
            result = subprocess.run(
                cmdline,
                check=True,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                timeout=self.timeout,
            )
        except subprocess.CalledProcessError as e:
            raise CommandError(
                f"'{' '.join(cmdline)}' exited with status {e.returncode}",
                e.output or b"",
            ) from e
        except subprocess.TimeoutExpired as e:
            raise CommandError(
                f"'{' '.join(cmdline)}' timed out after {self.timeout}s",
                e.output or b"",
            ) from e
        except OSError as e:
            raise CommandError(f"'{' '.join(cmdline)}' could not be started: {e}") from e
        return result.stdout


class DryRunExecutor:
    """Log commands instead of running them; every command 'succeeds'."""

    def run(self, command: str, args: Sequence[str]) -> bytes:
        logger.log_info(
            "[DRY-RUN] Would run firewall command (firewall not modified)",
            command=" ".join([command, *args]),
        )
        return b""


def default_executor(dry_run: bool = None) -> Executor:
    """DryRunExecutor or SubprocessExecutor depending on config.DRY_RUN."""
    dry_run = dry_run if dry_run is not None else config.DRY_RUN
    if dry_run:
        return DryRunExecutor()
    return SubprocessExecutor()
