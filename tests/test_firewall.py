import sys

import pytest

from accessguard import firewall
from accessguard.errors import CommandError


def test_subprocess_executor_returns_output():
    out = firewall.SubprocessExecutor(timeout=10).run(sys.executable, ["-c", "print('ok')"])
    assert out.strip() == b"ok"


def test_subprocess_executor_nonzero_exit():
    with pytest.raises(CommandError) as exc:
        firewall.SubprocessExecutor(timeout=10).run(
            sys.executable, ["-c", "import sys; print('denied'); sys.exit(3)"]
        )
    assert "status 3" in str(exc.value)
    assert b"denied" in exc.value.output


def test_subprocess_executor_timeout():
    with pytest.raises(CommandError, match="timed out"):
        firewall.SubprocessExecutor(timeout=0.2).run(sys.executable, ["-c", "import time; time.sleep(5)"])


def test_subprocess_executor_missing_command():
    with pytest.raises(CommandError, match="could not be started"):
        firewall.SubprocessExecutor().run("accessguard-no-such-command", [])


def test_dry_run_only_logs(log_output):
    assert firewall.DryRunExecutor().run("ufw", ["status"]) == b""
    assert "ufw status" in log_output.getvalue()


def test_default_executor(monkeypatch):
    assert isinstance(firewall.default_executor(dry_run=True), firewall.DryRunExecutor)
    assert isinstance(firewall.default_executor(dry_run=False), firewall.SubprocessExecutor)
    monkeypatch.setattr(firewall.config, "DRY_RUN", True)
    assert isinstance(firewall.default_executor(), firewall.DryRunExecutor)
