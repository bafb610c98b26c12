import json
from datetime import timedelta

import pytest

from accessguard import detector
from accessguard.errors import StoreError
from accessguard.lockout import LockoutController
from accessguard.log_parser import parse_line
from accessguard.rules import RuleSet
from accessguard.store import HashStore

LOCAL = '127.0.0.1 - - [01/Jun/2025:18:05:17 +0200] 1748793917.616 "GET / HTTP/1.1" 73 444 612 0.000 "curl/7.81.0"'
REMOTE = '8.8.8.8 - - [01/Jun/2025:18:05:18 +0200] 1748793918.616 "GET / HTTP/1.1" 73 444 612 0.000 "curl/7.81.0"'
OK = '9.9.9.9 - - [01/Jun/2025:18:05:19 +0200] 1748793919.616 "GET / HTTP/1.1" 73 200 612 0.000 "curl/7.81.0"'
OLDER = '7.7.7.7 - - [01/Jun/2025:18:05:16 +0200] 1748792917.616 "GET / HTTP/1.1" 73 444 612 0.000 "curl/7.81.0"'
BROKEN = '6.6.6.6 - - [44/ddd/2025:18:05:17 +0200] 1748793920.616 "GET / HTTP/1.1" 73 444 612 0.000 "curl/7.81.0"'


class FailingStore(HashStore):
    def add(self, line_hash):
        raise StoreError("disk full")


@pytest.fixture
def rules():
    return RuleSet.from_config(
        bad=[{"name": "badrule", "condition": "eq(status,444)"}],
        good=[{"name": "goodRule", "condition": "starts-with(ip,'127.')"}],
    )


@pytest.fixture
def lockout(executor, clock):
    return LockoutController(executor, comment="unittest", base_delay=timedelta(seconds=1), clock=clock)


def test_good_rule_veto_and_reject(rules, lockout, executor):
    watermark, stats = detector.analyze_lines([LOCAL, REMOTE, OK, ""], rules, lockout, HashStore())

    assert not lockout.is_rejected("127.0.0.1")
    assert lockout.is_rejected("8.8.8.8")
    assert not lockout.is_rejected("9.9.9.9")
    assert stats.inserted == 3
    assert stats.rejected == 1
    assert watermark == parse_line(OK).time_local
    assert executor.calls == [
        ("ufw", ["insert", "1", "reject", "from", "8.8.8.8", "to", "any", "comment", "unittest"])
    ]


def test_duplicates_are_not_analysed_again(rules, lockout, executor):
    store = HashStore()
    detector.analyze_lines([REMOTE], rules, lockout, store)
    lockout.release("8.8.8.8")

    watermark, stats = detector.analyze_lines([REMOTE], rules, lockout, store)
    assert stats.skipped == 1
    assert stats.inserted == 0
    assert not lockout.is_rejected("8.8.8.8")
    assert watermark == parse_line(REMOTE).time_local


def test_already_locked_address_is_not_locked_twice(rules, lockout, executor):
    second = REMOTE.replace("1748793918.616", "1748793918.999")
    detector.analyze_lines([REMOTE, second], rules, lockout, HashStore())
    assert len(executor.calls) == 1
    assert lockout.get("8.8.8.8").offense_count == 1


def test_records_older_than_watermark_are_skipped(rules, lockout):
    start = parse_line(REMOTE).time_local
    watermark, stats = detector.analyze_lines([REMOTE, OLDER], rules, lockout, HashStore(), start)
    assert lockout.is_rejected("8.8.8.8")
    assert not lockout.is_rejected("7.7.7.7")
    assert stats.inserted == 1
    assert watermark == start


def test_broken_timestamp_is_logged_and_skipped(rules, lockout, log_output):
    watermark, stats = detector.analyze_lines([BROKEN], rules, lockout, HashStore())
    assert stats.errors == 1
    assert watermark is None
    assert not lockout.is_rejected("6.6.6.6")
    assert "Failed to parse log line" in log_output.getvalue()


def test_store_failure_does_not_prevent_lock(rules, lockout, log_output):
    watermark, stats = detector.analyze_lines([REMOTE], rules, lockout, FailingStore())
    assert lockout.is_rejected("8.8.8.8")
    assert stats.errors == 1
    assert stats.rejected == 1
    assert watermark == parse_line(REMOTE).time_local
    assert "Failed to store log line" in log_output.getvalue()


def test_failed_reject_is_not_counted(rules, lockout, executor):
    executor.fail = True
    _, stats = detector.analyze_lines([REMOTE], rules, lockout, HashStore())
    assert stats.rejected == 0
    assert not lockout.is_rejected("8.8.8.8")


def test_expired_locks_are_released_after_pass(rules, lockout, clock):
    detector.analyze_lines([REMOTE], rules, lockout, HashStore())
    clock.advance(seconds=3)
    detector.analyze_lines([], rules, lockout, HashStore())
    assert not lockout.is_rejected("8.8.8.8")


def test_alert_written_for_locked_address(rules, lockout, tmp_path):
    alerts = tmp_path / "output" / "alerts.json"
    detector.analyze_lines([LOCAL, REMOTE], rules, lockout, HashStore(), alerts_file=alerts)

    lines = alerts.read_text(encoding="utf-8").splitlines()
    assert len(lines) == 1
    alert = json.loads(lines[0])
    assert alert["ip"] == "8.8.8.8"
    assert alert["rule"] == "badrule"
    assert alert["status"] == 444
    assert alert["offense_count"] == 1


def test_analyze_file(rules, lockout, tmp_path):
    path = tmp_path / "access.log"
    path.write_text(LOCAL + "\r\n\t" + REMOTE + "\n", encoding="utf-8")
    watermark, stats = detector.analyze_file(path, rules, lockout, HashStore())
    assert stats.inserted == 2
    assert lockout.is_rejected("8.8.8.8")
    assert watermark == parse_line(REMOTE).time_local


def test_analyze_missing_file(rules, lockout, tmp_path, log_output):
    start = parse_line(REMOTE).time_local
    watermark, stats = detector.analyze_file(tmp_path / "missing.log", rules, lockout, HashStore(), start)
    assert watermark == start
    assert stats.total == 0
    assert "Could not read log file" in log_output.getvalue()


def test_out_of_range_msec_does_not_stop_the_pass(rules, lockout):
    far_future = REMOTE.replace("8.8.8.8", "5.5.5.5").replace("1748793918.616", "9" * 25 + ".616")
    following = REMOTE.replace("8.8.8.8", "1.1.1.1")
    watermark, stats = detector.analyze_lines([far_future, following], rules, lockout, HashStore())
    assert lockout.is_rejected("5.5.5.5")
    assert lockout.is_rejected("1.1.1.1")
    assert stats.errors == 0
    assert watermark == parse_line(following).time_local
