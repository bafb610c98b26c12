import gzip
import json

import pytest

from accessguard import config
from accessguard import logger


@pytest.fixture
def log_file(tmp_path, log_output):
    path = tmp_path / "logs" / "accessguard.log"
    yield path
    logger.close_file_logging()


def test_events_are_json_lines(log_output):
    logger.log_info("Locked IP", ip="1.2.3.4")
    event = json.loads(log_output.getvalue())
    assert event["level"] == "INFO"
    assert event["message"] == "Locked IP"
    assert event["ip"] == "1.2.3.4"


def test_debug_follows_verbose(log_output, monkeypatch):
    monkeypatch.setattr(config, "VERBOSE", False)
    logger.log_debug("quiet")
    assert log_output.getvalue() == ""


def test_file_logging_writes_same_lines(log_file, log_output):
    logger.setup_file_logging(log_file, max_bytes=0, backups=1)
    logger.log_warn("Could not read state file")
    assert log_file.read_text(encoding="utf-8") == log_output.getvalue()


def test_file_is_rotated_and_gzipped(log_file):
    logger.setup_file_logging(log_file, max_bytes=200, backups=2)
    for n in range(10):
        logger.log_info("Unlocked IP", ip=f"10.0.0.{n}")
    logger.close_file_logging()

    rotated = log_file.with_name(log_file.name + ".1.gz")
    assert rotated.exists()
    assert not log_file.with_name(log_file.name + ".3.gz").exists()
    with gzip.open(rotated, "rt", encoding="utf-8") as f:
        assert json.loads(f.readline())["message"] == "Unlocked IP"


def test_setup_twice_keeps_one_handler(log_file, tmp_path):
    logger.setup_file_logging(tmp_path / "first.log")
    logger.setup_file_logging(log_file)
    logger.log_error("Firewall command failed")
    assert (tmp_path / "first.log").read_text(encoding="utf-8") == ""
    assert len(log_file.read_text(encoding="utf-8").splitlines()) == 1
