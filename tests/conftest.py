import io

import pytest

from accessguard import logger

from fakes import FakeClock, FakeExecutor


@pytest.fixture
def executor():
    return FakeExecutor()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def log_output(monkeypatch):
    """Capture JSON log lines written by accessguard.logger."""
    stream = io.StringIO()
    monkeypatch.setattr(logger, "LOG_STREAM", stream)
    return stream
