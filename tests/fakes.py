from datetime import datetime, timedelta, timezone

from accessguard.errors import CommandError

UFW_STATUS = """Status: active

To                         Action      From
--                         ------      ----
Anywhere                   REJECT      178.128.20.144             # unittest
Anywhere                   REJECT      45.82.78.254               # unittest
Anywhere                   REJECT      204.76.203.219
Anywhere                   REJECT      176.65.148.236             # unittest
Anywhere                   REJECT      10.9.8.7                   # unittest2
OpenSSH                    DENY        Anywhere
"""


class FakeExecutor:
    """Records commands; returns `output` or raises CommandError if `fail`."""

    def __init__(self, output: str = "", fail: bool = False):
        self.output = output
        self.fail = fail
        self.calls = []

    def run(self, command, args):
        self.calls.append((command, list(args)))
        if self.fail:
            raise CommandError("simulated failure", b"ERROR: simulated")
        return self.output.encode("utf-8")


class FakeClock:
    def __init__(self):
        self.now = datetime(2025, 6, 1, 16, 0, 0, tzinfo=timezone.utc)

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)
