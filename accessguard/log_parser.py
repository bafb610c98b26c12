"""
nginx access log parser.

Expects lines written with the format shown in config.NGINX_LOG_FORMAT:

    127.0.0.1 - - [01/Jun/2025:18:24:22 +0200] 1748795062.703 "GET /hello HTTP/1.1" 78 404 162 0.000 "curl/7.81.0"

The line is consumed left to right, one positional field at a time. Parsing
is lenient: a broken number or a missing quote only leaves that field at
0 / "". The single hard failure is an unparseable bracketed local time,
which anchors the record (MalformedTimestamp).
"""

import re
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

from .errors import MalformedTimestamp

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)

# Method and protocol are short tokens. Limiting the search keeps a URI that
# contains spaces in one piece.
_MAX_TOKEN_LEN = 32

_DIGITS = re.compile(r"\d+")
_DECIMAL = re.compile(r"[\d.]+")


@dataclass(frozen=True)
class LogRecord:
    """
    One parsed access log entry.

    The default instance (no address) stands for "not a log line", e.g. a
    blank line at the end of the file.
    """

    remote_addr: str = ""
    time_local: Optional[datetime] = None
    request_method: str = ""
    request_uri: str = ""
    request_protocol: str = ""
    request_length: int = 0
    request_time: int = 0  # milliseconds
    status: int = 0
    bytes_sent: int = 0
    user_agent: str = ""

    @property
    def is_empty(self) -> bool:
        return not self.remote_addr


def _parse_address(line: str) -> tuple[str, str]:
    """Everything up to the first space; ("", "") if there is no space."""
    idx = line.find(" ")
    if idx < 0:
        return "", ""
    return line[:idx], line[idx:]


def _extract(line: str, start: str, end: str) -> tuple[str, str]:
    """
    Return the text between the first `start` and the next `end`.

    Returns ("", "") if either delimiter is missing.
    """
    begin = line.find(start)
    if begin < 0:
        return "", ""
    close = line.find(end, begin + 1)
    if close < 0:
        return "", ""
    return line[begin + 1:close], line[close + 1:]


def _parse_int(line: str) -> tuple[int, str]:
    """Next run of digits (anything before it is skipped)."""
    match = _DIGITS.search(line)
    if match is None:
        return 0, ""
    try:
        value = int(match.group())
    except ValueError:
        # past the interpreter's digit limit for int()
        value = 0
    return value, line[match.end():]


def _parse_duration(line: str) -> tuple[int, str]:
    """Next run of digits and dots as seconds, returned as whole milliseconds."""
    match = _DECIMAL.search(line)
    if match is None:
        return 0, ""
    try:
        millis = int(float(match.group()) * 1000.0)
    except (ValueError, OverflowError):
        millis = 0
    return millis, line[match.end():]


def _parse_date(line: str) -> tuple[datetime, str]:
    """Validate the bracketed local time, e.g. [01/Jun/2025:18:24:22 +0200]."""
    text, rest = _extract(line, "[", "]")
    stamp = text.split(" ")[0]
    try:
        parsed = datetime.strptime(stamp, "%d/%b/%Y:%H:%M:%S")
    except ValueError as e:
        raise MalformedTimestamp(f"cannot parse local time '{text}'") from e
    return parsed, rest


def _parse_msec(line: str) -> tuple[datetime, str]:
    """$msec: seconds and milliseconds since the epoch, e.g. 1748795062.703."""
    seconds, rest = _parse_int(line)
    # skip the '.'
    millis, rest = _parse_int(rest[1:])
    try:
        return _EPOCH + timedelta(milliseconds=seconds * 1000 + millis), rest
    except OverflowError:
        # out of datetime range: same as a missing $msec
        return _EPOCH, rest


def _split_request(request: str) -> tuple[str, str, str]:
    """Split "GET /a b HTTP/1.1" into method, uri and protocol."""
    method, protocol = "", ""
    uri = request
    idx = request.find(" ")
    if 0 < idx < _MAX_TOKEN_LEN:
        method = request[:idx]
        uri = request[idx + 1:]
        idx = uri.rfind(" ")
        if idx > 0 and len(uri) - idx < _MAX_TOKEN_LEN:
            protocol = uri[idx + 1:]
            uri = uri[:idx]
    return method, uri, protocol


def parse_line(line: str) -> LogRecord:
    """
    Parse one access log line into a LogRecord.

    Returns an empty LogRecord if the line does not start with an address.
    Raises MalformedTimestamp if the bracketed local time is invalid.
    """
    remote_addr, rest = _parse_address(line)
    if not remote_addr:
        return LogRecord()

    _, rest = _parse_date(rest)
    time_local, rest = _parse_msec(rest)
    request, rest = _extract(rest, '"', '"')
    method, uri, protocol = _split_request(request)
    request_length, rest = _parse_int(rest)
    status, rest = _parse_int(rest)
    bytes_sent, rest = _parse_int(rest)
    request_time, rest = _parse_duration(rest)
    user_agent, _ = _extract(rest, '"', '"')

    return LogRecord(
        remote_addr=remote_addr,
        time_local=time_local,
        request_method=method,
        request_uri=uri,
        request_protocol=protocol,
        request_length=request_length,
        request_time=request_time,
        status=status,
        bytes_sent=bytes_sent,
        user_agent=user_agent,
    )
