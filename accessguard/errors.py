"""Exceptions raised by Access Guard."""


class AccessGuardError(Exception):
    """Base class for all Access Guard errors."""


class MalformedTimestamp(AccessGuardError):
    """The bracketed local time of an access log line cannot be parsed."""


class ConditionError(AccessGuardError):
    """
    A rule condition does not follow the grammar.

    Carries the condition text, the scan position where parsing stopped and
    a short reason, e.g. "unknown function 'foo'".
    """

    def __init__(self, message: str, text: str, position: int, reason: str = ""):
        super().__init__(message)
        self.text = text
        self.position = position
        self.reason = reason


class RuleError(AccessGuardError):
    """A configured rule is invalid (missing name, duplicate name, bad condition)."""


class CommandError(AccessGuardError):
    """An external command failed, timed out or could not be started."""

    def __init__(self, message: str, output: bytes = b""):
        super().__init__(message)
        self.output = output


class StoreError(AccessGuardError):
    """The deduplicating store could not record a line."""
