"""
Rule condition language.

A condition is one or more expressions joined by 'and':

    condition := expr ('and' expr)*
    expr      := function '(' field ',' values ')'
    function  := eq | ne | ge | gt | le | lt | contains | starts-with | ends-with
    field     := status | uri | ip | protocol
    values    := value (',' value)*
    value     := 'quoted string' | digits

All expressions must hold; inside one expression any value may match:

    ge(status, 400) and contains(uri, '.php', '.asp')

status is the only numeric field and takes plain numbers; the other fields
take single-quoted strings, copied verbatim (no escapes). Whitespace between
tokens is ignored.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Iterator, Optional, Tuple, Union

from .errors import ConditionError

Value = Union[int, str]

_INT64_MAX = 2 ** 63 - 1
_DECIMAL_DIGITS = frozenset("0123456789")


class Operator(Enum):
    EQ = "eq"
    NE = "ne"
    GE = "ge"
    GT = "gt"
    LE = "le"
    LT = "lt"
    CONTAINS = "contains"
    STARTS_WITH = "starts-with"
    ENDS_WITH = "ends-with"

    @property
    def is_string_only(self) -> bool:
        return self in _STRING_ONLY_OPERATORS


_STRING_ONLY_OPERATORS = frozenset(
    {Operator.CONTAINS, Operator.STARTS_WITH, Operator.ENDS_WITH}
)


class Field(Enum):
    STATUS = "status"
    URI = "uri"
    IP = "ip"
    PROTOCOL = "protocol"

    @property
    def is_int(self) -> bool:
        return self is Field.STATUS

    @property
    def zero(self) -> Value:
        return 0 if self.is_int else ""


_OPERATORS = {op.value: op for op in Operator}
_FIELDS = {field.value: field for field in Field}


@dataclass(frozen=True)
class Expression:
    operator: Operator
    field: Field
    values: Tuple[Value, ...]


@dataclass(frozen=True)
class Condition:
    """Expressions that must all hold for the condition to match."""

    expressions: Tuple[Expression, ...]

    def __iter__(self) -> Iterator[Expression]:
        return iter(self.expressions)

    def __len__(self) -> int:
        return len(self.expressions)

    def __getitem__(self, index: int) -> Expression:
        return self.expressions[index]


class _Reader:
    """Cursor over the condition text."""

    def __init__(self, text: str):
        self.text = text
        self.pos = 0

    def at_end(self) -> bool:
        return self.pos >= len(self.text)

    def peek(self) -> str:
        return self.text[self.pos] if not self.at_end() else ""

    def skip_space(self) -> None:
        while not self.at_end() and self.text[self.pos].isspace():
            self.pos += 1

    def match(self, expected: str) -> bool:
        """Consume `expected` after optional whitespace."""
        self.skip_space()
        if self.text.startswith(expected, self.pos):
            self.pos += len(expected)
            return True
        return False

    def symbol(self) -> str:
        """A letter followed by letters, digits, '-' or '_'; "" if none."""
        self.skip_space()
        start = self.pos
        if not self.peek().isalpha():
            return ""
        self.pos += 1
        while not self.at_end() and (self.peek().isalnum() or self.peek() in "-_"):
            self.pos += 1
        return self.text[start:self.pos]

    def number(self) -> Optional[str]:
        self.skip_space()
        start = self.pos
        while not self.at_end() and self.peek() in _DECIMAL_DIGITS:
            self.pos += 1
        return self.text[start:self.pos] or None

    def string(self) -> Optional[str]:
        """A single-quoted literal; None if it does not start or never ends."""
        if not self.match("'"):
            return None
        end = self.text.find("'", self.pos)
        if end < 0:
            self.pos = len(self.text)
            return None
        value = self.text[self.pos:end]
        self.pos = end + 1
        return value

    def error(self, what: str, reason: str) -> ConditionError:
        return ConditionError(
            f"cannot parse {what} in '{self.text}' at position {self.pos}: {reason}",
            self.text,
            self.pos,
            reason,
        )

    def missing(self, delimiter: str) -> ConditionError:
        return ConditionError(
            f"missing '{delimiter}' in '{self.text}' at position {self.pos}",
            self.text,
            self.pos,
            f"missing '{delimiter}'",
        )


def _parse_operator(reader: _Reader) -> Operator:
    name = reader.symbol()
    operator = _OPERATORS.get(name)
    if operator is None:
        raise reader.error("function", f"unknown function '{name}'")
    return operator


def _parse_field(reader: _Reader, operator: Operator) -> Field:
    name = reader.symbol()
    field = _FIELDS.get(name)
    if field is None:
        raise reader.error("property", f"unknown property '{name}'")
    if field.is_int and operator.is_string_only:
        raise reader.error("property", f"invalid function for property '{name}'")
    return field


def _parse_value(reader: _Reader, field: Field) -> Value:
    if field.is_int:
        digits = reader.number()
        if digits is None or int(digits) > _INT64_MAX:
            raise reader.error("values", "value is not a number")
        return int(digits)
    value = reader.string()
    if value is None:
        raise reader.error("values", "value is not a string")
    return value


def _parse_expression(reader: _Reader) -> Expression:
    operator = _parse_operator(reader)
    if not reader.match("("):
        raise reader.missing("(")
    field = _parse_field(reader, operator)
    if not reader.match(","):
        raise reader.missing(",")
    values = [_parse_value(reader, field)]
    while reader.match(","):
        values.append(_parse_value(reader, field))
    if not reader.match(")"):
        raise reader.missing(")")
    return Expression(operator, field, tuple(values))


def parse_condition(text: str) -> Condition:
    """
    Compile a condition string.

    Raises ConditionError describing the offending token and its position.
    """
    reader = _Reader(text)
    expressions = [_parse_expression(reader)]
    while True:
        reader.skip_space()
        if reader.at_end():
            break
        start = reader.pos
        if reader.symbol() != "and":
            reader.pos = start
            raise reader.error("condition", f"unexpected trailing input '{text[start:].rstrip()}'")
        expressions.append(_parse_expression(reader))
    return Condition(tuple(expressions))
