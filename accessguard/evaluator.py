"""
Evaluate compiled conditions against the fields of one request.

evaluate() never raises: a field missing from the mapping counts as its zero
value (0 or ""), and a value of the wrong type or an operator the type does
not support simply does not match.
"""

import operator as op
from typing import Callable, Dict, Mapping

from .condition import Condition, Expression, Field, Operator, Value

_COMPARISONS: Dict[Operator, Callable[[Value, Value], bool]] = {
    Operator.EQ: op.eq,
    Operator.NE: op.ne,
    Operator.GE: op.ge,
    Operator.GT: op.gt,
    Operator.LE: op.le,
    Operator.LT: op.lt,
}

_STRING_TESTS: Dict[Operator, Callable[[str, str], bool]] = {
    Operator.CONTAINS: lambda actual, expected: expected in actual,
    Operator.STARTS_WITH: str.startswith,
    Operator.ENDS_WITH: str.endswith,
}


def _matches(operator: Operator, actual: Value, expected: Value) -> bool:
    if isinstance(actual, int) and isinstance(expected, int):
        compare = _COMPARISONS.get(operator)
        return compare is not None and compare(actual, expected)
    if isinstance(actual, str) and isinstance(expected, str):
        test = _COMPARISONS.get(operator) or _STRING_TESTS.get(operator)
        return test is not None and test(actual, expected)
    return False


def evaluate_expression(expression: Expression, fields: Mapping[Field, Value]) -> bool:
    """True if any of the expression's values matches the field."""
    actual = fields.get(expression.field, expression.field.zero)
    return any(_matches(expression.operator, actual, value) for value in expression.values)


def evaluate(condition: Condition, fields: Mapping[Field, Value]) -> bool:
    """True if every expression of the condition holds."""
    return all(evaluate_expression(expression, fields) for expression in condition)
