"""
Bad and good rules.

A request is malicious if any bad rule matches and no good rule does. Good
rules replace a plain IP whitelist: they can whitelist own networks, but
also known-safe requests that would trip a broad bad rule.

Rules are compiled once at startup. Any invalid rule stops the program
before a single log line is looked at.
"""

from dataclasses import dataclass
from typing import Dict, Iterable, List, Mapping, Optional, Tuple

from . import config
from . import logger
from .condition import Condition, Field, Value, parse_condition
from .errors import ConditionError, RuleError
from .evaluator import evaluate
from .log_parser import LogRecord


@dataclass(frozen=True)
class Rule:
    name: str
    condition_text: str
    condition: Condition

    def matches(self, fields: Mapping[Field, Value]) -> bool:
        return evaluate(self.condition, fields)


def compile_rule(definition: Mapping[str, str]) -> Rule:
    """Compile one {"name": ..., "condition": ...} rule definition."""
    name = (definition.get("name") or "").strip()
    text = definition.get("condition") or ""
    if not name:
        raise RuleError("missing 'name' in rule definition")
    if not text.strip():
        raise RuleError(f"missing 'condition' in rule '{name}'")
    try:
        condition = parse_condition(text)
    except ConditionError as e:
        raise RuleError(f"failed to parse rule '{name}': {e}") from e
    return Rule(name=name, condition_text=text, condition=condition)


def record_fields(record: LogRecord) -> Dict[Field, Value]:
    """The rule-addressable fields of a log record."""
    return {
        Field.STATUS: record.status,
        Field.URI: record.request_uri,
        Field.IP: record.remote_addr,
        Field.PROTOCOL: record.request_protocol,
    }


class RuleSet:
    """Ordered bad rules and good rules with names unique across both lists."""

    def __init__(self, bad: Iterable[Rule] = (), good: Iterable[Rule] = ()):
        self.bad: Tuple[Rule, ...] = tuple(bad)
        self.good: Tuple[Rule, ...] = tuple(good)
        seen = set()
        for rule in self.good + self.bad:
            if rule.name in seen:
                raise RuleError(f"rule name '{rule.name}' is not unique")
            seen.add(rule.name)

    @classmethod
    def from_config(
        cls,
        bad: Iterable[Mapping[str, str]] = None,
        good: Iterable[Mapping[str, str]] = None,
    ) -> "RuleSet":
        """Compile rule definitions (defaults: config.BAD_RULES / config.GOOD_RULES)."""
        bad = config.BAD_RULES if bad is None else bad
        good = config.GOOD_RULES if good is None else good
        return cls(
            bad=[compile_rule(d) for d in bad],
            good=[compile_rule(d) for d in good],
        )

    def first_bad_match(self, fields: Mapping[Field, Value]) -> Optional[Rule]:
        return next((rule for rule in self.bad if rule.matches(fields)), None)

    def first_good_match(self, fields: Mapping[Field, Value]) -> Optional[Rule]:
        return next((rule for rule in self.good if rule.matches(fields)), None)

    def malicious_rule(self, fields: Mapping[Field, Value]) -> Optional[Rule]:
        """
        Return the bad rule that flags the request, or None.

        The first matching bad rule wins; the first matching good rule then
        overrides the verdict.
        """
        bad_rule = self.first_bad_match(fields)
        if bad_rule is None:
            return None
        logger.log_debug(
            "Detected malicious request",
            rule=bad_rule.name,
            ip=fields.get(Field.IP),
            status=fields.get(Field.STATUS),
            uri=fields.get(Field.URI),
        )
        good_rule = self.first_good_match(fields)
        if good_rule is not None:
            logger.log_debug(
                "Request allowed by good rule",
                rule=good_rule.name,
                bad_rule=bad_rule.name,
                ip=fields.get(Field.IP),
            )
            return None
        return bad_rule

    def is_malicious(self, fields: Mapping[Field, Value]) -> bool:
        return self.malicious_rule(fields) is not None

    def describe(self) -> List[str]:
        """Human readable rule listing for the startup banner."""
        lines = ["Rules to detect malicious requests:"]
        lines += [f"  {r.name}: {r.condition_text}" for r in self.bad]
        lines.append("Rules to detect valid requests (override malicious requests):")
        lines += [f"  {r.name}: {r.condition_text}" for r in self.good]
        return lines
