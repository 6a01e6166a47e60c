"""
Single-condition evaluation against a fact set.

Evaluation never raises. Problems with the condition itself (unknown
operator, wrong value shape, unreadable condition) make the condition false
and are reported through `ConditionResult.warning`.

A fact that is absent or None counts as missing. Missing facts satisfy only
`not_equals` and `not_in`; every other operator evaluates false.
"""
from __future__ import annotations

import math
from collections.abc import Mapping
from typing import Any

from .models import OPERATORS, Condition, Facts
from .results import ConditionResult

ABSENCE_SATISFIES = frozenset({"not_equals", "not_in"})


def _is_number(v: Any) -> bool:
    return isinstance(v, (int, float)) and not isinstance(v, bool)


def strict_equal(a: Any, b: Any) -> bool:
    if _is_number(a) and _is_number(b):
        return a == b
    if type(a) is not type(b):
        return False
    return a == b


def to_number(v: Any) -> float | None:
    if isinstance(v, bool) or v is None:
        return None
    if _is_number(v):
        f = float(v)
    elif isinstance(v, str):
        try:
            f = float(v.strip())
        except ValueError:
            return None
    else:
        return None
    return f if math.isfinite(f) else None


def _member(needle: Any, haystack: list[Any] | tuple[Any, ...]) -> bool:
    return any(strict_equal(needle, h) for h in haystack)


def _unpack(condition: Any) -> tuple[str, str, Any] | None:
    if isinstance(condition, Condition):
        return condition.fact_key, condition.operator, condition.value
    if isinstance(condition, Mapping):
        key = condition.get("factKey")
        op = condition.get("operator")
        if isinstance(key, str) and key and isinstance(op, str):
            return key, op, condition.get("value")
    return None


def evaluate_condition(condition: Any, facts: Facts) -> ConditionResult:
    unpacked = _unpack(condition)
    if unpacked is None:
        return ConditionResult(
            fact_key="",
            operator="",
            expected=None,
            actual=None,
            present=False,
            matched=False,
            warning=f"malformed condition: {condition!r}",
        )
    key, op, expected = unpacked
    actual = facts.get(key) if isinstance(facts, Mapping) else None
    present = actual is not None

    def result(matched: bool, warning: str | None = None) -> ConditionResult:
        return ConditionResult(
            fact_key=key,
            operator=op,
            expected=expected,
            actual=actual,
            present=present,
            matched=matched,
            warning=warning,
        )

    if op not in OPERATORS:
        return result(False, f"unknown operator '{op}' for fact '{key}'")
    if not present:
        return result(op in ABSENCE_SATISFIES)

    if op == "equals":
        return result(strict_equal(actual, expected))
    if op == "not_equals":
        return result(not strict_equal(actual, expected))

    if op in ("in", "not_in"):
        if not isinstance(expected, (list, tuple)):
            return result(False, f"operator '{op}' expects a list value for fact '{key}'")
        if isinstance(actual, (list, tuple)):
            hit = any(_member(a, expected) for a in actual)
        else:
            hit = _member(actual, expected)
        return result(hit if op == "in" else not hit)

    if op in ("greater_than", "less_than"):
        left = to_number(actual)
        right = to_number(expected)
        if left is None or right is None:
            return result(False)
        return result(left > right if op == "greater_than" else left < right)

    # contains
    if isinstance(actual, str):
        return result(isinstance(expected, str) and expected in actual)
    if isinstance(actual, (list, tuple)):
        return result(_member(expected, actual))
    return result(False)
