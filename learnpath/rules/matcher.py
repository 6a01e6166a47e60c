from __future__ import annotations

import logging
import time
from collections.abc import Callable, Sequence
from typing import Protocol

from .conditions import evaluate_condition
from .models import MATCH_MODES, Facts, Rule
from .results import MatchResult, RuleOutcome

RuleLoader = Callable[[str], Sequence[Rule]]


class MetricsSink(Protocol):
    def record(self, rule_id: str, matched: bool, elapsed_ms: float) -> None: ...


def _priority_order(rules: Sequence[Rule]) -> list[Rule]:
    return sorted(rules, key=lambda r: (-int(r.current.priority), r.name, r.id))


def combine(match_mode: str, outcomes: Sequence[bool]) -> bool:
    # all() of nothing is True, any() of nothing is False.
    if match_mode == "any":
        return any(outcomes)
    return all(outcomes)


class RuleMatcher:
    def __init__(self, load_active_rules: RuleLoader, metrics: MetricsSink | None = None) -> None:
        self._load_active_rules = load_active_rules
        self._metrics = metrics
        self._logger = logging.getLogger("rules_matcher")

    def evaluate_rule(self, rule: Rule, facts: Facts) -> RuleOutcome:
        cur = rule.current
        results = tuple(evaluate_condition(c, facts) for c in cur.conditions)
        warnings = [r.warning for r in results if r.warning]
        match_mode = cur.match_mode
        if match_mode not in MATCH_MODES:
            warnings.append(f"unknown match mode '{match_mode}', treated as 'all'")
            match_mode = "all"
        return RuleOutcome(
            rule_id=rule.id,
            name=rule.name,
            title=cur.title,
            version=cur.version,
            priority=int(cur.priority),
            match_mode=cur.match_mode,
            matched=combine(match_mode, [r.matched for r in results]),
            actions=cur.actions,
            conditions=results,
            explanation=cur.explanation,
            warnings=tuple(warnings),
        )

    def match_rules(self, domain_id: str, facts: Facts, *, record_metrics: bool = True) -> MatchResult:
        rules = _priority_order([r for r in self._load_active_rules(domain_id) if r.status == "active"])
        outcomes: list[RuleOutcome] = []
        for rule in rules:
            started = time.perf_counter()
            outcome = self.evaluate_rule(rule, facts)
            elapsed_ms = (time.perf_counter() - started) * 1000.0
            outcomes.append(outcome)
            for w in outcome.warnings:
                self._logger.warning("rule evaluation warning domain=%s rule=%s warning=%s", domain_id, rule.name, w)
            if record_metrics:
                self._record(rule.id, outcome.matched, elapsed_ms)
        return MatchResult(domain_id=domain_id, outcomes=tuple(outcomes))

    def _record(self, rule_id: str, matched: bool, elapsed_ms: float) -> None:
        if self._metrics is None:
            return
        try:
            self._metrics.record(rule_id, matched, elapsed_ms)
        except Exception as e:
            self._logger.error("rule metrics update failed rule_id=%s error=%s", rule_id, e)
