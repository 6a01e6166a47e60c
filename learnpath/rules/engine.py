from __future__ import annotations

import logging
import time
from collections.abc import Mapping
from typing import Any, Optional, Protocol

from .facts import flag_warnings, normalize_answers
from .matcher import MetricsSink, RuleLoader, RuleMatcher
from .models import Facts
from .results import EvaluationResult
from .scoring import ScoringConfig, score


class AuditSink(Protocol):
    def append(
        self,
        event: str,
        payload: dict[str, Any],
        *,
        user_id: Optional[str] = None,
        rule_id: Optional[str] = None,
    ) -> None: ...


def _dedupe(items: list[str]) -> tuple[str, ...]:
    out: list[str] = []
    for i in items:
        if i not in out:
            out.append(i)
    return tuple(out)


class RuleEngine:
    """
    Evaluation facade: match active rules for a domain, score the matches and
    assemble an explainable result.

    Evaluation never fails for a well-formed fact set: condition problems end
    up as trace warnings, metric and audit writes are best effort.
    """

    def __init__(
        self,
        load_active_rules: RuleLoader,
        *,
        config: ScoringConfig | None = None,
        metrics: MetricsSink | None = None,
        audit: AuditSink | None = None,
    ) -> None:
        self.config = (config or ScoringConfig()).validate()
        self.matcher = RuleMatcher(load_active_rules, metrics)
        self._audit = audit
        self._logger = logging.getLogger("rules_engine")

    def evaluate(
        self,
        domain_id: str,
        facts: Facts,
        *,
        record_metrics: bool = True,
        audit: bool = True,
        user_id: str | None = None,
    ) -> EvaluationResult:
        started = time.perf_counter()
        match = self.matcher.match_rules(domain_id, facts, record_metrics=record_metrics)
        scored = score(match, self.config)
        elapsed_ms = (time.perf_counter() - started) * 1000.0

        warnings = _dedupe(flag_warnings(facts) + list(scored.recommendation.warnings))
        scoring = scored.to_dict()
        scoring.pop("breakdown", None)
        trace: list[dict[str, Any]] = [
            {"step": "load_rules", "domainId": domain_id, "rulesEvaluated": match.evaluated_count}
        ]
        trace.extend(o.to_trace() for o in match.outcomes)
        trace.append({"step": "scoring", **scoring})

        result = EvaluationResult(
            domain_id=domain_id,
            matched=match.matched,
            confidence=scored.confidence,
            breakdown=scored.breakdown,
            warnings=warnings,
            recommendation=scored.recommendation,
            evaluated_count=match.evaluated_count,
            execution_time_ms=elapsed_ms,
            trace=tuple(trace),
            scoring=scoring,
        )
        self._logger.info(
            "evaluated domain=%s rules=%s matched=%s confidence=%.4f elapsed_ms=%.2f",
            domain_id,
            result.evaluated_count,
            len(result.matched),
            result.confidence,
            elapsed_ms,
        )
        if audit and self._audit is not None:
            try:
                self._audit.append(
                    "inference_executed",
                    {
                        "domainId": domain_id,
                        "factKeys": sorted(str(k) for k in facts.keys()),
                        "rulesEvaluated": result.evaluated_count,
                        "matched": result.matched_names,
                        "confidence": result.confidence,
                        "executionTime": elapsed_ms,
                    },
                    user_id=user_id,
                )
            except Exception as e:
                self._logger.error("audit write failed event=inference_executed domain=%s error=%s", domain_id, e)
        return result

    def infer(
        self,
        domain_id: str,
        answers: Mapping[str, Any],
        *,
        user_id: str | None = None,
    ) -> tuple[dict[str, Any], EvaluationResult]:
        """Normalize raw questionnaire answers, then evaluate them."""
        facts = normalize_answers(answers)
        return facts, self.evaluate(domain_id, facts, user_id=user_id)
