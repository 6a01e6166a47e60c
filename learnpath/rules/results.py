from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Optional

from .models import Action, plain


@dataclass(frozen=True)
class ConditionResult:
    fact_key: str
    operator: str
    expected: Any
    actual: Any
    present: bool
    matched: bool
    warning: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        out = {
            "factKey": self.fact_key,
            "operator": self.operator,
            "expected": plain(self.expected),
            "actual": plain(self.actual),
            "present": self.present,
            "matched": self.matched,
        }
        if self.warning:
            out["warning"] = self.warning
        return out


@dataclass(frozen=True)
class RuleOutcome:
    rule_id: str
    name: str
    title: str
    version: int
    priority: int
    match_mode: str
    matched: bool
    actions: tuple[Action, ...]
    conditions: tuple[ConditionResult, ...]
    explanation: str
    warnings: tuple[str, ...] = ()

    def to_trace(self) -> dict[str, Any]:
        return {
            "step": "rule_evaluation",
            "ruleId": self.rule_id,
            "ruleName": self.name,
            "version": self.version,
            "priority": self.priority,
            "matchMode": self.match_mode,
            "matched": self.matched,
            "conditions": [c.to_dict() for c in self.conditions],
            "explanation": self.explanation,
            "warnings": list(self.warnings),
        }

    def to_dict(self) -> dict[str, Any]:
        return {
            "ruleId": self.rule_id,
            "name": self.name,
            "title": self.title,
            "version": self.version,
            "priority": self.priority,
            "actions": [a.to_dict() for a in self.actions],
            "explanation": self.explanation,
        }


@dataclass(frozen=True)
class MatchResult:
    domain_id: str
    outcomes: tuple[RuleOutcome, ...]

    @property
    def matched(self) -> tuple[RuleOutcome, ...]:
        return tuple(o for o in self.outcomes if o.matched)

    @property
    def evaluated_count(self) -> int:
        return len(self.outcomes)

    @property
    def warnings(self) -> tuple[str, ...]:
        out: list[str] = []
        for o in self.outcomes:
            out.extend(o.warnings)
        return tuple(out)


@dataclass(frozen=True)
class RecommendationItem:
    value: Any
    weight: float
    rules: tuple[str, ...]

    def to_dict(self) -> dict[str, Any]:
        return {"value": plain(self.value), "weight": self.weight, "rules": list(self.rules)}


@dataclass(frozen=True)
class Recommendation:
    skills: tuple[RecommendationItem, ...] = ()
    resources: tuple[RecommendationItem, ...] = ()
    projects: tuple[RecommendationItem, ...] = ()
    warnings: tuple[str, ...] = ()
    score: float = 0.0

    @property
    def skill_values(self) -> list[Any]:
        return [i.value for i in self.skills]

    @property
    def resource_values(self) -> list[Any]:
        return [i.value for i in self.resources]

    @property
    def project_values(self) -> list[Any]:
        return [i.value for i in self.projects]

    def to_dict(self) -> dict[str, Any]:
        return {
            "skills": plain(self.skill_values),
            "resources": plain(self.resource_values),
            "projects": plain(self.project_values),
            "weighted": {
                "skills": [i.to_dict() for i in self.skills],
                "resources": [i.to_dict() for i in self.resources],
                "projects": [i.to_dict() for i in self.projects],
            },
            "warnings": list(self.warnings),
            "score": self.score,
        }


@dataclass(frozen=True)
class RuleContribution:
    rule_id: str
    name: str
    priority: int
    matched: bool
    weight: float
    contribution: float
    max_contribution: float

    def to_dict(self) -> dict[str, Any]:
        return {
            "ruleId": self.rule_id,
            "name": self.name,
            "priority": self.priority,
            "matched": self.matched,
            "weight": self.weight,
            "contribution": self.contribution,
            "maxContribution": self.max_contribution,
        }


@dataclass(frozen=True)
class ScoreResult:
    recommendation: Recommendation
    confidence: float
    breakdown: tuple[RuleContribution, ...]
    total_positive: float
    max_possible: float
    coverage: float
    matched_count: int
    evaluated_count: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "confidence": self.confidence,
            "totalPositive": self.total_positive,
            "maxPossible": self.max_possible,
            "coverage": self.coverage,
            "rulesMatched": self.matched_count,
            "rulesEvaluated": self.evaluated_count,
            "breakdown": [b.to_dict() for b in self.breakdown],
        }


@dataclass(frozen=True)
class EvaluationResult:
    domain_id: str
    matched: tuple[RuleOutcome, ...]
    confidence: float
    breakdown: tuple[RuleContribution, ...]
    warnings: tuple[str, ...]
    recommendation: Recommendation
    evaluated_count: int
    execution_time_ms: float
    trace: tuple[dict[str, Any], ...] = ()
    scoring: dict[str, Any] = field(default_factory=dict)

    @property
    def matched_names(self) -> list[str]:
        return [o.name for o in self.matched]

    def to_dict(self) -> dict[str, Any]:
        return {
            "domainId": self.domain_id,
            "matched": [o.to_dict() for o in self.matched],
            "confidence": self.confidence,
            "breakdown": [b.to_dict() for b in self.breakdown],
            "warnings": list(self.warnings),
            "recommendation": self.recommendation.to_dict(),
            "metadata": {
                "rulesEvaluated": self.evaluated_count,
                "rulesMatched": len(self.matched),
                "executionTime": self.execution_time_ms,
                "scoring": plain(self.scoring),
            },
            "trace": plain(self.trace),
        }
