from __future__ import annotations

import copy
import json
import math
import os
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import yaml

from .conditions import to_number
from .errors import ConfigurationError
from .models import RECOMMEND_ACTION_TARGETS
from .results import MatchResult, Recommendation, RecommendationItem, RuleContribution, ScoreResult


DEFAULT_SCORING_CONFIG: dict[str, Any] = {
    "confidence": {
        "coverage_weight": 0.5,
        "priority_factor_cap": 1.2,
        "max_per_rule": 12.0,
    },
}

ENV_OVERRIDES = {
    "CONFIDENCE_COVERAGE_WEIGHT": "coverage_weight",
    "CONFIDENCE_MAX_PRIORITY_FACTOR": "priority_factor_cap",
    "CONFIDENCE_MAX_PER_RULE": "max_per_rule",
}


@dataclass(frozen=True)
class ScoringConfig:
    """
    Confidence knobs.

    coverage_weight: share of the final score taken by rule coverage
        (matched / evaluated); the rest comes from weighted contribution.
    priority_factor_cap: multiplier turning a 1-10 priority into a rule's
        maximum contribution.
    max_per_rule: ceiling on any single rule's priority-scaled contribution.
    """

    coverage_weight: float = 0.5
    priority_factor_cap: float = 1.2
    max_per_rule: float = 12.0

    def validate(self) -> "ScoringConfig":
        errors: list[str] = []
        for name in ("coverage_weight", "priority_factor_cap", "max_per_rule"):
            v = getattr(self, name)
            if isinstance(v, bool) or not isinstance(v, (int, float)) or not math.isfinite(v):
                errors.append(f"{name} must be a finite number, got {v!r}")
        if not errors:
            if not 0.0 <= self.coverage_weight <= 1.0:
                errors.append(f"coverage_weight must be within [0, 1], got {self.coverage_weight}")
            if self.priority_factor_cap <= 0:
                errors.append(f"priority_factor_cap must be positive, got {self.priority_factor_cap}")
            if self.max_per_rule <= 0:
                errors.append(f"max_per_rule must be positive, got {self.max_per_rule}")
        if errors:
            raise ConfigurationError("; ".join(errors))
        return self


def _deep_merge(base: dict[str, Any], override: Mapping[str, Any]) -> dict[str, Any]:
    out = copy.deepcopy(base)
    for k, v in override.items():
        if isinstance(v, Mapping) and isinstance(out.get(k), dict):
            out[k] = _deep_merge(out[k], v)
        else:
            out[k] = copy.deepcopy(v)
    return out


def _number(name: str, raw: Any) -> float:
    f = to_number(raw)
    if f is None:
        raise ConfigurationError(f"{name}: expected a number, got {raw!r}")
    return f


def load_scoring_config(project_root: Path | None = None, *, environ: Mapping[str, str] | None = None) -> ScoringConfig:
    cfg = copy.deepcopy(DEFAULT_SCORING_CONFIG)
    if project_root is not None:
        p = project_root / "rules" / "scoring.yaml"
        if p.exists():
            try:
                doc = yaml.safe_load(p.read_text(encoding="utf-8"))
            except yaml.YAMLError as e:
                raise ConfigurationError(f"{p}: {e}") from e
            if doc is not None and not isinstance(doc, Mapping):
                raise ConfigurationError(f"{p}: top-level must be a mapping")
            cfg = _deep_merge(cfg, doc or {})

    section = cfg.get("confidence")
    if not isinstance(section, Mapping):
        raise ConfigurationError("confidence section must be a mapping")
    values = {k: section.get(k) for k in ("coverage_weight", "priority_factor_cap", "max_per_rule")}

    env = os.environ if environ is None else environ
    for var, key in ENV_OVERRIDES.items():
        raw = str(env.get(var, "") or "").strip()
        if raw:
            values[key] = raw

    return ScoringConfig(**{k: _number(k, v) for k, v in values.items()}).validate()


def _clamp01(x: float) -> float:
    if not math.isfinite(x):
        return 0.0
    return max(0.0, min(1.0, x))


def _value_key(value: Any) -> str:
    if isinstance(value, str):
        return value
    try:
        return json.dumps(value, ensure_ascii=False, sort_keys=True, default=str)
    except (TypeError, ValueError):
        return repr(value)


def _ranked(bucket: dict[str, list[Any]]) -> tuple[RecommendationItem, ...]:
    # entry: [value, weight, rule names, first position]
    entries = sorted(bucket.values(), key=lambda e: (-e[1], e[3]))
    return tuple(RecommendationItem(value=e[0], weight=e[1], rules=tuple(e[2])) for e in entries)


def aggregate(match: MatchResult) -> Recommendation:
    buckets: dict[str, dict[str, list[Any]]] = {"skills": {}, "resources": {}, "projects": {}}
    warnings: list[str] = []
    score = 0.0
    position = 0
    for outcome in match.matched:
        for action in outcome.actions:
            target = RECOMMEND_ACTION_TARGETS.get(action.type)
            if target is not None:
                key = _value_key(action.value)
                entry = buckets[target].get(key)
                if entry is None:
                    entry = [action.value, 0.0, [], position]
                    buckets[target][key] = entry
                    position += 1
                entry[1] += action.weight * outcome.priority
                if outcome.name not in entry[2]:
                    entry[2].append(outcome.name)
            elif action.type == "addWarning":
                text = action.value if isinstance(action.value, str) else _value_key(action.value)
                if text not in warnings:
                    warnings.append(text)
            elif action.type == "addScore":
                n = to_number(action.value)
                if n is not None:
                    score += n * action.weight
    return Recommendation(
        skills=_ranked(buckets["skills"]),
        resources=_ranked(buckets["resources"]),
        projects=_ranked(buckets["projects"]),
        warnings=tuple(warnings),
        score=score,
    )


def score(match: MatchResult, config: ScoringConfig | None = None) -> ScoreResult:
    config = (config or ScoringConfig()).validate()
    cap = config.priority_factor_cap

    breakdown: list[RuleContribution] = []
    total_positive = 0.0
    max_possible = 0.0
    for outcome in match.outcomes:
        ceiling = outcome.priority * cap
        weight = sum(a.weight for a in outcome.actions if a.is_positive)
        contribution = min(ceiling, config.max_per_rule) * weight if outcome.matched else 0.0
        total_positive += contribution
        max_possible += ceiling
        breakdown.append(
            RuleContribution(
                rule_id=outcome.rule_id,
                name=outcome.name,
                priority=outcome.priority,
                matched=outcome.matched,
                weight=weight,
                contribution=contribution,
                max_contribution=ceiling,
            )
        )

    evaluated = match.evaluated_count
    matched = len(match.matched)
    coverage = matched / evaluated if evaluated > 0 else 0.0
    if max_possible > 0:
        raw = (total_positive / max_possible) * (1 - config.coverage_weight) + coverage * config.coverage_weight
        confidence = _clamp01(raw)
    else:
        confidence = 0.0

    return ScoreResult(
        recommendation=aggregate(match),
        confidence=confidence,
        breakdown=tuple(breakdown),
        total_positive=total_positive,
        max_possible=max_possible,
        coverage=coverage,
        matched_count=matched,
        evaluated_count=evaluated,
    )
