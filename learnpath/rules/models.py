from __future__ import annotations

from collections.abc import Mapping
from copy import deepcopy
from dataclasses import dataclass, field
from typing import Any, Literal, Optional

from .errors import VersionNotFoundError

RuleStatus = Literal["draft", "active", "inactive", "archived"]

OPERATORS: tuple[str, ...] = (
    "equals",
    "not_equals",
    "in",
    "not_in",
    "greater_than",
    "less_than",
    "contains",
)
MATCH_MODES: tuple[str, ...] = ("all", "any")
RECOMMEND_ACTION_TARGETS = {
    "recommendSkill": "skills",
    "recommendResource": "resources",
    "recommendProject": "projects",
}
POSITIVE_ACTION_TYPES = frozenset({"recommendSkill", "recommendResource", "recommendProject", "addScore"})
AUDIT_EVENTS: tuple[str, ...] = (
    "rule_created",
    "rule_updated",
    "rule_published",
    "rule_rolled_back",
    "rule_status_changed",
    "rule_deleted",
    "inference_executed",
    "test_run",
)

# Normalized facts: string keys to scalars or lists of scalars.
Facts = Mapping[str, Any]


def plain(value: Any) -> Any:
    """Deep-copy a value into JSON-friendly lists/dicts."""
    if isinstance(value, (list, tuple)):
        return [plain(v) for v in value]
    if isinstance(value, Mapping):
        return {str(k): plain(v) for k, v in value.items()}
    return value


def _as_float(value: Any, default: float) -> float:
    if value is None or isinstance(value, bool):
        return default
    try:
        return float(value)
    except (TypeError, ValueError):
        return default


def _as_int(value: Any, default: int) -> int:
    if value is None or isinstance(value, bool):
        return default
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def _opt_str(value: Any) -> Optional[str]:
    return None if value is None else str(value)


@dataclass(frozen=True)
class Condition:
    fact_key: str
    operator: str
    value: Any
    description: str = ""

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "factKey": self.fact_key,
            "operator": self.operator,
            "value": plain(self.value),
        }
        if self.description:
            out["description"] = self.description
        return out

    @classmethod
    def from_dict(cls, d: Mapping[str, Any]) -> "Condition":
        return cls(
            fact_key=str(d.get("factKey", "")),
            operator=str(d.get("operator", "")),
            value=deepcopy(d.get("value")),
            description=str(d.get("description") or ""),
        )


@dataclass(frozen=True)
class Action:
    type: str
    value: Any
    weight: float = 1.0
    description: str = ""

    @property
    def is_positive(self) -> bool:
        return self.type in POSITIVE_ACTION_TYPES

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "type": self.type,
            "value": plain(self.value),
            "weight": self.weight,
        }
        if self.description:
            out["description"] = self.description
        return out

    @classmethod
    def from_dict(cls, d: Mapping[str, Any]) -> "Action":
        return cls(
            type=str(d.get("type", "")),
            value=deepcopy(d.get("value")),
            weight=_as_float(d.get("weight"), 1.0),
            description=str(d.get("description") or ""),
        )


@dataclass(frozen=True)
class RuleVersion:
    version: int
    title: str
    match_mode: str
    conditions: tuple[Condition, ...]
    actions: tuple[Action, ...]
    explanation: str
    priority: int
    created_by: str
    created_at: str
    is_published: bool = False
    published_at: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "version": self.version,
            "title": self.title,
            "matchMode": self.match_mode,
            "conditions": [c.to_dict() for c in self.conditions],
            "actions": [a.to_dict() for a in self.actions],
            "explanation": self.explanation,
            "priority": self.priority,
            "isPublished": self.is_published,
            "publishedAt": self.published_at,
            "createdBy": self.created_by,
            "createdAt": self.created_at,
        }

    @classmethod
    def from_dict(cls, d: Mapping[str, Any]) -> "RuleVersion":
        return cls(
            version=_as_int(d.get("version"), 1),
            title=str(d.get("title", "")),
            match_mode=str(d.get("matchMode") or "all"),
            conditions=tuple(Condition.from_dict(c) for c in d.get("conditions") or [] if isinstance(c, Mapping)),
            actions=tuple(Action.from_dict(a) for a in d.get("actions") or [] if isinstance(a, Mapping)),
            explanation=str(d.get("explanation", "")),
            priority=_as_int(d.get("priority"), 1),
            created_by=str(d.get("createdBy", "")),
            created_at=str(d.get("createdAt", "")),
            is_published=bool(d.get("isPublished", False)),
            published_at=_opt_str(d.get("publishedAt")),
        )


@dataclass(frozen=True)
class CurrentFields:
    """Live fields of a rule, derived from one entry of its version history."""

    version: int
    title: str
    match_mode: str
    conditions: tuple[Condition, ...]
    actions: tuple[Action, ...]
    explanation: str
    priority: int


@dataclass(frozen=True)
class Rule:
    id: str
    domain_id: str
    name: str
    status: RuleStatus
    versions: tuple[RuleVersion, ...]
    published_version: Optional[int]
    current_version: int
    created_by: str
    created_at: str
    updated_at: str
    updated_by: Optional[str] = None
    last_published_at: Optional[str] = None
    last_published_by: Optional[str] = None
    revision: int = 0

    @property
    def is_active(self) -> bool:
        return self.status == "active"

    @property
    def current(self) -> CurrentFields:
        return snapshot(self)

    def get_version(self, version: int) -> Optional[RuleVersion]:
        for v in self.versions:
            if v.version == version:
                return v
        return None

    def to_dict(self) -> dict[str, Any]:
        cur = self.current if self.versions else None
        return {
            "id": self.id,
            "domainId": self.domain_id,
            "name": self.name,
            "title": cur.title if cur else "",
            "matchMode": cur.match_mode if cur else "all",
            "conditions": [c.to_dict() for c in cur.conditions] if cur else [],
            "actions": [a.to_dict() for a in cur.actions] if cur else [],
            "explanation": cur.explanation if cur else "",
            "priority": cur.priority if cur else None,
            "status": self.status,
            "isActive": self.is_active,
            "currentVersion": self.current_version,
            "publishedVersion": self.published_version,
            "lastPublishedAt": self.last_published_at,
            "lastPublishedBy": self.last_published_by,
            "versions": [v.to_dict() for v in self.versions],
            "createdBy": self.created_by,
            "updatedBy": self.updated_by,
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
        }


def snapshot(rule: Rule, published_version: Optional[int] = None) -> CurrentFields:
    """
    Compute the live fields of a rule on read.

    Uses `published_version` when given, else the rule's published version;
    a draft (never published) exposes its latest version.
    """
    target = published_version
    if target is None:
        target = rule.published_version if rule.published_version is not None else rule.current_version
    v = rule.get_version(int(target))
    if v is None:
        raise VersionNotFoundError(rule.id, int(target))
    return CurrentFields(
        version=v.version,
        title=v.title,
        match_mode=v.match_mode,
        conditions=v.conditions,
        actions=v.actions,
        explanation=v.explanation,
        priority=v.priority,
    )


@dataclass(frozen=True)
class RuleMetrics:
    rule_id: str
    total_executions: int = 0
    successful_matches: int = 0
    average_execution_time: float = 0.0
    last_executed: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "totalExecutions": self.total_executions,
            "successfulMatches": self.successful_matches,
            "averageExecutionTime": self.average_execution_time,
            "lastExecuted": self.last_executed,
        }


@dataclass(frozen=True)
class ExpectedRule:
    rule_name: str
    should_fire: bool = True
    expected_contribution: Optional[str] = None
    rule_id: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "ruleId": self.rule_id,
            "ruleName": self.rule_name,
            "shouldFire": self.should_fire,
            "expectedContribution": self.expected_contribution,
        }

    @classmethod
    def from_dict(cls, d: Mapping[str, Any]) -> "ExpectedRule":
        should_fire = d.get("shouldFire", True)
        return cls(
            rule_name=str(d.get("ruleName", "")),
            should_fire=True if should_fire is None else bool(should_fire),
            expected_contribution=_opt_str(d.get("expectedContribution")),
            rule_id=_opt_str(d.get("ruleId")),
        )


@dataclass(frozen=True)
class TestResult:
    __test__ = False

    profile_id: str
    executed_at: str
    executed_by: str
    rules_evaluated: int
    rules_fired: int
    matched_expected: tuple[str, ...]
    missed_expected: tuple[str, ...]
    unexpected: tuple[str, ...]
    accuracy: float
    execution_time_ms: float
    confidence: float
    base_recommendation: dict[str, Any] = field(default_factory=dict)
    trace: tuple[dict[str, Any], ...] = ()
    id: Optional[int] = None

    @property
    def matched_expected_rules(self) -> int:
        return len(self.matched_expected)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "profileId": self.profile_id,
            "executedAt": self.executed_at,
            "executedBy": self.executed_by,
            "rulesEvaluated": self.rules_evaluated,
            "rulesFired": self.rules_fired,
            "matchedExpectedRules": self.matched_expected_rules,
            "matchedExpected": list(self.matched_expected),
            "unexpectedRules": [{"ruleName": n} for n in self.unexpected],
            "missedExpectedRules": [{"ruleName": n} for n in self.missed_expected],
            "accuracy": self.accuracy,
            "executionTime": self.execution_time_ms,
            "confidence": self.confidence,
            "baseRecommendation": plain(self.base_recommendation),
            "trace": plain(self.trace),
        }


@dataclass(frozen=True)
class TestProfile:
    __test__ = False

    id: str
    domain_id: str
    name: str
    facts: dict[str, Any]
    expected_rules: tuple[ExpectedRule, ...]
    created_by: str
    description: str = ""
    raw_answers: dict[str, Any] = field(default_factory=dict)
    category: str = "beginner"
    tags: tuple[str, ...] = ()
    is_active: bool = True
    is_template: bool = False
    usage_count: int = 0
    last_used: Optional[str] = None
    test_results: tuple[TestResult, ...] = ()
    created_at: str = ""
    updated_at: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "domainId": self.domain_id,
            "name": self.name,
            "description": self.description,
            "facts": plain(self.facts),
            "rawAnswers": plain(self.raw_answers),
            "expectedRules": [e.to_dict() for e in self.expected_rules],
            "testResults": [r.to_dict() for r in self.test_results],
            "category": self.category,
            "tags": list(self.tags),
            "isActive": self.is_active,
            "isTemplate": self.is_template,
            "usageCount": self.usage_count,
            "lastUsed": self.last_used,
            "createdBy": self.created_by,
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
        }


@dataclass(frozen=True)
class AuditEntry:
    event: str
    payload: dict[str, Any]
    timestamp: str
    user_id: Optional[str] = None
    rule_id: Optional[str] = None
    id: Optional[int] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "event": self.event,
            "userId": self.user_id,
            "ruleId": self.rule_id,
            "payload": plain(self.payload),
            "timestamp": self.timestamp,
        }
