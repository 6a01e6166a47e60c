from __future__ import annotations

import uuid
from collections.abc import Mapping
from datetime import datetime, timezone
from typing import Any, Optional

from learnpath.db.models.rules import TestProfileRow, TestResultRow
from learnpath.db.repo import ProfilesRepo
from learnpath.rules.errors import ProfileNotFoundError
from learnpath.rules.models import ExpectedRule, TestProfile, TestResult, plain
from learnpath.rules.schema import validate_test_profile


def _utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


def result_from_row(row: TestResultRow) -> TestResult:
    return TestResult(
        id=int(row.id),
        profile_id=str(row.profile_id),
        executed_at=str(row.executed_at),
        executed_by=str(row.executed_by),
        rules_evaluated=int(row.rules_evaluated),
        rules_fired=int(row.rules_fired),
        matched_expected=tuple(row.matched_expected_json or ()),
        missed_expected=tuple(row.missed_expected_json or ()),
        unexpected=tuple(row.unexpected_json or ()),
        accuracy=float(row.accuracy),
        execution_time_ms=float(row.execution_time_ms),
        confidence=float(row.confidence),
        base_recommendation=dict(row.recommendation_json or {}),
        trace=tuple(row.trace_json or ()),
    )


def profile_from_row(row: TestProfileRow, results: list[TestResultRow] | None = None) -> TestProfile:
    return TestProfile(
        id=str(row.id),
        domain_id=str(row.domain_id),
        name=str(row.name),
        description=str(row.description or ""),
        facts=dict(row.facts_json or {}),
        raw_answers=dict(row.raw_answers_json or {}),
        expected_rules=tuple(ExpectedRule.from_dict(e) for e in row.expected_rules_json or [] if isinstance(e, Mapping)),
        category=str(row.category),
        tags=tuple(str(t) for t in row.tags_json or ()),
        is_active=bool(int(row.is_active)),
        is_template=bool(int(row.is_template)),
        usage_count=int(row.usage_count),
        last_used=row.last_used,
        test_results=tuple(result_from_row(r) for r in results or ()),
        created_by=str(row.created_by),
        created_at=str(row.created_at),
        updated_at=str(row.updated_at),
    )


class ProfileStore:
    def __init__(self, repo: ProfilesRepo) -> None:
        self._repo = repo

    def create_profile(
        self,
        domain_id: str,
        data: Mapping[str, Any],
        user_id: str,
        *,
        profile_id: Optional[str] = None,
    ) -> TestProfile:
        doc = validate_test_profile(data)
        now = _utc_now()
        pid = profile_id or uuid.uuid4().hex
        self._repo.insert_profile(
            id=pid,
            domain_id=domain_id,
            name=doc["name"],
            description=doc["description"],
            facts_json=plain(doc["facts"]),
            raw_answers_json=plain(doc["rawAnswers"]),
            expected_rules_json=[ExpectedRule.from_dict(e).to_dict() for e in doc["expectedRules"]],
            category=doc["category"],
            tags_json=list(doc["tags"]),
            is_active=1 if doc["isActive"] else 0,
            is_template=1 if doc["isTemplate"] else 0,
            usage_count=0,
            created_by=user_id,
            updated_by=user_id,
            created_at=now,
            updated_at=now,
        )
        return self.get_profile(pid)

    def get_profile(self, profile_id: str, *, with_results: bool = True) -> TestProfile:
        row = self._repo.get_profile(profile_id)
        if row is None:
            raise ProfileNotFoundError(profile_id)
        results = self._repo.list_results(profile_id) if with_results else None
        return profile_from_row(row, results)

    def find_profile(self, domain_id: str, name: str) -> Optional[TestProfile]:
        pid = self._repo.find_profile_id(domain_id, name)
        return None if pid is None else self.get_profile(pid)

    def list_profiles(
        self,
        domain_id: str | None = None,
        *,
        category: str | None = None,
        active_only: bool = False,
    ) -> list[TestProfile]:
        rows = self._repo.list_profiles(domain_id=domain_id, category=category, active_only=active_only)
        return [profile_from_row(r) for r in rows]

    def append_test_result(self, result: TestResult) -> TestResult:
        row = self._repo.append_result(
            used_at=result.executed_at,
            profile_id=result.profile_id,
            executed_at=result.executed_at,
            executed_by=result.executed_by,
            rules_evaluated=result.rules_evaluated,
            rules_fired=result.rules_fired,
            matched_expected_json=list(result.matched_expected),
            unexpected_json=list(result.unexpected),
            missed_expected_json=list(result.missed_expected),
            accuracy=result.accuracy,
            execution_time_ms=result.execution_time_ms,
            confidence=result.confidence,
            recommendation_json=plain(result.base_recommendation),
            trace_json=plain(result.trace),
        )
        return result_from_row(row)

    def delete_profile(self, profile_id: str) -> bool:
        """Remove a profile together with its result history."""
        return self._repo.delete_profile(profile_id)

    def set_active(self, profile_id: str, active: bool, user_id: str) -> TestProfile:
        if not self._repo.set_active(profile_id, active, updated_by=user_id, updated_at=_utc_now()):
            raise ProfileNotFoundError(profile_id)
        return self.get_profile(profile_id)
