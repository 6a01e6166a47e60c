from __future__ import annotations

from collections.abc import Sequence
from typing import Any, Optional

from sqlalchemy import and_, delete, select, update
from sqlalchemy.orm import Session, sessionmaker

from learnpath.db.models.rules import RuleMetricsRow, RuleRow, RuleVersionRow
from learnpath.rules.models import Rule, RuleVersion


class ConcurrentUpdateError(RuntimeError):
    """The rule row changed between read and write."""


def _rule_columns(rule: Rule) -> dict[str, Any]:
    return {
        "domain_id": rule.domain_id,
        "name": rule.name,
        "status": rule.status,
        "current_version": rule.current_version,
        "published_version": rule.published_version,
        "last_published_at": rule.last_published_at,
        "last_published_by": rule.last_published_by,
        "created_by": rule.created_by,
        "updated_by": rule.updated_by,
        "created_at": rule.created_at,
        "updated_at": rule.updated_at,
    }


def _version_row(rule_id: str, v: RuleVersion) -> RuleVersionRow:
    return RuleVersionRow(
        rule_id=rule_id,
        version=v.version,
        title=v.title,
        match_mode=v.match_mode,
        conditions_json=[c.to_dict() for c in v.conditions],
        actions_json=[a.to_dict() for a in v.actions],
        explanation=v.explanation,
        priority=v.priority,
        is_published=1 if v.is_published else 0,
        published_at=v.published_at,
        created_by=v.created_by,
        created_at=v.created_at,
    )


class RulesRepo:
    def __init__(self, session_factory: sessionmaker[Session]):
        self._Session = session_factory

    def get_rule(self, rule_id: str) -> Optional[tuple[RuleRow, list[RuleVersionRow]]]:
        with self._Session() as s:
            row = s.get(RuleRow, rule_id)
            if row is None:
                return None
            versions = list(
                s.execute(
                    select(RuleVersionRow).where(RuleVersionRow.rule_id == rule_id).order_by(RuleVersionRow.version.asc())
                ).scalars()
            )
            return row, versions

    def find_rule_id(self, domain_id: str, name: str) -> Optional[str]:
        with self._Session() as s:
            return s.execute(
                select(RuleRow.id).where(and_(RuleRow.domain_id == domain_id, RuleRow.name == name)).limit(1)
            ).scalar_one_or_none()

    def list_rules(
        self,
        *,
        domain_id: str | None = None,
        statuses: Sequence[str] | None = None,
    ) -> list[tuple[RuleRow, list[RuleVersionRow]]]:
        with self._Session() as s:
            q = select(RuleRow).order_by(RuleRow.domain_id.asc(), RuleRow.name.asc())
            if domain_id:
                q = q.where(RuleRow.domain_id == domain_id)
            if statuses:
                q = q.where(RuleRow.status.in_(list(statuses)))
            rows = list(s.execute(q).scalars())
            if not rows:
                return []
            by_rule: dict[str, list[RuleVersionRow]] = {r.id: [] for r in rows}
            versions = s.execute(
                select(RuleVersionRow)
                .where(RuleVersionRow.rule_id.in_(list(by_rule)))
                .order_by(RuleVersionRow.rule_id.asc(), RuleVersionRow.version.asc())
            ).scalars()
            for v in versions:
                by_rule[v.rule_id].append(v)
            return [(r, by_rule[r.id]) for r in rows]

    def insert_rule(self, rule: Rule) -> None:
        with self._Session() as s:
            try:
                s.add(RuleRow(id=rule.id, revision=rule.revision, **_rule_columns(rule)))
                s.flush()
                for v in rule.versions:
                    s.add(_version_row(rule.id, v))
                s.commit()
            except Exception:
                s.rollback()
                raise

    def save_rule(self, rule: Rule, *, expected_revision: int) -> int:
        """
        Write a transitioned rule back and return its new revision.

        Every save bumps the row's revision, and the update only applies while
        the stored revision still equals `expected_revision`, so any write that
        happened after the caller's read (new version, publish, status change)
        makes this one fail. New versions are inserted under the unique
        (rule_id, version) constraint. Publication marks are only ever set, never
        cleared. Either check failing aborts the whole
        transaction.
        """
        with self._Session() as s:
            try:
                res = s.execute(
                    update(RuleRow)
                    .where(and_(RuleRow.id == rule.id, RuleRow.revision == expected_revision))
                    .values(revision=expected_revision + 1, **_rule_columns(rule))
                )
                if res.rowcount != 1:
                    raise ConcurrentUpdateError(f"rule_id={rule.id} expected revision={expected_revision}")
                existing = {
                    v.version: v
                    for v in s.execute(select(RuleVersionRow).where(RuleVersionRow.rule_id == rule.id)).scalars()
                }
                for v in rule.versions:
                    row = existing.get(v.version)
                    if row is None:
                        s.add(_version_row(rule.id, v))
                    elif v.is_published:
                        # Version content is immutable.
                        row.is_published = 1
                        row.published_at = v.published_at
                s.commit()
                return expected_revision + 1
            except Exception:
                s.rollback()
                raise

    def delete_rule(self, rule_id: str) -> bool:
        with self._Session() as s:
            try:
                s.execute(delete(RuleVersionRow).where(RuleVersionRow.rule_id == rule_id))
                s.execute(delete(RuleMetricsRow).where(RuleMetricsRow.rule_id == rule_id))
                res = s.execute(delete(RuleRow).where(RuleRow.id == rule_id))
                s.commit()
                return res.rowcount > 0
            except Exception:
                s.rollback()
                raise

    def increment_metrics(
        self,
        rule_id: str,
        *,
        executions: int,
        matches: int,
        total_ms: float,
        last_executed: str,
    ) -> None:
        with self._Session() as s:
            try:
                row = s.get(RuleMetricsRow, rule_id)
                if row is None:
                    row = RuleMetricsRow(
                        rule_id=rule_id,
                        total_executions=0,
                        successful_matches=0,
                        average_execution_time=0.0,
                    )
                    s.add(row)
                prev_total = int(row.total_executions or 0)
                new_total = prev_total + int(executions)
                if new_total > 0:
                    row.average_execution_time = (
                        float(row.average_execution_time or 0.0) * prev_total + float(total_ms)
                    ) / new_total
                row.total_executions = new_total
                row.successful_matches = int(row.successful_matches or 0) + int(matches)
                row.last_executed = last_executed
                s.commit()
            except Exception:
                s.rollback()
                raise

    def get_metrics(self, rule_id: str) -> Optional[RuleMetricsRow]:
        with self._Session() as s:
            return s.get(RuleMetricsRow, rule_id)
