from __future__ import annotations

from typing import Any, Optional

from sqlalchemy import and_, delete, select, update
from sqlalchemy.orm import Session, sessionmaker

from learnpath.db.models.rules import TestProfileRow, TestResultRow


class ProfilesRepo:
    def __init__(self, session_factory: sessionmaker[Session]):
        self._Session = session_factory

    def insert_profile(self, **values: Any) -> None:
        with self._Session() as s:
            try:
                s.add(TestProfileRow(**values))
                s.commit()
            except Exception:
                s.rollback()
                raise

    def get_profile(self, profile_id: str) -> Optional[TestProfileRow]:
        with self._Session() as s:
            return s.get(TestProfileRow, profile_id)

    def find_profile_id(self, domain_id: str, name: str) -> Optional[str]:
        with self._Session() as s:
            return s.execute(
                select(TestProfileRow.id)
                .where(and_(TestProfileRow.domain_id == domain_id, TestProfileRow.name == name))
                .limit(1)
            ).scalar_one_or_none()

    def list_profiles(
        self,
        *,
        domain_id: str | None = None,
        category: str | None = None,
        active_only: bool = False,
    ) -> list[TestProfileRow]:
        with self._Session() as s:
            q = select(TestProfileRow).order_by(TestProfileRow.domain_id.asc(), TestProfileRow.name.asc())
            if domain_id:
                q = q.where(TestProfileRow.domain_id == domain_id)
            if category:
                q = q.where(TestProfileRow.category == category)
            if active_only:
                q = q.where(TestProfileRow.is_active == 1)
            return list(s.execute(q).scalars())

    def list_results(self, profile_id: str) -> list[TestResultRow]:
        with self._Session() as s:
            return list(
                s.execute(
                    select(TestResultRow).where(TestResultRow.profile_id == profile_id).order_by(TestResultRow.id.asc())
                ).scalars()
            )

    def append_result(self, *, used_at: str, **values: Any) -> TestResultRow:
        """Insert a result and bump the profile's usage counters in one transaction."""
        with self._Session() as s:
            try:
                row = TestResultRow(**values)
                s.add(row)
                s.execute(
                    update(TestProfileRow)
                    .where(TestProfileRow.id == values["profile_id"])
                    .values(usage_count=TestProfileRow.usage_count + 1, last_used=used_at)
                )
                s.commit()
                return row
            except Exception:
                s.rollback()
                raise

    def set_active(self, profile_id: str, active: bool, *, updated_by: str, updated_at: str) -> bool:
        with self._Session() as s:
            try:
                res = s.execute(
                    update(TestProfileRow)
                    .where(TestProfileRow.id == profile_id)
                    .values(is_active=1 if active else 0, updated_by=updated_by, updated_at=updated_at)
                )
                s.commit()
                return res.rowcount > 0
            except Exception:
                s.rollback()
                raise

    def delete_profile(self, profile_id: str) -> bool:
        with self._Session() as s:
            try:
                s.execute(delete(TestResultRow).where(TestResultRow.profile_id == profile_id))
                res = s.execute(delete(TestProfileRow).where(TestProfileRow.id == profile_id))
                s.commit()
                return res.rowcount > 0
            except Exception:
                s.rollback()
                raise
