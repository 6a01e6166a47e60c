from __future__ import annotations

from typing import Any, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session, sessionmaker

from learnpath.db.models.rules import AuditLogEntry


class AuditRepo:
    def __init__(self, session_factory: sessionmaker[Session]):
        self._Session = session_factory

    def insert(
        self,
        *,
        event: str,
        payload_json: dict[str, Any],
        timestamp: str,
        user_id: Optional[str] = None,
        rule_id: Optional[str] = None,
    ) -> int:
        with self._Session() as s:
            row = AuditLogEntry(
                event=event,
                user_id=user_id,
                rule_id=rule_id,
                payload_json=payload_json,
                timestamp=timestamp,
            )
            s.add(row)
            s.commit()
            return int(row.id)

    def list_entries(
        self,
        *,
        event: str | None = None,
        rule_id: str | None = None,
        user_id: str | None = None,
        limit: int = 100,
    ) -> list[AuditLogEntry]:
        with self._Session() as s:
            q = select(AuditLogEntry).order_by(AuditLogEntry.id.desc()).limit(max(1, int(limit)))
            if event:
                q = q.where(AuditLogEntry.event == event)
            if rule_id:
                q = q.where(AuditLogEntry.rule_id == rule_id)
            if user_id:
                q = q.where(AuditLogEntry.user_id == user_id)
            return list(s.execute(q).scalars())
