from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Optional

from learnpath.db.repo import AuditRepo
from learnpath.rules.models import AUDIT_EVENTS, AuditEntry, plain


def _utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


class AuditLog:
    """Append-only audit trail. A failed write is logged and never reaches the caller."""

    def __init__(self, repo: AuditRepo) -> None:
        self._repo = repo
        self._logger = logging.getLogger("audit_log")

    def append(
        self,
        event: str,
        payload: dict[str, Any],
        *,
        user_id: Optional[str] = None,
        rule_id: Optional[str] = None,
    ) -> Optional[int]:
        if event not in AUDIT_EVENTS:
            self._logger.warning("unknown audit event=%s rule_id=%s", event, rule_id)
        try:
            return self._repo.insert(
                event=event,
                payload_json=plain(payload),
                timestamp=_utc_now(),
                user_id=user_id,
                rule_id=rule_id,
            )
        except Exception as e:
            self._logger.error("audit write failed event=%s rule_id=%s error=%s", event, rule_id, e)
            return None

    def entries(
        self,
        *,
        event: str | None = None,
        rule_id: str | None = None,
        user_id: str | None = None,
        limit: int = 100,
    ) -> list[AuditEntry]:
        rows = self._repo.list_entries(event=event, rule_id=rule_id, user_id=user_id, limit=limit)
        return [
            AuditEntry(
                id=int(r.id),
                event=str(r.event),
                user_id=r.user_id,
                rule_id=r.rule_id,
                payload=dict(r.payload_json or {}),
                timestamp=str(r.timestamp),
            )
            for r in rows
        ]
