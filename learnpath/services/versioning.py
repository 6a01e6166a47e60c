"""
Rule lifecycle as pure transitions over immutable Rule records.

    draft -> active (publish)
    active -> inactive (deactivate), inactive -> active (reactivate or publish)
    active | inactive -> archived (terminal)

Every function returns a new Rule; persistence and locking live in
RuleVersionManager.
"""
from __future__ import annotations

from collections.abc import Mapping
from dataclasses import replace
from datetime import datetime, timezone
from typing import Any, Optional

from learnpath.rules.errors import RuleStateError, VersionNotFoundError
from learnpath.rules.models import Rule, RuleVersion
from learnpath.rules.schema import validate_rule_name, validate_version_data


def _utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


def next_version_number(rule: Rule) -> int:
    # Versions are append-only, so the count is also the highest number.
    return len(rule.versions) + 1


def _build_version(data: Mapping[str, Any], number: int, user_id: str, now: str) -> RuleVersion:
    doc = validate_version_data(data)
    doc.update({"version": number, "createdBy": user_id, "createdAt": now, "isPublished": False, "publishedAt": None})
    return RuleVersion.from_dict(doc)


def create_rule(
    rule_id: str,
    domain_id: str,
    name: str,
    data: Mapping[str, Any],
    user_id: str,
    *,
    now: Optional[str] = None,
) -> Rule:
    now = now or _utc_now()
    return Rule(
        id=rule_id,
        domain_id=domain_id,
        name=validate_rule_name(name),
        status="draft",
        versions=(_build_version(data, 1, user_id, now),),
        published_version=None,
        current_version=1,
        created_by=user_id,
        created_at=now,
        updated_at=now,
        updated_by=user_id,
    )


def create_version(rule: Rule, data: Mapping[str, Any], user_id: str, *, now: Optional[str] = None) -> Rule:
    """Append a version. Status and the published snapshot stay as they were."""
    if rule.status == "archived":
        raise RuleStateError(rule.id, rule.status, "create_version")
    now = now or _utc_now()
    version = _build_version(data, next_version_number(rule), user_id, now)
    return replace(
        rule,
        versions=rule.versions + (version,),
        current_version=version.version,
        updated_at=now,
        updated_by=user_id,
    )


def publish_version(rule: Rule, version: int, user_id: str, *, now: Optional[str] = None) -> Rule:
    if rule.status == "archived":
        raise RuleStateError(rule.id, rule.status, "publish")
    if rule.get_version(version) is None:
        raise VersionNotFoundError(rule.id, version)
    now = now or _utc_now()
    versions = tuple(
        replace(v, is_published=True, published_at=now) if v.version == version else v for v in rule.versions
    )
    return replace(
        rule,
        versions=versions,
        status="active",
        published_version=version,
        last_published_at=now,
        last_published_by=user_id,
        updated_at=now,
        updated_by=user_id,
    )


def rollback_to_version(rule: Rule, version: int, user_id: str, *, now: Optional[str] = None) -> Rule:
    """Republish an earlier version verbatim, priority and match mode included."""
    return publish_version(rule, version, user_id, now=now)


def _set_status(rule: Rule, allowed_from: tuple[str, ...], status: str, action: str, user_id: str, now: Optional[str]) -> Rule:
    if rule.status not in allowed_from:
        raise RuleStateError(rule.id, rule.status, action)
    now = now or _utc_now()
    return replace(rule, status=status, updated_at=now, updated_by=user_id)


def deactivate_rule(rule: Rule, user_id: str, *, now: Optional[str] = None) -> Rule:
    return _set_status(rule, ("active",), "inactive", "deactivate", user_id, now)


def reactivate_rule(rule: Rule, user_id: str, *, now: Optional[str] = None) -> Rule:
    return _set_status(rule, ("inactive",), "active", "reactivate", user_id, now)


def archive_rule(rule: Rule, user_id: str, *, now: Optional[str] = None) -> Rule:
    return _set_status(rule, ("active", "inactive"), "archived", "archive", user_id, now)


def version_history(rule: Rule) -> list[RuleVersion]:
    return sorted(rule.versions, key=lambda v: v.version, reverse=True)
