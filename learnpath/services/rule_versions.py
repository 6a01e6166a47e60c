from __future__ import annotations

import logging
import threading
import uuid
from collections.abc import Callable, Mapping
from typing import Any, Optional

from sqlalchemy.exc import IntegrityError

from learnpath.db.repo import ConcurrentUpdateError
from learnpath.rules.errors import ValidationError
from learnpath.rules.models import Rule, RuleVersion
from learnpath.services import versioning
from learnpath.services.audit_log import AuditLog
from learnpath.services.rules_store import RulesStore

MAX_WRITE_ATTEMPTS = 5


class RuleVersionManager:
    """
    Serialized rule mutations.

    Within a process, one lock per rule id orders writers. Across processes the
    store rejects stale writes (revision check plus the unique
    (rule_id, version) constraint), and the transition is re-applied to a
    freshly loaded rule.
    """

    def __init__(self, store: RulesStore, audit: Optional[AuditLog] = None) -> None:
        self.store = store
        self._audit = audit
        self._locks: dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()
        self._logger = logging.getLogger("rule_versions")

    def _lock_for(self, rule_id: str) -> threading.Lock:
        with self._locks_guard:
            lock = self._locks.get(rule_id)
            if lock is None:
                lock = threading.Lock()
                self._locks[rule_id] = lock
            return lock

    def _audit_event(self, event: str, rule: Rule, user_id: str, payload: dict[str, Any]) -> None:
        if self._audit is None:
            return
        self._audit.append(
            event,
            {"domainId": rule.domain_id, "name": rule.name, **payload},
            user_id=user_id,
            rule_id=rule.id,
        )

    def _mutate(self, rule_id: str, transition: Callable[[Rule], Rule]) -> tuple[Rule, Rule]:
        with self._lock_for(rule_id):
            last_error: Exception | None = None
            for attempt in range(1, MAX_WRITE_ATTEMPTS + 1):
                before = self.store.get_rule(rule_id)
                after = transition(before)
                try:
                    saved = self.store.save_rule(after, expected_revision=before.revision)
                    return before, saved
                except (IntegrityError, ConcurrentUpdateError) as e:
                    last_error = e
                    self._logger.warning("rule write conflict rule_id=%s attempt=%s error=%s", rule_id, attempt, e)
            raise RuntimeError(f"rule_id={rule_id} write kept conflicting: {last_error}") from last_error

    def create_rule(
        self,
        domain_id: str,
        name: str,
        data: Mapping[str, Any],
        user_id: str,
        *,
        rule_id: Optional[str] = None,
    ) -> Rule:
        rule = versioning.create_rule(rule_id or uuid.uuid4().hex, domain_id, name, data, user_id)
        if self.store.find_rule(domain_id, rule.name) is not None:
            raise ValidationError(
                f"rule name already exists domain={domain_id} name={rule.name}",
                [f"$.name: duplicate '{rule.name}' in domain '{domain_id}'"],
            )
        self.store.insert_rule(rule)
        self._logger.info("rule created rule_id=%s domain=%s name=%s", rule.id, domain_id, rule.name)
        self._audit_event("rule_created", rule, user_id, {"version": 1})
        return rule

    def create_version(self, rule_id: str, data: Mapping[str, Any], user_id: str) -> RuleVersion:
        _, after = self._mutate(rule_id, lambda r: versioning.create_version(r, data, user_id))
        version = after.versions[-1]
        self._logger.info("rule version created rule_id=%s version=%s", rule_id, version.version)
        self._audit_event("rule_updated", after, user_id, {"version": version.version})
        return version

    def publish_version(self, rule_id: str, version: int, user_id: str) -> Rule:
        before, after = self._mutate(rule_id, lambda r: versioning.publish_version(r, version, user_id))
        self._logger.info("rule published rule_id=%s version=%s", rule_id, version)
        self._audit_event(
            "rule_published",
            after,
            user_id,
            {"version": version, "previousVersion": before.published_version, "previousStatus": before.status},
        )
        return after

    def rollback_to_version(self, rule_id: str, version: int, user_id: str) -> Rule:
        before, after = self._mutate(rule_id, lambda r: versioning.rollback_to_version(r, version, user_id))
        self._logger.info("rule rolled back rule_id=%s from=%s to=%s", rule_id, before.published_version, version)
        self._audit_event(
            "rule_rolled_back",
            after,
            user_id,
            {"version": version, "previousVersion": before.published_version},
        )
        return after

    def _change_status(self, rule_id: str, user_id: str, transition: Callable[[Rule, str], Rule]) -> Rule:
        before, after = self._mutate(rule_id, lambda r: transition(r, user_id))
        self._logger.info("rule status changed rule_id=%s from=%s to=%s", rule_id, before.status, after.status)
        self._audit_event("rule_status_changed", after, user_id, {"from": before.status, "to": after.status})
        return after

    def deactivate(self, rule_id: str, user_id: str) -> Rule:
        return self._change_status(rule_id, user_id, versioning.deactivate_rule)

    def reactivate(self, rule_id: str, user_id: str) -> Rule:
        return self._change_status(rule_id, user_id, versioning.reactivate_rule)

    def archive(self, rule_id: str, user_id: str) -> Rule:
        return self._change_status(rule_id, user_id, versioning.archive_rule)

    def delete_rule(self, rule_id: str, user_id: str) -> bool:
        with self._lock_for(rule_id):
            rule = self.store.get_rule(rule_id)
            deleted = self.store.delete_rule(rule_id)
        if deleted:
            self._logger.info("rule deleted rule_id=%s", rule_id)
            self._audit_event("rule_deleted", rule, user_id, {"versions": len(rule.versions)})
        return deleted

    def version_history(self, rule_id: str) -> list[RuleVersion]:
        return versioning.version_history(self.store.get_rule(rule_id))
