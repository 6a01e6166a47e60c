from __future__ import annotations

import tempfile
import threading
import unittest
from pathlib import Path

from learnpath.db.repo import ConcurrentUpdateError
from learnpath.rules.engine import RuleEngine
from learnpath.rules.errors import RuleNotFoundError, RuleStateError, ValidationError
from learnpath.services import versioning
from learnpath.services.audit_log import AuditLog
from learnpath.services.rule_metrics import BufferedMetricsSink
from learnpath.services.rule_versions import RuleVersionManager
from learnpath.services.rules_store import REQUIRED_TABLES, RulesStore


def _data(title: str, priority: int = 5) -> dict:
    return {
        "title": title,
        "conditions": [{"factKey": "experience", "operator": "equals", "value": "beginner"}],
        "actions": [{"type": "recommendSkill", "value": "HTML", "weight": 1}],
        "explanation": f"{title} explanation",
        "priority": priority,
    }


class _BrokenAuditRepo:
    def insert(self, **kwargs):
        raise RuntimeError("audit table gone")


class RulesStoreTests(unittest.TestCase):
    def setUp(self) -> None:
        self._td = tempfile.TemporaryDirectory()
        root = Path(self._td.name)
        self.store = RulesStore(root, database_url=f"sqlite:///{(root / 'rules.db').as_posix()}")
        self.audit = AuditLog(self.store.audit_repo)
        self.manager = RuleVersionManager(self.store, self.audit)

    def tearDown(self) -> None:
        self.store.engine.dispose()
        self._td.cleanup()

    def test_schema_created_by_migrations(self) -> None:
        self.assertEqual(self.store.missing_tables(), [])
        info = self.store.observability_info()
        self.assertEqual(info["db_backend"], "sqlite")
        self.assertEqual(info["missing_tables"], [])
        self.assertEqual(len(REQUIRED_TABLES), 6)

    def test_round_trip_and_active_loading(self) -> None:
        rule = self.manager.create_rule("web-dev", "html-first", _data("v1"), "alice", rule_id="r-html")
        self.assertEqual(self.store.get_rule("r-html"), rule)
        self.assertEqual(self.store.load_active_rules("web-dev"), [])

        self.manager.publish_version("r-html", 1, "alice")
        self.manager.create_rule("web-dev", "css-next", _data("css", priority=8), "alice", rule_id="r-css")
        self.manager.publish_version("r-css", 1, "alice")
        self.manager.create_rule("data", "pandas", _data("pandas"), "alice", rule_id="r-pd")
        self.manager.publish_version("r-pd", 1, "alice")

        active = self.store.load_active_rules("web-dev")
        self.assertEqual([r.id for r in active], ["r-css", "r-html"])
        loaded = active[1]
        self.assertEqual(loaded.current.conditions[0].value, "beginner")
        self.assertEqual(loaded.current.actions[0].weight, 1.0)
        self.assertTrue(loaded.versions[0].is_published)
        self.assertEqual(len(self.store.list_rules(status="active")), 3)

    def test_duplicate_name_rejected(self) -> None:
        self.manager.create_rule("web-dev", "html-first", _data("v1"), "alice")
        with self.assertRaises(ValidationError):
            self.manager.create_rule("web-dev", "html-first", _data("again"), "bob")
        self.manager.create_rule("data", "html-first", _data("other domain"), "bob")

    def test_versions_persist_and_rollback(self) -> None:
        self.manager.create_rule("web-dev", "html-first", _data("v1", priority=5), "alice", rule_id="r")
        self.manager.publish_version("r", 1, "alice")
        v2 = self.manager.create_version("r", _data("v2", priority=9), "bob")
        self.assertEqual(v2.version, 2)
        self.assertEqual(self.store.get_rule("r").current.priority, 5)

        self.manager.publish_version("r", 2, "bob")
        self.assertEqual(self.store.get_rule("r").current.priority, 9)
        rolled = self.manager.rollback_to_version("r", 1, "carol")
        self.assertEqual(rolled.current.priority, 5)
        self.assertEqual(self.store.get_rule("r").current.title, "v1")
        self.assertEqual([v.version for v in self.manager.version_history("r")], [2, 1])

    def test_concurrent_versions_get_distinct_numbers(self) -> None:
        self.manager.create_rule("web-dev", "html-first", _data("v1"), "alice", rule_id="r")
        other = RuleVersionManager(self.store)
        errors: list[BaseException] = []

        def write(manager: RuleVersionManager, n: int) -> None:
            try:
                manager.create_version("r", _data(f"t{n}"), f"user-{n}")
            except BaseException as e:
                errors.append(e)

        threads = [
            threading.Thread(target=write, args=(self.manager if n % 2 else other, n)) for n in range(6)
        ]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        self.assertEqual(errors, [])
        rule = self.store.get_rule("r")
        self.assertEqual([v.version for v in rule.versions], list(range(1, 8)))
        self.assertEqual(rule.current_version, 7)
        self.assertEqual(len({v.title for v in rule.versions}), 7)

    def test_stale_write_rejected(self) -> None:
        self.manager.create_rule("web-dev", "html-first", _data("v1"), "alice", rule_id="r")
        stale = self.store.get_rule("r")
        self.manager.create_version("r", _data("v2"), "bob")
        with self.assertRaises(ConcurrentUpdateError):
            self.store.save_rule(versioning.create_version(stale, _data("late"), "carol"), expected_revision=stale.revision)
        self.assertEqual([v.title for v in self.store.get_rule("r").versions], ["v1", "v2"])

    def test_stale_write_cannot_undo_archive(self) -> None:
        self.manager.create_rule("web-dev", "html-first", _data("v1"), "alice", rule_id="r")
        self.manager.publish_version("r", 1, "alice")
        stale = self.store.get_rule("r")
        RuleVersionManager(self.store).archive("r", "bob")
        with self.assertRaises(ConcurrentUpdateError):
            self.store.save_rule(versioning.create_version(stale, _data("late"), "carol"), expected_revision=stale.revision)
        rule = self.store.get_rule("r")
        self.assertEqual(rule.status, "archived")
        self.assertEqual([v.version for v in rule.versions], [1])

    def test_stale_write_cannot_undo_publish(self) -> None:
        self.manager.create_rule("web-dev", "html-first", _data("v1"), "alice", rule_id="r")
        stale = self.store.get_rule("r")
        RuleVersionManager(self.store).publish_version("r", 1, "bob")
        with self.assertRaises(ConcurrentUpdateError):
            self.store.save_rule(versioning.create_version(stale, _data("late"), "carol"), expected_revision=stale.revision)
        rule = self.store.get_rule("r")
        self.assertEqual((rule.status, rule.published_version), ("active", 1))
        self.assertEqual([(v.version, v.is_published) for v in rule.versions], [(1, True)])

        # Going through the manager re-reads the rule and keeps the publish.
        self.manager.create_version("r", _data("v2"), "carol")
        rule = self.store.get_rule("r")
        self.assertEqual((rule.status, rule.published_version), ("active", 1))
        self.assertEqual([(v.version, v.is_published) for v in rule.versions], [(1, True), (2, False)])

    def test_every_save_bumps_revision(self) -> None:
        created = self.manager.create_rule("web-dev", "html-first", _data("v1"), "alice", rule_id="r")
        self.assertEqual(created.revision, 0)
        published = self.manager.publish_version("r", 1, "alice")
        self.assertEqual(published.revision, 1)
        self.manager.deactivate("r", "alice")
        self.assertEqual(self.store.get_rule("r").revision, 2)

    def test_status_changes_and_archive(self) -> None:
        self.manager.create_rule("web-dev", "html-first", _data("v1"), "alice", rule_id="r")
        with self.assertRaises(RuleStateError):
            self.manager.deactivate("r", "alice")
        self.manager.publish_version("r", 1, "alice")
        self.assertEqual(self.manager.deactivate("r", "alice").status, "inactive")
        self.assertEqual(self.store.load_active_rules("web-dev"), [])
        self.assertEqual(self.manager.reactivate("r", "alice").status, "active")
        self.assertEqual(self.manager.archive("r", "alice").status, "archived")
        with self.assertRaises(RuleStateError):
            self.manager.create_version("r", _data("v2"), "alice")
        self.assertEqual(len(self.store.get_rule("r").versions), 1)

    def test_delete_removes_versions_and_metrics(self) -> None:
        self.manager.create_rule("web-dev", "html-first", _data("v1"), "alice", rule_id="r")
        self.store.increment_metrics("r", executions=1, matches=1, total_ms=2.0)
        self.assertTrue(self.manager.delete_rule("r", "alice"))
        with self.assertRaises(RuleNotFoundError):
            self.store.get_rule("r")
        self.assertEqual(self.store.get_metrics("r").total_executions, 0)
        self.assertIsNone(self.store.find_rule("web-dev", "html-first"))

    def test_buffered_metrics_flush(self) -> None:
        self.manager.create_rule("web-dev", "html-first", _data("v1"), "alice", rule_id="r")
        self.manager.publish_version("r", 1, "alice")
        sink = BufferedMetricsSink(self.store, flush_every=100)
        engine = RuleEngine(self.store.load_active_rules, metrics=sink)
        engine.evaluate("web-dev", {"experience": "beginner"})
        engine.evaluate("web-dev", {"experience": "advanced"})
        engine.evaluate("web-dev", {"experience": "beginner"}, record_metrics=False)
        self.assertEqual(sink.pending(), 2)
        self.assertEqual(self.store.get_metrics("r").total_executions, 0)

        self.assertEqual(sink.flush(), 1)
        metrics = self.store.get_metrics("r")
        self.assertEqual(metrics.total_executions, 2)
        self.assertEqual(metrics.successful_matches, 1)
        self.assertIsNotNone(metrics.last_executed)
        self.assertGreaterEqual(metrics.average_execution_time, 0.0)

    def test_metrics_flush_on_threshold(self) -> None:
        sink = BufferedMetricsSink(self.store, flush_every=2)
        sink.record("r", True, 1.0)
        self.assertEqual(sink.pending(), 1)
        sink.record("r", False, 3.0)
        self.assertEqual(sink.pending(), 0)
        metrics = self.store.get_metrics("r")
        self.assertEqual(metrics.total_executions, 2)
        self.assertAlmostEqual(metrics.average_execution_time, 2.0)

    def test_audit_trail(self) -> None:
        self.manager.create_rule("web-dev", "html-first", _data("v1"), "alice", rule_id="r")
        self.manager.publish_version("r", 1, "alice")
        self.manager.create_version("r", _data("v2"), "bob")
        self.manager.deactivate("r", "bob")
        events = [e.event for e in self.audit.entries(rule_id="r")]
        self.assertEqual(events, ["rule_status_changed", "rule_updated", "rule_published", "rule_created"])
        published = self.audit.entries(event="rule_published")[0]
        self.assertEqual(published.user_id, "alice")
        self.assertEqual(published.payload["version"], 1)
        self.assertIsNone(published.payload["previousVersion"])
        self.assertEqual(len(self.audit.entries(user_id="bob")), 2)

    def test_audit_failure_does_not_reach_caller(self) -> None:
        broken = AuditLog(_BrokenAuditRepo())
        manager = RuleVersionManager(self.store, broken)
        with self.assertLogs("audit_log", level="ERROR"):
            rule = manager.create_rule("web-dev", "html-first", _data("v1"), "alice")
        self.assertEqual(self.store.get_rule(rule.id).name, "html-first")

    def test_snapshot_is_computed_from_versions(self) -> None:
        rule = self.manager.create_rule("web-dev", "html-first", _data("v1"), "alice", rule_id="r")
        rule = self.manager.publish_version("r", 1, "alice")
        self.manager.create_version("r", _data("v2", priority=2), "alice")
        loaded = self.store.get_rule("r")
        self.assertEqual(loaded.current_version, 2)
        self.assertEqual(loaded.current, rule.current)
        self.assertEqual(loaded.current.priority, 5)


if __name__ == "__main__":
    unittest.main()
