from __future__ import annotations

import copy
import unittest
from typing import Any

from learnpath.rules.engine import RuleEngine
from learnpath.rules.facts import FLAG_WARNINGS
from learnpath.rules.models import Rule
from learnpath.services import versioning


def _published(name: str, data: dict[str, Any]) -> Rule:
    rule = versioning.create_rule(f"id-{name}", "web-dev", name, data, "tester")
    return versioning.publish_version(rule, 1, "tester")


def _r1() -> Rule:
    return _published(
        "R1",
        {
            "title": "Beginner HTML",
            "matchMode": "all",
            "conditions": [{"factKey": "experience", "operator": "equals", "value": "beginner"}],
            "actions": [{"type": "recommendSkill", "value": "HTML", "weight": 1}],
            "explanation": "Beginners start with markup.",
            "priority": 5,
        },
    )


class _FakeAudit:
    def __init__(self) -> None:
        self.entries: list[tuple[str, dict[str, Any], Any]] = []

    def append(self, event, payload, *, user_id=None, rule_id=None) -> None:
        self.entries.append((event, payload, user_id))


class _BrokenAudit:
    def append(self, event, payload, *, user_id=None, rule_id=None) -> None:
        raise RuntimeError("audit table gone")


class RuleEngineTests(unittest.TestCase):
    def setUp(self) -> None:
        self.rules = [_r1()]
        self.engine = RuleEngine(lambda domain: self.rules if domain == "web-dev" else [])

    def test_matching_facts_recommend_html(self) -> None:
        res = self.engine.evaluate("web-dev", {"experience": "beginner"})
        self.assertEqual(res.matched_names, ["R1"])
        self.assertIn("HTML", res.recommendation.skill_values)
        self.assertGreater(res.confidence, 0)
        self.assertEqual(res.evaluated_count, 1)

    def test_non_matching_facts_score_zero(self) -> None:
        res = self.engine.evaluate("web-dev", {"experience": "advanced"})
        self.assertEqual(res.matched_names, [])
        self.assertEqual(res.confidence, 0)
        self.assertEqual(res.recommendation.skill_values, [])

    def test_unknown_domain_is_empty_not_an_error(self) -> None:
        res = self.engine.evaluate("data-science", {"experience": "beginner"})
        self.assertEqual(res.evaluated_count, 0)
        self.assertEqual(res.confidence, 0.0)

    def test_repeatable_and_leaves_facts_untouched(self) -> None:
        facts = {"experience": "beginner", "styles": ["video"]}
        before = copy.deepcopy(facts)
        a = self.engine.evaluate("web-dev", facts)
        b = self.engine.evaluate("web-dev", facts)
        self.assertEqual(facts, before)
        self.assertEqual(a.matched_names, b.matched_names)
        self.assertEqual(a.confidence, b.confidence)
        self.assertEqual(a.recommendation.to_dict(), b.recommendation.to_dict())

    def test_trace_shape(self) -> None:
        res = self.engine.evaluate("web-dev", {"experience": "beginner"})
        steps = [t["step"] for t in res.trace]
        self.assertEqual(steps, ["load_rules", "rule_evaluation", "scoring"])
        self.assertEqual(res.trace[1]["conditions"][0]["actual"], "beginner")
        self.assertNotIn("breakdown", res.scoring)
        payload = res.to_dict()
        self.assertEqual(payload["metadata"]["rulesMatched"], 1)
        self.assertEqual(payload["recommendation"]["skills"], ["HTML"])

    def test_flag_and_action_warnings_are_merged(self) -> None:
        self.rules.append(
            _published(
                "rush",
                {
                    "title": "Rush",
                    "conditions": [],
                    "actions": [{"type": "addWarning", "value": "Pace yourself."}],
                    "explanation": "always",
                    "priority": 2,
                },
            )
        )
        res = self.engine.evaluate("web-dev", {"flags": ["unrealistic_timeline", "unknown_flag"]})
        self.assertEqual(res.warnings, (FLAG_WARNINGS["unrealistic_timeline"], "Pace yourself."))

    def test_condition_warnings_stay_in_trace(self) -> None:
        self.rules.append(
            _published(
                "odd",
                {
                    "title": "Odd",
                    "conditions": [{"factKey": "years", "operator": "greater_than", "value": 2}],
                    "actions": [{"type": "recommendSkill", "value": "Git"}],
                    "explanation": "x",
                    "priority": 3,
                },
            )
        )
        res = self.engine.evaluate("web-dev", {"years": "many"})
        self.assertEqual(res.warnings, ())
        self.assertEqual(res.matched_names, [])

    def test_infer_normalizes_answers(self) -> None:
        self.rules.append(
            _published(
                "career-switch",
                {
                    "title": "Career switch",
                    "conditions": [{"factKey": "urgency", "operator": "equals", "value": "high"}],
                    "actions": [{"type": "recommendProject", "value": "Portfolio site"}],
                    "explanation": "Switchers need a portfolio.",
                    "priority": 6,
                },
            )
        )
        facts, res = self.engine.infer("web-dev", {"career_goal": "job_switch", "weekly_hours": "20"})
        self.assertEqual(facts["urgency"], "high")
        self.assertEqual(facts["commitmentLevel"], "serious")
        self.assertEqual(res.matched_names, ["career-switch"])
        self.assertEqual(res.recommendation.project_values, ["Portfolio site"])

    def test_audit_entry_written_unless_disabled(self) -> None:
        audit = _FakeAudit()
        engine = RuleEngine(lambda d: self.rules, audit=audit)
        engine.evaluate("web-dev", {"experience": "beginner"}, user_id="u-1")
        engine.evaluate("web-dev", {"experience": "beginner"}, audit=False)
        self.assertEqual(len(audit.entries), 1)
        event, payload, user_id = audit.entries[0]
        self.assertEqual(event, "inference_executed")
        self.assertEqual(user_id, "u-1")
        self.assertEqual(payload["matched"], ["R1"])
        self.assertEqual(payload["factKeys"], ["experience"])

    def test_audit_failure_does_not_fail_evaluation(self) -> None:
        engine = RuleEngine(lambda d: self.rules, audit=_BrokenAudit())
        with self.assertLogs("rules_engine", level="ERROR"):
            res = engine.evaluate("web-dev", {"experience": "beginner"})
        self.assertEqual(res.matched_names, ["R1"])


if __name__ == "__main__":
    unittest.main()
