from __future__ import annotations

import tempfile
import unittest
from pathlib import Path

from learnpath.rules.errors import ConfigurationError
from learnpath.rules.models import Action
from learnpath.rules.results import MatchResult, RuleOutcome
from learnpath.rules.scoring import ScoringConfig, aggregate, load_scoring_config, score


def _outcome(name: str, priority: int, matched: bool, *actions: Action) -> RuleOutcome:
    return RuleOutcome(
        rule_id=f"id-{name}",
        name=name,
        title=name,
        version=1,
        priority=priority,
        match_mode="all",
        matched=matched,
        actions=actions or (Action("recommendSkill", f"skill-{name}"),),
        conditions=(),
        explanation="",
    )


def _match(*outcomes: RuleOutcome) -> MatchResult:
    return MatchResult(domain_id="web-dev", outcomes=tuple(outcomes))


class ConfidenceTests(unittest.TestCase):
    def test_single_full_match_is_certain(self) -> None:
        res = score(_match(_outcome("r1", 10, True)))
        self.assertAlmostEqual(res.confidence, 1.0)
        self.assertEqual(res.matched_count, 1)
        self.assertEqual(res.breakdown[0].contribution, 12.0)

    def test_no_match_and_no_rules_score_zero(self) -> None:
        self.assertEqual(score(_match(_outcome("r1", 10, False))).confidence, 0.0)
        empty = score(_match())
        self.assertEqual(empty.confidence, 0.0)
        self.assertEqual(empty.coverage, 0.0)

    def test_partial_match_mixes_weight_and_coverage(self) -> None:
        res = score(_match(_outcome("hit", 5, True), _outcome("miss", 10, False)))
        # (6 / 18) * 0.5 + (1 / 2) * 0.5
        self.assertAlmostEqual(res.confidence, 0.41667, places=4)
        self.assertAlmostEqual(res.max_possible, 18.0)
        self.assertEqual([b.matched for b in res.breakdown], [True, False])

    def test_clamped_to_one(self) -> None:
        heavy = _outcome("heavy", 10, True, Action("recommendSkill", "HTML", weight=2.0))
        self.assertEqual(score(_match(heavy)).confidence, 1.0)

    def test_max_per_rule_caps_contribution(self) -> None:
        res = score(_match(_outcome("r1", 10, True)), ScoringConfig(max_per_rule=6.0))
        self.assertAlmostEqual(res.breakdown[0].contribution, 6.0)
        self.assertAlmostEqual(res.confidence, 0.75)

    def test_warning_only_rule_earns_coverage_only(self) -> None:
        res = score(_match(_outcome("warn", 5, True, Action("addWarning", "slow down"))))
        self.assertAlmostEqual(res.confidence, 0.5)
        self.assertEqual(res.recommendation.warnings, ("slow down",))


class AggregateTests(unittest.TestCase):
    def test_duplicate_values_merge_weights(self) -> None:
        rec = aggregate(
            _match(
                _outcome("a", 6, True, Action("recommendSkill", "HTML")),
                _outcome("b", 5, True, Action("recommendSkill", "HTML"), Action("recommendResource", "MDN")),
                _outcome("c", 9, False, Action("recommendSkill", "Rust")),
            )
        )
        self.assertEqual(rec.skill_values, ["HTML"])
        self.assertEqual(rec.skills[0].weight, 11.0)
        self.assertEqual(rec.skills[0].rules, ("a", "b"))
        self.assertEqual(rec.resource_values, ["MDN"])
        self.assertEqual(rec.project_values, [])

    def test_ranked_by_weight_then_first_seen(self) -> None:
        rec = aggregate(
            _match(
                _outcome("a", 3, True, Action("recommendSkill", "CSS"), Action("recommendSkill", "HTML")),
                _outcome("b", 8, True, Action("recommendSkill", "JavaScript")),
            )
        )
        self.assertEqual(rec.skill_values, ["JavaScript", "CSS", "HTML"])

    def test_add_score_and_warning_dedupe(self) -> None:
        rec = aggregate(
            _match(
                _outcome("a", 3, True, Action("addScore", 5, weight=2.0), Action("addWarning", "tight")),
                _outcome("b", 3, True, Action("addWarning", "tight")),
            )
        )
        self.assertEqual(rec.score, 10.0)
        self.assertEqual(rec.warnings, ("tight",))


class ScoringConfigTests(unittest.TestCase):
    def test_invalid_values_rejected(self) -> None:
        for bad in (
            ScoringConfig(coverage_weight=1.5),
            ScoringConfig(priority_factor_cap=0),
            ScoringConfig(max_per_rule=-1),
            ScoringConfig(coverage_weight=float("nan")),
        ):
            with self.assertRaises(ConfigurationError):
                bad.validate()

    def test_yaml_and_env_overrides(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            root = Path(td)
            (root / "rules").mkdir()
            (root / "rules" / "scoring.yaml").write_text(
                "confidence:\n  coverage_weight: 0.25\n  max_per_rule: 8\n", encoding="utf-8"
            )
            cfg = load_scoring_config(root, environ={})
            self.assertEqual(cfg.coverage_weight, 0.25)
            self.assertEqual(cfg.max_per_rule, 8.0)
            self.assertEqual(cfg.priority_factor_cap, 1.2)

            cfg = load_scoring_config(root, environ={"CONFIDENCE_MAX_PER_RULE": "4"})
            self.assertEqual(cfg.max_per_rule, 4.0)

            with self.assertRaises(ConfigurationError):
                load_scoring_config(root, environ={"CONFIDENCE_COVERAGE_WEIGHT": "lots"})

    def test_defaults_without_file(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            self.assertEqual(load_scoring_config(Path(td), environ={}), ScoringConfig())


if __name__ == "__main__":
    unittest.main()
