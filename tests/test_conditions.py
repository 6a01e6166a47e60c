from __future__ import annotations

import unittest

from learnpath.rules.conditions import evaluate_condition, strict_equal, to_number
from learnpath.rules.models import Condition


def _cond(key: str, op: str, value) -> dict:
    return {"factKey": key, "operator": op, "value": value}


class MissingFactTests(unittest.TestCase):
    def test_absent_key_is_false_except_negations(self) -> None:
        cases = {
            "equals": "beginner",
            "in": ["beginner"],
            "greater_than": 3,
            "less_than": 3,
            "contains": "x",
            "not_equals": "beginner",
            "not_in": ["beginner"],
        }
        for op, value in cases.items():
            res = evaluate_condition(_cond("experience", op, value), {})
            expected = op in ("not_equals", "not_in")
            self.assertEqual(res.matched, expected, op)
            self.assertFalse(res.present)
            self.assertIsNone(res.warning)

    def test_none_value_counts_as_missing(self) -> None:
        self.assertFalse(evaluate_condition(_cond("k", "equals", None), {"k": None}).matched)
        self.assertTrue(evaluate_condition(_cond("k", "not_equals", "x"), {"k": None}).matched)


class EqualityTests(unittest.TestCase):
    def test_type_aware_equality(self) -> None:
        self.assertTrue(strict_equal(1, 1.0))
        self.assertFalse(strict_equal(True, 1))
        self.assertFalse(strict_equal("1", 1))
        self.assertTrue(strict_equal("a", "a"))

    def test_equals_and_not_equals(self) -> None:
        facts = {"experience": "beginner", "years": 2}
        self.assertTrue(evaluate_condition(_cond("experience", "equals", "beginner"), facts).matched)
        self.assertFalse(evaluate_condition(_cond("experience", "equals", "advanced"), facts).matched)
        self.assertTrue(evaluate_condition(_cond("years", "equals", 2.0), facts).matched)
        self.assertFalse(evaluate_condition(_cond("years", "equals", "2"), facts).matched)
        self.assertTrue(evaluate_condition(_cond("years", "not_equals", "2"), facts).matched)

    def test_condition_dataclass_accepted(self) -> None:
        res = evaluate_condition(Condition("experience", "equals", "beginner"), {"experience": "beginner"})
        self.assertTrue(res.matched)
        self.assertEqual(res.fact_key, "experience")


class MembershipTests(unittest.TestCase):
    def test_scalar_membership(self) -> None:
        facts = {"path": "frontend"}
        self.assertTrue(evaluate_condition(_cond("path", "in", ["frontend", "backend"]), facts).matched)
        self.assertFalse(evaluate_condition(_cond("path", "not_in", ["frontend"]), facts).matched)
        self.assertTrue(evaluate_condition(_cond("path", "not_in", ["mobile"]), facts).matched)

    def test_list_fact_uses_intersection(self) -> None:
        facts = {"styles": ["video", "text"]}
        self.assertTrue(evaluate_condition(_cond("styles", "in", ["text"]), facts).matched)
        self.assertFalse(evaluate_condition(_cond("styles", "in", ["forum"]), facts).matched)
        self.assertTrue(evaluate_condition(_cond("styles", "not_in", ["forum"]), facts).matched)
        self.assertFalse(evaluate_condition(_cond("styles", "not_in", ["video"]), facts).matched)

    def test_non_list_value_is_false_with_warning(self) -> None:
        res = evaluate_condition(_cond("path", "in", "frontend"), {"path": "frontend"})
        self.assertFalse(res.matched)
        self.assertIn("expects a list", res.warning or "")


class NumericTests(unittest.TestCase):
    def test_comparisons(self) -> None:
        facts = {"years": 5}
        self.assertTrue(evaluate_condition(_cond("years", "greater_than", 3), facts).matched)
        self.assertFalse(evaluate_condition(_cond("years", "less_than", 3), facts).matched)
        self.assertTrue(evaluate_condition(_cond("years", "greater_than", "4.5"), facts).matched)

    def test_non_numeric_fact_is_false_without_raising(self) -> None:
        res = evaluate_condition(_cond("years", "greater_than", 3), {"years": "five"})
        self.assertFalse(res.matched)
        self.assertTrue(res.present)

    def test_booleans_are_not_numbers(self) -> None:
        self.assertIsNone(to_number(True))
        self.assertFalse(evaluate_condition(_cond("flag", "greater_than", 0), {"flag": True}).matched)

    def test_non_finite_rejected(self) -> None:
        self.assertIsNone(to_number(float("nan")))
        self.assertIsNone(to_number("inf"))


class ContainsTests(unittest.TestCase):
    def test_substring_and_list(self) -> None:
        self.assertTrue(evaluate_condition(_cond("bio", "contains", "python"), {"bio": "i like python"}).matched)
        self.assertFalse(evaluate_condition(_cond("bio", "contains", 3), {"bio": "3 years"}).matched)
        self.assertTrue(evaluate_condition(_cond("tags", "contains", "react"), {"tags": ["react", "css"]}).matched)
        self.assertFalse(evaluate_condition(_cond("years", "contains", 3), {"years": 3}).matched)


class MalformedTests(unittest.TestCase):
    def test_unknown_operator(self) -> None:
        res = evaluate_condition(_cond("k", "matches", ".*"), {"k": "v"})
        self.assertFalse(res.matched)
        self.assertIn("unknown operator", res.warning or "")

    def test_malformed_condition_shapes(self) -> None:
        for bad in (None, "equals", {"operator": "equals"}, {"factKey": "", "operator": "equals"}):
            res = evaluate_condition(bad, {"k": "v"})
            self.assertFalse(res.matched)
            self.assertIn("malformed", res.warning or "")


if __name__ == "__main__":
    unittest.main()
