from __future__ import annotations

import io
import json
import tempfile
import unittest
from contextlib import redirect_stderr, redirect_stdout
from pathlib import Path
from unittest import mock

from learnpath.workers import cli

RULES_DIR = Path(__file__).resolve().parents[1] / "rules"


class CliTests(unittest.TestCase):
    def setUp(self) -> None:
        self._td = tempfile.TemporaryDirectory()
        db = Path(self._td.name) / "cli.db"
        self._env = mock.patch.dict(
            "os.environ",
            {"DATABASE_URL": f"sqlite:///{db.as_posix()}", "LEARNPATH_USER": "cli-test", "RULES_METRICS_FLUSH_EVERY": "1000"},
        )
        self._env.start()

    def tearDown(self) -> None:
        self._env.stop()
        self._td.cleanup()

    def _run(self, *argv: str) -> tuple[int, dict]:
        out = io.StringIO()
        with redirect_stdout(out):
            code = cli.main(list(argv))
        text = out.getvalue().strip()
        return code, json.loads(text) if text else {}

    def _import(self) -> None:
        code, payload = self._run("rules:import", "--path", str(RULES_DIR))
        self.assertEqual(code, 0)
        self.assertTrue(payload["ok"])

    def _rule_id(self, name: str) -> str:
        _, listing = self._run("rules:list", "--domain", "web-dev")
        return next(r["id"] for r in listing["rules"] if r["name"] == name)

    def test_import_and_list(self) -> None:
        self._import()
        code, payload = self._run("rules:list", "--domain", "web-dev", "--status", "active")
        self.assertEqual(code, 0)
        self.assertEqual(payload["count"], 7)
        self.assertEqual(payload["rules"][0]["domainId"], "web-dev")

    def test_evaluate_answers_and_metrics(self) -> None:
        self._import()
        answers = {
            "coding_experience": "0",
            "weekly_hours": 10,
            "web_dev_focus": "frontend",
            "learning_style": ["video_courses"],
        }
        code, payload = self._run(
            "rules:evaluate", "--domain", "web-dev", "--answers-json", json.dumps(answers), "--trace", "1"
        )
        self.assertEqual(code, 0)
        self.assertEqual(
            [m["name"] for m in payload["matched"]],
            ["beginner-foundations", "javascript-core", "video-learners"],
        )
        self.assertEqual(payload["facts"]["careerPath"], "frontend_specialist")
        self.assertIn("HTML", payload["recommendation"]["skills"])
        self.assertGreater(payload["confidence"], 0)
        self.assertEqual(payload["trace"][0]["step"], "load_rules")

        code, payload = self._run("rules:evaluate", "--domain", "web-dev", "--facts-json", '{"experienceLevel": "advanced"}')
        self.assertEqual(code, 0)
        self.assertNotIn("trace", payload)

        code, payload = self._run("rules:versions", "--rule-id", self._rule_id("beginner-foundations"))
        self.assertEqual(code, 0)
        self.assertEqual(payload["metrics"]["totalExecutions"], 2)
        self.assertEqual(payload["metrics"]["successfulMatches"], 1)

    def test_publish_rollback_and_status(self) -> None:
        self._import()
        rule_id = self._rule_id("video-learners")
        doc = Path(self._td.name) / "v2.yaml"
        doc.write_text(
            "title: Video-first resources\n"
            "conditions:\n  - {factKey: resourceTypes, operator: contains, value: video}\n"
            "actions:\n  - {type: recommendResource, value: YouTube}\n"
            "explanation: Updated list.\n"
            "priority: 2\n",
            encoding="utf-8",
        )
        code, payload = self._run("rules:create-version", "--rule-id", rule_id, "--file", str(doc))
        self.assertEqual(code, 0)
        self.assertEqual(payload["version"]["version"], 2)

        code, payload = self._run("rules:publish", "--rule-id", rule_id, "--version", "2")
        self.assertEqual((code, payload["rule"]["priority"]), (0, 2))
        code, payload = self._run("rules:rollback", "--rule-id", rule_id, "--version", "1")
        self.assertEqual((code, payload["rule"]["priority"]), (0, 4))
        code, payload = self._run("rules:status", "--rule-id", rule_id, "--action", "deactivate")
        self.assertEqual((code, payload["rule"]["status"]), (0, "inactive"))

        code, payload = self._run("rules:status", "--rule-id", rule_id, "--action", "explode")
        self.assertEqual(code, 10)
        self.assertEqual(payload["error_code"], "RULES_001_VALIDATION_FAILED")

    def test_run_all_profiles(self) -> None:
        self._import()
        code, payload = self._run("profiles:run-all", "--domain", "web-dev")
        self.assertEqual(code, 0)
        self.assertEqual(payload["profiles"], 2)
        self.assertEqual(payload["averageAccuracy"], 100.0)
        self.assertEqual(payload["failures"], [])

        code, listing = self._run("profiles:list", "--domain", "web-dev")
        self.assertEqual(code, 0)
        self.assertTrue(all(p["usageCount"] == 1 for p in listing["profiles"]))

    def test_errors(self) -> None:
        code, payload = self._run("rules:versions", "--rule-id", "nope")
        self.assertEqual(code, 10)
        self.assertEqual(payload["error_code"], "RULES_005_RULE_NOT_FOUND")

        code, payload = self._run("rules:publish", "--rule-id", "nope", "--version", "one")
        self.assertEqual(code, 10)
        self.assertTrue(payload["errors"])

        code, payload = self._run("profiles:run-all", "--domain", "web-dev", "--workers", "many")
        self.assertEqual((code, payload["error_code"]), (10, "RULES_001_VALIDATION_FAILED"))

        code, payload = self._run("profiles:run", "--profile-id", "nope")
        self.assertEqual((code, payload["error_code"]), (10, "RULES_007_PROFILE_NOT_FOUND"))

        err = io.StringIO()
        with redirect_stderr(err):
            code, _ = self._run("rules:frobnicate")
        self.assertEqual(code, 2)
        self.assertIn("Unknown command", err.getvalue())
        with redirect_stderr(io.StringIO()):
            self.assertEqual(self._run()[0], 2)

    def test_db_status(self) -> None:
        code, payload = self._run("db:status", "--init", "1")
        self.assertEqual(code, 0)
        self.assertEqual(payload["missing_tables"], [])


if __name__ == "__main__":
    unittest.main()
