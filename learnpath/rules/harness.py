"""
Test harness: replay curated profiles through the evaluation pipeline and
diff the fired rules against what each profile expects.

A run is measured around the engine call only. Persisting the result,
bumping usage counters and writing the audit entry happen afterwards and
never change the returned outcome. When the engine raises, the failure is
wrapped in TestExecutionError and nothing is written.
"""
from __future__ import annotations

import logging
import time
from collections.abc import Iterable, Sequence
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Optional, Protocol

from .engine import AuditSink, RuleEngine
from .errors import TestExecutionError
from .models import ExpectedRule, TestProfile, TestResult
from .results import EvaluationResult


def _utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


class ProfileStore(Protocol):
    def append_test_result(self, result: TestResult) -> TestResult: ...


@dataclass(frozen=True)
class TestAnalysis:
    __test__ = False

    matched_expected: tuple[str, ...]
    missed_expected: tuple[str, ...]
    unexpected: tuple[str, ...]
    accuracy: float


@dataclass(frozen=True)
class TestRunOutcome:
    __test__ = False

    result: TestResult
    evaluation: EvaluationResult


def analyze_test_results(expected_rules: Sequence[ExpectedRule], fired: Iterable[str]) -> TestAnalysis:
    fired_names = list(dict.fromkeys(fired))
    fired_set = set(fired_names)
    should_fire = [e.rule_name for e in expected_rules if e.should_fire]
    should_fire_set = set(should_fire)

    matched = tuple(n for n in dict.fromkeys(should_fire) if n in fired_set)
    missed = tuple(n for n in dict.fromkeys(should_fire) if n not in fired_set)
    unexpected = tuple(n for n in fired_names if n not in should_fire_set)
    accuracy = (len(matched) / len(expected_rules) * 100.0) if expected_rules else 0.0
    return TestAnalysis(matched_expected=matched, missed_expected=missed, unexpected=unexpected, accuracy=accuracy)


def run_test(profile: TestProfile, engine: RuleEngine, user_id: str) -> TestRunOutcome:
    started = time.perf_counter()
    try:
        evaluation = engine.evaluate(profile.domain_id, profile.facts, record_metrics=False, audit=False, user_id=user_id)
    except Exception as e:
        raise TestExecutionError(profile.id, e) from e
    elapsed_ms = (time.perf_counter() - started) * 1000.0

    analysis = analyze_test_results(profile.expected_rules, evaluation.matched_names)
    result = TestResult(
        profile_id=profile.id,
        executed_at=_utc_now(),
        executed_by=user_id,
        rules_evaluated=evaluation.evaluated_count,
        rules_fired=len(evaluation.matched),
        matched_expected=analysis.matched_expected,
        missed_expected=analysis.missed_expected,
        unexpected=analysis.unexpected,
        accuracy=analysis.accuracy,
        execution_time_ms=elapsed_ms,
        confidence=evaluation.confidence,
        base_recommendation=evaluation.recommendation.to_dict(),
        trace=evaluation.trace,
    )
    return TestRunOutcome(result=result, evaluation=evaluation)


def latest_result(profile: TestProfile) -> Optional[TestResult]:
    return profile.test_results[-1] if profile.test_results else None


def result_history(profile: TestProfile, limit: int = 10) -> list[TestResult]:
    """Most recent results first."""
    if limit <= 0:
        return []
    return list(reversed(profile.test_results[-limit:]))


class TestHarness:
    __test__ = False

    def __init__(self, engine: RuleEngine, profiles: ProfileStore | None = None, audit: AuditSink | None = None) -> None:
        self.engine = engine
        self._profiles = profiles
        self._audit = audit
        self._logger = logging.getLogger("test_harness")

    def run(self, profile: TestProfile, user_id: str) -> TestRunOutcome:
        try:
            outcome = run_test(profile, self.engine, user_id)
        except TestExecutionError as e:
            self._logger.error("test run failed profile_id=%s error=%s", profile.id, e.cause)
            raise

        stored = outcome.result
        if self._profiles is not None:
            stored = self._profiles.append_test_result(outcome.result)
            outcome = TestRunOutcome(result=stored, evaluation=outcome.evaluation)
        if self._audit is not None:
            try:
                self._audit.append(
                    "test_run",
                    {
                        "profileId": profile.id,
                        "profileName": profile.name,
                        "domainId": profile.domain_id,
                        "accuracy": stored.accuracy,
                        "rulesFired": stored.rules_fired,
                        "missedExpected": list(stored.missed_expected),
                        "unexpected": list(stored.unexpected),
                    },
                    user_id=user_id,
                )
            except Exception as e:
                self._logger.error("audit write failed event=test_run profile_id=%s error=%s", profile.id, e)
        self._logger.info(
            "test run profile_id=%s accuracy=%.1f fired=%s missed=%s unexpected=%s",
            profile.id,
            stored.accuracy,
            stored.rules_fired,
            len(stored.missed_expected),
            len(stored.unexpected),
        )
        return outcome

    def run_many(
        self,
        profiles: Sequence[TestProfile],
        user_id: str,
        *,
        max_workers: int = 4,
    ) -> tuple[list[TestRunOutcome], list[TestExecutionError]]:
        """
        Run independent profiles in parallel.

        Returns outcomes and failures in completion order; one failing profile
        does not stop the others. Errors outside the engine (a result that
        could not be stored, say) are wrapped in `TestExecutionError` too.
        """
        outcomes: list[TestRunOutcome] = []
        failures: list[TestExecutionError] = []
        if not profiles:
            return outcomes, failures
        with ThreadPoolExecutor(max_workers=max(1, int(max_workers))) as pool:
            futures = {pool.submit(self.run, p, user_id): p for p in profiles}
            for fut in as_completed(futures):
                try:
                    outcomes.append(fut.result())
                except TestExecutionError as e:
                    failures.append(e)
                except Exception as e:
                    profile = futures[fut]
                    self._logger.error("test run failed profile_id=%s error=%s", profile.id, e)
                    failures.append(TestExecutionError(profile.id, e))
        return outcomes, failures


def summarize(outcomes: Sequence[TestRunOutcome]) -> dict[str, Any]:
    results = [o.result for o in outcomes]
    if not results:
        return {"profiles": 0, "averageAccuracy": 0.0, "regressions": []}
    return {
        "profiles": len(results),
        "averageAccuracy": sum(r.accuracy for r in results) / len(results),
        "regressions": sorted(r.profile_id for r in results if r.missed_expected or r.unexpected),
    }
