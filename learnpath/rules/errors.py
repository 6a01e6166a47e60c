from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class RuleEngineErrorCode:
    code: str
    message: str


RULES_001_VALIDATION_FAILED = RuleEngineErrorCode(
    "RULES_001_VALIDATION_FAILED",
    "Rule or profile payload validation failed.",
)
RULES_002_VERSION_NOT_FOUND = RuleEngineErrorCode(
    "RULES_002_VERSION_NOT_FOUND",
    "Requested rule version was not found.",
)
RULES_003_TEST_EXECUTION_FAILED = RuleEngineErrorCode(
    "RULES_003_TEST_EXECUTION_FAILED",
    "Test profile execution failed.",
)
RULES_004_CONFIGURATION_INVALID = RuleEngineErrorCode(
    "RULES_004_CONFIGURATION_INVALID",
    "Scoring configuration is missing or invalid.",
)
RULES_005_RULE_NOT_FOUND = RuleEngineErrorCode(
    "RULES_005_RULE_NOT_FOUND",
    "Requested rule was not found.",
)
RULES_006_INVALID_TRANSITION = RuleEngineErrorCode(
    "RULES_006_INVALID_TRANSITION",
    "Rule status transition is not allowed.",
)
RULES_007_PROFILE_NOT_FOUND = RuleEngineErrorCode(
    "RULES_007_PROFILE_NOT_FOUND",
    "Requested test profile was not found.",
)


class RuleEngineError(RuntimeError):
    def __init__(self, err: RuleEngineErrorCode, detail: str = "") -> None:
        suffix = f" detail={detail}" if detail else ""
        super().__init__(f"{err.code}: {err.message}{suffix}")
        self.err = err
        self.detail = detail


class ValidationError(RuleEngineError):
    def __init__(self, detail: str = "", errors: list[str] | None = None) -> None:
        super().__init__(RULES_001_VALIDATION_FAILED, detail)
        self.errors = list(errors or [])


class VersionNotFoundError(RuleEngineError):
    def __init__(self, rule_id: str, version: int) -> None:
        super().__init__(RULES_002_VERSION_NOT_FOUND, f"rule_id={rule_id} version={version}")
        self.rule_id = rule_id
        self.version = version


class TestExecutionError(RuleEngineError):
    __test__ = False

    def __init__(self, profile_id: str, cause: BaseException) -> None:
        super().__init__(RULES_003_TEST_EXECUTION_FAILED, f"profile_id={profile_id} cause={cause!r}")
        self.profile_id = profile_id
        self.cause = cause


class ConfigurationError(RuleEngineError):
    def __init__(self, detail: str = "") -> None:
        super().__init__(RULES_004_CONFIGURATION_INVALID, detail)


class RuleNotFoundError(RuleEngineError):
    def __init__(self, rule_id: str) -> None:
        super().__init__(RULES_005_RULE_NOT_FOUND, f"rule_id={rule_id}")
        self.rule_id = rule_id


class RuleStateError(RuleEngineError):
    def __init__(self, rule_id: str, status: str, action: str) -> None:
        super().__init__(RULES_006_INVALID_TRANSITION, f"rule_id={rule_id} status={status} action={action}")
        self.rule_id = rule_id
        self.status = status
        self.action = action


class ProfileNotFoundError(RuleEngineError):
    def __init__(self, profile_id: str) -> None:
        super().__init__(RULES_007_PROFILE_NOT_FOUND, f"profile_id={profile_id}")
        self.profile_id = profile_id
