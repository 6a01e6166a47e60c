from learnpath.db.models.rules import (
    AuditLogEntry,
    RuleMetricsRow,
    RuleRow,
    RuleVersionRow,
    TestProfileRow,
    TestResultRow,
)

__all__ = [
    "RuleRow",
    "RuleVersionRow",
    "RuleMetricsRow",
    "TestProfileRow",
    "TestResultRow",
    "AuditLogEntry",
]
