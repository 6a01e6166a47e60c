from __future__ import annotations

from typing import Any, Optional

from sqlalchemy import Float, ForeignKey, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from learnpath.db.base import Base
from learnpath.db.types import JSONText


class RuleRow(Base):
    __tablename__ = "rules"

    id: Mapped[str] = mapped_column(String, primary_key=True)
    domain_id: Mapped[str] = mapped_column(String, nullable=False)
    name: Mapped[str] = mapped_column(String, nullable=False)
    status: Mapped[str] = mapped_column(String, nullable=False, default="draft")
    current_version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    revision: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    published_version: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    last_published_at: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    last_published_by: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    created_by: Mapped[str] = mapped_column(String, nullable=False)
    updated_by: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    created_at: Mapped[str] = mapped_column(String, nullable=False)
    updated_at: Mapped[str] = mapped_column(String, nullable=False)

    __table_args__ = (
        UniqueConstraint("domain_id", "name", name="uq_rules_domain_name"),
        Index("idx_rules_domain_status", "domain_id", "status"),
    )


class RuleVersionRow(Base):
    __tablename__ = "rule_versions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    rule_id: Mapped[str] = mapped_column(String, ForeignKey("rules.id", ondelete="CASCADE"), nullable=False)
    version: Mapped[int] = mapped_column(Integer, nullable=False)
    title: Mapped[str] = mapped_column(Text, nullable=False)
    match_mode: Mapped[str] = mapped_column(String, nullable=False, default="all")
    conditions_json: Mapped[list[dict[str, Any]]] = mapped_column(JSONText(), nullable=False, default=list)
    actions_json: Mapped[list[dict[str, Any]]] = mapped_column(JSONText(), nullable=False, default=list)
    explanation: Mapped[str] = mapped_column(Text, nullable=False)
    priority: Mapped[int] = mapped_column(Integer, nullable=False)
    is_published: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    published_at: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    created_by: Mapped[str] = mapped_column(String, nullable=False)
    created_at: Mapped[str] = mapped_column(String, nullable=False)

    __table_args__ = (
        UniqueConstraint("rule_id", "version", name="uq_rule_versions_rule_version"),
        Index("idx_rule_versions_rule", "rule_id", "version"),
    )


class RuleMetricsRow(Base):
    __tablename__ = "rule_metrics"

    rule_id: Mapped[str] = mapped_column(String, primary_key=True)
    total_executions: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    successful_matches: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    average_execution_time: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    last_executed: Mapped[Optional[str]] = mapped_column(String, nullable=True)


class TestProfileRow(Base):
    __tablename__ = "test_profiles"

    id: Mapped[str] = mapped_column(String, primary_key=True)
    domain_id: Mapped[str] = mapped_column(String, nullable=False)
    name: Mapped[str] = mapped_column(String, nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    facts_json: Mapped[dict[str, Any]] = mapped_column(JSONText(), nullable=False, default=dict)
    raw_answers_json: Mapped[dict[str, Any]] = mapped_column(JSONText(), nullable=False, default=dict)
    expected_rules_json: Mapped[list[dict[str, Any]]] = mapped_column(JSONText(), nullable=False, default=list)
    category: Mapped[str] = mapped_column(String, nullable=False, default="beginner")
    tags_json: Mapped[list[str]] = mapped_column(JSONText(), nullable=False, default=list)
    is_active: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    is_template: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    usage_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_used: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    created_by: Mapped[str] = mapped_column(String, nullable=False)
    updated_by: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    created_at: Mapped[str] = mapped_column(String, nullable=False)
    updated_at: Mapped[str] = mapped_column(String, nullable=False)

    __table_args__ = (
        Index("idx_test_profiles_domain_active", "domain_id", "is_active"),
        Index("idx_test_profiles_category", "category"),
    )


class TestResultRow(Base):
    __tablename__ = "test_results"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    profile_id: Mapped[str] = mapped_column(String, ForeignKey("test_profiles.id", ondelete="CASCADE"), nullable=False)
    executed_at: Mapped[str] = mapped_column(String, nullable=False)
    executed_by: Mapped[str] = mapped_column(String, nullable=False)
    rules_evaluated: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    rules_fired: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    matched_expected_json: Mapped[list[str]] = mapped_column(JSONText(), nullable=False, default=list)
    unexpected_json: Mapped[list[str]] = mapped_column(JSONText(), nullable=False, default=list)
    missed_expected_json: Mapped[list[str]] = mapped_column(JSONText(), nullable=False, default=list)
    accuracy: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    execution_time_ms: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    confidence: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    recommendation_json: Mapped[dict[str, Any]] = mapped_column(JSONText(), nullable=False, default=dict)
    trace_json: Mapped[list[dict[str, Any]]] = mapped_column(JSONText(), nullable=False, default=list)

    __table_args__ = (
        Index("idx_test_results_profile", "profile_id", "id"),
    )


class AuditLogEntry(Base):
    __tablename__ = "audit_logs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    event: Mapped[str] = mapped_column(String, nullable=False)
    user_id: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    rule_id: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    payload_json: Mapped[dict[str, Any]] = mapped_column(JSONText(), nullable=False, default=dict)
    timestamp: Mapped[str] = mapped_column(String, nullable=False)

    __table_args__ = (
        Index("idx_audit_logs_event", "event", "timestamp"),
        Index("idx_audit_logs_user", "user_id", "timestamp"),
        Index("idx_audit_logs_rule", "rule_id", "timestamp"),
    )
