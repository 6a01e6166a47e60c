"""baseline: rules, versions, metrics, test profiles, audit log

Revision ID: 20261018_0001
Revises:
Create Date: 2026-10-18 00:00:00.000000

"""
from __future__ import annotations

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision = "20261018_0001"
down_revision = None
branch_labels = None
depends_on = None


def _json_type() -> sa.TypeEngine:
    if op.get_context().dialect.name == "postgresql":
        return postgresql.JSONB()
    return sa.Text()


def _has_table(table_name: str) -> bool:
    return table_name in set(sa.inspect(op.get_bind()).get_table_names())


def _create_index_if_missing(name: str, table_name: str, cols: list[str]) -> None:
    existing = {str(i.get("name", "")) for i in sa.inspect(op.get_bind()).get_indexes(table_name)}
    if name not in existing:
        op.create_index(name, table_name, cols, unique=False)


def upgrade() -> None:
    json_type = _json_type()

    if not _has_table("rules"):
        op.create_table(
            "rules",
            sa.Column("id", sa.String(), primary_key=True),
            sa.Column("domain_id", sa.String(), nullable=False),
            sa.Column("name", sa.String(), nullable=False),
            sa.Column("status", sa.String(), nullable=False, server_default="draft"),
            sa.Column("current_version", sa.Integer(), nullable=False, server_default=sa.text("1")),
            sa.Column("revision", sa.Integer(), nullable=False, server_default=sa.text("0")),
            sa.Column("published_version", sa.Integer(), nullable=True),
            sa.Column("last_published_at", sa.String(), nullable=True),
            sa.Column("last_published_by", sa.String(), nullable=True),
            sa.Column("created_by", sa.String(), nullable=False),
            sa.Column("updated_by", sa.String(), nullable=True),
            sa.Column("created_at", sa.String(), nullable=False),
            sa.Column("updated_at", sa.String(), nullable=False),
            sa.UniqueConstraint("domain_id", "name", name="uq_rules_domain_name"),
        )
    _create_index_if_missing("idx_rules_domain_status", "rules", ["domain_id", "status"])

    if not _has_table("rule_versions"):
        op.create_table(
            "rule_versions",
            sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
            sa.Column("rule_id", sa.String(), sa.ForeignKey("rules.id", ondelete="CASCADE"), nullable=False),
            sa.Column("version", sa.Integer(), nullable=False),
            sa.Column("title", sa.Text(), nullable=False),
            sa.Column("match_mode", sa.String(), nullable=False, server_default="all"),
            sa.Column("conditions_json", json_type, nullable=False),
            sa.Column("actions_json", json_type, nullable=False),
            sa.Column("explanation", sa.Text(), nullable=False),
            sa.Column("priority", sa.Integer(), nullable=False),
            sa.Column("is_published", sa.Integer(), nullable=False, server_default=sa.text("0")),
            sa.Column("published_at", sa.String(), nullable=True),
            sa.Column("created_by", sa.String(), nullable=False),
            sa.Column("created_at", sa.String(), nullable=False),
            sa.UniqueConstraint("rule_id", "version", name="uq_rule_versions_rule_version"),
        )
    _create_index_if_missing("idx_rule_versions_rule", "rule_versions", ["rule_id", "version"])

    if not _has_table("rule_metrics"):
        op.create_table(
            "rule_metrics",
            sa.Column("rule_id", sa.String(), primary_key=True),
            sa.Column("total_executions", sa.Integer(), nullable=False, server_default=sa.text("0")),
            sa.Column("successful_matches", sa.Integer(), nullable=False, server_default=sa.text("0")),
            sa.Column("average_execution_time", sa.Float(), nullable=False, server_default=sa.text("0")),
            sa.Column("last_executed", sa.String(), nullable=True),
        )

    if not _has_table("test_profiles"):
        op.create_table(
            "test_profiles",
            sa.Column("id", sa.String(), primary_key=True),
            sa.Column("domain_id", sa.String(), nullable=False),
            sa.Column("name", sa.String(), nullable=False),
            sa.Column("description", sa.Text(), nullable=False, server_default=""),
            sa.Column("facts_json", json_type, nullable=False),
            sa.Column("raw_answers_json", json_type, nullable=False),
            sa.Column("expected_rules_json", json_type, nullable=False),
            sa.Column("category", sa.String(), nullable=False, server_default="beginner"),
            sa.Column("tags_json", json_type, nullable=False),
            sa.Column("is_active", sa.Integer(), nullable=False, server_default=sa.text("1")),
            sa.Column("is_template", sa.Integer(), nullable=False, server_default=sa.text("0")),
            sa.Column("usage_count", sa.Integer(), nullable=False, server_default=sa.text("0")),
            sa.Column("last_used", sa.String(), nullable=True),
            sa.Column("created_by", sa.String(), nullable=False),
            sa.Column("updated_by", sa.String(), nullable=True),
            sa.Column("created_at", sa.String(), nullable=False),
            sa.Column("updated_at", sa.String(), nullable=False),
        )
    _create_index_if_missing("idx_test_profiles_domain_active", "test_profiles", ["domain_id", "is_active"])
    _create_index_if_missing("idx_test_profiles_category", "test_profiles", ["category"])

    if not _has_table("test_results"):
        op.create_table(
            "test_results",
            sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
            sa.Column(
                "profile_id", sa.String(), sa.ForeignKey("test_profiles.id", ondelete="CASCADE"), nullable=False
            ),
            sa.Column("executed_at", sa.String(), nullable=False),
            sa.Column("executed_by", sa.String(), nullable=False),
            sa.Column("rules_evaluated", sa.Integer(), nullable=False, server_default=sa.text("0")),
            sa.Column("rules_fired", sa.Integer(), nullable=False, server_default=sa.text("0")),
            sa.Column("matched_expected_json", json_type, nullable=False),
            sa.Column("unexpected_json", json_type, nullable=False),
            sa.Column("missed_expected_json", json_type, nullable=False),
            sa.Column("accuracy", sa.Float(), nullable=False, server_default=sa.text("0")),
            sa.Column("execution_time_ms", sa.Float(), nullable=False, server_default=sa.text("0")),
            sa.Column("confidence", sa.Float(), nullable=False, server_default=sa.text("0")),
            sa.Column("recommendation_json", json_type, nullable=False),
            sa.Column("trace_json", json_type, nullable=False),
        )
    _create_index_if_missing("idx_test_results_profile", "test_results", ["profile_id", "id"])

    if not _has_table("audit_logs"):
        op.create_table(
            "audit_logs",
            sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
            sa.Column("event", sa.String(), nullable=False),
            sa.Column("user_id", sa.String(), nullable=True),
            sa.Column("rule_id", sa.String(), nullable=True),
            sa.Column("payload_json", json_type, nullable=False),
            sa.Column("timestamp", sa.String(), nullable=False),
        )
    _create_index_if_missing("idx_audit_logs_event", "audit_logs", ["event", "timestamp"])
    _create_index_if_missing("idx_audit_logs_user", "audit_logs", ["user_id", "timestamp"])
    _create_index_if_missing("idx_audit_logs_rule", "audit_logs", ["rule_id", "timestamp"])


def downgrade() -> None:
    for table in ("audit_logs", "test_results", "test_profiles", "rule_metrics", "rule_versions", "rules"):
        if _has_table(table):
            op.drop_table(table)
