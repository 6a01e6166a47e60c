from __future__ import annotations

import logging
import os
from dataclasses import replace
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

from alembic import command
from alembic.config import Config
from sqlalchemy import inspect
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.orm import sessionmaker

from learnpath.db.config import get_db_settings, redact_database_url
from learnpath.db.engine import make_engine
from learnpath.db.models.rules import RuleRow, RuleVersionRow
from learnpath.db.repo import AuditRepo, ProfilesRepo, RulesRepo
from learnpath.rules.errors import RuleNotFoundError
from learnpath.rules.models import Rule, RuleMetrics, RuleVersion

REQUIRED_TABLES = (
    "rules",
    "rule_versions",
    "rule_metrics",
    "test_profiles",
    "test_results",
    "audit_logs",
)

SEQUENCE_SYNC_TABLES = (
    "rule_versions",
    "test_results",
    "audit_logs",
)


def _utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _sqlite_path_from_url(url: str, fallback_root: Path) -> Optional[Path]:
    parsed = make_url(url)
    if not parsed.drivername.startswith("sqlite"):
        return None
    db_name = parsed.database or ""
    if not db_name or db_name == ":memory:":
        return None
    p = Path(db_name)
    return p if p.is_absolute() else (fallback_root / p).resolve()


def version_from_row(row: RuleVersionRow) -> RuleVersion:
    return RuleVersion.from_dict(
        {
            "version": row.version,
            "title": row.title,
            "matchMode": row.match_mode,
            "conditions": row.conditions_json or [],
            "actions": row.actions_json or [],
            "explanation": row.explanation,
            "priority": row.priority,
            "isPublished": bool(int(row.is_published)),
            "publishedAt": row.published_at,
            "createdBy": row.created_by,
            "createdAt": row.created_at,
        }
    )


def rule_from_rows(row: RuleRow, versions: list[RuleVersionRow]) -> Rule:
    return Rule(
        id=str(row.id),
        domain_id=str(row.domain_id),
        name=str(row.name),
        status=str(row.status),
        versions=tuple(version_from_row(v) for v in sorted(versions, key=lambda v: v.version)),
        published_version=None if row.published_version is None else int(row.published_version),
        current_version=int(row.current_version),
        created_by=str(row.created_by),
        created_at=str(row.created_at),
        updated_at=str(row.updated_at),
        updated_by=row.updated_by,
        last_published_at=row.last_published_at,
        last_published_by=row.last_published_by,
        revision=int(row.revision or 0),
    )


class RulesStore:
    """
    SQLAlchemy-backed rule store.

    Owns the engine and session factory; profile and audit services share
    them through `session_factory`. Missing tables are created by running
    the bundled Alembic migrations.
    """

    def __init__(self, project_root: Path, database_url: str | None = None, auto_init: bool = True) -> None:
        settings = get_db_settings()
        self.project_root = project_root
        self.database_url = (database_url or settings.database_url).strip()
        self.db_path = _sqlite_path_from_url(self.database_url, project_root)
        if self.db_path is not None:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
            # Relative sqlite paths resolve against the project root, not the cwd.
            self.database_url = make_url(self.database_url).set(database=str(self.db_path)).render_as_string(
                hide_password=False
            )
        self.engine: Engine = make_engine(self.database_url, extra_options={"echo": settings.echo})
        self.session_factory = sessionmaker(bind=self.engine, autoflush=False, autocommit=False, expire_on_commit=False)
        self.rules_repo = RulesRepo(self.session_factory)
        self.profiles_repo = ProfilesRepo(self.session_factory)
        self.audit_repo = AuditRepo(self.session_factory)
        self._logger = logging.getLogger("rules_store")
        if auto_init:
            self.ensure_schema()

    def _run_alembic_upgrade(self) -> None:
        alembic_ini = self.project_root / "alembic.ini"
        script_location = self.project_root / "alembic"
        if not alembic_ini.exists() or not script_location.exists():
            fallback_root = Path(__file__).resolve().parents[2]
            alembic_ini = fallback_root / "alembic.ini"
            script_location = fallback_root / "alembic"
        if not alembic_ini.exists() or not script_location.exists():
            raise RuntimeError("Alembic configuration not found")
        cfg = Config(str(alembic_ini))
        cfg.set_main_option("script_location", str(script_location))
        cfg.set_main_option("sqlalchemy.url", self.database_url.replace("%", "%%"))
        # env.py reuses this engine so in-memory sqlite sees the migrated schema.
        cfg.attributes["connection_engine"] = self.engine
        cfg.attributes["configure_logger"] = False
        prev = os.environ.get("DATABASE_URL")
        try:
            os.environ["DATABASE_URL"] = self.database_url
            command.upgrade(cfg, "head")
        finally:
            if prev is None:
                os.environ.pop("DATABASE_URL", None)
            else:
                os.environ["DATABASE_URL"] = prev

    def missing_tables(self) -> list[str]:
        insp = inspect(self.engine)
        return [name for name in REQUIRED_TABLES if not insp.has_table(name)]

    def ensure_schema(self) -> None:
        with self.engine.connect() as conn:
            conn.exec_driver_sql("SELECT 1")
        missing = self.missing_tables()
        if missing:
            self._logger.info("running migrations missing=%s url=%s", missing, redact_database_url(self.database_url))
            try:
                self._run_alembic_upgrade()
                still_missing = self.missing_tables()
                if still_missing:
                    raise RuntimeError(f"missing tables after migration: {still_missing}")
            except Exception as e:
                raise RuntimeError(
                    "Database schema is not ready; run `alembic upgrade head` "
                    f"(url={redact_database_url(self.database_url)}): {e}"
                ) from e
        self._sync_postgres_sequences()

    def _sync_postgres_sequences(self) -> None:
        # Keep SERIAL sequences aligned with max(id) after bulk imports.
        if not self.database_url.lower().startswith("postgresql"):
            return
        with self.engine.begin() as conn:
            for table in SEQUENCE_SYNC_TABLES:
                conn.exec_driver_sql(
                    f"""
                    SELECT setval(
                      pg_get_serial_sequence('{table}', 'id'),
                      COALESCE((SELECT MAX(id) FROM {table}), 1),
                      true
                    )
                    """
                )

    def observability_info(self) -> dict[str, Any]:
        backend = "postgresql" if self.database_url.lower().startswith("postgresql") else "sqlite"
        return {
            "db_backend": backend,
            "db_url": redact_database_url(self.database_url),
            "db_path": str(self.db_path) if self.db_path is not None else "",
            "missing_tables": self.missing_tables(),
        }

    def load_active_rules(self, domain_id: str) -> list[Rule]:
        rules = [rule_from_rows(r, vs) for r, vs in self.rules_repo.list_rules(domain_id=domain_id, statuses=["active"])]
        return sorted(rules, key=lambda r: (-r.current.priority, r.name, r.id))

    def get_rule(self, rule_id: str) -> Rule:
        found = self.rules_repo.get_rule(rule_id)
        if found is None:
            raise RuleNotFoundError(rule_id)
        return rule_from_rows(*found)

    def find_rule(self, domain_id: str, name: str) -> Optional[Rule]:
        rule_id = self.rules_repo.find_rule_id(domain_id, name)
        return None if rule_id is None else self.get_rule(rule_id)

    def list_rules(self, domain_id: str | None = None, status: str | None = None) -> list[Rule]:
        rows = self.rules_repo.list_rules(domain_id=domain_id, statuses=[status] if status else None)
        return [rule_from_rows(r, vs) for r, vs in rows]

    def insert_rule(self, rule: Rule) -> Rule:
        self.rules_repo.insert_rule(rule)
        return rule

    def save_rule(self, rule: Rule, *, expected_revision: int) -> Rule:
        revision = self.rules_repo.save_rule(rule, expected_revision=expected_revision)
        return replace(rule, revision=revision)

    def delete_rule(self, rule_id: str) -> bool:
        return self.rules_repo.delete_rule(rule_id)

    def increment_metrics(self, rule_id: str, *, executions: int, matches: int, total_ms: float) -> None:
        self.rules_repo.increment_metrics(
            rule_id,
            executions=executions,
            matches=matches,
            total_ms=total_ms,
            last_executed=_utc_now(),
        )

    def get_metrics(self, rule_id: str) -> RuleMetrics:
        row = self.rules_repo.get_metrics(rule_id)
        if row is None:
            return RuleMetrics(rule_id=rule_id)
        return RuleMetrics(
            rule_id=rule_id,
            total_executions=int(row.total_executions),
            successful_matches=int(row.successful_matches),
            average_execution_time=float(row.average_execution_time),
            last_executed=row.last_executed,
        )
