from __future__ import annotations

import json
import logging
import os
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from learnpath.rules.engine import RuleEngine
from learnpath.rules.errors import RULES_001_VALIDATION_FAILED, RuleEngineError, ValidationError
from learnpath.rules.harness import TestHarness, summarize
from learnpath.rules.scoring import load_scoring_config
from learnpath.services.audit_log import AuditLog
from learnpath.services.profile_store import ProfileStore
from learnpath.services.rule_metrics import BufferedMetricsSink
from learnpath.services.rule_versions import RuleVersionManager
from learnpath.services.rules_seed import import_path, load_rule_doc
from learnpath.services.rules_store import RulesStore

STATUS_ACTIONS = ("deactivate", "reactivate", "archive")


def _project_root() -> Path:
    return Path(__file__).resolve().parents[2]


def _get_opt(argv: list[str], key: str) -> str | None:
    if key not in argv:
        return None
    idx = argv.index(key)
    if idx + 1 >= len(argv):
        return None
    return argv[idx + 1]


def _require_opt(argv: list[str], key: str) -> str:
    value = _get_opt(argv, key)
    if value is None or not value.strip():
        raise ValidationError(f"missing option {key}", [f"{key}: required"])
    return value.strip()


def _int_opt(argv: list[str], key: str, default: int | None = None) -> int:
    if default is not None and _get_opt(argv, key) is None:
        return default
    raw = _require_opt(argv, key)
    try:
        return int(raw)
    except ValueError as e:
        raise ValidationError(f"{key} must be an integer, got {raw!r}", [f"{key}: expected integer"]) from e


def _user(argv: list[str]) -> str:
    return _get_opt(argv, "--user") or os.environ.get("LEARNPATH_USER", "cli")


def _print(payload: dict[str, Any]) -> None:
    print(json.dumps(payload, ensure_ascii=False, indent=2, default=str))


@dataclass
class _Context:
    store: RulesStore
    audit: AuditLog
    profiles: ProfileStore
    manager: RuleVersionManager
    metrics: BufferedMetricsSink
    engine: RuleEngine


def _context() -> _Context:
    root = _project_root()
    store = RulesStore(root)
    audit = AuditLog(store.audit_repo)
    metrics = BufferedMetricsSink(store)
    engine = RuleEngine(
        store.load_active_rules,
        config=load_scoring_config(root),
        metrics=metrics,
        audit=audit,
    )
    return _Context(
        store=store,
        audit=audit,
        profiles=ProfileStore(store.profiles_repo),
        manager=RuleVersionManager(store, audit),
        metrics=metrics,
        engine=engine,
    )


def _rule_summary(rule: Any) -> dict[str, Any]:
    return {
        "id": rule.id,
        "domainId": rule.domain_id,
        "name": rule.name,
        "status": rule.status,
        "currentVersion": rule.current_version,
        "publishedVersion": rule.published_version,
        "priority": rule.current.priority,
        "title": rule.current.title,
    }


def cmd_rules_import(argv: list[str]) -> int:
    path = Path(_get_opt(argv, "--path") or str(_project_root() / "rules"))
    ctx = _context()
    summaries = import_path(path, ctx.manager, ctx.profiles, user_id=_user(argv))
    _print({"ok": True, "path": str(path), "imported": summaries})
    return 0


def cmd_rules_list(argv: list[str]) -> int:
    ctx = _context()
    rules = ctx.store.list_rules(domain_id=_get_opt(argv, "--domain"), status=_get_opt(argv, "--status"))
    _print({"ok": True, "count": len(rules), "rules": [_rule_summary(r) for r in rules]})
    return 0


def cmd_rules_versions(argv: list[str]) -> int:
    rule_id = _require_opt(argv, "--rule-id")
    ctx = _context()
    rule = ctx.store.get_rule(rule_id)
    _print(
        {
            "ok": True,
            "rule": _rule_summary(rule),
            "versions": [v.to_dict() for v in ctx.manager.version_history(rule_id)],
            "metrics": ctx.store.get_metrics(rule_id).to_dict(),
        }
    )
    return 0


def cmd_rules_create_version(argv: list[str]) -> int:
    rule_id = _require_opt(argv, "--rule-id")
    data = load_rule_doc(Path(_require_opt(argv, "--file")))
    ctx = _context()
    version = ctx.manager.create_version(rule_id, data, _user(argv))
    _print({"ok": True, "ruleId": rule_id, "version": version.to_dict()})
    return 0


def cmd_rules_publish(argv: list[str]) -> int:
    rule_id = _require_opt(argv, "--rule-id")
    version = _int_opt(argv, "--version")
    ctx = _context()
    rule = ctx.manager.publish_version(rule_id, version, _user(argv))
    _print({"ok": True, "rule": _rule_summary(rule)})
    return 0


def cmd_rules_rollback(argv: list[str]) -> int:
    rule_id = _require_opt(argv, "--rule-id")
    version = _int_opt(argv, "--version")
    ctx = _context()
    rule = ctx.manager.rollback_to_version(rule_id, version, _user(argv))
    _print({"ok": True, "rule": _rule_summary(rule)})
    return 0


def cmd_rules_status(argv: list[str]) -> int:
    rule_id = _require_opt(argv, "--rule-id")
    action = _require_opt(argv, "--action")
    if action not in STATUS_ACTIONS:
        raise ValidationError(f"--action must be one of {STATUS_ACTIONS}", [f"--action: got {action!r}"])
    ctx = _context()
    rule = getattr(ctx.manager, action)(rule_id, _user(argv))
    _print({"ok": True, "rule": _rule_summary(rule)})
    return 0


def _load_json_opt(argv: list[str], inline_key: str, file_key: str) -> dict[str, Any] | None:
    inline = _get_opt(argv, inline_key)
    if inline is not None:
        try:
            obj = json.loads(inline)
        except ValueError as e:
            raise ValidationError(f"{inline_key}: invalid JSON: {e}", [f"{inline_key}: {e}"]) from e
        if not isinstance(obj, dict):
            raise ValidationError(f"{inline_key} must be a JSON object", [f"{inline_key}: expected object"])
        return obj
    path = _get_opt(argv, file_key)
    return load_rule_doc(Path(path)) if path else None


def cmd_rules_evaluate(argv: list[str]) -> int:
    domain_id = _require_opt(argv, "--domain")
    facts = _load_json_opt(argv, "--facts-json", "--facts")
    answers = _load_json_opt(argv, "--answers-json", "--answers")
    if facts is None and answers is None:
        raise ValidationError("pass facts (--facts-json/--facts) or answers (--answers-json/--answers)")
    ctx = _context()
    try:
        if answers is not None:
            facts, result = ctx.engine.infer(domain_id, answers, user_id=_user(argv))
        else:
            result = ctx.engine.evaluate(domain_id, facts or {}, user_id=_user(argv))
    finally:
        ctx.metrics.flush()
    payload = {"ok": True, "facts": facts, **result.to_dict()}
    if _get_opt(argv, "--trace") not in {"1", "true", "yes", "on"}:
        payload.pop("trace", None)
    _print(payload)
    return 0


def cmd_profiles_list(argv: list[str]) -> int:
    ctx = _context()
    profiles = ctx.profiles.list_profiles(
        _get_opt(argv, "--domain"),
        category=_get_opt(argv, "--category"),
        active_only=(_get_opt(argv, "--active") or "").lower() in {"1", "true", "yes", "on"},
    )
    _print(
        {
            "ok": True,
            "count": len(profiles),
            "profiles": [
                {
                    "id": p.id,
                    "domainId": p.domain_id,
                    "name": p.name,
                    "category": p.category,
                    "isActive": p.is_active,
                    "usageCount": p.usage_count,
                    "lastUsed": p.last_used,
                }
                for p in profiles
            ],
        }
    )
    return 0


def cmd_profiles_run(argv: list[str]) -> int:
    profile_id = _require_opt(argv, "--profile-id")
    ctx = _context()
    profile = ctx.profiles.get_profile(profile_id, with_results=False)
    outcome = TestHarness(ctx.engine, ctx.profiles, ctx.audit).run(profile, _user(argv))
    _print({"ok": True, "result": outcome.result.to_dict()})
    return 0


def cmd_profiles_run_all(argv: list[str]) -> int:
    domain_id = _require_opt(argv, "--domain")
    workers = _int_opt(argv, "--workers", 4)
    ctx = _context()
    profiles = ctx.profiles.list_profiles(domain_id, active_only=True)
    outcomes, failures = TestHarness(ctx.engine, ctx.profiles, ctx.audit).run_many(
        profiles, _user(argv), max_workers=workers
    )
    summary = summarize(outcomes)
    ok = not failures and not summary["regressions"]
    _print(
        {
            "ok": ok,
            "domain": domain_id,
            **summary,
            "results": [o.result.to_dict() for o in sorted(outcomes, key=lambda o: o.result.profile_id)],
            "failures": [{"profileId": f.profile_id, "error": str(f.cause)} for f in failures],
        }
    )
    return 0 if ok else 4


def cmd_db_status(argv: list[str]) -> int:
    store = RulesStore(_project_root(), auto_init=(_get_opt(argv, "--init") or "").lower() in {"1", "true", "yes", "on"})
    info = store.observability_info()
    _print({"ok": not info["missing_tables"], **info})
    return 0


COMMANDS = {
    "rules:import": cmd_rules_import,
    "rules:list": cmd_rules_list,
    "rules:versions": cmd_rules_versions,
    "rules:create-version": cmd_rules_create_version,
    "rules:publish": cmd_rules_publish,
    "rules:rollback": cmd_rules_rollback,
    "rules:status": cmd_rules_status,
    "rules:evaluate": cmd_rules_evaluate,
    "profiles:list": cmd_profiles_list,
    "profiles:run": cmd_profiles_run,
    "profiles:run-all": cmd_profiles_run_all,
    "db:status": cmd_db_status,
}


def main(argv: list[str] | None = None) -> int:
    argv = sys.argv[1:] if argv is None else list(argv)
    logging.basicConfig(
        level=os.environ.get("LOG_LEVEL", "WARNING").upper(),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )
    if not argv:
        print(
            "Usage: python -m learnpath.workers.cli " + "|".join(COMMANDS) + " [options]",
            file=sys.stderr,
        )
        return 2

    cmd = argv[0]
    handler = COMMANDS.get(cmd)
    if handler is None:
        print(f"Unknown command: {cmd}", file=sys.stderr)
        return 2
    try:
        return handler(argv[1:])
    except RuleEngineError as e:
        out: dict[str, Any] = {"ok": False, "error_code": e.err.code, "error": str(e)}
        if e.err is RULES_001_VALIDATION_FAILED and getattr(e, "errors", None):
            out["errors"] = e.errors
        print(json.dumps(out, ensure_ascii=False))
        return 10
    except Exception as e:
        print(
            json.dumps(
                {"ok": False, "error_code": "RULES_999_UNEXPECTED", "error": str(e)},
                ensure_ascii=False,
            )
        )
        return 12


if __name__ == "__main__":
    raise SystemExit(main())
