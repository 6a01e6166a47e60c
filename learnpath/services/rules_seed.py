from __future__ import annotations

import json
import logging
from collections.abc import Mapping
from pathlib import Path
from typing import Any

import yaml

from learnpath.rules.errors import ValidationError
from learnpath.rules.models import RuleVersion
from learnpath.rules.schema import validate_version_data
from learnpath.services.profile_store import ProfileStore
from learnpath.services.rule_versions import RuleVersionManager

_logger = logging.getLogger("rules_seed")

VERSION_KEYS = ("title", "matchMode", "conditions", "actions", "explanation", "priority")


def load_rule_doc(path: Path) -> dict[str, Any]:
    text = path.read_text(encoding="utf-8")
    try:
        obj = json.loads(text) if path.suffix.lower() == ".json" else yaml.safe_load(text)
    except (ValueError, yaml.YAMLError) as e:
        raise ValidationError(f"{path}: parse failed: {e}", [f"{path}: {e}"]) from e
    if not isinstance(obj, dict):
        raise ValidationError(f"{path}: top-level must be a mapping", [f"{path}: expected object"])
    return obj


def iter_rule_docs(path: Path) -> list[tuple[Path, dict[str, Any]]]:
    if path.is_dir():
        files = sorted(path.glob("*.y*ml")) + sorted(path.glob("*.json"))
        files = [p for p in files if p.name != "scoring.yaml"]
    else:
        files = [path]
    return [(p, load_rule_doc(p)) for p in files]


def _same_content(version: RuleVersion, data: dict[str, Any]) -> bool:
    current = {k: v for k, v in version.to_dict().items() if k in VERSION_KEYS}
    return json.dumps(current, sort_keys=True, default=str) == json.dumps(
        {k: data[k] for k in VERSION_KEYS}, sort_keys=True, default=str
    )


def import_document(
    doc: Mapping[str, Any],
    manager: RuleVersionManager,
    profiles: ProfileStore | None,
    user_id: str = "system-bootstrap",
) -> dict[str, Any]:
    """
    Import one rules document.

    New rules start as drafts and are published when `publish: true`. A rule
    that already exists gets a new version only when its content changed, so
    re-importing the same document is a no-op.
    """
    domain_id = str(doc.get("domain") or "").strip()
    if not domain_id:
        raise ValidationError("rules document is missing 'domain'", ["$.domain: required"])
    summary: dict[str, Any] = {
        "domain": domain_id,
        "created": [],
        "versioned": [],
        "published": [],
        "unchanged": [],
        "archived": [],
    }

    for idx, raw in enumerate(doc.get("rules") or []):
        if not isinstance(raw, Mapping):
            raise ValidationError(f"rules[{idx}] must be a mapping", [f"$.rules[{idx}]: expected object"])
        name = str(raw.get("name") or "").strip()
        data = validate_version_data({k: raw[k] for k in raw if k not in ("name", "publish", "id")})
        existing = manager.store.find_rule(domain_id, name) if name else None
        if existing is None:
            rule = manager.create_rule(domain_id, name, data, user_id, rule_id=raw.get("id"))
            summary["created"].append(rule.name)
            target = 1
        elif existing.status == "archived":
            summary["archived"].append(existing.name)
            continue
        elif _same_content(existing.versions[-1], data):
            rule = existing
            summary["unchanged"].append(rule.name)
            target = existing.current_version
        else:
            target = manager.create_version(existing.id, data, user_id).version
            rule = existing
            summary["versioned"].append(rule.name)
        if raw.get("publish"):
            current = manager.store.get_rule(rule.id)
            if current.published_version != target or current.status != "active":
                manager.publish_version(rule.id, target, user_id)
                summary["published"].append(rule.name)

    if profiles is not None:
        summary["profiles"] = []
        for raw in doc.get("profiles") or []:
            if not isinstance(raw, Mapping):
                continue
            if profiles.find_profile(domain_id, str(raw.get("name") or "").strip()) is not None:
                continue
            created = profiles.create_profile(domain_id, raw, user_id, profile_id=raw.get("id"))
            summary["profiles"].append(created.name)

    _logger.info(
        "rules import domain=%s created=%s versioned=%s published=%s unchanged=%s",
        domain_id,
        len(summary["created"]),
        len(summary["versioned"]),
        len(summary["published"]),
        len(summary["unchanged"]),
    )
    return summary


def import_path(
    path: Path,
    manager: RuleVersionManager,
    profiles: ProfileStore | None = None,
    user_id: str = "system-bootstrap",
) -> list[dict[str, Any]]:
    return [import_document(doc, manager, profiles, user_id) for _, doc in iter_rule_docs(path)]
