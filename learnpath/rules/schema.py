from __future__ import annotations

import json
import math
from collections.abc import Mapping
from copy import deepcopy
from functools import lru_cache
from pathlib import Path
from typing import Any

from .errors import ValidationError

SCHEMAS_ROOT = Path(__file__).resolve().parent / "schemas"

LIST_OPERATORS = frozenset({"in", "not_in"})
NUMERIC_OPERATORS = frozenset({"greater_than", "less_than"})


def _type_ok(expected: str, value: Any) -> bool:
    mapping = {
        "object": dict,
        "array": list,
        "string": str,
        "number": (int, float),
        "integer": int,
        "boolean": bool,
    }
    py_t = mapping.get(expected)
    if py_t is None:
        return True
    if expected in ("number", "integer") and isinstance(value, bool):
        return False
    return isinstance(value, py_t)


def _resolve(schema: dict[str, Any], root_schema: dict[str, Any], path: str) -> tuple[dict[str, Any] | None, str | None]:
    ref = schema.get("$ref")
    if ref is None:
        return schema, None
    if not str(ref).startswith("#/$defs/"):
        return None, f"{path}: unsupported $ref {ref}"
    target = root_schema.get("$defs", {}).get(str(ref).split("/")[-1])
    if not isinstance(target, dict):
        return None, f"{path}: unresolved $ref {ref}"
    return target, None


def validate_schema(
    data: Any,
    schema: dict[str, Any],
    path: str = "$",
    root_schema: dict[str, Any] | None = None,
) -> list[str]:
    root_schema = root_schema or schema
    resolved, ref_error = _resolve(schema, root_schema, path)
    if resolved is None:
        return [ref_error or f"{path}: bad schema"]
    schema = resolved
    errors: list[str] = []

    expected_type = schema.get("type")
    if expected_type and not _type_ok(expected_type, data):
        errors.append(f"{path}: expected {expected_type}, got {type(data).__name__}")
        return errors

    if "enum" in schema and data not in schema["enum"]:
        errors.append(f"{path}: expected one of {schema['enum']!r}, got {data!r}")

    if isinstance(data, (int, float)) and not isinstance(data, bool):
        if isinstance(data, float) and not math.isfinite(data):
            errors.append(f"{path}: value must be finite")
        if "minimum" in schema and data < schema["minimum"]:
            errors.append(f"{path}: value {data} < minimum {schema['minimum']}")
        if "maximum" in schema and data > schema["maximum"]:
            errors.append(f"{path}: value {data} > maximum {schema['maximum']}")

    if isinstance(data, str) and "minLength" in schema and len(data.strip()) < schema["minLength"]:
        errors.append(f"{path}: string length < {schema['minLength']}")

    if isinstance(data, list):
        if "minItems" in schema and len(data) < schema["minItems"]:
            errors.append(f"{path}: array length < {schema['minItems']}")
        item_schema = schema.get("items")
        if isinstance(item_schema, dict):
            for idx, item in enumerate(data):
                errors.extend(validate_schema(item, item_schema, f"{path}[{idx}]", root_schema))

    if isinstance(data, dict):
        for k in schema.get("required", []):
            if k not in data:
                errors.append(f"{path}: missing required key '{k}'")
        for k, subschema in schema.get("properties", {}).items():
            if k in data and isinstance(subschema, dict):
                errors.extend(validate_schema(data[k], subschema, f"{path}.{k}", root_schema))

    return errors


@lru_cache(maxsize=None)
def _load_schema_text(name: str) -> str:
    p = SCHEMAS_ROOT / f"{name}.schema.json"
    return p.read_text(encoding="utf-8")


def load_schema(name: str) -> dict[str, Any]:
    return json.loads(_load_schema_text(name))


def _is_scalar(value: Any) -> bool:
    if isinstance(value, float):
        return math.isfinite(value)
    return isinstance(value, (str, int, bool))


def _is_numeric(value: Any) -> bool:
    if isinstance(value, bool):
        return False
    if isinstance(value, (int, float)):
        return math.isfinite(float(value))
    if isinstance(value, str):
        try:
            return math.isfinite(float(value.strip()))
        except ValueError:
            return False
    return False


def _condition_value_errors(conditions: Any) -> list[str]:
    errors: list[str] = []
    if not isinstance(conditions, list):
        return errors
    for idx, c in enumerate(conditions):
        if not isinstance(c, dict) or "value" not in c:
            continue
        op = c.get("operator")
        value = c["value"]
        path = f"$.conditions[{idx}].value"
        if op in LIST_OPERATORS:
            if not isinstance(value, list):
                errors.append(f"{path}: operator '{op}' requires a list")
            elif not all(_is_scalar(v) for v in value):
                errors.append(f"{path}: list items must be scalars")
        elif op in NUMERIC_OPERATORS:
            if not _is_numeric(value):
                errors.append(f"{path}: operator '{op}' requires a number, got {value!r}")
        elif not _is_scalar(value):
            errors.append(f"{path}: operator '{op}' requires a scalar, got {type(value).__name__}")
    return errors


def _action_value_errors(actions: Any) -> list[str]:
    errors: list[str] = []
    if not isinstance(actions, list):
        return errors
    for idx, a in enumerate(actions):
        if not isinstance(a, dict) or "value" not in a:
            continue
        value = a["value"]
        path = f"$.actions[{idx}].value"
        if a.get("type") == "addScore" and not _is_numeric(value):
            errors.append(f"{path}: addScore requires a number, got {value!r}")
        elif a.get("type") == "addWarning" and not (isinstance(value, str) and value.strip()):
            errors.append(f"{path}: addWarning requires a non-empty string")
        elif value is None or value == "":
            errors.append(f"{path}: value must not be empty")
    return errors


def _raise_if(errors: list[str], what: str) -> None:
    if errors:
        raise ValidationError(f"{what}: " + "; ".join(errors[:10]), errors)


def validate_version_data(data: Any) -> dict[str, Any]:
    """
    Validate a rule version payload (camelCase keys) and return a normalized copy.

    Defaults: matchMode "all", action weight 1.0, empty descriptions dropped.
    """
    if not isinstance(data, Mapping):
        raise ValidationError("rule version payload must be an object", ["$: expected object"])
    doc = deepcopy(dict(data))
    errors = validate_schema(doc, load_schema("rule_version"))
    errors.extend(_condition_value_errors(doc.get("conditions")))
    errors.extend(_action_value_errors(doc.get("actions")))
    _raise_if(errors, "rule version")

    out: dict[str, Any] = {
        "title": doc["title"].strip(),
        "matchMode": doc.get("matchMode") or "all",
        "conditions": [],
        "actions": [],
        "explanation": doc["explanation"].strip(),
        "priority": int(doc["priority"]),
    }
    for c in doc["conditions"]:
        cond = {"factKey": c["factKey"], "operator": c["operator"], "value": c["value"]}
        if c.get("description"):
            cond["description"] = c["description"]
        out["conditions"].append(cond)
    for a in doc["actions"]:
        act = {"type": a["type"], "value": a["value"], "weight": float(a.get("weight", 1.0))}
        if a.get("description"):
            act["description"] = a["description"]
        out["actions"].append(act)
    return out


def _fact_errors(facts: Any, path: str) -> list[str]:
    errors: list[str] = []
    if not isinstance(facts, dict):
        return errors
    for k, v in facts.items():
        if v is None or _is_scalar(v):
            continue
        if isinstance(v, list) and all(_is_scalar(i) for i in v):
            continue
        errors.append(f"{path}.{k}: fact values must be scalars or lists of scalars")
    return errors


def validate_test_profile(data: Any) -> dict[str, Any]:
    if not isinstance(data, Mapping):
        raise ValidationError("test profile payload must be an object", ["$: expected object"])
    doc = deepcopy(dict(data))
    errors = validate_schema(doc, load_schema("test_profile"))
    errors.extend(_fact_errors(doc.get("facts"), "$.facts"))
    _raise_if(errors, "test profile")

    doc.setdefault("description", "")
    doc.setdefault("rawAnswers", {})
    doc.setdefault("expectedRules", [])
    doc.setdefault("category", "beginner")
    doc.setdefault("tags", [])
    doc.setdefault("isActive", True)
    doc.setdefault("isTemplate", False)
    doc["name"] = doc["name"].strip()
    return doc


def validate_rule_name(name: Any) -> str:
    if not isinstance(name, str) or not name.strip():
        raise ValidationError("rule name must be a non-empty string", ["$.name: expected non-empty string"])
    return name.strip()
