from __future__ import annotations

import json
from typing import Any

from sqlalchemy import Text
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.types import TypeDecorator


class JSONText(TypeDecorator):
    """
    JSON document column: JSONB on PostgreSQL, sorted-key JSON text elsewhere.

    Rule conditions/actions, profile facts and test traces all live in these
    columns. Tuples are stored as arrays; reading returns plain dicts/lists.
    """

    impl = Text
    cache_ok = True

    def load_dialect_impl(self, dialect):  # type: ignore[override]
        if dialect.name == "postgresql":
            return dialect.type_descriptor(JSONB())
        return dialect.type_descriptor(Text())

    def process_bind_param(self, value: Any, dialect):  # type: ignore[override]
        if value is None:
            return None
        if dialect.name == "postgresql":
            return json.loads(_dumps(value))
        return _dumps(value)

    def process_result_value(self, value: Any, dialect):  # type: ignore[override]
        if value is None or isinstance(value, (dict, list)):
            return value
        if isinstance(value, (bytes, bytearray)):
            value = value.decode("utf-8")
        return json.loads(value)


def _dumps(value: Any) -> str:
    return json.dumps(value, ensure_ascii=False, sort_keys=True, default=str)
