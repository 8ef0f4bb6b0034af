"""Column types shared by the job models.

Each one maps to a native type on PostgreSQL (what the migration creates) and a
portable one on SQLite (what the test suite runs on).
"""

import uuid
from typing import Any

from sqlalchemy import JSON, Uuid
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.types import TypeDecorator


class GUID(TypeDecorator):
    """UUID column that also accepts ids as strings, as they arrive from queue messages."""

    impl = Uuid
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None or isinstance(value, uuid.UUID):
            return value
        return uuid.UUID(str(value))


class JSONType(TypeDecorator):
    impl = JSON
    cache_ok = True

    def load_dialect_impl(self, dialect):
        if dialect.name == "postgresql":
            return dialect.type_descriptor(JSONB())
        return dialect.type_descriptor(JSON())


class TagList(JSONType):
    """JSON array of tags, stripped and de-duplicated in first-seen order."""

    def process_bind_param(self, value: Any, dialect) -> list[str] | None:
        if value is None:
            return None
        tags: list[str] = []
        for tag in value:
            tag = str(tag).strip()
            if tag and tag not in tags:
                tags.append(tag)
        return tags
