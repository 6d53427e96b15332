from __future__ import annotations

import json
from typing import Any

from sqlalchemy import column, insert, table
from sqlalchemy.dialects import registry
from sqlalchemy.engine import Dialect
from sqlalchemy.sql import Insert

from .models import InsertDescription


def split_table_name(name: str) -> tuple[str | None, str]:
    """
    Split ``schema.table`` into its parts. A name without a dot has no schema.

    Raises:
        ValueError: If the name or one of its parts is empty
    """
    if not name:
        raise ValueError("table cannot be empty")
    schema, sep, table_name = name.rpartition(".")
    if not table_name or (sep and not schema):
        raise ValueError(f"Invalid table {name!r}")
    return (schema or None), table_name


def bind_value(value: Any) -> Any:
    """
    Convert a mapped value into something a DBAPI driver can bind.

    Nested JSON objects and arrays are stored as compact JSON text.
    """
    if isinstance(value, (dict, list)):
        return json.dumps(value, separators=(",", ":"), ensure_ascii=False)
    return value


def build_insert(description: InsertDescription) -> Insert:
    """
    Build an INSERT for one description.

    Identifiers are quoted by the dialect at compile time, so table and column
    names are never interpolated into SQL text.
    """
    schema, table_name = split_table_name(description.table)
    target = table(table_name, *(column(c) for c in description.columns), schema=schema)
    params = {c: bind_value(v) for c, v in zip(description.columns, description.values)}
    return insert(target).values(params)


def load_dialect(name: str) -> Dialect:
    return registry.load(name)()


def render_sql(stmt: Insert, dialect: Dialect) -> str:
    """Render a statement and its parameters for the given dialect, for debug logging."""
    compiled = stmt.compile(dialect=dialect)
    return f"{compiled} {compiled.params!r}"
