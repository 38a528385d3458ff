"""
core/type_converter.py
----------------------
Mapping between abstract column types, PostgreSQL DDL types, SQL default
literals and driver parameter values.

Type map::

    string   →  VARCHAR(255)
    number   →  NUMERIC
    boolean  →  BOOLEAN
    date     →  TIMESTAMP
    json     →  JSONB

Design Decision:
    Pure functions with no side effects make this module trivially testable.
    The type table is data (a dict) rather than an if/else tree.
"""
from __future__ import annotations

import json
from datetime import date, datetime
from decimal import Decimal
from typing import Any

from psycopg2.extras import Json

from models.definition import ColumnDefinition, ColumnType

_SQL_TYPES: dict[ColumnType, str] = {
    ColumnType.STRING: "VARCHAR(255)",
    ColumnType.NUMBER: "NUMERIC",
    ColumnType.BOOLEAN: "BOOLEAN",
    ColumnType.DATE: "TIMESTAMP",
    ColumnType.JSON: "JSONB",
}

# Defaults rendered verbatim instead of as quoted string literals
SQL_EXPRESSION_DEFAULTS = frozenset({"CURRENT_TIMESTAMP", "CURRENT_DATE", "NOW()"})


def get_sql_type(column_type: ColumnType | str) -> str:
    """
    Return the PostgreSQL type for an abstract column type.

    Unknown types fall back to ``VARCHAR(255)``.

    Examples::

        get_sql_type("number")          →  "NUMERIC"
        get_sql_type(ColumnType.JSON)   →  "JSONB"
    """
    try:
        return _SQL_TYPES[ColumnType(column_type)]
    except ValueError:
        return _SQL_TYPES[ColumnType.STRING]


def is_expression_default(value: Any) -> bool:
    return isinstance(value, str) and value.upper() in SQL_EXPRESSION_DEFAULTS


def get_default_value(value: Any) -> str:
    """
    Render a declared default as a SQL literal for a ``DEFAULT`` clause.

    Examples::

        get_default_value("CURRENT_TIMESTAMP")  →  "CURRENT_TIMESTAMP"
        get_default_value("draft")              →  "'draft'"
        get_default_value("it's")               →  "'it''s'"
        get_default_value(True)                 →  "TRUE"
        get_default_value(0)                    →  "0"
        get_default_value({"a": 1})             →  "'{\"a\": 1}'::jsonb"
    """
    if value is None:
        return "NULL"
    if is_expression_default(value):
        return value.upper()
    if isinstance(value, bool):
        return "TRUE" if value else "FALSE"
    if isinstance(value, (int, float, Decimal)):
        return str(value)
    if isinstance(value, (dict, list)):
        return f"{_quote(json.dumps(value))}::jsonb"
    if isinstance(value, (datetime, date)):
        return _quote(value.isoformat())
    return _quote(str(value))


def _quote(text: str) -> str:
    return "'" + text.replace("'", "''") + "'"


def adapt_value(column: ColumnDefinition | None, value: Any) -> Any:
    """
    Convert a Python value into a psycopg2 parameter for *column*.

    JSON columns are wrapped in :class:`psycopg2.extras.Json` so dicts and
    lists are sent as JSON documents; everything else is passed through.
    """
    if value is None or column is None:
        return value
    if column.type == ColumnType.JSON and not isinstance(value, Json):
        return Json(value)
    return value


def python_default(column: ColumnDefinition) -> tuple[bool, Any]:
    """
    Return ``(use_it, value)`` for a column whose value was never set.

    Literal defaults are sent as parameters; expression defaults
    (``CURRENT_TIMESTAMP``) and columns without a default return
    ``use_it=False`` so the column can be left to the database.
    """
    if not column.has_default or is_expression_default(column.default):
        return False, None
    return True, column.default
