"""
core/query_builder.py
---------------------
Pure SQL synthesis for the data mapper.

Every function takes model metadata plus conditions/options and returns a
:class:`SqlStatement` (``$n``-parameterised SQL and its parameter list). No
function here touches a connection, so the whole module is unit-testable
without a database.

WHERE composition::

    <base conditions ANDed>                 key = $n  /  key IS NULL
    AND (<search fields ORed>)              ILIKE / = / to_tsvector @@ to_tsquery
    AND <filter conditions ANDed>           key = $n  /  key IS NULL

Design Decisions:
    * Values are always bound as parameters. Identifiers (table, column,
      alias-qualified column) are interpolated only after matching
      ``[A-Za-z_][A-Za-z0-9_]*``.
    * Condition, filter, search and SET keys must be declared columns (or
      the implicit ``id`` / ``created_at`` / ``updated_at``), so a typo fails
      here with a clear message instead of inside PostgreSQL.
    * A search term is bound once and its placeholder reused by every
      searched field.
"""
from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any, Iterator, Mapping, Sequence

from core.errors import InvalidStateError
from models.definition import ModelDefinition, RelationDefinition
from shared.models import QueryOptions, SearchMode

IMPLICIT_COLUMNS = ("id", "created_at", "updated_at")

_IDENTIFIER_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*(\.[A-Za-z_][A-Za-z0-9_]*)?$")


@dataclass
class SqlStatement:
    """SQL text with ``$n`` placeholders and the values that bind them."""
    sql: str
    params: list[Any] = field(default_factory=list)

    def __iter__(self) -> Iterator[Any]:
        # Allows ``sql, params = build_select_query(...)``
        return iter((self.sql, self.params))


# ---------------------------------------------------------------------------
# Identifier checks
# ---------------------------------------------------------------------------

def check_identifier(name: str) -> str:
    """Return *name* unchanged if it is a safe (optionally qualified) identifier."""
    if not isinstance(name, str) or not _IDENTIFIER_RE.match(name):
        raise InvalidStateError(f"Invalid SQL identifier: {name!r}")
    return name


def check_column(definition: ModelDefinition, name: str) -> str:
    """Return *name* if it is a declared or implicit column of *definition*."""
    check_identifier(name)
    if name not in definition.columns and name not in IMPLICIT_COLUMNS:
        raise InvalidStateError(f"Unknown column {name} on model {definition.name}")
    return name


def _bind(params: list[Any], value: Any) -> str:
    params.append(value)
    return f"${len(params)}"


# ---------------------------------------------------------------------------
# Clause builders
# ---------------------------------------------------------------------------

def _equality_clauses(
    definition: ModelDefinition, conditions: Mapping[str, Any], params: list[Any]
) -> list[str]:
    clauses: list[str] = []
    for key, value in conditions.items():
        check_column(definition, key)
        if value is None:
            clauses.append(f"{key} IS NULL")
        else:
            clauses.append(f"{key} = {_bind(params, value)}")
    return clauses


def build_where_clauses(
    definition: ModelDefinition,
    conditions: Mapping[str, Any] | None,
    options: QueryOptions,
    params: list[Any],
) -> list[str]:
    """Return the individual WHERE clauses (to be ANDed); binds into *params*."""
    clauses = _equality_clauses(definition, conditions or {}, params)

    search = options.search
    if search is not None and search.term and search.fields:
        fields = [check_column(definition, f) for f in search.fields]
        if search.mode == SearchMode.LIKE:
            placeholder = _bind(params, f"%{search.term}%")
            parts = [f"{f} ILIKE {placeholder}" for f in fields]
        elif search.mode == SearchMode.EXACT:
            placeholder = _bind(params, search.term)
            parts = [f"{f} = {placeholder}" for f in fields]
        else:
            placeholder = _bind(params, search.term)
            parts = [f"to_tsvector({f}) @@ to_tsquery({placeholder})" for f in fields]
        clauses.append(f"({' OR '.join(parts)})")

    clauses.extend(_equality_clauses(definition, options.filter, params))
    return clauses


def _where_sql(clauses: Sequence[str]) -> str:
    return f" WHERE {' AND '.join(clauses)}" if clauses else ""


def build_select_clause(options: QueryOptions, alias: str | None = None) -> str:
    if not options.select:
        return f"{alias}.*" if alias else "*"
    return ", ".join(_qualify(check_identifier(col), alias) for col in options.select)


def build_order_limit(options: QueryOptions, alias: str | None = None) -> str:
    sql = ""
    if options.order_by:
        order = ", ".join(
            f"{_qualify(check_identifier(col), alias)} {direction.value}"
            for col, direction in options.order_by.items()
        )
        sql += f" ORDER BY {order}"
    if options.limit is not None:
        sql += f" LIMIT {int(options.limit)}"
    if options.offset is not None:
        sql += f" OFFSET {int(options.offset)}"
    return sql


def _qualify(column: str, alias: str | None) -> str:
    if alias is None or "." in column:
        return column
    return f"{alias}.{column}"


# ---------------------------------------------------------------------------
# Read statements
# ---------------------------------------------------------------------------

def build_select_query(
    definition: ModelDefinition,
    conditions: Mapping[str, Any] | None = None,
    options: QueryOptions | None = None,
) -> SqlStatement:
    """
    ``SELECT`` with conditions, search, filter, ordering and paging.

    Example::

        build_select_query(users, {"status": "active"},
                           QueryOptions(order_by={"name": "ASC"}, limit=10))
        # SELECT * FROM users WHERE status = $1 ORDER BY name ASC LIMIT 10
    """
    options = options or QueryOptions()
    params: list[Any] = []
    clauses = build_where_clauses(definition, conditions, options, params)
    sql = (
        f"SELECT {build_select_clause(options)} FROM {check_identifier(definition.table_name)}"
        f"{_where_sql(clauses)}{build_order_limit(options)}"
    )
    return SqlStatement(sql, params)


def build_count_query(
    definition: ModelDefinition,
    conditions: Mapping[str, Any] | None = None,
    options: QueryOptions | None = None,
) -> SqlStatement:
    """``SELECT COUNT(*)`` over the same WHERE as :func:`build_select_query`; paging is ignored."""
    options = options or QueryOptions()
    params: list[Any] = []
    clauses = build_where_clauses(definition, conditions, options, params)
    sql = (
        f"SELECT COUNT(*) AS count FROM {check_identifier(definition.table_name)}"
        f"{_where_sql(clauses)}"
    )
    return SqlStatement(sql, params)


def build_find_by_id_query(
    definition: ModelDefinition, record_id: Any, options: QueryOptions | None = None
) -> SqlStatement:
    options = options or QueryOptions()
    sql = (
        f"SELECT {build_select_clause(options)} FROM {check_identifier(definition.table_name)} "
        f"WHERE id = $1"
    )
    return SqlStatement(sql, [record_id])


# ---------------------------------------------------------------------------
# Write statements
# ---------------------------------------------------------------------------

def build_insert_query(definition: ModelDefinition, values: Mapping[str, Any]) -> SqlStatement:
    """``INSERT ... RETURNING id`` over the given column → value mapping."""
    if not values:
        raise InvalidStateError(f"Nothing to insert for model {definition.name}")
    columns = [check_column(definition, col) for col in values]
    params = list(values.values())
    placeholders = ", ".join(f"${i}" for i in range(1, len(params) + 1))
    sql = (
        f"INSERT INTO {check_identifier(definition.table_name)} "
        f"({', '.join(columns)}) VALUES ({placeholders}) RETURNING id"
    )
    return SqlStatement(sql, params)


def build_update_query(
    definition: ModelDefinition, values: Mapping[str, Any], record_id: Any
) -> SqlStatement:
    """``UPDATE ... SET ... WHERE id = $n``; ``id`` is never part of SET."""
    params: list[Any] = []
    assignments = [
        f"{check_column(definition, col)} = {_bind(params, value)}"
        for col, value in values.items()
        if col != "id"
    ]
    if not assignments:
        raise InvalidStateError(f"Nothing to update for model {definition.name}")
    where = _bind(params, record_id)
    sql = (
        f"UPDATE {check_identifier(definition.table_name)} "
        f"SET {', '.join(assignments)} WHERE id = {where}"
    )
    return SqlStatement(sql, params)


def build_update_many_query(
    definition: ModelDefinition, conditions: Mapping[str, Any], patch: Mapping[str, Any]
) -> SqlStatement:
    params: list[Any] = []
    assignments = [
        f"{check_column(definition, col)} = {_bind(params, value)}"
        for col, value in patch.items()
        if col != "id"
    ]
    if not assignments:
        raise InvalidStateError(f"Empty update patch for model {definition.name}")
    clauses = _equality_clauses(definition, conditions, params)
    sql = (
        f"UPDATE {check_identifier(definition.table_name)} "
        f"SET {', '.join(assignments)}{_where_sql(clauses)}"
    )
    return SqlStatement(sql, params)


def build_delete_query(definition: ModelDefinition, record_id: Any) -> SqlStatement:
    return SqlStatement(
        f"DELETE FROM {check_identifier(definition.table_name)} WHERE id = $1", [record_id]
    )


def build_delete_many_query(
    definition: ModelDefinition, conditions: Mapping[str, Any]
) -> SqlStatement:
    params: list[Any] = []
    clauses = _equality_clauses(definition, conditions, params)
    sql = f"DELETE FROM {check_identifier(definition.table_name)}{_where_sql(clauses)}"
    return SqlStatement(sql, params)


# ---------------------------------------------------------------------------
# Many-to-many statements
# ---------------------------------------------------------------------------

def _through(relation: RelationDefinition) -> str:
    if not relation.through:
        raise InvalidStateError(
            f"Through table is required for belongsToMany relation to {relation.target}"
        )
    return check_identifier(relation.through)


def build_belongs_to_many_query(
    owner: ModelDefinition,
    relation: RelationDefinition,
    related: ModelDefinition,
    owner_id: Any,
    options: QueryOptions | None = None,
) -> SqlStatement:
    """
    Related rows joined through the relation's through table.

    Example::

        SELECT r.* FROM roles r
        INNER JOIN user_roles j ON j.role_id = r.id
        WHERE j.user_id = $1 ORDER BY r.name ASC LIMIT 5
    """
    options = options or QueryOptions()
    owner_key, related_key = relation.join_keys(owner.name)
    sql = (
        f"SELECT {build_select_clause(options, alias='r')} "
        f"FROM {check_identifier(related.table_name)} r "
        f"INNER JOIN {_through(relation)} j ON j.{related_key} = r.id "
        f"WHERE j.{owner_key} = $1{build_order_limit(options, alias='r')}"
    )
    return SqlStatement(sql, [owner_id])


def build_attach_query(
    owner: ModelDefinition, relation: RelationDefinition, owner_id: Any, related_id: Any
) -> SqlStatement:
    owner_key, related_key = relation.join_keys(owner.name)
    sql = (
        f"INSERT INTO {_through(relation)} ({owner_key}, {related_key}) VALUES ($1, $2) "
        f"ON CONFLICT ({owner_key}, {related_key}) DO NOTHING"
    )
    return SqlStatement(sql, [owner_id, related_id])


def build_detach_query(
    owner: ModelDefinition,
    relation: RelationDefinition,
    owner_id: Any,
    related_ids: Sequence[Any] | None = None,
) -> SqlStatement:
    """Delete join rows for *owner_id*, restricted to *related_ids* when given."""
    owner_key, related_key = relation.join_keys(owner.name)
    params: list[Any] = [owner_id]
    sql = f"DELETE FROM {_through(relation)} WHERE {owner_key} = $1"
    if related_ids is not None:
        placeholders = ", ".join(_bind(params, rid) for rid in related_ids)
        sql += f" AND {related_key} IN ({placeholders})"
    return SqlStatement(sql, params)


def build_is_attached_query(
    owner: ModelDefinition, relation: RelationDefinition, owner_id: Any, related_id: Any
) -> SqlStatement:
    owner_key, related_key = relation.join_keys(owner.name)
    sql = (
        f"SELECT COUNT(*) AS count FROM {_through(relation)} "
        f"WHERE {owner_key} = $1 AND {related_key} = $2"
    )
    return SqlStatement(sql, [owner_id, related_id])
