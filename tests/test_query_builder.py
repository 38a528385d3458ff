"""
tests/test_query_builder.py
---------------------------
Unit tests for core/query_builder.py (pure SQL synthesis, no database).
Run with: python -m pytest tests/
"""
from __future__ import annotations

import pytest

from core.errors import InvalidStateError
from core.query_builder import (
    build_attach_query,
    build_belongs_to_many_query,
    build_count_query,
    build_delete_many_query,
    build_detach_query,
    build_insert_query,
    build_is_attached_query,
    build_select_query,
    build_update_many_query,
    build_update_query,
    check_identifier,
)
from core.registry import MetadataRegistry
from models.definition import ColumnDefinition, ModelDefinition, RelationDefinition
from shared.models import QueryOptions


@pytest.fixture
def registry() -> MetadataRegistry:
    registry = MetadataRegistry()
    registry.define(
        "User", "users",
        columns={
            "name": ColumnDefinition("string"),
            "email": ColumnDefinition("string"),
            "status": ColumnDefinition("string"),
            "deleted_at": ColumnDefinition("date"),
        },
        relations={
            "roles": RelationDefinition("belongsToMany", target="Role", through="user_roles"),
        },
    )
    registry.define("Role", "roles", columns={"name": ColumnDefinition("string")})
    return registry


@pytest.fixture
def users(registry: MetadataRegistry) -> ModelDefinition:
    return registry.get_model_definition("User")


@pytest.fixture
def roles(registry: MetadataRegistry) -> ModelDefinition:
    return registry.get_model_definition("Role")


class TestIdentifiers:
    @pytest.mark.parametrize("name", ["users", "_tmp", "r.name", "col_1"])
    def test_valid(self, name: str) -> None:
        assert check_identifier(name) == name

    @pytest.mark.parametrize("name", ["1abc", "name; DROP TABLE users", "a b", "a.b.c", ""])
    def test_invalid(self, name: str) -> None:
        with pytest.raises(InvalidStateError):
            check_identifier(name)


class TestSelect:
    def test_plain_select(self, users: ModelDefinition) -> None:
        sql, params = build_select_query(users)
        assert sql == "SELECT * FROM users"
        assert params == []

    def test_conditions_and_null(self, users: ModelDefinition) -> None:
        sql, params = build_select_query(users, {"status": "active", "deleted_at": None})
        assert sql == "SELECT * FROM users WHERE status = $1 AND deleted_at IS NULL"
        assert params == ["active"]

    def test_order_limit_offset_and_projection(self, users: ModelDefinition) -> None:
        options = QueryOptions(
            select=["id", "name"], order_by={"name": "asc"}, limit=10, offset=20
        )
        sql, _ = build_select_query(users, {}, options)
        assert sql == "SELECT id, name FROM users ORDER BY name ASC LIMIT 10 OFFSET 20"

    def test_like_search_reuses_one_placeholder(self, users: ModelDefinition) -> None:
        options = QueryOptions(search={"fields": ["name", "email"], "term": "ali"})
        sql, params = build_select_query(users, {"status": "active"}, options)
        assert sql == (
            "SELECT * FROM users WHERE status = $1 AND (name ILIKE $2 OR email ILIKE $2)"
        )
        assert params == ["active", "%ali%"]

    def test_exact_search(self, users: ModelDefinition) -> None:
        options = QueryOptions(search={"fields": ["email"], "term": "a@x.io", "mode": "exact"})
        sql, params = build_select_query(users, None, options)
        assert sql == "SELECT * FROM users WHERE (email = $1)"
        assert params == ["a@x.io"]

    def test_fulltext_search(self, users: ModelDefinition) -> None:
        options = QueryOptions(search={"fields": ["name"], "term": "alice", "mode": "fulltext"})
        sql, params = build_select_query(users, None, options)
        assert "to_tsvector(name) @@ to_tsquery($1)" in sql
        assert params == ["alice"]

    def test_filter_is_anded_after_search(self, users: ModelDefinition) -> None:
        options = QueryOptions(
            search={"fields": ["name"], "term": "a"}, filter={"status": "active"}
        )
        sql, params = build_select_query(users, {"email": "e"}, options)
        assert sql.endswith("WHERE email = $1 AND (name ILIKE $2) AND status = $3")
        assert params == ["e", "%a%", "active"]

    def test_empty_search_term_is_ignored(self, users: ModelDefinition) -> None:
        options = QueryOptions(search={"fields": ["name"], "term": ""})
        sql, _ = build_select_query(users, None, options)
        assert "WHERE" not in sql

    def test_unknown_condition_column(self, users: ModelDefinition) -> None:
        with pytest.raises(InvalidStateError):
            build_select_query(users, {"nickname": "x"})

    def test_unsafe_order_column(self, users: ModelDefinition) -> None:
        with pytest.raises(InvalidStateError):
            build_select_query(users, None, QueryOptions(order_by={"name; --": "ASC"}))


class TestCount:
    def test_count_ignores_paging(self, users: ModelDefinition) -> None:
        options = QueryOptions(limit=10, offset=5, order_by={"name": "DESC"})
        sql, params = build_count_query(users, {"status": "active"}, options)
        assert sql == "SELECT COUNT(*) AS count FROM users WHERE status = $1"
        assert params == ["active"]


class TestWrites:
    def test_insert_returning_id(self, users: ModelDefinition) -> None:
        sql, params = build_insert_query(users, {"id": "u1", "name": "Ann"})
        assert sql == "INSERT INTO users (id, name) VALUES ($1, $2) RETURNING id"
        assert params == ["u1", "Ann"]

    def test_update_never_sets_id(self, users: ModelDefinition) -> None:
        sql, params = build_update_query(users, {"id": "u1", "name": "Bob"}, "u1")
        assert sql == "UPDATE users SET name = $1 WHERE id = $2"
        assert params == ["Bob", "u1"]

    def test_update_with_nothing_to_set(self, users: ModelDefinition) -> None:
        with pytest.raises(InvalidStateError):
            build_update_query(users, {"id": "u1"}, "u1")

    def test_update_many(self, users: ModelDefinition) -> None:
        sql, params = build_update_many_query(users, {"status": "new"}, {"status": "active"})
        assert sql == "UPDATE users SET status = $1 WHERE status = $2"
        assert params == ["active", "new"]

    def test_delete_many_with_null(self, users: ModelDefinition) -> None:
        sql, params = build_delete_many_query(users, {"deleted_at": None})
        assert sql == "DELETE FROM users WHERE deleted_at IS NULL"
        assert params == []


class TestManyToMany:
    def test_join_query(self, users: ModelDefinition, roles: ModelDefinition) -> None:
        relation = users.relations["roles"]
        options = QueryOptions(order_by={"name": "ASC"}, limit=5)
        sql, params = build_belongs_to_many_query(users, relation, roles, "u1", options)
        assert sql == (
            "SELECT r.* FROM roles r INNER JOIN user_roles j ON j.role_id = r.id "
            "WHERE j.user_id = $1 ORDER BY r.name ASC LIMIT 5"
        )
        assert params == ["u1"]

    def test_attach_is_idempotent_insert(self, users: ModelDefinition) -> None:
        sql, params = build_attach_query(users, users.relations["roles"], "u1", "r1")
        assert sql == (
            "INSERT INTO user_roles (user_id, role_id) VALUES ($1, $2) "
            "ON CONFLICT (user_id, role_id) DO NOTHING"
        )
        assert params == ["u1", "r1"]

    def test_detach_scoped(self, users: ModelDefinition) -> None:
        sql, params = build_detach_query(users, users.relations["roles"], "u1", ["r1", "r2"])
        assert sql == "DELETE FROM user_roles WHERE user_id = $1 AND role_id IN ($2, $3)"
        assert params == ["u1", "r1", "r2"]

    def test_detach_all(self, users: ModelDefinition) -> None:
        sql, params = build_detach_query(users, users.relations["roles"], "u1")
        assert sql == "DELETE FROM user_roles WHERE user_id = $1"
        assert params == ["u1"]

    def test_is_attached(self, users: ModelDefinition) -> None:
        sql, params = build_is_attached_query(users, users.relations["roles"], "u1", "r1")
        assert "WHERE user_id = $1 AND role_id = $2" in sql
        assert params == ["u1", "r1"]

    def test_custom_foreign_key(self, roles: ModelDefinition) -> None:
        owner = ModelDefinition("Group", "groups")
        relation = RelationDefinition(
            "belongsToMany", target="Role", through="group_roles", foreign_key="team_id"
        )
        sql, _ = build_attach_query(owner, relation, "g1", "r1")
        assert "(team_id, role_id)" in sql
