"""
tests/test_migration_store.py
-----------------------------
Unit tests for core/migration_store.py and the SqlMigration descriptor.
Run with: python -m pytest tests/
"""
from __future__ import annotations

from pathlib import Path
from unittest.mock import MagicMock, call

import pytest

from core.migration import SqlMigration
from core.migration_store import MigrationStore
from models.definition import MigrationKind


@pytest.fixture
def tmp_store(tmp_path: Path) -> MigrationStore:
    """Returns a fresh, empty MigrationStore backed by a temp directory."""
    return MigrationStore(tmp_path / "migrations")


@pytest.fixture
def unit() -> SqlMigration:
    return SqlMigration(
        name="CreateusersTable_1",
        kind=MigrationKind.PRIMARY,
        table="users",
        up_sql=["CREATE TABLE users (id UUID)", "DROP TRIGGER IF EXISTS t ON users"],
        down_sql=["DROP TABLE IF EXISTS users CASCADE"],
    )


class TestSqlMigration:
    def test_up_runs_statements_in_order(self, unit: SqlMigration) -> None:
        conn = MagicMock()
        unit.up(conn)
        assert conn.query.call_args_list == [call(s) for s in unit.up_sql]

    def test_down(self, unit: SqlMigration) -> None:
        conn = MagicMock()
        unit.down(conn)
        conn.query.assert_called_once_with("DROP TABLE IF EXISTS users CASCADE")

    def test_kind_coerced_from_string(self) -> None:
        assert SqlMigration("x", "join", "a_b").kind == MigrationKind.JOIN


class TestMigrationStore:
    def test_missing_descriptor(self, tmp_store: MigrationStore) -> None:
        assert tmp_store.load("CreateghostsTable_1") is None
        assert tmp_store.names() == []

    def test_save_and_load(self, tmp_store: MigrationStore, unit: SqlMigration) -> None:
        path = tmp_store.save(unit)
        assert path.name == "CreateusersTable_1.json"
        assert not path.with_suffix(".tmp").exists()
        assert tmp_store.load(unit.name) == unit
        assert tmp_store.names() == ["CreateusersTable_1"]

    def test_corrupt_descriptor(self, tmp_store: MigrationStore) -> None:
        tmp_store.directory.mkdir(parents=True)
        (tmp_store.directory / "Broken_1.json").write_text("{not json", encoding="utf-8")
        with pytest.raises(ValueError):
            tmp_store.load("Broken_1")

    @pytest.mark.parametrize("name", ["", "../escape", ".hidden"])
    def test_rejects_unsafe_names(self, tmp_store: MigrationStore, name: str) -> None:
        with pytest.raises(ValueError):
            tmp_store.load(name)

    def test_delete(self, tmp_store: MigrationStore, unit: SqlMigration) -> None:
        tmp_store.save(unit)
        tmp_store.delete(unit.name)
        assert tmp_store.load(unit.name) is None
