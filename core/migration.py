"""
core/migration.py
-----------------
Migration units: a named, reversible pair of schema operations.

Design Decision:
    Generated units are plain data (:class:`SqlMigration`: literal up/down
    SQL) rather than generated source files, so they can be executed
    directly, serialised to JSON by the migration store and rebuilt by a
    later process for rollback.
"""
from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any

from models.definition import MigrationKind


class Migration(ABC):
    """
    A reversible unit executed by the migration manager.

    Subclasses set ``name`` and may set ``kind``; a unit without ``kind``
    runs with the primary units.
    """

    name: str
    kind: MigrationKind

    @abstractmethod
    def up(self, connection: Any) -> None:
        """Apply the unit on *connection*."""

    @abstractmethod
    def down(self, connection: Any) -> None:
        """Revert the unit on *connection*."""


@dataclass
class SqlMigration(Migration):
    """
    Migration whose up/down steps are literal SQL statements.

    Each entry of ``up_sql`` / ``down_sql`` is sent as one statement, in
    order, with no parameters.
    """
    name: str
    kind: MigrationKind
    table: str
    up_sql: list[str] = field(default_factory=list)
    down_sql: list[str] = field(default_factory=list)

    def __post_init__(self) -> None:
        self.kind = MigrationKind(self.kind)

    def up(self, connection: Any) -> None:
        for statement in self.up_sql:
            connection.query(statement)

    def down(self, connection: Any) -> None:
        for statement in self.down_sql:
            connection.query(statement)

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "kind": self.kind.value,
            "table": self.table,
            "up": list(self.up_sql),
            "down": list(self.down_sql),
        }

    @staticmethod
    def from_dict(data: dict[str, Any]) -> "SqlMigration":
        return SqlMigration(
            name=data["name"],
            kind=MigrationKind(data["kind"]),
            table=data["table"],
            up_sql=list(data.get("up", [])),
            down_sql=list(data.get("down", [])),
        )
