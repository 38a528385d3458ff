"""
models/definition.py
--------------------
Typed data models for model metadata: columns, relations, table definitions
and migration ledger rows.

Design Decision:
    Using ``@dataclass`` and ``Enum`` instead of plain dicts ensures:
    * A single source of truth for valid column and relation kinds.
    * Enum coercion at construction, so definitions built from plain
      strings ("string", "belongsToMany") compare equal to enum members.
    * Explicit to_dict / from_dict methods so migration descriptors and
      definitions can be serialised to JSON.
"""
from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any


class _Missing:
    """Sentinel type for "no default declared" (distinct from a None default)."""

    def __repr__(self) -> str:
        return "MISSING"

    def __bool__(self) -> bool:
        return False


MISSING: Any = _Missing()


class ColumnType(str, Enum):
    """Abstract column types understood by the migration generator."""
    STRING = "string"
    NUMBER = "number"
    BOOLEAN = "boolean"
    DATE = "date"
    JSON = "json"


class RelationType(str, Enum):
    """The four supported relation kinds."""
    HAS_ONE = "hasOne"
    HAS_MANY = "hasMany"
    BELONGS_TO = "belongsTo"
    BELONGS_TO_MANY = "belongsToMany"


class MigrationKind(str, Enum):
    """Primary units create model tables; join units create through tables."""
    PRIMARY = "primary"
    JOIN = "join"


_CAMEL_RE = re.compile(r"(?<=[a-z0-9])(?=[A-Z])")


def snake_case(name: str) -> str:
    """
    Convert a model name to its snake_case key form.

    Examples::

        snake_case("User")      →  "user"
        snake_case("BlogPost")  →  "blog_post"
    """
    return _CAMEL_RE.sub("_", name).lower()


@dataclass
class ColumnDefinition:
    """
    One declared column.

    Attributes:
        type:      Abstract column type (see :class:`ColumnType`).
        nullable:  False renders ``NOT NULL``.
        unique:    True marks the column unique (see the generator's
                   tie-break for several unique columns).
        default:   Default value; ``MISSING`` when none is declared.
    """
    type: ColumnType
    nullable: bool = True
    unique: bool = False
    default: Any = MISSING

    def __post_init__(self) -> None:
        self.type = ColumnType(self.type)

    @property
    def has_default(self) -> bool:
        return self.default is not MISSING

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "type": self.type.value,
            "nullable": self.nullable,
            "unique": self.unique,
        }
        if self.has_default:
            data["default"] = self.default
        return data

    @staticmethod
    def from_dict(data: dict[str, Any]) -> "ColumnDefinition":
        return ColumnDefinition(
            type=ColumnType(data["type"]),
            nullable=data.get("nullable", True),
            unique=data.get("unique", False),
            default=data.get("default", MISSING),
        )


@dataclass
class RelationDefinition:
    """
    An associative link from the owning model to ``target``.

    Attributes:
        type:          Relation kind.
        target:        Name of the related model, resolved lazily through
                       the registry so mutually referencing models can be
                       declared in any order.
        foreign_key:   Overrides the default key column (see
                       :meth:`default_foreign_key`).
        through:       Join table name; required iff ``type`` is
                       belongsToMany.
        property_key:  Instance attribute under which loaded data is cached.
                       Filled with the relation name on registration when
                       left empty.
    """
    type: RelationType
    target: str
    foreign_key: str | None = None
    through: str | None = None
    property_key: str = ""

    def __post_init__(self) -> None:
        # Deferred: the core package imports this module.
        from core.errors import InvalidStateError

        self.type = RelationType(self.type)
        if self.is_many_to_many and not self.through:
            raise InvalidStateError(
                f"Through table is required for belongsToMany relation to {self.target}"
            )

    @property
    def is_many_to_many(self) -> bool:
        return self.type == RelationType.BELONGS_TO_MANY

    def default_foreign_key(self, owner_name: str) -> str:
        """
        Key column used when ``foreign_key`` is not set.

        hasOne / hasMany point back at the owner (``{owner}_id`` on the
        related table); belongsTo points at the target (``{target}_id`` on
        the owner's table).
        """
        if self.foreign_key:
            return self.foreign_key
        if self.type == RelationType.BELONGS_TO:
            return f"{snake_case(self.target)}_id"
        return f"{snake_case(owner_name)}_id"

    def join_keys(self, owner_name: str) -> tuple[str, str]:
        """
        Return ``(owner_key, related_key)`` columns of the through table.

        Shared by the data mapper and the migration generator so both sides
        always agree on the join table layout.
        """
        owner_key = self.foreign_key or f"{snake_case(owner_name)}_id"
        related_key = f"{snake_case(self.target)}_id"
        return owner_key, related_key

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.type.value,
            "target": self.target,
            "foreign_key": self.foreign_key,
            "through": self.through,
            "property_key": self.property_key,
        }

    @staticmethod
    def from_dict(data: dict[str, Any]) -> "RelationDefinition":
        return RelationDefinition(
            type=RelationType(data["type"]),
            target=data["target"],
            foreign_key=data.get("foreign_key"),
            through=data.get("through"),
            property_key=data.get("property_key", ""),
        )


@dataclass
class ModelDefinition:
    """Schema metadata for one table."""
    name: str
    table_name: str
    columns: dict[str, ColumnDefinition] = field(default_factory=dict)
    relations: dict[str, RelationDefinition] = field(default_factory=dict)

    def many_to_many_relations(self) -> list[RelationDefinition]:
        return [r for r in self.relations.values() if r.is_many_to_many]

    def unique_columns(self) -> list[str]:
        return [name for name, col in self.columns.items() if col.unique]

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "table_name": self.table_name,
            "columns": {k: c.to_dict() for k, c in self.columns.items()},
            "relations": {k: r.to_dict() for k, r in self.relations.items()},
        }


@dataclass(frozen=True)
class MigrationRecord:
    """One persisted row of the ``migrations`` ledger."""
    name: str
    batch: int
    executed_at: datetime | None = None

    @staticmethod
    def from_row(row: dict[str, Any]) -> "MigrationRecord":
        return MigrationRecord(
            name=row["name"],
            batch=int(row["batch"]),
            executed_at=row.get("executed_at"),
        )
