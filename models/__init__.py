"""models/__init__.py"""
from models.definition import (
    MISSING,
    ColumnType,
    RelationType,
    MigrationKind,
    ColumnDefinition,
    RelationDefinition,
    ModelDefinition,
    MigrationRecord,
    snake_case,
)

__all__ = [
    "MISSING",
    "ColumnType",
    "RelationType",
    "MigrationKind",
    "ColumnDefinition",
    "RelationDefinition",
    "ModelDefinition",
    "MigrationRecord",
    "snake_case",
]
