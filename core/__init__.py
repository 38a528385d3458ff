"""core/__init__.py"""
from core.errors import (
    PgRecordError,
    NotRegisteredError,
    ConnectionNotSetError,
    InvalidStateError,
    RelationNotFoundError,
    MigrationGenerationError,
    MigrationExecutionError,
    AlreadyInTransactionError,
    NoActiveTransactionError,
    DatabaseError,
    ConnectionLostError,
    ValidationError,
)
from core.registry import MetadataRegistry
from core.database import Connection, QueryResult
from core.hooks import HookRegistry, HookType
from core.model import Model, FindAndCountResult
from core.migration import Migration, SqlMigration
from core.migration_store import MigrationStore
from core.migration_manager import MigrationManager, MigrationRunResult
from core.migration_generator import MigrationGenerator, run_migrations

__all__ = [
    "PgRecordError",
    "NotRegisteredError",
    "ConnectionNotSetError",
    "InvalidStateError",
    "RelationNotFoundError",
    "MigrationGenerationError",
    "MigrationExecutionError",
    "AlreadyInTransactionError",
    "NoActiveTransactionError",
    "DatabaseError",
    "ConnectionLostError",
    "ValidationError",
    "MetadataRegistry",
    "Connection",
    "QueryResult",
    "HookRegistry",
    "HookType",
    "Model",
    "FindAndCountResult",
    "Migration",
    "SqlMigration",
    "MigrationStore",
    "MigrationManager",
    "MigrationRunResult",
    "MigrationGenerator",
    "run_migrations",
]
