"""
core/errors.py
--------------
Exception hierarchy shared by the registry, data mapper, connection and
migration engine.

Every error carries a stable ``kind`` string so callers (CLI, HTTP layers)
can branch on the failure category without importing each class.
"""
from __future__ import annotations


class PgRecordError(Exception):
    """Base class for all pgrecord failures."""

    kind = "PgRecordError"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class NotRegisteredError(PgRecordError):
    """Raised when a model name has no definition in the registry."""

    kind = "NotRegistered"

    def __init__(self, model_name: str) -> None:
        super().__init__(f"Model {model_name} not registered")
        self.model_name = model_name


class ConnectionNotSetError(PgRecordError):
    """Raised when the data mapper is used before a connection is configured."""

    kind = "ConnectionNotSet"

    def __init__(self) -> None:
        super().__init__("Database connection not set. Call Model.configure() first.")


class InvalidStateError(PgRecordError):
    """Raised when an operation is not valid for the object's current state."""

    kind = "InvalidState"


class RelationNotFoundError(PgRecordError):
    """Raised when a relation name is not declared on a model."""

    kind = "RelationNotFound"

    def __init__(self, model_name: str, relation_name: str) -> None:
        super().__init__(f"Relation {relation_name} not found on model {model_name}")
        self.model_name = model_name
        self.relation_name = relation_name


class MigrationGenerationError(PgRecordError):
    """Wraps a discovery, generation or descriptor-store failure."""

    kind = "MigrationGenerationError"


class MigrationExecutionError(PgRecordError):
    """Wraps a failure inside a migration's ``up()`` or ``down()``."""

    kind = "MigrationExecutionError"

    def __init__(self, message: str, migration_name: str | None = None) -> None:
        super().__init__(message)
        self.migration_name = migration_name


class AlreadyInTransactionError(PgRecordError):
    """Raised by ``begin()`` while the connection wrapper already holds a transaction."""

    kind = "AlreadyInTransaction"

    def __init__(self) -> None:
        super().__init__("A transaction is already active on this connection")


class NoActiveTransactionError(PgRecordError):
    """Raised by ``commit()``/``rollback()`` when no transaction is active."""

    kind = "NoActiveTransaction"

    def __init__(self) -> None:
        super().__init__("No active transaction on this connection")


class DatabaseError(PgRecordError):
    """Raised for database-level failures reported by the driver."""

    kind = "DatabaseError"


class ConnectionLostError(DatabaseError):
    """Raised when the pool cannot be opened or is no longer available."""

    kind = "ConnectionLost"


class ValidationError(PgRecordError):
    """Raised by ``Model.save()`` when declared validation rules fail."""

    kind = "ValidationError"

    def __init__(self, errors: dict[str, list[str]]) -> None:
        super().__init__("Validation failed")
        self.errors = errors
