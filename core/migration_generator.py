"""
core/migration_generator.py
---------------------------
Builds ``CREATE TABLE`` migration units from registered model metadata and
hands them to the migration manager.

Pipeline (``generate_and_run_migrations``)::

    discover model files  →  settle  →  registry.get_all_models()
        →  one primary unit per model  +  one join unit per through table
        →  primaries first, then joins  →  save descriptors  →  manager

Design Decisions:
    * The generator is a plain class with injected dependencies (registry,
      connection, store, manager, clock). No global state.
    * Units are :class:`SqlMigration` descriptors; nothing is written as
      source code and re-imported.
    * Join tables are generated after every primary table so their foreign
      keys always find the referenced tables.
    * When several columns are unique, the first keeps an inline ``UNIQUE``
      and all of them are also combined into one table-level
      ``UNIQUE(a, b, ...)``.
    * Any failure before the manager runs surfaces as
      :class:`MigrationGenerationError`.
"""
from __future__ import annotations

import time
from pathlib import Path
from typing import Any, Callable

from config import CONFIG
from core.discovery import discover_models
from core.errors import MigrationGenerationError
from core.migration import SqlMigration
from core.migration_manager import MigrationManager, MigrationRunResult
from core.migration_store import MigrationStore
from core.query_builder import check_identifier
from core.registry import MetadataRegistry
from core.type_converter import get_default_value, get_sql_type
from logger import get_logger
from models.definition import (
    ColumnDefinition,
    MigrationKind,
    ModelDefinition,
    RelationDefinition,
)

log = get_logger(__name__)

Clock = Callable[[], int]

TIMESTAMP_COLUMNS = (
    "created_at TIMESTAMP WITH TIME ZONE DEFAULT CURRENT_TIMESTAMP",
    "updated_at TIMESTAMP WITH TIME ZONE DEFAULT CURRENT_TIMESTAMP",
)


def _unix_millis() -> int:
    return int(time.time() * 1000)


# ---------------------------------------------------------------------------
# DDL helpers
# ---------------------------------------------------------------------------

def column_ddl(name: str, column: ColumnDefinition, inline_unique: bool) -> str:
    """
    Render one column definition.

    Example::

        column_ddl("status", ColumnDefinition("string", nullable=False,
                                              default="draft"), False)
        # "status VARCHAR(255) NOT NULL DEFAULT 'draft'"
    """
    ddl = f"{check_identifier(name)} {get_sql_type(column.type)}"
    if not column.nullable:
        ddl += " NOT NULL"
    if inline_unique:
        ddl += " UNIQUE"
    if column.has_default:
        ddl += f" DEFAULT {get_default_value(column.default)}"
    return ddl


def columns_ddl(columns: dict[str, ColumnDefinition]) -> list[str]:
    """Column definitions; only the first unique column gets an inline UNIQUE."""
    unique = [name for name, column in columns.items() if column.unique]
    return [
        column_ddl(name, column, inline_unique=bool(unique) and name == unique[0])
        for name, column in columns.items()
    ]


def unique_constraint(columns: dict[str, ColumnDefinition]) -> str | None:
    """Table-level UNIQUE over every unique column, when there are several."""
    unique = [name for name, column in columns.items() if column.unique]
    if len(unique) > 1:
        return f"UNIQUE({', '.join(unique)})"
    return None


def _create_table_sql(table: str, body: list[str]) -> str:
    inner = ",\n    ".join(body)
    return f"CREATE TABLE IF NOT EXISTS {table} (\n    {inner}\n)"


def _trigger_sql(table: str) -> list[str]:
    return [
        f"DROP TRIGGER IF EXISTS update_{table}_updated_at ON {table}",
        (
            f"CREATE TRIGGER update_{table}_updated_at\n"
            f"    BEFORE UPDATE ON {table}\n"
            f"    FOR EACH ROW\n"
            f"    EXECUTE FUNCTION update_updated_at_column()"
        ),
    ]


def _drop_sql(table: str) -> list[str]:
    return [f"DROP TABLE IF EXISTS {table} CASCADE"]


# ---------------------------------------------------------------------------
# Generator
# ---------------------------------------------------------------------------

class MigrationGenerator:
    """
    Generates and runs table-creation migrations for every registered model.

    Args:
        registry:         Metadata registry holding the model definitions.
        connection:       Connection wrapper handed to the manager.
        models_path:      Directory scanned for model files.
        migrations_path:  Directory receiving the JSON descriptors.
        manager:          Optional pre-built :class:`MigrationManager`.
        clock:            Returns Unix milliseconds; used in unit names. Units
                          built by one generator get strictly increasing
                          stamps, so names never collide.
        settle_seconds:   Pause between discovery and reading the registry.

    Example::

        generator = MigrationGenerator(registry, connection=conn,
                                       models_path="app/models")
        result = generator.generate_and_run_migrations()
    """

    def __init__(
        self,
        registry: MetadataRegistry,
        connection: Any = None,
        models_path: Path | str | None = None,
        migrations_path: Path | str | None = None,
        manager: MigrationManager | None = None,
        clock: Clock | None = None,
        settle_seconds: float | None = None,
    ) -> None:
        self._registry = registry
        self._connection = connection
        self._models_path = Path(models_path or CONFIG.migration.models_path)
        self._store = MigrationStore(migrations_path or CONFIG.migration.migrations_path)
        self._manager = manager
        self._clock = clock or _unix_millis
        self._last_stamp = 0
        self._settle_seconds = (
            CONFIG.migration.settle_seconds if settle_seconds is None else settle_seconds
        )

    @property
    def store(self) -> MigrationStore:
        return self._store

    def _next_stamp(self) -> int:
        stamp = max(int(self._clock()), self._last_stamp + 1)
        self._last_stamp = stamp
        return stamp

    # ------------------------------------------------------------------
    # Unit builders
    # ------------------------------------------------------------------

    def build_primary_migration(self, definition: ModelDefinition) -> SqlMigration:
        table = check_identifier(definition.table_name)
        body = [
            "id UUID PRIMARY KEY DEFAULT uuid_generate_v4()",
            *columns_ddl(definition.columns),
            *TIMESTAMP_COLUMNS,
        ]
        constraint = unique_constraint(definition.columns)
        if constraint:
            body.append(constraint)
        return SqlMigration(
            name=f"Create{table}Table_{self._next_stamp()}",
            kind=MigrationKind.PRIMARY,
            table=table,
            up_sql=[_create_table_sql(table, body), *_trigger_sql(table)],
            down_sql=_drop_sql(table),
        )

    def build_join_migration(
        self, owner: ModelDefinition, relation: RelationDefinition
    ) -> SqlMigration:
        related = self._registry.resolve_target(relation)
        through = check_identifier(relation.through or "")
        owner_key, related_key = relation.join_keys(owner.name)
        owner_table = check_identifier(owner.table_name)
        related_table = check_identifier(related.table_name)
        body = [
            "id UUID PRIMARY KEY DEFAULT uuid_generate_v4()",
            f"{owner_key} UUID REFERENCES {owner_table}(id) ON DELETE CASCADE",
            f"{related_key} UUID REFERENCES {related_table}(id) ON DELETE CASCADE",
            *TIMESTAMP_COLUMNS,
            f"UNIQUE({owner_key}, {related_key})",
        ]
        return SqlMigration(
            name=f"CreateJoinTable_{owner_table}_{related_table}_{self._next_stamp()}",
            kind=MigrationKind.JOIN,
            table=through,
            up_sql=[_create_table_sql(through, body), *_trigger_sql(through)],
            down_sql=_drop_sql(through),
        )

    def generate(self) -> list[SqlMigration]:
        """
        Build units for every registered model: primaries first, then joins.

        A through table declared on both sides of a relation yields one unit.
        """
        primaries: list[SqlMigration] = []
        joins: list[SqlMigration] = []
        seen_through: set[str] = set()

        for definition in self._registry.get_all_models().values():
            primaries.append(self.build_primary_migration(definition))
            for relation in definition.many_to_many_relations():
                if relation.through in seen_through:
                    log.debug("Join table %s already generated; skipping.", relation.through)
                    continue
                seen_through.add(relation.through or "")
                joins.append(self.build_join_migration(definition, relation))

        log.info("Generated %d primary and %d join migration(s).", len(primaries), len(joins))
        return primaries + joins

    # ------------------------------------------------------------------
    # Pipeline
    # ------------------------------------------------------------------

    def generate_migrations(self, discover: bool = True) -> list[SqlMigration]:
        """
        Discover models, build units and persist their descriptors.

        Raises:
            MigrationGenerationError: On any discovery, build or store failure.
        """
        try:
            if discover:
                discover_models(self._models_path, self._registry)
                if self._settle_seconds > 0:
                    time.sleep(self._settle_seconds)
            migrations = self.generate()
            self._store.save_all(migrations)
        except MigrationGenerationError:
            raise
        except Exception as exc:
            log.error("Migration generation failed: %s", exc)
            raise MigrationGenerationError(f"Migration generation failed: {exc}") from exc
        return migrations

    def generate_and_run_migrations(self, discover: bool = True) -> MigrationRunResult:
        migrations = self.generate_migrations(discover=discover)
        manager = self._manager
        if manager is None:
            manager = MigrationManager(self._connection, store=self._store)
        return manager.migrate_with_migrations(migrations)


def run_migrations(
    connection: Any,
    registry: MetadataRegistry | None = None,
    models_path: Path | str | None = None,
    migrations_path: Path | str | None = None,
) -> MigrationRunResult:
    """Initialise the ledger, then generate and apply migrations for all models."""
    store = MigrationStore(migrations_path or CONFIG.migration.migrations_path)
    manager = MigrationManager(connection, store=store)
    manager.initialize()
    generator = MigrationGenerator(
        MetadataRegistry() if registry is None else registry,
        connection=connection,
        models_path=models_path,
        migrations_path=store.directory,
        manager=manager,
    )
    return generator.generate_and_run_migrations()
