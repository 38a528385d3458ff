"""
core/migration_manager.py
-------------------------
Migration manager: applies migration units in batches, records them in the
``migrations`` ledger and rolls batches back.

Design Decisions:
    * The manager is a plain class with injected dependencies (connection,
      descriptor store). No global state.
    * Progress is reported via a callback (``progress_cb``) so the CLI and
      other callers can display updates without coupling to this module.
    * Primary units run in one transaction, join units in a second one. A
      failure rolls back only the transaction it happened in.
    * A rollback resolves every unit it needs before touching the database,
      then runs all ``down()`` steps and ledger deletes in one transaction.
"""
from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Any, Callable, Sequence

from core.errors import MigrationExecutionError
from core.migration import Migration
from core.migration_store import MigrationStore
from logger import get_logger
from models.definition import MigrationKind, MigrationRecord

log = get_logger(__name__)

ProgressCallback = Callable[[str, int, int], None]  # message, current, total

LEDGER_TABLE = "migrations"

CREATE_EXTENSION_SQL = 'CREATE EXTENSION IF NOT EXISTS "uuid-ossp"'

CREATE_LEDGER_SQL = f"""
CREATE TABLE IF NOT EXISTS {LEDGER_TABLE} (
    id SERIAL PRIMARY KEY,
    name VARCHAR(255) NOT NULL UNIQUE,
    batch INTEGER NOT NULL,
    executed_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
)
"""

CREATE_TRIGGER_FUNCTION_SQL = """
CREATE OR REPLACE FUNCTION update_updated_at_column()
RETURNS TRIGGER AS $$
BEGIN
    NEW.updated_at = CURRENT_TIMESTAMP;
    RETURN NEW;
END;
$$ language 'plpgsql'
"""


def _kind_of(migration: Migration) -> MigrationKind:
    # Hand-written units may leave ``kind`` unset; they count as primary.
    return MigrationKind(getattr(migration, "kind", MigrationKind.PRIMARY))


# ---------------------------------------------------------------------------
# Result types
# ---------------------------------------------------------------------------

@dataclass
class MigrationRunResult:
    """Outcome of one ``migrate_with_migrations`` call."""
    batch: int | None = None
    applied: list[str] = field(default_factory=list)
    elapsed_seconds: float = 0.0

    def __str__(self) -> str:
        if not self.applied:
            return "No migrations to run."
        return (
            f"[OK] batch {self.batch}: {len(self.applied)} migration(s) "
            f"in {self.elapsed_seconds:.2f}s"
        )


# ---------------------------------------------------------------------------
# Manager
# ---------------------------------------------------------------------------

class MigrationManager:
    """
    Applies and reverts migration batches.

    Args:
        connection:  Connection wrapper (``query`` / ``with_transaction``).
        store:       Descriptor store used to rebuild units for rollback.
        progress_cb: Optional callback ``(message, current, total)``.

    Example::

        manager = MigrationManager(conn, store=MigrationStore("migrations"))
        manager.initialize()
        manager.migrate_with_migrations(units)
        manager.rollback(steps=1)
    """

    def __init__(
        self,
        connection: Any,
        store: MigrationStore | None = None,
        progress_cb: ProgressCallback | None = None,
    ) -> None:
        self._conn = connection
        self._store = store
        self._progress_cb = progress_cb or self._default_progress
        self._applied: dict[str, Migration] = {}

    @staticmethod
    def _default_progress(msg: str, current: int, total: int) -> None:
        log.info("%s (%d/%s)", msg, current, total if total else "?")

    def _progress(self, msg: str, current: int = 0, total: int = 0) -> None:
        self._progress_cb(msg, current, total)

    # ------------------------------------------------------------------
    # Ledger
    # ------------------------------------------------------------------

    def initialize(self) -> None:
        """Ensure the uuid extension, the ledger table and the trigger function exist."""
        self._conn.query(CREATE_EXTENSION_SQL)
        self._conn.query(CREATE_LEDGER_SQL)
        self._conn.query(CREATE_TRIGGER_FUNCTION_SQL)
        log.debug("Migration ledger initialised.")

    def get_next_batch(self) -> int:
        row = self._conn.query(
            f"SELECT COALESCE(MAX(batch), 0) + 1 AS next_batch FROM {LEDGER_TABLE}"
        ).first()
        return int(row["next_batch"]) if row else 1

    def record_migration(self, name: str, batch: int) -> None:
        self._conn.query(f"INSERT INTO {LEDGER_TABLE} (name, batch) VALUES ($1, $2)", [name, batch])

    def remove_migration(self, name: str) -> None:
        self._conn.query(f"DELETE FROM {LEDGER_TABLE} WHERE name = $1", [name])

    def get_last_batches(self, steps: int) -> list[int]:
        rows = self._conn.query(
            f"SELECT DISTINCT batch FROM {LEDGER_TABLE} ORDER BY batch DESC LIMIT $1", [steps]
        ).rows
        return [int(row["batch"]) for row in rows]

    def get_migrations_in_batch(self, batch: int) -> list[MigrationRecord]:
        rows = self._conn.query(
            f"SELECT * FROM {LEDGER_TABLE} WHERE batch = $1 ORDER BY id", [batch]
        ).rows
        return [MigrationRecord.from_row(row) for row in rows]

    def status(self) -> list[MigrationRecord]:
        """Every ledger row, oldest first."""
        rows = self._conn.query(
            f"SELECT name, batch, executed_at FROM {LEDGER_TABLE} ORDER BY batch, id"
        ).rows
        return [MigrationRecord.from_row(row) for row in rows]

    # ------------------------------------------------------------------
    # Migrate
    # ------------------------------------------------------------------

    def migrate_with_migrations(self, migrations: Sequence[Migration]) -> MigrationRunResult:
        """
        Apply *migrations* as one new batch.

        Primary units run first in one transaction, then join units in a
        second. Each unit is recorded in the ledger right after its ``up()``.

        Raises:
            MigrationExecutionError: If a unit fails; its transaction is
                rolled back and earlier committed transactions are kept.
        """
        self.initialize()
        if not migrations:
            log.info("No migrations to run.")
            return MigrationRunResult()

        start = time.monotonic()
        batch = self.get_next_batch()
        result = MigrationRunResult(batch=batch)
        primaries = [m for m in migrations if _kind_of(m) != MigrationKind.JOIN]
        joins = [m for m in migrations if _kind_of(m) == MigrationKind.JOIN]

        for group in (primaries, joins):
            if group:
                self._conn.with_transaction(lambda g=group: self._run_group(g, batch, result))

        result.elapsed_seconds = time.monotonic() - start
        log.info("%s", result)
        return result

    def _run_group(
        self, migrations: list[Migration], batch: int, result: MigrationRunResult
    ) -> None:
        total = len(migrations)
        for index, migration in enumerate(migrations, start=1):
            self._progress(f"Running migration: {migration.name}", index, total)
            try:
                migration.up(self._conn)
                self.record_migration(migration.name, batch)
            except Exception as exc:
                log.error("Error in migration %s: %s", migration.name, exc)
                raise MigrationExecutionError(
                    f"Migration {migration.name} failed: {exc}", migration.name
                ) from exc
            self._applied[migration.name] = migration
            result.applied.append(migration.name)
            log.info("Completed migration: %s", migration.name)

    # ------------------------------------------------------------------
    # Rollback
    # ------------------------------------------------------------------

    def _resolve(self, name: str) -> Migration:
        migration = self._applied.get(name)
        if migration is None and self._store is not None:
            try:
                migration = self._store.load(name)
            except ValueError as exc:
                raise MigrationExecutionError(str(exc), name) from exc
        if migration is None:
            raise MigrationExecutionError(f"Cannot resolve migration {name} for rollback", name)
        return migration

    def rollback(self, steps: int = 1) -> list[str]:
        """
        Revert the *steps* most recent batches in one transaction.

        Within each batch units are reverted in reverse execution order.

        Returns:
            Names of the rolled-back migrations, in the order reverted.

        Raises:
            MigrationExecutionError: If a unit cannot be resolved (nothing is
                changed) or its ``down()`` fails (everything is rolled back).
        """
        if steps < 1:
            raise MigrationExecutionError(f"Rollback steps must be at least 1, got {steps}")

        plan: list[Migration] = []
        for batch in self.get_last_batches(steps):
            records = self.get_migrations_in_batch(batch)
            plan.extend(self._resolve(record.name) for record in reversed(records))

        if not plan:
            log.info("Nothing to roll back.")
            return []

        def _revert_all() -> list[str]:
            reverted: list[str] = []
            for index, migration in enumerate(plan, start=1):
                self._progress(f"Rolling back: {migration.name}", index, len(plan))
                try:
                    migration.down(self._conn)
                    self.remove_migration(migration.name)
                except Exception as exc:
                    log.error("Error rolling back %s: %s", migration.name, exc)
                    raise MigrationExecutionError(
                        f"Rollback of {migration.name} failed: {exc}", migration.name
                    ) from exc
                reverted.append(migration.name)
            return reverted

        reverted = self._conn.with_transaction(_revert_all)
        for name in reverted:
            self._applied.pop(name, None)
        log.info("Rolled back %d migration(s).", len(reverted))
        return reverted
