"""
core/migration_store.py
-----------------------
JSON persistence for generated migration descriptors.

Each :class:`SqlMigration` is written to ``<migrations_path>/<name>.json`` so a
later process (``main.py rollback``) can rebuild units it did not generate.

Design Decision:
    Keeping descriptor I/O in a dedicated class separates it from the
    generator and manager, and lets both be unit-tested against a temp
    directory. Writes use an atomic write-then-rename so a crash never
    leaves a half-written descriptor behind.
"""
from __future__ import annotations

import json
from pathlib import Path

from core.migration import SqlMigration
from logger import get_logger

log = get_logger(__name__)


class MigrationStore:
    """
    Directory of migration descriptors keyed by migration name.

    Example::

        store = MigrationStore("migrations")
        store.save(unit)
        store.load(unit.name)      # → SqlMigration
    """

    def __init__(self, directory: Path | str) -> None:
        self._dir = Path(directory)

    @property
    def directory(self) -> Path:
        return self._dir

    def _path_for(self, name: str) -> Path:
        if not name or "/" in name or "\\" in name or name.startswith("."):
            raise ValueError(f"Invalid migration name '{name}'")
        return self._dir / f"{name}.json"

    def save(self, migration: SqlMigration) -> Path:
        """
        Persist *migration* as JSON.

        Raises:
            OSError: If the directory or file cannot be written.
        """
        self._dir.mkdir(parents=True, exist_ok=True)
        path = self._path_for(migration.name)
        tmp = path.with_suffix(".tmp")
        tmp.write_text(json.dumps(migration.to_dict(), indent=4), encoding="utf-8")
        tmp.replace(path)   # Atomic rename avoids partial writes corrupting the file
        log.debug("Saved migration descriptor '%s'.", path)
        return path

    def save_all(self, migrations: list[SqlMigration]) -> None:
        for migration in migrations:
            self.save(migration)

    def load(self, name: str) -> SqlMigration | None:
        """
        Return the descriptor for *name*, or None if it was never saved.

        Raises:
            ValueError: If the file exists but is not a valid descriptor.
        """
        path = self._path_for(name)
        if not path.exists():
            return None
        try:
            return SqlMigration.from_dict(json.loads(path.read_text(encoding="utf-8")))
        except (json.JSONDecodeError, KeyError) as exc:
            raise ValueError(f"Invalid migration descriptor '{path}': {exc}") from exc

    def names(self) -> list[str]:
        if not self._dir.is_dir():
            return []
        return sorted(p.stem for p in self._dir.glob("*.json"))

    def delete(self, name: str) -> None:
        self._path_for(name).unlink(missing_ok=True)
