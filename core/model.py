"""
core/model.py
-------------
Active-record data mapper.

Subclasses declare their schema as class attributes and are fed into the
injected :class:`MetadataRegistry` by :meth:`Model.register`::

    class User(Model):
        __table__ = "users"
        __columns__ = {
            "name": ColumnDefinition("string", nullable=False, unique=True),
            "status": ColumnDefinition("string", default="active"),
        }
        __relations__ = {
            "roles": RelationDefinition("belongsToMany", target="Role",
                                        through="user_roles"),
        }

    Model.configure(registry=registry, connection=conn, hooks=HookRegistry())
    User.register()
    user = User.create(name="alice")
    user.attach("roles", [admin.id])

Design Decisions:
    * Registry, connection and hook registry are injected once through
      :meth:`Model.configure` and shared by every subclass.
    * Instances keep their column values in a data bag restricted to declared
      columns plus ``id`` / ``created_at`` / ``updated_at``; unknown keys are
      ignored on hydration. Loaded relations are cached separately under the
      relation's ``property_key``.
    * SQL text comes from :mod:`core.query_builder`; this module only decides
      what to run and in which order (validation → before-hooks → SQL →
      after-hooks).
    * Helpers needing atomicity join a transaction already open on the
      connection instead of opening a second one.
"""
from __future__ import annotations

import uuid
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any, Callable, Iterable, Mapping, TypeVar

from core.errors import (
    ConnectionNotSetError,
    InvalidStateError,
    RelationNotFoundError,
)
from core.hooks import HookRegistry, HookType
from core.query_builder import (
    IMPLICIT_COLUMNS,
    build_attach_query,
    build_belongs_to_many_query,
    build_count_query,
    build_delete_many_query,
    build_delete_query,
    build_detach_query,
    build_find_by_id_query,
    build_insert_query,
    build_is_attached_query,
    build_select_query,
    build_update_many_query,
    build_update_query,
)
from core.registry import MetadataRegistry
from core.type_converter import adapt_value, python_default
from core.validation import validate
from logger import get_logger
from models.definition import (
    ColumnDefinition,
    ModelDefinition,
    RelationDefinition,
    RelationType,
)
from shared.models import OptionsLike, coerce_options

log = get_logger(__name__)

T = TypeVar("T")
M = TypeVar("M", bound="Model")


@dataclass
class FindAndCountResult:
    """One page of rows plus the total number of matching rows."""
    rows: list["Model"] = field(default_factory=list)
    total: int = 0


class Model:
    """Base class for persisted models."""

    __model_name__: str | None = None
    __table__: str | None = None
    __columns__: Mapping[str, ColumnDefinition | dict] = {}
    __relations__: Mapping[str, RelationDefinition | dict] = {}
    __validation__: Mapping[str, list] = {}

    _registry: MetadataRegistry | None = None
    _connection: Any = None
    _hooks: HookRegistry | None = None

    # ------------------------------------------------------------------
    # Wiring
    # ------------------------------------------------------------------

    @staticmethod
    def configure(
        registry: MetadataRegistry | None = None,
        connection: Any = None,
        hooks: HookRegistry | None = None,
    ) -> None:
        """Inject the shared registry, connection and hook registry."""
        if registry is not None:
            Model._registry = registry
        if connection is not None:
            Model._connection = connection
        if hooks is not None:
            Model._hooks = hooks

    @staticmethod
    def reset() -> None:
        Model._registry = None
        Model._connection = None
        Model._hooks = None

    @classmethod
    def model_name(cls) -> str:
        return cls.__dict__.get("__model_name__") or cls.__name__

    @classmethod
    def register(cls, registry: MetadataRegistry | None = None) -> ModelDefinition:
        """
        Feed the class-declared schema into *registry* (default: the configured one).

        Columns and relations go through the registry's pending buffers, then
        the table name is registered, which merges them.
        """
        if registry is None:
            registry = cls._require_registry()
        name = cls.model_name()
        table = cls.__dict__.get("__table__")
        if not table:
            raise InvalidStateError(f"Model {name} does not declare __table__")

        for column_name, column in cls.__columns__.items():
            if isinstance(column, dict):
                column = ColumnDefinition(**column)
            registry.set_column(name, column_name, column)
        for relation_name, relation in cls.__relations__.items():
            if isinstance(relation, dict):
                relation = RelationDefinition(**relation)
            registry.set_relation(name, relation_name, relation)

        definition = registry.register_model(name, table)
        registry.bind_model_class(name, cls)
        return definition

    @classmethod
    def definition(cls) -> ModelDefinition:
        return cls._require_registry().get_model_definition(cls.model_name())

    @classmethod
    def add_hook(cls, hook_type: HookType | str, fn: Callable[[Any], None]) -> None:
        if Model._hooks is None:
            Model._hooks = HookRegistry()
        Model._hooks.register(cls.model_name(), hook_type, fn)

    @staticmethod
    def _require_registry() -> MetadataRegistry:
        if Model._registry is None:
            raise InvalidStateError("Metadata registry not set. Call Model.configure() first.")
        return Model._registry

    @staticmethod
    def _require_connection() -> Any:
        if Model._connection is None:
            raise ConnectionNotSetError()
        return Model._connection

    def _run_hooks(self, hook_type: HookType) -> None:
        if Model._hooks is not None:
            Model._hooks.run(type(self).model_name(), hook_type, self)

    # ------------------------------------------------------------------
    # Data bag
    # ------------------------------------------------------------------

    def __init__(self, data: Mapping[str, Any] | None = None, **values: Any) -> None:
        object.__setattr__(self, "_data", {})
        object.__setattr__(self, "_loaded", {})
        self.fill({**(data or {}), **values})

    def _column_names(self) -> set[str]:
        return set(type(self).definition().columns) | set(IMPLICIT_COLUMNS)

    def fill(self: M, data: Mapping[str, Any]) -> M:
        """
        Copy known columns from *data* into the bag.

        Values keyed by a declared relation are kept as loaded relation data
        under its ``property_key``. Other keys are ignored.
        """
        known = self._column_names()
        relations = type(self).definition().relations
        for key, value in data.items():
            if key in known:
                self._data[key] = value
            elif key in relations:
                self._loaded[relations[key].property_key or key] = value
        return self

    def get(self, key: str, default: Any = None) -> Any:
        if key in self._data:
            return self._data[key]
        return self._loaded.get(key, default)

    def set(self, key: str, value: Any) -> None:
        if key not in self._column_names():
            raise InvalidStateError(f"Unknown column {key} on model {type(self).model_name()}")
        self._data[key] = value

    @property
    def id(self) -> Any:
        return self._data.get("id")

    def __getattr__(self, name: str) -> Any:
        if name.startswith("_"):
            raise AttributeError(name)
        if name in self._data:
            return self._data[name]
        if name in self._loaded:
            return self._loaded[name]
        if name in self._column_names():
            return None
        raise AttributeError(f"{type(self).__name__!s} has no attribute {name!r}")

    def __setattr__(self, name: str, value: Any) -> None:
        if not name.startswith("_") and name in self._column_names():
            self._data[name] = value
        else:
            object.__setattr__(self, name, value)

    def to_dict(self) -> dict[str, Any]:
        """Column values plus any loaded relations (as nested dicts)."""
        result = dict(self._data)
        for key, value in self._loaded.items():
            if isinstance(value, Model):
                result[key] = value.to_dict()
            elif isinstance(value, list):
                result[key] = [item.to_dict() if isinstance(item, Model) else item for item in value]
            else:
                result[key] = value
        return result

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self._data!r})"

    @classmethod
    def _hydrate(cls: type[M], row: Mapping[str, Any]) -> M:
        return cls(row)

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def validate(self) -> None:
        """Check ``__validation__`` rules; raises ValidationError."""
        rules = type(self).__validation__
        if rules:
            validate(self._data, rules)

    def save(self: M) -> M:
        """Validate, then INSERT when the instance has no id, else UPDATE."""
        self.validate()
        if self.id is None:
            return self.insert()
        return self.update()

    def insert(self: M) -> M:
        cls = type(self)
        definition = cls.definition()
        conn = cls._require_connection()

        self._run_hooks(HookType.BEFORE_CREATE)
        if self.id is None:
            self._data["id"] = str(uuid.uuid4())

        values: dict[str, Any] = {"id": self._data["id"]}
        for name, column in definition.columns.items():
            if name in self._data:
                value = self._data[name]
            else:
                use_default, value = python_default(column)
                if use_default:
                    self._data[name] = value
                elif column.has_default:
                    continue  # expression default, filled by PostgreSQL
            values[name] = adapt_value(column, value)

        sql, params = build_insert_query(definition, values)
        row = conn.query(sql, params).first()
        if row and row.get("id") is not None:
            self._data["id"] = row["id"]
        log.debug("Inserted %s %s", definition.name, self.id)

        self._run_hooks(HookType.AFTER_CREATE)
        return self

    def update(self: M) -> M:
        cls = type(self)
        definition = cls.definition()
        if self.id is None:
            raise InvalidStateError(f"Cannot update {definition.name} without an id")
        conn = cls._require_connection()

        self._run_hooks(HookType.BEFORE_UPDATE)
        values = {
            name: adapt_value(column, self._data[name])
            for name, column in definition.columns.items()
            if name in self._data
        }
        sql, params = build_update_query(definition, values, self.id)
        conn.query(sql, params)
        self._run_hooks(HookType.AFTER_UPDATE)
        return self

    def delete(self) -> bool:
        cls = type(self)
        definition = cls.definition()
        if self.id is None:
            raise InvalidStateError(f"Cannot delete {definition.name} without an id")
        conn = cls._require_connection()

        self._run_hooks(HookType.BEFORE_DELETE)
        sql, params = build_delete_query(definition, self.id)
        result = conn.query(sql, params)
        self._run_hooks(HookType.AFTER_DELETE)
        return result.rowcount > 0

    @classmethod
    def create(cls: type[M], data: Mapping[str, Any] | None = None, **values: Any) -> M:
        instance = cls(data, **values)
        instance.validate()
        return instance.insert()

    @classmethod
    def create_many(cls: type[M], rows: Iterable[Mapping[str, Any]]) -> list[M]:
        """Insert every row in one transaction; any failure rolls back all of them."""
        rows = list(rows)
        return cls.transaction(lambda: [cls.create(row) for row in rows])

    @classmethod
    def update_many(cls, conditions: Mapping[str, Any], patch: Mapping[str, Any]) -> int:
        definition = cls.definition()
        patch = {k: adapt_value(definition.columns.get(k), v) for k, v in patch.items()}
        sql, params = build_update_many_query(definition, conditions, patch)
        return cls._require_connection().query(sql, params).rowcount

    @classmethod
    def delete_many(cls, conditions: Mapping[str, Any]) -> int:
        sql, params = build_delete_many_query(cls.definition(), conditions)
        return cls._require_connection().query(sql, params).rowcount

    @classmethod
    def transaction(cls, fn: Callable[[], T]) -> T:
        """Run *fn* atomically, joining a transaction that is already open."""
        conn = cls._require_connection()
        if conn.in_transaction:
            return fn()
        return conn.with_transaction(fn)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    @classmethod
    def find_by_id(cls: type[M], record_id: Any, options: OptionsLike = None) -> M | None:
        opts = coerce_options(options)
        sql, params = build_find_by_id_query(cls.definition(), record_id, opts)
        row = cls._require_connection().query(sql, params).first()
        if row is None:
            return None
        instance = cls._hydrate(row)
        instance.load_many(opts.include)
        return instance

    @classmethod
    def find_all(
        cls: type[M], conditions: Mapping[str, Any] | None = None, options: OptionsLike = None
    ) -> list[M]:
        opts = coerce_options(options)
        sql, params = build_select_query(cls.definition(), conditions, opts)
        rows = cls._require_connection().query(sql, params).rows
        instances = [cls._hydrate(row) for row in rows]
        for instance in instances:
            instance.load_many(opts.include)
        return instances

    where = find_all

    @classmethod
    def find_one(
        cls: type[M], conditions: Mapping[str, Any] | None = None, options: OptionsLike = None
    ) -> M | None:
        found = cls.find_all(conditions, coerce_options(options, limit=1))
        return found[0] if found else None

    @classmethod
    def count(cls, conditions: Mapping[str, Any] | None = None, options: OptionsLike = None) -> int:
        sql, params = build_count_query(cls.definition(), conditions, coerce_options(options))
        row = cls._require_connection().query(sql, params).first()
        return int(row["count"]) if row else 0

    @classmethod
    def exists(cls, conditions: Mapping[str, Any] | None = None) -> bool:
        return cls.count(conditions) > 0

    @classmethod
    def find_and_count(
        cls, conditions: Mapping[str, Any] | None = None, options: OptionsLike = None
    ) -> FindAndCountResult:
        """
        Page of rows and the unpaged total, fetched concurrently.

        Example::

            page = User.find_and_count({"status": "active"}, {"limit": 10})
            page.rows    # at most 10 users
            page.total   # every active user
        """
        opts = coerce_options(options)
        with ThreadPoolExecutor(max_workers=2) as pool:
            rows_future = pool.submit(cls.find_all, conditions, opts)
            total_future = pool.submit(cls.count, conditions, opts)
            return FindAndCountResult(rows=rows_future.result(), total=total_future.result())

    # ------------------------------------------------------------------
    # Relations
    # ------------------------------------------------------------------

    def _relation(self, relation_name: str) -> tuple[ModelDefinition, RelationDefinition]:
        definition = type(self).definition()
        relation = definition.relations.get(relation_name)
        if relation is None:
            raise RelationNotFoundError(definition.name, relation_name)
        return definition, relation

    @staticmethod
    def _class_for(definition: ModelDefinition) -> type["Model"]:
        registry = Model._require_registry()
        related_cls = registry.get_model_class(definition.name)
        if related_cls is None:
            related_cls = type(
                definition.name,
                (Model,),
                {"__model_name__": definition.name, "__table__": definition.table_name},
            )
            registry.bind_model_class(definition.name, related_cls)
        return related_cls

    def load(self, relation_name: str, options: OptionsLike = None) -> Any:
        """
        Fetch a relation and cache it on the instance under its ``property_key``.

        Returns a model (hasOne, belongsTo), a list (hasMany, belongsToMany),
        or None when nothing is related.
        """
        definition, relation = self._relation(relation_name)
        related = self._require_registry().resolve_target(relation)
        related_cls = self._class_for(related)
        conn = self._require_connection()
        opts = coerce_options(options)

        value: Any
        if relation.type == RelationType.BELONGS_TO:
            key_value = self._data.get(relation.default_foreign_key(definition.name))
            value = None
            if key_value is not None:
                row = conn.query(*build_find_by_id_query(related, key_value, opts)).first()
                value = related_cls._hydrate(row) if row else None
        elif self.id is None:
            value = None if relation.type == RelationType.HAS_ONE else []
        elif relation.type == RelationType.BELONGS_TO_MANY:
            stmt = build_belongs_to_many_query(definition, relation, related, self.id, opts)
            value = [related_cls._hydrate(row) for row in conn.query(*stmt).rows]
        else:
            if relation.type == RelationType.HAS_ONE:
                opts = coerce_options(opts, limit=1)
            conditions = {relation.default_foreign_key(definition.name): self.id}
            rows = conn.query(*build_select_query(related, conditions, opts)).rows
            instances = [related_cls._hydrate(row) for row in rows]
            if relation.type == RelationType.HAS_ONE:
                value = instances[0] if instances else None
            else:
                value = instances

        self._loaded[relation.property_key or relation_name] = value
        return value

    def load_many(self, relation_names: Iterable[str]) -> None:
        for relation_name in relation_names:
            self.load(relation_name)

    def _many_to_many(self, relation_name: str) -> tuple[ModelDefinition, RelationDefinition]:
        definition, relation = self._relation(relation_name)
        if not relation.is_many_to_many:
            raise InvalidStateError(
                f"Relation {relation_name} on {definition.name} is not a belongsToMany relation"
            )
        if self.id is None:
            raise InvalidStateError(
                f"{definition.name} must be saved before using relation {relation_name}"
            )
        return definition, relation

    @staticmethod
    def _ids(ids: Any) -> list[Any]:
        if ids is None:
            return []
        if isinstance(ids, (str, Model)) or not isinstance(ids, Iterable):
            ids = [ids]
        return [item.id if isinstance(item, Model) else item for item in ids]

    def attach(self, relation_name: str, ids: Any) -> int:
        """Link *ids* through the join table; existing pairs are left untouched."""
        definition, relation = self._many_to_many(relation_name)
        related_ids = self._ids(ids)
        conn = self._require_connection()

        def _insert_all() -> int:
            inserted = 0
            for related_id in related_ids:
                stmt = build_attach_query(definition, relation, self.id, related_id)
                inserted += conn.query(*stmt).rowcount
            return inserted

        return type(self).transaction(_insert_all)

    def detach(self, relation_name: str, ids: Any = None) -> int:
        """Unlink *ids*, or every related row when *ids* is None."""
        definition, relation = self._many_to_many(relation_name)
        related_ids = None if ids is None else self._ids(ids)
        if related_ids is not None and not related_ids:
            return 0
        stmt = build_detach_query(definition, relation, self.id, related_ids)
        return self._require_connection().query(*stmt).rowcount

    def sync(self, relation_name: str, ids: Any) -> None:
        """Make the join table hold exactly *ids* for this instance."""
        self._many_to_many(relation_name)
        related_ids = self._ids(ids)

        def _replace() -> None:
            self.detach(relation_name)
            if related_ids:
                self.attach(relation_name, related_ids)

        type(self).transaction(_replace)

    def is_attached(self, relation_name: str, related_id: Any) -> bool:
        definition, relation = self._many_to_many(relation_name)
        if isinstance(related_id, Model):
            related_id = related_id.id
        stmt = build_is_attached_query(definition, relation, self.id, related_id)
        row = self._require_connection().query(*stmt).first()
        return bool(row and int(row["count"]) > 0)
