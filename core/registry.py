"""
core/registry.py
----------------
Model-metadata registry: per-model table name, columns and relations.

Design Decisions:
    * One ``MetadataRegistry`` instance is constructed by the application and
      injected into the data mapper, the migration generator and the tests.
      There is no module-level singleton.
    * Columns and relations may be registered before the model's table is
      named. They wait in per-model pending buffers and are merged (then the
      buffers cleared) when ``register_model`` arrives, so model sources can
      be imported in any order.
    * ``define()`` registers a whole model eagerly in one call for code that
      does not need the deferred path.
"""
from __future__ import annotations

from typing import Any, Mapping

from core.errors import InvalidStateError, NotRegisteredError
from logger import get_logger
from models.definition import ColumnDefinition, ModelDefinition, RelationDefinition

log = get_logger(__name__)


class MetadataRegistry:
    """
    Registry of :class:`ModelDefinition` objects keyed by model name.

    Example::

        registry = MetadataRegistry()
        registry.define(
            "User",
            table="users",
            columns={"name": ColumnDefinition("string", unique=True)},
            relations={"roles": RelationDefinition(
                "belongsToMany", target="Role", through="user_roles")},
        )
        registry.get_model_definition("User").table_name   # "users"
    """

    def __init__(self) -> None:
        self._definitions: dict[str, ModelDefinition] = {}
        self._pending_columns: dict[str, dict[str, ColumnDefinition]] = {}
        self._pending_relations: dict[str, dict[str, RelationDefinition]] = {}
        self._model_classes: dict[str, type] = {}

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    def register_model(self, name: str, table_name: str) -> ModelDefinition:
        """
        Create (or re-point) the definition for *name*.

        Buffered columns/relations are merged in and the buffers cleared.
        Re-registering keeps everything already merged and only replaces the
        table name.

        Raises:
            InvalidStateError: If *table_name* already belongs to another model.
        """
        for other_name, other in self._definitions.items():
            if other_name != name and other.table_name == table_name:
                raise InvalidStateError(
                    f"Table {table_name} is already registered by model {other_name}"
                )

        definition = self._definitions.get(name)
        if definition is None:
            definition = ModelDefinition(name=name, table_name=table_name)
            self._definitions[name] = definition
        else:
            log.debug("Re-registering model %s with table %s", name, table_name)
            definition.table_name = table_name

        for column_name, column in self._pending_columns.pop(name, {}).items():
            self._put_column(definition, column_name, column)
        for relation_name, relation in self._pending_relations.pop(name, {}).items():
            self._put_relation(definition, relation_name, relation)

        log.debug(
            "Registered model %s → %s (%d columns, %d relations)",
            name, table_name, len(definition.columns), len(definition.relations),
        )
        return definition

    def set_column(self, name: str, column: str, definition: ColumnDefinition) -> None:
        """Add a column to a registered model, or buffer it until the model registers."""
        model = self._definitions.get(name)
        if model is not None:
            self._put_column(model, column, definition)
            return
        pending = self._pending_columns.setdefault(name, {})
        if column in self._pending_relations.get(name, {}):
            raise InvalidStateError(f"{name}.{column} is already declared as a relation")
        pending[column] = definition

    def set_relation(self, name: str, relation: str, definition: RelationDefinition) -> None:
        """Add a relation to a registered model, or buffer it until the model registers."""
        self._check_relation(name, relation, definition)
        model = self._definitions.get(name)
        if model is not None:
            self._put_relation(model, relation, definition)
            return
        pending = self._pending_relations.setdefault(name, {})
        if relation in self._pending_columns.get(name, {}):
            raise InvalidStateError(f"{name}.{relation} is already declared as a column")
        pending[relation] = definition

    def define(
        self,
        name: str,
        table: str,
        columns: Mapping[str, ColumnDefinition] | None = None,
        relations: Mapping[str, RelationDefinition] | None = None,
    ) -> ModelDefinition:
        """Register a complete model in one call."""
        for relation_name, relation in (relations or {}).items():
            self._check_relation(name, relation_name, relation)
        definition = self.register_model(name, table)
        for column_name, column in (columns or {}).items():
            self._put_column(definition, column_name, column)
        for relation_name, relation in (relations or {}).items():
            self._put_relation(definition, relation_name, relation)
        return definition

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------

    def get_model_definition(self, name: str) -> ModelDefinition:
        definition = self._definitions.get(name)
        if definition is None:
            raise NotRegisteredError(name)
        return definition

    def has_model(self, name: str) -> bool:
        return name in self._definitions

    def get_all_models(self) -> dict[str, ModelDefinition]:
        """Return a snapshot of all definitions in registration order."""
        return dict(self._definitions)

    def resolve_target(self, relation: RelationDefinition) -> ModelDefinition:
        """Resolve a relation's target model name to its definition."""
        return self.get_model_definition(relation.target)

    def pending_columns(self, name: str) -> dict[str, ColumnDefinition]:
        return dict(self._pending_columns.get(name, {}))

    def pending_relations(self, name: str) -> dict[str, RelationDefinition]:
        return dict(self._pending_relations.get(name, {}))

    # ------------------------------------------------------------------
    # Python classes bound to model names
    # ------------------------------------------------------------------

    def bind_model_class(self, name: str, cls: type) -> None:
        self._model_classes[name] = cls

    def get_model_class(self, name: str) -> type | None:
        return self._model_classes.get(name)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _check_relation(name: str, relation: str, definition: RelationDefinition) -> None:
        if definition.is_many_to_many and not definition.through:
            raise InvalidStateError(
                f"Through table is required for belongsToMany relation {name}.{relation}"
            )
        if definition.is_many_to_many:
            owner_key, related_key = definition.join_keys(name)
            if owner_key == related_key:
                raise InvalidStateError(
                    f"Join keys of {name}.{relation} are both {owner_key}; "
                    f"set foreign_key to tell the two sides apart"
                )

    @staticmethod
    def _put_column(model: ModelDefinition, column: str, definition: ColumnDefinition) -> None:
        if column in model.relations:
            raise InvalidStateError(f"{model.name}.{column} is already declared as a relation")
        model.columns[column] = definition

    @staticmethod
    def _put_relation(model: ModelDefinition, relation: str, definition: RelationDefinition) -> None:
        if relation in model.columns:
            raise InvalidStateError(f"{model.name}.{relation} is already declared as a column")
        if not definition.property_key:
            definition.property_key = relation
        model.relations[relation] = definition

    def __repr__(self) -> str:
        return f"MetadataRegistry(models={list(self._definitions)!r})"

    def __len__(self) -> int:
        return len(self._definitions)

    def __contains__(self, name: Any) -> bool:
        return name in self._definitions
