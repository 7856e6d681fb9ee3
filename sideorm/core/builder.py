"""Entity-aware query builder."""

import copy
import functools
from collections.abc import Callable, Iterable
from typing import TYPE_CHECKING, Any

from sideorm.core import eager
from sideorm.core.collection import Collection
from sideorm.exceptions import EntityNotFoundError
from sideorm.query.builder import _UNSET, QueryBuilder
from sideorm.query.expression import Raw
from sideorm.query.grammar import column_label, split_alias

if TYPE_CHECKING:
    from sideorm.core.entity import Entity
    from sideorm.core.relations.base import Relation

# QueryBuilder methods reachable through an EntityBuilder. Fluent methods
# return the EntityBuilder; terminal methods return the query's result.
PASSTHROUGH_FLUENT = frozenset(
    {
        "select",
        "add_select",
        "select_raw",
        "select_sub",
        "distinct",
        "join",
        "join_where",
        "left_join",
        "right_join",
        "or_where",
        "where_column",
        "where_raw",
        "or_where_raw",
        "where_in",
        "or_where_in",
        "where_not_in",
        "or_where_not_in",
        "where_null",
        "or_where_null",
        "where_not_null",
        "or_where_not_null",
        "where_between",
        "where_not_between",
        "where_exists",
        "or_where_exists",
        "where_not_exists",
        "group_by",
        "having",
        "or_having",
        "having_raw",
        "order_by",
        "order_by_desc",
        "order_by_raw",
        "latest",
        "oldest",
        "limit",
        "take",
        "offset",
        "skip",
        "for_page",
        "add_binding",
        "merge_wheres",
    }
)

PASSTHROUGH_TERMINAL = frozenset(
    {
        "to_sql",
        "get_bindings",
        "insert",
        "insert_get_id",
        "count",
        "min",
        "max",
        "sum",
        "avg",
        "aggregate",
        "exists",
        "truncate",
    }
)


class EntityBuilder:
    """Query builder bound to one entity type.

    Wraps a QueryBuilder, turns result rows into entities and drives eager
    loading. Fluent QueryBuilder methods are available directly and keep the
    chain on this builder; macros and ``scope_<name>`` methods of the entity
    are reachable by name.

    Example:
        >>> User.query().where("votes", ">", 100).with_("posts").get()
    """

    def __init__(self, query: QueryBuilder):
        self.query = query
        self.entity: "Entity | None" = None
        self.eager_load: eager.EagerLoadPlan = {}
        self.macros: dict[str, Callable] = {}
        self._on_delete: Callable[["EntityBuilder"], Any] | None = None

    def __getattr__(self, name: str) -> Any:
        if name.startswith("__"):
            raise AttributeError(name)

        macros = self.__dict__.get("macros", {})
        if name in macros:
            return functools.partial(macros[name], self)

        entity = self.__dict__.get("entity")
        if entity is not None and name in entity.descriptor().query_scopes:
            return functools.partial(self.call_scope, name)

        if name in PASSTHROUGH_FLUENT:
            return functools.partial(self._forward, name)

        if name in PASSTHROUGH_TERMINAL:
            return getattr(self.query, name)

        raise AttributeError(f"'{type(self).__name__}' object has no attribute '{name}'")

    def _forward(self, name: str, *args: Any, **kwargs: Any) -> "EntityBuilder":
        getattr(self.query, name)(*args, **kwargs)
        return self

    def copy(self) -> "EntityBuilder":
        return copy.copy(self)

    def __copy__(self) -> "EntityBuilder":
        clone = EntityBuilder(self.query.copy())
        clone.entity = self.entity
        clone.eager_load = dict(self.eager_load)
        clone.macros = dict(self.macros)
        clone._on_delete = self._on_delete
        return clone

    # Lookups

    def find(self, id: Any, columns: list | None = None) -> "Entity | Collection | None":
        """Find by primary key, or several entities when ``id`` is a list."""
        if isinstance(id, (list, tuple, set)):
            return self.find_many(id, columns)

        self.query.where(self.entity.get_qualified_key_name(), "=", id)
        return self.first(columns)

    def find_many(self, ids: Iterable[Any], columns: list | None = None) -> Collection:
        ids = list(ids)
        if not ids:
            return self.entity.new_collection()

        self.query.where_in(self.entity.get_qualified_key_name(), ids)
        return self.get(columns)

    def find_or_fail(self, id: Any, columns: list | None = None) -> "Entity | Collection":
        """Find by primary key.

        Raises:
            EntityNotFoundError: If the entity (or any of several ids) is missing
        """
        result = self.find(id, columns)

        if isinstance(id, (list, tuple, set)):
            if len(result) == len(set(id)):
                return result
        elif result is not None:
            return result

        raise EntityNotFoundError(self.entity.descriptor().name, id)

    def find_or_new(self, id: Any, columns: list | None = None) -> "Entity":
        result = self.find(id, columns)
        return result if result is not None else self.entity.new_instance()

    def first(self, columns: list | None = None) -> "Entity | None":
        return self.take(1).get(columns).first()

    def first_or_fail(self, columns: list | None = None) -> "Entity":
        """First result.

        Raises:
            EntityNotFoundError: If the query has no results
        """
        result = self.first(columns)
        if result is None:
            raise EntityNotFoundError(self.entity.descriptor().name)
        return result

    def first_or(self, callback: Callable[[], Any], columns: list | None = None) -> Any:
        result = self.first(columns)
        return result if result is not None else callback()

    def get(self, columns: list | None = None) -> Collection:
        """Run the query, hydrate entities and eager load requested relations."""
        entities = self.get_models(columns)

        if entities:
            entities = self.eager_load_relations(entities)

        return self.entity.new_collection(entities)

    def get_models(self, columns: list | None = None) -> list["Entity"]:
        rows = self.query.get(columns)
        connection = self.entity.get_connection_name()
        return [self.entity.new_from_row(row, connection) for row in rows]

    def value(self, column: str) -> Any:
        result = self.first([column])
        if result is None:
            return None
        return result.get_attribute(column_label(column))

    def pluck(self, column: str, key: str | None = None) -> list | dict:
        """Values of one column (get-mutators applied), optionally keyed by another."""
        results = self.query.pluck(column, key)

        name = column.split(".")[-1]
        if not self.entity.has_get_mutator(name):
            return results

        def mutate(value: Any) -> Any:
            return self.entity.new_from_row({name: value}).get_attribute(name)

        if isinstance(results, dict):
            return {result_key: mutate(value) for result_key, value in results.items()}
        return [mutate(value) for value in results]

    lists = pluck

    def chunk(self, count: int, callback: Callable[[Collection], Any]) -> bool:
        """Process results in pages of ``count``; stop when the callback returns False."""
        page = 1
        results = self.copy().for_page(page, count).get()

        while results:
            if callback(results) is False:
                return False

            page += 1
            results = self.copy().for_page(page, count).get()

        return True

    # Wheres

    def where(self, column: Any, operator: Any = _UNSET, value: Any = _UNSET, boolean: str = "and") -> "EntityBuilder":
        """Add a where clause; a callable ``column`` receives a scoped nested builder."""
        if callable(column) and not isinstance(column, QueryBuilder):
            nested = self.entity.new_query_without_scopes()
            column(nested)
            self.query.add_nested_where_query(nested.get_query(), boolean)
        else:
            self.query.where(column, operator, value, boolean)
        return self

    def or_where(self, column: Any, operator: Any = _UNSET, value: Any = _UNSET) -> "EntityBuilder":
        return self.where(column, operator, value, "or")

    # Writes

    def update(self, values: dict[str, Any]) -> int:
        return self.query.update(self.add_updated_at_column(values))

    def increment(self, column: str, amount: int | float = 1, extra: dict[str, Any] | None = None) -> int:
        return self.query.increment(column, amount, self.add_updated_at_column(extra or {}))

    def decrement(self, column: str, amount: int | float = 1, extra: dict[str, Any] | None = None) -> int:
        return self.query.decrement(column, amount, self.add_updated_at_column(extra or {}))

    def add_updated_at_column(self, values: dict[str, Any]) -> dict[str, Any]:
        if not self.entity.uses_timestamps():
            return values

        values = dict(values)
        values.setdefault(self.entity.get_updated_at_column(), self.entity.fresh_timestamp())
        return values

    def delete(self) -> int:
        """Delete matching rows, or run the delete handler a scope installed."""
        if self._on_delete is not None:
            return self._on_delete(self)
        return self.query.delete()

    def on_delete(self, callback: Callable[["EntityBuilder"], Any]) -> None:
        self._on_delete = callback

    # Eager loading

    def with_(self, *relations: Any) -> "EntityBuilder":
        """Request eager loading of relations.

        Accepts names (``"posts.comments"``), lists, and dicts mapping a name
        to a callback that constrains the relation's query.
        """
        self.eager_load.update(eager.parse_relations(relations))
        return self

    def without(self, *relations: str) -> "EntityBuilder":
        for name in relations:
            self.eager_load.pop(name, None)
        return self

    def get_eager_loads(self) -> eager.EagerLoadPlan:
        return self.eager_load

    def set_eager_loads(self, eager_load: eager.EagerLoadPlan) -> "EntityBuilder":
        self.eager_load = dict(eager_load)
        return self

    def eager_load_relations(self, entities: list["Entity"]) -> list["Entity"]:
        return eager.eager_load_relations(self, entities)

    # Relation existence

    def has(
        self,
        relation: str,
        operator: str = ">=",
        count: int = 1,
        boolean: str = "and",
        callback: Callable[["EntityBuilder"], Any] | None = None,
    ) -> "EntityBuilder":
        """Constrain to entities with at least (or a given number of) related rows."""
        if "." in relation:
            return self._has_nested(relation, operator, count, boolean, callback)

        relation_obj = self.get_has_relation_query(relation)
        query = relation_obj.get_relation_count_query(relation_obj.get_related().new_query(), self)

        if callback is not None:
            callback(query)

        return self._add_has_where(query, relation_obj, operator, count, boolean)

    def _has_nested(
        self,
        relations: str,
        operator: str,
        count: int,
        boolean: str,
        callback: Callable[["EntityBuilder"], Any] | None,
    ) -> "EntityBuilder":
        segments = relations.split(".")

        def closure(query: "EntityBuilder") -> None:
            if len(segments) > 1:
                query.where_has(segments.pop(0), closure)
            else:
                query.has(segments.pop(0), operator, count, "and", callback)

        return self.where_has(segments.pop(0), closure)

    def doesnt_have(
        self, relation: str, boolean: str = "and", callback: Callable[["EntityBuilder"], Any] | None = None
    ) -> "EntityBuilder":
        return self.has(relation, "<", 1, boolean, callback)

    def where_has(
        self,
        relation: str,
        callback: Callable[["EntityBuilder"], Any] | None = None,
        operator: str = ">=",
        count: int = 1,
    ) -> "EntityBuilder":
        return self.has(relation, operator, count, "and", callback)

    def where_doesnt_have(
        self, relation: str, callback: Callable[["EntityBuilder"], Any] | None = None
    ) -> "EntityBuilder":
        return self.doesnt_have(relation, "and", callback)

    def or_has(self, relation: str, operator: str = ">=", count: int = 1) -> "EntityBuilder":
        return self.has(relation, operator, count, "or")

    def or_where_has(
        self,
        relation: str,
        callback: Callable[["EntityBuilder"], Any] | None = None,
        operator: str = ">=",
        count: int = 1,
    ) -> "EntityBuilder":
        return self.has(relation, operator, count, "or", callback)

    def or_doesnt_have(self, relation: str) -> "EntityBuilder":
        return self.doesnt_have(relation, "or")

    def or_where_doesnt_have(
        self, relation: str, callback: Callable[["EntityBuilder"], Any] | None = None
    ) -> "EntityBuilder":
        return self.doesnt_have(relation, "or", callback)

    def _add_has_where(
        self,
        has_query: "EntityBuilder",
        relation: "Relation",
        operator: str,
        count: int,
        boolean: str,
    ) -> "EntityBuilder":
        self._merge_wheres_to_has(has_query, relation)
        self.query.where(has_query.get_query(), operator, Raw(int(count)), boolean)
        return self

    def _merge_wheres_to_has(self, has_query: "EntityBuilder", relation: "Relation") -> None:
        relation_query = relation.get_base_query()
        has_query.get_entity().remove_global_scopes(has_query)
        has_query.get_query().merge_wheres(relation_query.wheres)

    def get_has_relation_query(self, relation: str) -> "Relation":
        from sideorm.core.relations.base import Relation

        with Relation.no_constraints():
            return self.entity.related(relation)

    def with_count(self, *relations: Any) -> "EntityBuilder":
        """Add ``<relation>_count`` sub-select columns.

        ``"comments as approved_comments"`` names the column
        ``approved_comments`` instead.
        """
        if self.query.columns is None:
            self.query.select(f"{self.query.from_table}.*")

        for item in eager._expand(relations):
            if isinstance(item, str):
                name, constraints = item, None
            else:
                name, constraints = item

            name, alias = split_alias(name)

            relation = self.get_has_relation_query(name)
            query = relation.get_relation_count_query(relation.get_related().new_query(), self)

            if constraints is not None:
                constraints(query)

            self._merge_wheres_to_has(query, relation)
            self.query.select_sub(query.get_query(), alias or f"{name}_count")

        return self

    # Scopes

    def call_scope(self, name: str, *args: Any, **kwargs: Any) -> Any:
        scope = self.entity.descriptor().query_scopes[name]
        result = scope(self.entity, self, *args, **kwargs)
        return self if result is None else result

    def without_global_scope(self, name: str) -> "EntityBuilder":
        scope = self.entity.descriptor().global_scopes.get(name)
        if scope is not None:
            scope.remove(self, self.entity)
        return self

    def without_global_scopes(self) -> "EntityBuilder":
        self.entity.remove_global_scopes(self)
        return self

    def macro(self, name: str, callback: Callable[..., Any]) -> None:
        """Register a builder verb: ``callback(builder, *args)``."""
        self.macros[name] = callback

    def get_macro(self, name: str) -> Callable[..., Any] | None:
        return self.macros.get(name)

    # Accessors

    def get_query(self) -> QueryBuilder:
        return self.query

    def set_query(self, query: QueryBuilder) -> "EntityBuilder":
        self.query = query
        return self

    def get_entity(self) -> "Entity":
        return self.entity

    def set_entity(self, entity: "Entity") -> "EntityBuilder":
        self.entity = entity
        self.query.from_(entity.get_table())
        return self
