"""Many-to-many relation through a pivot table."""

import logging
from collections.abc import Iterable
from typing import TYPE_CHECKING, Any

from sideorm.core.collection import Collection, _key_of
from sideorm.core.naming import plural, snake_case
from sideorm.core.relations.base import Relation
from sideorm.core.relations.pivot import MorphPivot, Pivot
from sideorm.query.expression import Raw

if TYPE_CHECKING:
    from sideorm.core.builder import EntityBuilder
    from sideorm.core.entity import Entity
    from sideorm.query.builder import QueryBuilder

logger = logging.getLogger(__name__)

PIVOT_PREFIX = "pivot_"


def _match_key(id: Any, current: list[Any]) -> Any:
    """Return the current pivot key loosely equal to ``id``.

    Ids arriving as strings (``"2"``) match integer keys; unmatched integer
    strings are cast to ``int``.
    """
    for key in current:
        if key == id or str(key) == str(id):
            return key
    if isinstance(id, str) and id.lstrip("-").isdigit():
        return int(id)
    return id


class BelongsToMany(Relation):
    """Related rows joined through a pivot table (``role_user``).

    Selected pivot columns come back prefixed with ``pivot_``; they are
    stripped from each related entity into a Pivot stored as its ``pivot``
    relation.
    """

    def __init__(
        self,
        query: "EntityBuilder",
        parent: "Entity",
        table: str,
        foreign_key: str,
        other_key: str,
        relation_name: str | None = None,
    ):
        self.table = table
        self.foreign_key = foreign_key
        self.other_key = other_key
        self.relation_name = relation_name
        self.pivot_columns: list[str] = []
        self.pivot_wheres: list[tuple] = []
        self.pivot_class: type[Pivot] | None = None

        super().__init__(query, parent)

    def get_results(self) -> Collection:
        return self.get()

    def get(self, columns: list | None = None) -> Collection:
        """Related entities with their pivot rows attached."""
        query = self.query.copy()

        columns = [] if query.get_query().columns else (columns or ["*"])
        query.get_query().add_select(*self.get_select_columns(columns))

        models = query.get_models()
        self.hydrate_pivot_relation(models)

        if models:
            models = query.eager_load_relations(models)

        return self.related.new_collection(models)

    def first(self, columns: list | None = None) -> "Entity | None":
        results = self.take(1).get(columns)
        return results[0] if results else None

    def first_or_fail(self, columns: list | None = None) -> "Entity":
        from sideorm.exceptions import EntityNotFoundError

        model = self.first(columns)
        if model is None:
            raise EntityNotFoundError(self.related.descriptor().name)
        return model

    def hydrate_pivot_relation(self, models: list["Entity"]) -> None:
        for model in models:
            pivot = self.new_existing_pivot(self.clean_pivot_attributes(model))
            model.set_relation("pivot", pivot)

    def clean_pivot_attributes(self, model: "Entity") -> dict[str, Any]:
        """Move the selected pivot columns off ``model`` into a dict.

        Only aliases this relation selected are moved; related columns that
        happen to start with ``pivot_`` stay on the entity.
        """
        aliases = {f"{PIVOT_PREFIX}{column}": column for column in self.get_pivot_column_names()}
        values = {}
        attributes = {}

        for key, value in model.get_attributes().items():
            if key in aliases:
                values[aliases[key]] = value
            else:
                attributes[key] = value

        model.set_raw_attributes(attributes, sync=True)
        return values

    def get_select_columns(self, columns: list) -> list[str]:
        if columns == ["*"]:
            columns = [f"{self.related.get_table()}.*"]
        return [*columns, *self.get_aliased_pivot_columns()]

    def get_pivot_column_names(self) -> list[str]:
        columns = []
        for column in [self.foreign_key, self.other_key, *self.pivot_columns]:
            if column not in columns:
                columns.append(column)
        return columns

    def get_aliased_pivot_columns(self) -> list[str]:
        return [f"{self.table}.{column} as {PIVOT_PREFIX}{column}" for column in self.get_pivot_column_names()]

    # Constraints

    def add_constraints(self) -> None:
        self.set_join()

        if self.constraints_enabled():
            self.set_where()

    def set_join(self, query: "EntityBuilder | None" = None) -> "BelongsToMany":
        query = query or self.query

        key = f"{self.related.get_table()}.{self.related.get_key_name()}"
        query.join(self.table, key, "=", self.get_other_key())
        return self

    def set_where(self) -> "BelongsToMany":
        self.query.where(self.get_foreign_key(), "=", self.parent.get_key())
        return self

    def add_eager_constraints(self, models: list["Entity"]) -> None:
        self.query.where_in(self.get_foreign_key(), self.get_keys(models))

    def get_relation_count_query(self, query: "EntityBuilder", parent: "EntityBuilder") -> "EntityBuilder":
        if parent.get_query().from_table == query.get_query().from_table:
            return self.get_relation_count_query_for_self_join(query, parent)

        self.set_join(query)
        return super().get_relation_count_query(query, parent)

    def get_relation_count_query_for_self_join(
        self, query: "EntityBuilder", parent: "EntityBuilder"
    ) -> "EntityBuilder":
        """Count pivot rows directly, aliasing the pivot so it can't collide with the outer table."""
        hash = self.get_relation_count_hash()
        query.select(Raw("count(*)"))
        query.get_query().from_(f"{self.table} as {hash}")

        key = self.get_qualified_parent_key_name()
        return query.where(f"{hash}.{self.foreign_key}", "=", Raw(key))

    def get_has_compare_key(self) -> str:
        return self.get_foreign_key()

    # Eager matching

    def init_relation(self, models: list["Entity"], relation: str) -> list["Entity"]:
        for model in models:
            model.set_relation(relation, self.related.new_collection())
        return models

    def match(self, models: list["Entity"], results: Collection, relation: str) -> list["Entity"]:
        dictionary = self.build_dictionary(results)

        for model in models:
            key = model.get_key()
            if key in dictionary:
                model.set_relation(relation, self.related.new_collection(dictionary[key]))

        return models

    def build_dictionary(self, results: Collection) -> dict[Any, list["Entity"]]:
        dictionary: dict[Any, list[Entity]] = {}
        for result in results:
            key = result.get_relation("pivot").get_attribute(self.foreign_key)
            dictionary.setdefault(key, []).append(result)
        return dictionary

    # Pivot options

    def with_pivot(self, *columns: str) -> "BelongsToMany":
        """Also select these pivot columns onto each related entity's ``pivot``."""
        for column in columns:
            if isinstance(column, (list, tuple)):
                self.pivot_columns.extend(column)
            else:
                self.pivot_columns.append(column)
        return self

    def with_timestamps(self, created_at: str | None = None, updated_at: str | None = None) -> "BelongsToMany":
        """Maintain created/updated timestamps on pivot rows."""
        return self.with_pivot(created_at or self.created_at(), updated_at or self.updated_at())

    def where_pivot(self, column: str, operator: Any = None, value: Any = None, boolean: str = "and") -> "BelongsToMany":
        if value is None:
            operator, value = "=", operator

        self.pivot_wheres.append((column, operator, value, boolean))
        self.query.where(f"{self.table}.{column}", operator, value, boolean)
        return self

    def or_where_pivot(self, column: str, operator: Any = None, value: Any = None) -> "BelongsToMany":
        return self.where_pivot(column, operator, value, "or")

    def using(self, pivot_class: type[Pivot]) -> "BelongsToMany":
        """Use a custom Pivot subclass for pivot rows."""
        self.pivot_class = pivot_class
        return self

    def new_pivot(self, attributes: dict[str, Any] | None = None, exists: bool = False) -> Pivot:
        pivot = self.related.new_pivot(self.parent, attributes or {}, self.table, exists, self.pivot_class)
        return pivot.set_pivot_keys(self.foreign_key, self.other_key)

    def new_existing_pivot(self, attributes: dict[str, Any] | None = None) -> Pivot:
        return self.new_pivot(attributes, True)

    # Writes

    def touch(self) -> None:
        """Stamp ``updated_at`` on every related entity."""
        ids = self.get_related_ids()
        if ids:
            column = self.related_updated_at()
            self.related.new_query().where_in(self.related.get_qualified_key_name(), ids).update(
                {column: self.related.fresh_timestamp()}
            )

    def get_related_ids(self) -> list[Any]:
        query = self.query.copy().get_query()
        query.columns = None
        return query.pluck(self.related.get_qualified_key_name())

    def save(
        self, model: "Entity", joining: dict[str, Any] | None = None, touch: bool = True
    ) -> "Entity":
        """Save ``model`` and attach it to the parent."""
        model.save(touch=False)
        self.attach(model.get_key(), joining or {}, touch)
        return model

    def save_many(self, models: Iterable["Entity"], joinings: dict[Any, dict[str, Any]] | None = None) -> list["Entity"]:
        joinings = joinings or {}
        saved = [self.save(model, joinings.get(index, {}), False) for index, model in enumerate(models)]
        self.touch_if_touching()
        return saved

    def create(
        self, attributes: dict[str, Any] | None = None, joining: dict[str, Any] | None = None, touch: bool = True
    ) -> "Entity":
        instance = self.related.new_instance(attributes)
        instance.save(touch=False)
        self.attach(instance.get_key(), joining or {}, touch)
        return instance

    def create_many(self, records: Iterable[dict[str, Any]], joinings: dict[Any, dict[str, Any]] | None = None) -> list["Entity"]:
        joinings = joinings or {}
        return [self.create(record, joinings.get(index, {}), False) for index, record in enumerate(records)]

    def sync(self, ids: Any, detaching: bool = True) -> dict[str, list[Any]]:
        """Make the pivot rows for the parent match ``ids`` exactly.

        Args:
            ids: List of ids, a collection, or a dict mapping ids to extra
                pivot attributes
            detaching: Remove pivot rows not present in ``ids``

        Returns:
            ``{"attached": [...], "detached": [...], "updated": [...]}``
        """
        changes: dict[str, list[Any]] = {"attached": [], "detached": [], "updated": []}

        current = self.new_pivot_query().pluck(self.other_key)
        records = {_match_key(id, current): attributes for id, attributes in self.format_sync_list(ids).items()}

        detach = [id for id in current if id not in records]

        if detaching and detach:
            self.detach(detach)
            changes["detached"] = detach

        attach_changes = self.attach_new(records, current, False)
        changes["attached"] = attach_changes["attached"]
        changes["updated"] = attach_changes["updated"]

        if changes["attached"] or changes["updated"]:
            self.touch_if_touching()

        logger.debug(
            f"Synced {self.table}: attached={changes['attached']} "
            f"detached={changes['detached']} updated={changes['updated']}"
        )
        return changes

    def sync_without_detaching(self, ids: Any) -> dict[str, list[Any]]:
        return self.sync(ids, False)

    def format_sync_list(self, records: Any) -> dict[Any, dict[str, Any]]:
        if isinstance(records, Collection):
            records = records.model_keys()

        if isinstance(records, dict):
            return {id: dict(attributes or {}) for id, attributes in records.items()}

        return {_key_of(id): {} for id in records}

    def attach_new(self, records: dict[Any, dict[str, Any]], current: list[Any], touch: bool = True) -> dict[str, list]:
        changes: dict[str, list] = {"attached": [], "updated": []}

        for id, attributes in records.items():
            if id not in current:
                self.attach(id, attributes, touch)
                changes["attached"].append(id)
            elif attributes and self.update_existing_pivot(id, attributes, touch):
                changes["updated"].append(id)

        return changes

    def update_existing_pivot(self, id: Any, attributes: dict[str, Any], touch: bool = True) -> int:
        """Update extra columns on the pivot row for ``id``."""
        if self.updated_at() in self.pivot_columns:
            attributes = self.set_timestamps_on_attach(attributes, True)

        updated = self.new_pivot_statement_for_id(id).update(attributes)

        if touch:
            self.touch_if_touching()

        return updated

    def attach(self, id: Any, attributes: dict[str, Any] | None = None, touch: bool = True) -> None:
        """Insert pivot rows for one id, several ids, entities, or ``{id: attributes}``."""
        if isinstance(id, Collection):
            id = id.model_keys()

        records = self.create_attach_records(self._normalize_ids(id), attributes or {})
        if records:
            self.new_pivot_statement().insert(records)

        if touch:
            self.touch_if_touching()

    def create_attach_records(self, ids: dict[Any, dict[str, Any]], attributes: dict[str, Any]) -> list[dict[str, Any]]:
        timed = self.has_pivot_column(self.created_at())

        records = []
        for id, extra in ids.items():
            record = self.create_attach_record(id, timed)
            record.update(extra)
            record.update(attributes)
            records.append(record)
        return records

    def create_attach_record(self, id: Any, timed: bool) -> dict[str, Any]:
        record = {self.foreign_key: self.parent.get_key(), self.other_key: id}
        if timed:
            record = self.set_timestamps_on_attach(record)
        return record

    def set_timestamps_on_attach(self, record: dict[str, Any], exists: bool = False) -> dict[str, Any]:
        fresh = self.parent.fresh_timestamp()
        record = dict(record)
        if not exists:
            record[self.created_at()] = fresh
        record[self.updated_at()] = fresh
        return record

    def detach(self, ids: Any = None, touch: bool = True) -> int:
        """Delete pivot rows for ``ids``, or every pivot row of the parent when empty."""
        query = self.new_pivot_query()

        if isinstance(ids, Collection):
            ids = ids.model_keys()

        ids = list(self._normalize_ids(ids)) if ids is not None else []
        if ids:
            query.where_in(self.other_key, ids)

        results = query.delete()

        if touch:
            self.touch_if_touching()

        return results

    def _normalize_ids(self, ids: Any) -> dict[Any, dict[str, Any]]:
        if ids is None:
            return {}
        if isinstance(ids, dict):
            return {id: dict(attributes or {}) for id, attributes in ids.items()}
        if isinstance(ids, (list, tuple, set)):
            return {_key_of(id): {} for id in ids}
        return {_key_of(ids): {}}

    def touch_if_touching(self) -> None:
        if self.touching_parent():
            self.parent.touch()

        if self.relation_name and self.parent.touches_relation(self.relation_name):
            self.touch()

    def touching_parent(self) -> bool:
        return self.related.touches_relation(self.guess_inverse_relation())

    def guess_inverse_relation(self) -> str:
        return plural(snake_case(type(self.parent).__name__))

    def has_pivot_column(self, column: str) -> bool:
        return column in self.pivot_columns

    def new_pivot_statement(self) -> "QueryBuilder":
        return self.query.get_query().new_query().from_(self.table)

    def new_pivot_query(self) -> "QueryBuilder":
        query = self.new_pivot_statement()
        for column, operator, value, boolean in self.pivot_wheres:
            query.where(column, operator, value, boolean)
        return query.where(self.foreign_key, "=", self.parent.get_key())

    def new_pivot_statement_for_id(self, id: Any) -> "QueryBuilder":
        return self.new_pivot_query().where(self.other_key, "=", id)

    # Keys

    def get_foreign_key(self) -> str:
        return f"{self.table}.{self.foreign_key}"

    def get_other_key(self) -> str:
        return f"{self.table}.{self.other_key}"

    def get_table(self) -> str:
        return self.table

    def get_relation_name(self) -> str | None:
        return self.relation_name


class MorphToMany(BelongsToMany):
    """Many-to-many whose pivot rows also record a morph type (``taggables``).

    The owning side stores the parent's morph class; the inverse side
    (``morphed_by_many``) stores the related entity's.
    """

    def __init__(
        self,
        query: "EntityBuilder",
        parent: "Entity",
        name: str,
        table: str,
        foreign_key: str,
        other_key: str,
        relation_name: str | None = None,
        inverse: bool = False,
    ):
        self.inverse = inverse
        self.morph_type = f"{name}_type"
        self.morph_class = query.get_entity().get_morph_class() if inverse else parent.get_morph_class()

        super().__init__(query, parent, table, foreign_key, other_key, relation_name)

    def set_where(self) -> "MorphToMany":
        super().set_where()
        self.query.where(f"{self.table}.{self.morph_type}", "=", self.morph_class)
        return self

    def add_eager_constraints(self, models: list["Entity"]) -> None:
        super().add_eager_constraints(models)
        self.query.where(f"{self.table}.{self.morph_type}", "=", self.morph_class)

    def get_relation_count_query(self, query: "EntityBuilder", parent: "EntityBuilder") -> "EntityBuilder":
        self_join = parent.get_query().from_table == query.get_query().from_table
        query = super().get_relation_count_query(query, parent)

        # A self join reads from the aliased pivot alone
        column = self.morph_type if self_join else f"{self.table}.{self.morph_type}"
        return query.where(column, "=", self.morph_class)

    def create_attach_record(self, id: Any, timed: bool) -> dict[str, Any]:
        record = super().create_attach_record(id, timed)
        record[self.morph_type] = self.morph_class
        return record

    def new_pivot_query(self) -> "QueryBuilder":
        return super().new_pivot_query().where(self.morph_type, "=", self.morph_class)

    def new_pivot(self, attributes: dict[str, Any] | None = None, exists: bool = False) -> MorphPivot:
        pivot_class = self.pivot_class or MorphPivot
        pivot = pivot_class(self.parent, attributes or {}, self.table, exists)
        pivot.set_pivot_keys(self.foreign_key, self.other_key)

        if isinstance(pivot, MorphPivot):
            pivot.set_morph_type(self.morph_type).set_morph_class(self.morph_class)

        return pivot

    def get_morph_type(self) -> str:
        return self.morph_type

    def get_morph_class(self) -> str:
        return self.morph_class
