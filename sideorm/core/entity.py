"""Active-record entity base class."""

import json
import logging
from collections.abc import Callable, Iterable
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import date, datetime
from typing import TYPE_CHECKING, Any, ClassVar

from sideorm.core.attributes import AttributeStore
from sideorm.core.collection import Collection
from sideorm.core.descriptor import EntityDescriptor, current_relation_name
from sideorm.core.naming import joining_table, plural, snake_case
from sideorm.core.registry import (
    _current_resolver,
    get_dispatcher,
    get_resolver,
    register_morph_type,
    resolve_morph_type,
)
from sideorm.exceptions import ArgumentError, ConfigurationError, EntityNotFoundError, MassAssignmentError

if TYPE_CHECKING:
    from sideorm.core.builder import EntityBuilder
    from sideorm.core.relations import (
        BelongsTo,
        BelongsToMany,
        BelongsToThrough,
        HasMany,
        HasManyThrough,
        HasOne,
        HasOneThrough,
        MorphMany,
        MorphOne,
        MorphTo,
        MorphToMany,
    )
    from sideorm.core.relations.pivot import Pivot
    from sideorm.core.scopes import SoftDeletes
    from sideorm.db.connection import Connection
    from sideorm.query.builder import QueryBuilder

logger = logging.getLogger(__name__)

EVENTS = (
    "creating",
    "created",
    "updating",
    "updated",
    "saving",
    "saved",
    "deleting",
    "deleted",
    "restoring",
    "restored",
)

_unguarded: ContextVar[bool] = ContextVar("unguarded", default=False)


def as_datetime(value: Any, date_format: str) -> datetime:
    """Normalize a date value to a naive ``datetime``.

    Accepts datetimes, dates, UNIX timestamps, ``YYYY-MM-DD`` strings, strings
    in ``date_format`` and ISO 8601 strings.
    """
    if isinstance(value, datetime):
        return value
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day)
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return datetime.fromtimestamp(value)
    if isinstance(value, str):
        text = value.strip()
        for fmt in ("%Y-%m-%d", date_format):
            try:
                return datetime.strptime(text, fmt)
            except ValueError:
                continue
        try:
            return datetime.fromisoformat(text)
        except ValueError:
            raise ArgumentError(f"Unable to parse date value {value!r}") from None
    raise ArgumentError(f"Unsupported date value {value!r}")


class Entity:
    """Base class for entities: one instance per persisted row.

    Subclasses declare their table, columns, relations and mass-assignment
    policy as class attributes. A descriptor with that metadata is built once
    per subclass when the class is defined.

    Example:
        >>> class User(Entity):
        ...     fillable = ["name", "email"]
        ...     name = Column()
        ...
        ...     @relation
        ...     def posts(self):
        ...         return self.has_many(Post)
        >>> user = User.create({"name": "Ada"})
        >>> User.with_("posts").where("name", "Ada").first().posts
    """

    table: ClassVar[str | None] = None
    primary_key: ClassVar[str] = "id"
    incrementing: ClassVar[bool] = True
    timestamps: bool = True
    created_at_column: ClassVar[str] = "created_at"
    updated_at_column: ClassVar[str] = "updated_at"
    connection_name: ClassVar[str | None] = None
    date_format: ClassVar[str | None] = None
    dirty_comparison: ClassVar[str | None] = None
    morph_class: ClassVar[str | None] = None

    fillable: ClassVar[list[str]] = []
    guarded: ClassVar[list[str]] = ["*"]
    dates: ClassVar[list[str]] = []
    hidden: ClassVar[list[str]] = []
    visible: ClassVar[list[str]] = []
    appends: ClassVar[list[str]] = []
    touches: ClassVar[list[str]] = []
    eager: ClassVar[list[str]] = []

    global_scopes: ClassVar[dict[str, Any]] = {}
    capabilities: ClassVar[tuple] = ()

    __descriptor__: ClassVar[EntityDescriptor]

    def __init_subclass__(cls, **kwargs):
        super().__init_subclass__(**kwargs)
        cls.__descriptor__ = EntityDescriptor(cls)
        register_morph_type(cls.__descriptor__.morph_class, cls)

    def __init__(self, attributes: dict[str, Any] | None = None, **kwargs: Any):
        self._store = AttributeStore()
        self.relations: dict[str, Any] = {}
        self.exists = False
        self._connection: str | None = None
        self._table: str | None = None
        self._force_deleting = False

        self.sync_original()
        self.fill({**(attributes or {}), **kwargs})

    @classmethod
    def descriptor(cls) -> EntityDescriptor:
        return cls.__descriptor__

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.primary_key}={self.get_key()!r}>"

    def __getitem__(self, key: str) -> Any:
        return self.get_attribute(key)

    def __setitem__(self, key: str, value: Any) -> None:
        self.set_attribute(key, value)

    def __delitem__(self, key: str) -> None:
        self._store.remove(key)
        self.relations.pop(key, None)

    def __contains__(self, key: str) -> bool:
        return key in self._store or key in self.relations

    # Mass assignment

    def fill(self, attributes: dict[str, Any]) -> "Entity":
        """Assign attributes that pass the mass-assignment policy.

        Raises:
            MassAssignmentError: If the entity is totally guarded, or if none
                of the given keys may be mass-assigned
        """
        if not attributes:
            return self

        totally_guarded = self.totally_guarded()
        accepted = False
        rejected = None

        for key, value in attributes.items():
            key = self.remove_table_from_key(key)

            if self.is_fillable(key):
                self.set_attribute(key, value)
                accepted = True
            elif totally_guarded:
                raise MassAssignmentError(key, type(self).__name__)
            elif rejected is None:
                rejected = key

        if not accepted and rejected is not None:
            raise MassAssignmentError(rejected, type(self).__name__)

        return self

    def force_fill(self, attributes: dict[str, Any]) -> "Entity":
        """Assign attributes ignoring the mass-assignment policy."""
        with self.unguarded():
            return self.fill(attributes)

    def is_fillable(self, key: str) -> bool:
        if _unguarded.get():
            return True
        if key in self.fillable:
            return True
        if self.is_guarded(key):
            return False
        return not self.fillable and not key.startswith("_")

    def is_guarded(self, key: str) -> bool:
        return key in self.guarded or self.guarded == ["*"]

    def totally_guarded(self) -> bool:
        return not self.fillable and self.guarded == ["*"]

    def remove_table_from_key(self, key: str) -> str:
        if "." not in key:
            return key
        return key.split(".")[-1]

    @classmethod
    @contextmanager
    def unguarded(cls):
        """Disable mass-assignment protection inside the block."""
        token = _unguarded.set(True)
        try:
            yield
        finally:
            _unguarded.reset(token)

    @classmethod
    def unguard(cls) -> None:
        _unguarded.set(True)

    @classmethod
    def reguard(cls) -> None:
        _unguarded.set(False)

    # Attributes

    @property
    def attributes(self) -> dict[str, Any]:
        return self._store.attributes

    @property
    def original(self) -> dict[str, Any]:
        return self._store.original

    def get_attributes(self) -> dict[str, Any]:
        return dict(self._store.attributes)

    def get_attribute(self, key: str) -> Any:
        """Attribute value, loaded relation, or lazily loaded relation results."""
        if key in self._store or key in self.descriptor().get_mutators:
            return self.get_attribute_value(key)

        if key in self.relations:
            return self.relations[key]

        if key in self.descriptor().relations:
            return self.get_relationship_from_method(key)

        return None

    def get_attribute_value(self, key: str) -> Any:
        value = self._store.get(key)

        mutator = self.descriptor().get_mutators.get(key)
        if mutator is not None:
            return mutator(self, value)

        if value is not None and key in self.get_dates():
            return self.as_datetime(value)

        return value

    def set_attribute(self, key: str, value: Any) -> "Entity":
        mutator = self.descriptor().set_mutators.get(key)
        if mutator is not None:
            mutator(self, value)
            return self

        if value is not None and key in self.get_dates():
            value = self.from_datetime(value)

        self._store.set(key, value)
        return self

    def has_get_mutator(self, key: str) -> bool:
        return key in self.descriptor().get_mutators

    def has_set_mutator(self, key: str) -> bool:
        return key in self.descriptor().set_mutators

    def set_raw_attributes(self, attributes: dict[str, Any], sync: bool = False) -> "Entity":
        self._store.set_raw(attributes, sync)
        return self

    def get_original(self, key: str | None = None, default: Any = None) -> Any:
        return self._store.get_original(key, default)

    def sync_original(self) -> "Entity":
        self._store.sync_original()
        return self

    def sync_original_attribute(self, key: str) -> "Entity":
        self._store.sync_original_attribute(key)
        return self

    def get_dirty(self) -> dict[str, Any]:
        """Attributes changed since the entity was loaded or last saved."""
        return self._store.get_dirty(self._lenient_dirty_comparison(), self._normalize_for_comparison)

    def is_dirty(self, *keys: str) -> bool:
        dirty = self.get_dirty()
        if not keys:
            return bool(dirty)
        return any(key in dirty for key in keys)

    def _lenient_dirty_comparison(self) -> bool:
        policy = self.dirty_comparison
        if policy is None:
            resolver = _current_resolver.get()
            policy = resolver.config.dirty_comparison if resolver is not None else "lenient"
        return policy == "lenient"

    def _normalize_for_comparison(self, key: str, value: Any) -> Any:
        if value is not None and key in self.get_dates():
            return self.as_datetime(value)
        return value

    # Dates

    def get_dates(self) -> list[str]:
        return self.descriptor().get_dates(
            self.uses_timestamps(), self.get_created_at_column(), self.get_updated_at_column()
        )

    def get_date_format(self) -> str:
        if self.date_format:
            return self.date_format
        resolver = _current_resolver.get()
        if resolver is None:
            from sideorm.config import DEFAULT_DATE_FORMAT

            return DEFAULT_DATE_FORMAT
        return self.get_connection().date_format

    def as_datetime(self, value: Any) -> datetime:
        return as_datetime(value, self.get_date_format())

    def from_datetime(self, value: Any) -> datetime:
        """Canonical stored representation for a date column value."""
        return self.as_datetime(value)

    def serialize_date(self, value: datetime) -> str:
        return value.strftime(self.get_date_format())

    def fresh_timestamp(self) -> datetime:
        return datetime.now().replace(microsecond=0)

    # Timestamps

    def uses_timestamps(self) -> bool:
        return self.timestamps

    def get_created_at_column(self) -> str:
        return self.created_at_column

    def get_updated_at_column(self) -> str:
        return self.updated_at_column

    def set_created_at(self, value: Any) -> None:
        self.set_attribute(self.get_created_at_column(), value)

    def set_updated_at(self, value: Any) -> None:
        self.set_attribute(self.get_updated_at_column(), value)

    def update_timestamps(self) -> None:
        time = self.fresh_timestamp()

        if not self.is_dirty(self.get_updated_at_column()):
            self.set_updated_at(time)

        if not self.exists and not self.is_dirty(self.get_created_at_column()):
            self.set_created_at(time)

    def touch(self) -> bool:
        """Update the entity's update timestamp."""
        if not self.uses_timestamps():
            return False
        self.update_timestamps()
        return self.save()

    def touch_owners(self) -> None:
        """Touch every owning relation listed in ``touches``."""
        for name in self.touches:
            self.related(name).touch()

            owner = self.get_attribute(name)
            if isinstance(owner, Entity):
                owner.touch_owners()
            elif isinstance(owner, Collection):
                for item in owner:
                    item.touch_owners()

    def touches_relation(self, name: str) -> bool:
        return name in self.touches

    # Keys and naming

    def get_key(self) -> Any:
        return self.get_attribute(self.primary_key)

    def get_key_name(self) -> str:
        return self.primary_key

    def get_qualified_key_name(self) -> str:
        return f"{self.get_table()}.{self.primary_key}"

    def get_key_for_save_query(self) -> Any:
        if self.primary_key in self.original:
            return self.original[self.primary_key]
        return self.get_attribute(self.primary_key)

    def get_foreign_key(self) -> str:
        """Default foreign key name used by other entities to point at this one."""
        return f"{snake_case(type(self).__name__)}_{self.primary_key}"

    def get_table(self) -> str:
        return self._table or self.descriptor().table

    def set_table(self, table: str) -> "Entity":
        self._table = table
        return self

    def get_morph_class(self) -> str:
        return self.descriptor().morph_class

    def joining_table(self, related: "type[Entity] | Entity") -> str:
        related_name = related.__name__ if isinstance(related, type) else type(related).__name__
        return joining_table(type(self).__name__, related_name)

    def is_same(self, other: "Entity | None") -> bool:
        return (
            other is not None
            and self.get_key() == other.get_key()
            and self.get_table() == other.get_table()
            and self.get_connection_name() == other.get_connection_name()
        )

    # Connections and queries

    def get_connection_name(self) -> str | None:
        return self._connection or self.connection_name

    def set_connection(self, name: str | None) -> "Entity":
        self._connection = name
        return self

    def get_connection(self) -> "Connection":
        return get_resolver().connection(self.get_connection_name())

    def new_base_query_builder(self) -> "QueryBuilder":
        return self.get_connection().query()

    def new_query(self) -> "EntityBuilder":
        """Builder for this entity type with global scopes applied."""
        return self.apply_global_scopes(self.new_query_without_scopes())

    def new_query_without_scopes(self) -> "EntityBuilder":
        from sideorm.core.builder import EntityBuilder

        builder = EntityBuilder(self.new_base_query_builder())
        return builder.set_entity(self).with_(*self.eager)

    def new_query_without_scope(self, name: str) -> "EntityBuilder":
        builder = self.new_query()
        self.descriptor().global_scopes[name].remove(builder, self)
        return builder

    def apply_global_scopes(self, builder: "EntityBuilder") -> "EntityBuilder":
        for scope in self.descriptor().global_scopes.values():
            scope.apply(builder, self)
        return builder

    def remove_global_scopes(self, builder: "EntityBuilder") -> "EntityBuilder":
        for scope in self.descriptor().global_scopes.values():
            scope.remove(builder, self)
        return builder

    @classmethod
    def add_global_scope(cls, name: str, scope: Any) -> None:
        from sideorm.core.scopes import as_scope

        cls.descriptor().global_scopes[name] = as_scope(scope)

    @classmethod
    def has_global_scope(cls, name: str) -> bool:
        return name in cls.descriptor().global_scopes

    @classmethod
    def get_global_scope(cls, name: str) -> Any:
        return cls.descriptor().global_scopes.get(name)

    # Instantiation

    def new_instance(self, attributes: dict[str, Any] | None = None, exists: bool = False) -> "Entity":
        instance = type(self)(attributes)
        instance.exists = exists
        instance.set_connection(self.get_connection_name())
        return instance

    def new_from_row(self, row: dict[str, Any], connection: str | None = None) -> "Entity":
        """Instance for a row read from storage (``exists`` set, original synced)."""
        instance = self.new_instance({}, True)
        instance.set_raw_attributes(row, sync=True)
        instance.set_connection(connection or self.get_connection_name())
        return instance

    def new_collection(self, entities: Iterable["Entity"] = ()) -> Collection:
        return Collection(entities)

    def new_pivot(
        self,
        parent: "Entity",
        attributes: dict[str, Any],
        table: str,
        exists: bool,
        using: "type[Pivot] | None" = None,
    ) -> "Pivot":
        from sideorm.core.relations.pivot import Pivot

        pivot_class = using or Pivot
        return pivot_class(parent, attributes, table, exists)

    @classmethod
    def hydrate(cls, rows: Iterable[dict[str, Any]], connection: str | None = None) -> Collection:
        instance = cls().set_connection(connection)
        return instance.new_collection(instance.new_from_row(row) for row in rows)

    @classmethod
    def hydrate_raw(cls, sql: str, bindings: list | None = None, connection: str | None = None) -> Collection:
        instance = cls().set_connection(connection)
        rows = instance.get_connection().select(sql, bindings)
        return cls.hydrate(rows, connection)

    # Class-level query shortcuts

    @classmethod
    def query(cls) -> "EntityBuilder":
        return cls().new_query()

    @classmethod
    def on(cls, connection: str | None = None) -> "EntityBuilder":
        instance = cls()
        instance.set_connection(connection)
        return instance.new_query()

    @classmethod
    def all(cls, columns: list | None = None) -> Collection:
        return cls.query().get(columns)

    @classmethod
    def find(cls, id: Any, columns: list | None = None) -> "Entity | Collection | None":
        return cls.query().find(id, columns)

    @classmethod
    def find_many(cls, ids: Iterable[Any], columns: list | None = None) -> Collection:
        return cls.query().find_many(ids, columns)

    @classmethod
    def find_or_fail(cls, id: Any, columns: list | None = None) -> "Entity | Collection":
        return cls.query().find_or_fail(id, columns)

    @classmethod
    def find_or_new(cls, id: Any, columns: list | None = None) -> "Entity":
        entity = cls.find(id, columns)
        return entity if entity is not None else cls()

    @classmethod
    def create(cls, attributes: dict[str, Any] | None = None, **kwargs: Any) -> "Entity":
        entity = cls(attributes, **kwargs)
        entity.save()
        return entity

    @classmethod
    def first_or_new(cls, attributes: dict[str, Any]) -> "Entity":
        entity = cls.query().where(attributes).first()
        return entity if entity is not None else cls(attributes)

    @classmethod
    def first_or_create(cls, attributes: dict[str, Any], values: dict[str, Any] | None = None) -> "Entity":
        entity = cls.query().where(attributes).first()
        if entity is not None:
            return entity
        return cls.create({**attributes, **(values or {})})

    @classmethod
    def update_or_create(cls, attributes: dict[str, Any], values: dict[str, Any] | None = None) -> "Entity":
        entity = cls.first_or_new(attributes)
        entity.fill(values or {}).save()
        return entity

    @classmethod
    def destroy(cls, *ids: Any) -> int:
        """Delete entities by key, firing delete events for each. Returns the count deleted."""
        keys = []
        for id in ids:
            if isinstance(id, (list, tuple, set)):
                keys.extend(id)
            else:
                keys.append(id)

        count = 0
        instance = cls()
        for entity in instance.new_query().where_in(instance.get_qualified_key_name(), keys).get():
            if entity.delete():
                count += 1
        return count

    @classmethod
    def with_(cls, *relations: Any) -> "EntityBuilder":
        return cls.query().with_(*relations)

    @classmethod
    def where(cls, *args: Any, **kwargs: Any) -> "EntityBuilder":
        return cls.query().where(*args, **kwargs)

    @classmethod
    def has(cls, relation: str, operator: str = ">=", count: int = 1) -> "EntityBuilder":
        return cls.query().has(relation, operator, count)

    @classmethod
    def where_has(cls, relation: str, callback: Callable | None = None, operator: str = ">=", count: int = 1):
        return cls.query().where_has(relation, callback, operator, count)

    @classmethod
    def doesnt_have(cls, relation: str) -> "EntityBuilder":
        return cls.query().doesnt_have(relation)

    @classmethod
    def with_count(cls, *relations: Any) -> "EntityBuilder":
        return cls.query().with_count(*relations)

    @classmethod
    def with_trashed(cls) -> "EntityBuilder":
        return cls.query().with_trashed()

    @classmethod
    def only_trashed(cls) -> "EntityBuilder":
        return cls.query().only_trashed()

    # Persistence

    def save(self, touch: bool = True) -> bool:
        """Insert or update the entity.

        Returns:
            False when a ``saving``, ``creating`` or ``updating`` listener
            halted the operation, True otherwise
        """
        query = self.new_query_without_scopes()

        if self.fire_event("saving") is False:
            return False

        if self.exists:
            saved = self.perform_update(query)
        else:
            saved = self.perform_insert(query)

        if saved:
            self.finish_save(touch)

        return saved

    def finish_save(self, touch: bool = True) -> None:
        self.fire_event("saved", halt=False)
        self.sync_original()
        if touch:
            self.touch_owners()

    def perform_update(self, query: "EntityBuilder") -> bool:
        dirty = self.get_dirty()
        if not dirty:
            return True

        if self.fire_event("updating") is False:
            return False

        if self.uses_timestamps():
            self.update_timestamps()
            dirty = self.get_dirty()

        if dirty:
            self.set_keys_for_save_query(query).get_query().update(dirty)

        self.fire_event("updated", halt=False)
        return True

    def perform_insert(self, query: "EntityBuilder") -> bool:
        if self.fire_event("creating") is False:
            return False

        if self.uses_timestamps():
            self.update_timestamps()

        attributes = dict(self.attributes)

        if self.incrementing:
            self.insert_and_set_id(query, attributes)
        else:
            query.get_query().insert(attributes)

        self.exists = True
        self.fire_event("created", halt=False)
        return True

    def insert_and_set_id(self, query: "EntityBuilder", attributes: dict[str, Any]) -> None:
        key_name = self.get_key_name()
        id = query.get_query().insert_get_id(attributes, key_name)
        self.set_attribute(key_name, id)

    def set_keys_for_save_query(self, query: "EntityBuilder") -> "EntityBuilder":
        query.where(self.get_key_name(), "=", self.get_key_for_save_query())
        return query

    def update(self, attributes: dict[str, Any] | None = None, **kwargs: Any) -> bool:
        """Fill and save an existing entity. Returns False for unsaved entities."""
        if not self.exists:
            return False
        return self.fill({**(attributes or {}), **kwargs}).save()

    def push(self) -> bool:
        """Save the entity and every loaded relation, recursively."""
        if not self.save():
            return False

        for value in self.relations.values():
            entities = value if isinstance(value, Collection) else [value]
            for entity in entities:
                if entity is not None and not entity.push():
                    return False

        return True

    def delete(self) -> bool | None:
        """Delete the entity (or soft-delete it when the entity uses soft deletes).

        Returns:
            None if the entity was never persisted, False if a ``deleting``
            listener halted the delete, True otherwise

        Raises:
            ArgumentError: If the entity type has no primary key
        """
        if not self.primary_key:
            raise ArgumentError(f"No primary key defined on entity [{type(self).__name__}]")

        if not self.exists:
            return None

        if self.fire_event("deleting") is False:
            return False

        self.touch_owners()
        self.perform_delete_on_entity()
        self.exists = False

        self.fire_event("deleted", halt=False)
        return True

    def perform_delete_on_entity(self) -> None:
        soft_deletes = self._soft_deletes()
        if soft_deletes is not None and not self._force_deleting:
            soft_deletes.run_soft_delete(self)
            return

        self.set_keys_for_save_query(self.new_query_without_scopes()).get_query().delete()

    def force_delete(self) -> bool | None:
        """Remove the row even when the entity uses soft deletes."""
        self._force_deleting = True
        try:
            return self.delete()
        finally:
            self._force_deleting = False

    def restore(self) -> bool:
        """Clear the soft-delete timestamp and save."""
        soft_deletes = self._require_soft_deletes()

        if self.fire_event("restoring") is False:
            return False

        self.set_attribute(soft_deletes.column, None)
        self.exists = True
        result = self.save()

        self.fire_event("restored", halt=False)
        return result

    def trashed(self) -> bool:
        soft_deletes = self._require_soft_deletes()
        return self.get_attribute(soft_deletes.column) is not None

    def get_deleted_at_column(self) -> str:
        return self._require_soft_deletes().column

    def get_qualified_deleted_at_column(self) -> str:
        return f"{self.get_table()}.{self.get_deleted_at_column()}"

    def _soft_deletes(self) -> "SoftDeletes | None":
        from sideorm.core.scopes import SoftDeletes

        return self.descriptor().capability(SoftDeletes)

    def _require_soft_deletes(self) -> "SoftDeletes":
        soft_deletes = self._soft_deletes()
        if soft_deletes is None:
            raise ArgumentError(f"Entity [{type(self).__name__}] does not use soft deletes")
        return soft_deletes

    def increment(self, column: str, amount: int | float = 1) -> int:
        return self._increment_or_decrement(column, amount, "increment")

    def decrement(self, column: str, amount: int | float = 1) -> int:
        return self._increment_or_decrement(column, amount, "decrement")

    def _increment_or_decrement(self, column: str, amount: int | float, method: str) -> int:
        query = self.new_query()

        if not self.exists:
            return getattr(query, method)(column, amount)

        delta = amount if method == "increment" else -amount
        self.set_attribute(column, (self.get_attribute(column) or 0) + delta)
        self.sync_original_attribute(column)

        return getattr(self.set_keys_for_save_query(query), method)(column, amount)

    def replicate(self, except_: Iterable[str] | None = None) -> "Entity":
        """Unsaved copy of the entity without its key and timestamps."""
        if except_ is None:
            except_ = [self.get_key_name(), self.get_created_at_column(), self.get_updated_at_column()]
        excluded = set(except_)

        attributes = {key: value for key, value in self.attributes.items() if key not in excluded}

        instance = self.new_instance()
        instance.set_raw_attributes(attributes)
        instance.set_relations(dict(self.relations))
        return instance

    def fresh(self, with_: Iterable[str] = ()) -> "Entity | None":
        """Reload a new instance of the entity from storage."""
        if not self.exists:
            return None
        return self.new_query().with_(*with_).where(self.get_qualified_key_name(), "=", self.get_key()).first()

    def refresh(self) -> "Entity":
        """Reload attributes (and loaded relations) from storage in place."""
        if not self.exists:
            return self

        fresh = self.new_query_without_scopes().find_or_fail(self.get_key())
        self.set_raw_attributes(fresh.get_attributes(), sync=True)

        if self.relations:
            loaded = [name for name in self.relations if name in self.descriptor().relations]
            self.relations = {}
            self.load(*loaded)

        return self

    def load(self, *relations: Any) -> "Entity":
        """Eager load relations onto this already fetched entity."""
        query = self.new_query().with_(*relations)
        query.eager_load_relations([self])
        return self

    # Relations

    def related(self, name: str) -> Any:
        """Fresh Relation object for the relation accessor ``name``.

        Raises:
            RelationNotFoundError: If ``name`` is not a declared relation
        """
        from sideorm.exceptions import RelationNotFoundError

        accessor = self.descriptor().relations.get(name)
        if accessor is None:
            raise RelationNotFoundError(type(self).__name__, name)
        return accessor.build(self)

    def get_relation_value(self, name: str) -> Any:
        if name in self.relations:
            return self.relations[name]
        return self.get_relationship_from_method(name)

    def get_relationship_from_method(self, name: str) -> Any:
        results = self.related(name).get_results()
        self.relations[name] = results
        return results

    def get_relation(self, name: str) -> Any:
        return self.relations.get(name)

    def set_relation(self, name: str, value: Any) -> "Entity":
        self.relations[name] = value
        return self

    def set_relations(self, relations: dict[str, Any]) -> "Entity":
        self.relations = relations
        return self

    def relation_loaded(self, name: str) -> bool:
        return name in self.relations

    def unset_relation(self, name: str) -> "Entity":
        self.relations.pop(name, None)
        return self

    def _related_instance(self, related: "type[Entity] | str") -> "Entity":
        if isinstance(related, str):
            related = resolve_morph_type(related)
        return related()

    def has_one(self, related: "type[Entity] | str", foreign_key: str | None = None, local_key: str | None = None) -> "HasOne":
        from sideorm.core.relations import HasOne

        foreign_key = foreign_key or self.get_foreign_key()
        instance = self._related_instance(related)
        local_key = local_key or self.get_key_name()

        return HasOne(instance.new_query(), self, f"{instance.get_table()}.{foreign_key}", local_key)

    def has_many(self, related: "type[Entity] | str", foreign_key: str | None = None, local_key: str | None = None) -> "HasMany":
        from sideorm.core.relations import HasMany

        foreign_key = foreign_key or self.get_foreign_key()
        instance = self._related_instance(related)
        local_key = local_key or self.get_key_name()

        return HasMany(instance.new_query(), self, f"{instance.get_table()}.{foreign_key}", local_key)

    def morph_one(
        self,
        related: "type[Entity] | str",
        name: str,
        type: str | None = None,
        id: str | None = None,
        local_key: str | None = None,
    ) -> "MorphOne":
        from sideorm.core.relations import MorphOne

        instance = self._related_instance(related)
        type, id = type or f"{name}_type", id or f"{name}_id"
        table = instance.get_table()
        local_key = local_key or self.get_key_name()

        return MorphOne(instance.new_query(), self, f"{table}.{type}", f"{table}.{id}", local_key)

    def morph_many(
        self,
        related: "type[Entity] | str",
        name: str,
        type: str | None = None,
        id: str | None = None,
        local_key: str | None = None,
    ) -> "MorphMany":
        from sideorm.core.relations import MorphMany

        instance = self._related_instance(related)
        type, id = type or f"{name}_type", id or f"{name}_id"
        table = instance.get_table()
        local_key = local_key or self.get_key_name()

        return MorphMany(instance.new_query(), self, f"{table}.{type}", f"{table}.{id}", local_key)

    def belongs_to(
        self,
        related: "type[Entity] | str",
        foreign_key: str | None = None,
        other_key: str | None = None,
        relation: str | None = None,
    ) -> "BelongsTo":
        from sideorm.core.relations import BelongsTo

        relation = relation or current_relation_name()
        instance = self._related_instance(related)

        if foreign_key is None:
            if relation is None:
                raise ArgumentError("belongs_to needs a foreign key when used outside a relation accessor")
            foreign_key = f"{snake_case(relation)}_{instance.get_key_name()}"

        other_key = other_key or instance.get_key_name()

        return BelongsTo(instance.new_query(), self, foreign_key, other_key, relation)

    def morph_to(self, name: str | None = None, type: str | None = None, id: str | None = None) -> "MorphTo":
        """Polymorphic inverse: the related type is read from the ``<name>_type`` column."""
        from sideorm.core.relations import MorphTo

        name = name or current_relation_name()
        if name is None:
            raise ArgumentError("morph_to needs a name when used outside a relation accessor")

        type, id = type or f"{name}_type", id or f"{name}_id"

        morph_type = self.get_attribute(type)
        if not morph_type:
            # Eager loading: the related types are only known per row
            return MorphTo(self.new_query(), self, id, None, type, name)

        instance = resolve_morph_type(morph_type)()
        instance.set_connection(self.get_connection_name())
        return MorphTo(instance.new_query(), self, id, instance.get_key_name(), type, name)

    def has_many_through(
        self,
        related: "type[Entity] | str",
        through: "type[Entity] | str",
        first_key: str | None = None,
        second_key: str | None = None,
        local_key: str | None = None,
    ) -> "HasManyThrough":
        from sideorm.core.relations import HasManyThrough

        through_instance = self._related_instance(through)
        first_key = first_key or self.get_foreign_key()
        second_key = second_key or through_instance.get_foreign_key()
        local_key = local_key or self.get_key_name()

        return HasManyThrough(
            self._related_instance(related).new_query(), self, through_instance, first_key, second_key, local_key
        )

    def has_one_through(
        self,
        related: "type[Entity] | str",
        through: "type[Entity] | str",
        first_key: str | None = None,
        second_key: str | None = None,
        local_key: str | None = None,
    ) -> "HasOneThrough":
        from sideorm.core.relations import HasOneThrough

        instance = self._related_instance(related)
        through_instance = self._related_instance(through)
        first_key = first_key or self.get_foreign_key()
        second_key = second_key or instance.get_foreign_key()
        local_key = local_key or self.get_key_name()

        return HasOneThrough(instance.new_query(), self, through_instance, first_key, second_key, local_key)

    def belongs_to_through(
        self,
        related: "type[Entity] | str",
        through: "type[Entity] | str",
        first_key: str | None = None,
        second_key: str | None = None,
    ) -> "BelongsToThrough":
        from sideorm.core.relations import BelongsToThrough

        instance = self._related_instance(related)
        through_instance = self._related_instance(through)
        first_key = first_key or through_instance.get_foreign_key()
        second_key = second_key or instance.get_foreign_key()

        return BelongsToThrough(instance.new_query(), self, through_instance, first_key, second_key)

    def belongs_to_many(
        self,
        related: "type[Entity] | str",
        table: str | None = None,
        foreign_key: str | None = None,
        other_key: str | None = None,
        relation: str | None = None,
    ) -> "BelongsToMany":
        from sideorm.core.relations import BelongsToMany

        relation = relation or current_relation_name()
        instance = self._related_instance(related)

        foreign_key = foreign_key or self.get_foreign_key()
        other_key = other_key or instance.get_foreign_key()
        table = table or self.joining_table(type(instance))

        return BelongsToMany(instance.new_query(), self, table, foreign_key, other_key, relation)

    def morph_to_many(
        self,
        related: "type[Entity] | str",
        name: str,
        table: str | None = None,
        foreign_key: str | None = None,
        other_key: str | None = None,
        inverse: bool = False,
    ) -> "MorphToMany":
        from sideorm.core.relations import MorphToMany

        relation = current_relation_name()
        instance = self._related_instance(related)

        foreign_key = foreign_key or f"{name}_id"
        other_key = other_key or instance.get_foreign_key()
        table = table or plural(name)

        return MorphToMany(instance.new_query(), self, name, table, foreign_key, other_key, relation, inverse)

    def morphed_by_many(
        self,
        related: "type[Entity] | str",
        name: str,
        table: str | None = None,
        foreign_key: str | None = None,
        other_key: str | None = None,
    ) -> "MorphToMany":
        """Inverse of ``morph_to_many``: the morph type stored is the related entity's."""
        foreign_key = foreign_key or self.get_foreign_key()
        other_key = other_key or f"{name}_id"
        return self.morph_to_many(related, name, table, foreign_key, other_key, inverse=True)

    # Events

    def fire_event(self, event: str, halt: bool = True) -> Any:
        dispatcher = get_dispatcher()
        if dispatcher is None:
            return True

        name = self.event_name(event)
        if halt:
            return dispatcher.until(name, self)
        return dispatcher.dispatch(name, self)

    @classmethod
    def event_name(cls, event: str) -> str:
        return f"sideorm.{event}: {cls.descriptor().key}"

    @classmethod
    def register_event(cls, event: str, callback: Callable, priority: int = 0) -> None:
        dispatcher = get_dispatcher()
        if dispatcher is None:
            raise ConfigurationError("No event dispatcher installed. Use `with Database(...):` first")
        dispatcher.listen(cls.event_name(event), callback, priority)

    @classmethod
    def creating(cls, callback: Callable, priority: int = 0) -> None:
        cls.register_event("creating", callback, priority)

    @classmethod
    def created(cls, callback: Callable, priority: int = 0) -> None:
        cls.register_event("created", callback, priority)

    @classmethod
    def updating(cls, callback: Callable, priority: int = 0) -> None:
        cls.register_event("updating", callback, priority)

    @classmethod
    def updated(cls, callback: Callable, priority: int = 0) -> None:
        cls.register_event("updated", callback, priority)

    @classmethod
    def saving(cls, callback: Callable, priority: int = 0) -> None:
        cls.register_event("saving", callback, priority)

    @classmethod
    def saved(cls, callback: Callable, priority: int = 0) -> None:
        cls.register_event("saved", callback, priority)

    @classmethod
    def deleting(cls, callback: Callable, priority: int = 0) -> None:
        cls.register_event("deleting", callback, priority)

    @classmethod
    def deleted(cls, callback: Callable, priority: int = 0) -> None:
        cls.register_event("deleted", callback, priority)

    @classmethod
    def restoring(cls, callback: Callable, priority: int = 0) -> None:
        cls.register_event("restoring", callback, priority)

    @classmethod
    def restored(cls, callback: Callable, priority: int = 0) -> None:
        cls.register_event("restored", callback, priority)

    @classmethod
    def observe(cls, observer: Any, priority: int = 0) -> None:
        """Register every lifecycle method found on ``observer``."""
        for event in EVENTS:
            handler = getattr(observer, event, None)
            if callable(handler):
                cls.register_event(event, handler, priority)

    @classmethod
    def flush_event_listeners(cls) -> None:
        dispatcher = get_dispatcher()
        if dispatcher is None:
            return
        for event in EVENTS:
            dispatcher.forget(cls.event_name(event))

    # Serialization

    def to_dict(self) -> dict[str, Any]:
        """Attributes and loaded relations as plain data."""
        return {**self.attributes_to_dict(), **self.relations_to_dict()}

    def to_json(self, **kwargs: Any) -> str:
        return json.dumps(self.to_dict(), default=str, **kwargs)

    def attributes_to_dict(self) -> dict[str, Any]:
        attributes = self.get_dictable_items(dict(self.attributes))

        for key in self.get_dates():
            if attributes.get(key) is not None:
                attributes[key] = self.serialize_date(self.as_datetime(attributes[key]))

        mutators = self.descriptor().get_mutators
        for key in mutators:
            if key in attributes:
                attributes[key] = mutators[key](self, attributes[key])

        for key in self.appends:
            mutator = mutators.get(key)
            attributes[key] = mutator(self, None) if mutator else self.get_attribute(key)

        return attributes

    def relations_to_dict(self) -> dict[str, Any]:
        result = {}
        for name, value in self.get_dictable_items(dict(self.relations)).items():
            if isinstance(value, (Entity, Collection)):
                result[name] = value.to_dict()
            else:
                result[name] = value
        return result

    def get_dictable_items(self, values: dict[str, Any]) -> dict[str, Any]:
        if self.visible:
            values = {key: value for key, value in values.items() if key in self.visible}
        return {key: value for key, value in values.items() if key not in self.hidden}
