"""Join-table rows of many-to-many relations."""

from typing import TYPE_CHECKING, Any

from sideorm.core.entity import Entity

if TYPE_CHECKING:
    from sideorm.core.builder import EntityBuilder


class Pivot(Entity):
    """One row of a many-to-many join table.

    Attached to each related entity under the ``pivot`` relation. The row has
    no primary key of its own; it is identified by both foreign keys.
    """

    guarded: list[str] = []
    incrementing = False

    def __init__(
        self,
        parent: Entity | None = None,
        attributes: dict[str, Any] | None = None,
        table: str | None = None,
        exists: bool = False,
    ):
        super().__init__()

        self.pivot_parent = parent
        self.foreign_key: str | None = None
        self.other_key: str | None = None

        if table:
            self.set_table(table)
        if parent is not None:
            self.set_connection(parent.get_connection_name())

        self.force_fill(attributes or {})
        self.sync_original()
        self.exists = exists

        self.timestamps = self.has_timestamp_attributes()

    def new_instance(self, attributes: dict[str, Any] | None = None, exists: bool = False) -> "Pivot":
        instance = type(self)(self.pivot_parent, attributes, self.get_table(), exists)
        return instance.set_pivot_keys(self.foreign_key, self.other_key)

    def set_keys_for_save_query(self, query: "EntityBuilder") -> "EntityBuilder":
        query.where(self.foreign_key, "=", self.get_attribute(self.foreign_key))
        return query.where(self.other_key, "=", self.get_attribute(self.other_key))

    def delete(self) -> int:
        """Delete the pivot row matched by both foreign keys."""
        return self.get_delete_query().get_query().delete()

    def get_delete_query(self) -> "EntityBuilder":
        query = self.new_query_without_scopes()
        query.where(self.foreign_key, "=", self.get_original(self.foreign_key, self.get_attribute(self.foreign_key)))
        return query.where(self.other_key, "=", self.get_original(self.other_key, self.get_attribute(self.other_key)))

    def set_pivot_keys(self, foreign_key: str, other_key: str) -> "Pivot":
        self.foreign_key = foreign_key
        self.other_key = other_key
        return self

    def get_foreign_key(self) -> str | None:
        return self.foreign_key

    def get_other_key(self) -> str | None:
        return self.other_key

    def has_timestamp_attributes(self) -> bool:
        return self.get_created_at_column() in self.attributes

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.get_table()} {self.attributes!r}>"


class MorphPivot(Pivot):
    """Pivot row of a polymorphic many-to-many relation, carrying the morph type."""

    def __init__(self, *args: Any, **kwargs: Any):
        self.morph_type: str | None = None
        self.pivot_morph_class: str | None = None
        super().__init__(*args, **kwargs)

    def new_instance(self, attributes: dict[str, Any] | None = None, exists: bool = False) -> "MorphPivot":
        instance = super().new_instance(attributes, exists)
        return instance.set_morph_type(self.morph_type).set_morph_class(self.pivot_morph_class)

    def set_keys_for_save_query(self, query: "EntityBuilder") -> "EntityBuilder":
        query.where(self.morph_type, "=", self.pivot_morph_class)
        return super().set_keys_for_save_query(query)

    def get_delete_query(self) -> "EntityBuilder":
        query = super().get_delete_query()
        return query.where(self.morph_type, "=", self.pivot_morph_class)

    def set_morph_type(self, morph_type: str) -> "MorphPivot":
        self.morph_type = morph_type
        return self

    def set_morph_class(self, morph_class: str) -> "MorphPivot":
        self.pivot_morph_class = morph_class
        return self
