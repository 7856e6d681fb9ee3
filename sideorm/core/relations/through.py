"""Relations that reach the related table across an intermediate table."""

from typing import TYPE_CHECKING, Any

from sideorm.core.collection import Collection
from sideorm.core.relations.base import Relation
from sideorm.exceptions import EntityNotFoundError
from sideorm.query.expression import Raw

if TYPE_CHECKING:
    from sideorm.core.builder import EntityBuilder
    from sideorm.core.entity import Entity

# Alias of the intermediate column selected alongside the related rows. It
# carries the key the batch is matched back on.
THROUGH_KEY = "through_key"


class ThroughRelation(Relation):
    """Shared query shape of the through relations.

    Subclasses define the join onto the intermediate table, the intermediate
    column that identifies the parent (``get_bridge_column``) and the parent
    attribute it is compared with (``get_parent_match_key``).
    """

    def __init__(self, query: "EntityBuilder", parent: "Entity", through_parent: "Entity"):
        self.through_parent = through_parent
        super().__init__(query, parent)

    def add_constraints(self) -> None:
        self.set_join()

        if self.constraints_enabled():
            value = self.parent.get_attribute(self.get_parent_match_key())
            self.query.where(self.get_bridge_column(), "=", value)

    def set_join(self, query: "EntityBuilder | None" = None) -> "ThroughRelation":
        query = query or self.query
        first, second = self.get_join_columns()
        query.join(self.through_parent.get_table(), first, "=", second)

        # Rows behind a soft-deleted intermediate are unreachable
        if self.through_parent._soft_deletes() is not None:
            query.where_null(self.through_parent.get_qualified_deleted_at_column())

        return self

    def get_join_columns(self) -> tuple[str, str]:
        raise NotImplementedError

    def get_bridge_column(self) -> str:
        raise NotImplementedError

    def get_parent_match_key(self) -> str:
        raise NotImplementedError

    def add_eager_constraints(self, models: list["Entity"]) -> None:
        self.query.where_in(self.get_bridge_column(), self.get_keys(models, self.get_parent_match_key()))

    def get(self, columns: list | None = None) -> Collection:
        """Related entities, each carrying the ``through_key`` bridge attribute."""
        query = self.query.copy()

        columns = [] if query.get_query().columns else (columns or ["*"])
        query.get_query().add_select(*self.get_select_columns(columns))

        models = query.get_models()
        if models:
            models = query.eager_load_relations(models)

        return self.related.new_collection(models)

    def get_select_columns(self, columns: list) -> list[str]:
        if columns == ["*"]:
            columns = [f"{self.related.get_table()}.*"]
        return [*columns, f"{self.get_bridge_column()} as {THROUGH_KEY}"]

    def first(self, columns: list | None = None) -> "Entity | None":
        results = self.take(1).get(columns)
        return results[0] if results else None

    def first_or_fail(self, columns: list | None = None) -> "Entity":
        model = self.first(columns)
        if model is None:
            raise EntityNotFoundError(self.related.descriptor().name)
        return model

    def build_dictionary(self, results: Collection) -> dict[Any, list["Entity"]]:
        dictionary: dict[Any, list[Entity]] = {}
        for result in results:
            dictionary.setdefault(result.get_attribute(THROUGH_KEY), []).append(result)
        return dictionary

    def get_relation_count_query(self, query: "EntityBuilder", parent: "EntityBuilder") -> "EntityBuilder":
        self.set_join(query)
        return super().get_relation_count_query(query, parent)

    def get_has_compare_key(self) -> str:
        return self.get_bridge_column()

    def get_qualified_parent_key_name(self) -> str:
        return f"{self.parent.get_table()}.{self.get_parent_match_key()}"

    def get_through_parent(self) -> "Entity":
        return self.through_parent


class HasManyThrough(ThroughRelation):
    """Far parent -> intermediate -> related (``countries -> users -> posts``).

    ``first_key`` is the intermediate's column pointing at the far parent,
    ``second_key`` the related table's column pointing at the intermediate.
    """

    def __init__(
        self,
        query: "EntityBuilder",
        far_parent: "Entity",
        through_parent: "Entity",
        first_key: str,
        second_key: str,
        local_key: str,
    ):
        self.first_key = first_key
        self.second_key = second_key
        self.local_key = local_key

        super().__init__(query, far_parent, through_parent)

    def get_join_columns(self) -> tuple[str, str]:
        return (
            self.through_parent.get_qualified_key_name(),
            f"{self.related.get_table()}.{self.second_key}",
        )

    def get_bridge_column(self) -> str:
        return f"{self.through_parent.get_table()}.{self.first_key}"

    def get_parent_match_key(self) -> str:
        return self.local_key

    def get_results(self) -> Collection:
        return self.get()

    def init_relation(self, models: list["Entity"], relation: str) -> list["Entity"]:
        for model in models:
            model.set_relation(relation, self.related.new_collection())
        return models

    def match(self, models: list["Entity"], results: Collection, relation: str) -> list["Entity"]:
        dictionary = self.build_dictionary(results)

        for model in models:
            key = model.get_attribute(self.local_key)
            if key in dictionary:
                model.set_relation(relation, self.related.new_collection(dictionary[key]))

        return models

    def get_far_parent(self) -> "Entity":
        return self.parent


class HasOneThrough(ThroughRelation):
    """One related row reached through a link table holding both keys.

    ``users -> user_profiles(user_id, profile_id) -> profiles``: ``first_key``
    points at the parent, ``second_key`` at the related row.
    """

    def __init__(
        self,
        query: "EntityBuilder",
        far_parent: "Entity",
        through_parent: "Entity",
        first_key: str,
        second_key: str,
        local_key: str,
    ):
        self.first_key = first_key
        self.second_key = second_key
        self.local_key = local_key

        super().__init__(query, far_parent, through_parent)

    def get_join_columns(self) -> tuple[str, str]:
        return (
            f"{self.through_parent.get_table()}.{self.second_key}",
            self.related.get_qualified_key_name(),
        )

    def get_bridge_column(self) -> str:
        return f"{self.through_parent.get_table()}.{self.first_key}"

    def get_parent_match_key(self) -> str:
        return self.local_key

    def get_results(self) -> "Entity | None":
        return self.first()

    def init_relation(self, models: list["Entity"], relation: str) -> list["Entity"]:
        for model in models:
            model.set_relation(relation, None)
        return models

    def match(self, models: list["Entity"], results: Collection, relation: str) -> list["Entity"]:
        dictionary = self.build_dictionary(results)

        for model in models:
            key = model.get_attribute(self.local_key)
            if key in dictionary:
                model.set_relation(relation, dictionary[key][0])

        return models


class BelongsToThrough(ThroughRelation):
    """Inverse chain: child -> intermediate -> related (``comments -> posts -> users``).

    ``first_key`` is the child's column pointing at the intermediate,
    ``second_key`` the intermediate's column pointing at the related row.
    """

    def __init__(
        self,
        query: "EntityBuilder",
        parent: "Entity",
        through_parent: "Entity",
        first_key: str,
        second_key: str,
    ):
        self.first_key = first_key
        self.second_key = second_key

        super().__init__(query, parent, through_parent)

    def get_join_columns(self) -> tuple[str, str]:
        return (
            f"{self.through_parent.get_table()}.{self.second_key}",
            self.related.get_qualified_key_name(),
        )

    def get_bridge_column(self) -> str:
        return self.through_parent.get_qualified_key_name()

    def get_parent_match_key(self) -> str:
        return self.first_key

    def get_results(self) -> "Entity | None":
        if self.parent.get_attribute(self.first_key) is None:
            return None
        return self.first()

    def init_relation(self, models: list["Entity"], relation: str) -> list["Entity"]:
        for model in models:
            model.set_relation(relation, None)
        return models

    def match(self, models: list["Entity"], results: Collection, relation: str) -> list["Entity"]:
        dictionary = self.build_dictionary(results)

        for model in models:
            key = model.get_attribute(self.first_key)
            if key in dictionary:
                model.set_relation(relation, dictionary[key][0])

        return models
