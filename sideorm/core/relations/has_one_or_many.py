"""One-to-one and one-to-many relations, plus their polymorphic variants."""

from collections.abc import Iterable
from typing import TYPE_CHECKING, Any

from sideorm.core.collection import Collection
from sideorm.core.relations.base import Relation
from sideorm.query.expression import Raw

if TYPE_CHECKING:
    from sideorm.core.builder import EntityBuilder
    from sideorm.core.entity import Entity


class HasOneOrMany(Relation):
    """Parent key stored on the related rows (``posts.user_id -> users.id``)."""

    def __init__(self, query: "EntityBuilder", parent: "Entity", foreign_key: str, local_key: str):
        self.foreign_key = foreign_key
        self.local_key = local_key

        super().__init__(query, parent)

    def add_constraints(self) -> None:
        if self.constraints_enabled():
            self.query.where(self.foreign_key, "=", self.get_parent_key())

    def add_eager_constraints(self, models: list["Entity"]) -> None:
        self.query.where_in(self.foreign_key, self.get_keys(models, self.local_key))

    def get_relation_count_query(self, query: "EntityBuilder", parent: "EntityBuilder") -> "EntityBuilder":
        if parent.get_query().from_table == query.get_query().from_table:
            return self.get_relation_count_query_for_self_relation(query, parent)
        return super().get_relation_count_query(query, parent)

    def get_relation_count_query_for_self_relation(
        self, query: "EntityBuilder", parent: "EntityBuilder"
    ) -> "EntityBuilder":
        hash = self.get_relation_count_hash()
        query.select(Raw("count(*)"))
        query.get_query().from_(f"{query.get_entity().get_table()} as {hash}")

        key = self.get_qualified_parent_key_name()
        return query.where(f"{hash}.{self.get_plain_foreign_key()}", "=", Raw(key))

    def match_one(self, models: list["Entity"], results: Collection, relation: str) -> list["Entity"]:
        return self.match_one_or_many(models, results, relation, "one")

    def match_many(self, models: list["Entity"], results: Collection, relation: str) -> list["Entity"]:
        return self.match_one_or_many(models, results, relation, "many")

    def match_one_or_many(
        self, models: list["Entity"], results: Collection, relation: str, type: str
    ) -> list["Entity"]:
        dictionary = self.build_dictionary(results)

        for model in models:
            key = model.get_attribute(self.local_key)
            if key in dictionary:
                value = dictionary[key][0] if type == "one" else self.related.new_collection(dictionary[key])
                model.set_relation(relation, value)

        return models

    def build_dictionary(self, results: Collection) -> dict[Any, list["Entity"]]:
        dictionary: dict[Any, list[Entity]] = {}
        foreign = self.get_plain_foreign_key()

        for result in results:
            dictionary.setdefault(result.get_attribute(foreign), []).append(result)

        return dictionary

    # Writes

    def save(self, model: "Entity") -> "Entity | bool":
        """Attach ``model`` to the parent and save it."""
        model.set_attribute(self.get_plain_foreign_key(), self.get_parent_key())
        return model if model.save() else False

    def save_many(self, models: Iterable["Entity"]) -> list["Entity"]:
        return [self.save(model) for model in models]

    def create(self, attributes: dict[str, Any] | None = None) -> "Entity":
        instance = self.related.new_instance(attributes)
        instance.set_attribute(self.get_plain_foreign_key(), self.get_parent_key())
        instance.save()
        return instance

    def create_many(self, records: Iterable[dict[str, Any]]) -> list["Entity"]:
        return [self.create(record) for record in records]

    def update(self, attributes: dict[str, Any]) -> int:
        """Update every related row of the parent (stamping ``updated_at``)."""
        return self.query.update(attributes)

    # Keys

    def get_has_compare_key(self) -> str:
        return self.foreign_key

    def get_foreign_key(self) -> str:
        return self.foreign_key

    def get_plain_foreign_key(self) -> str:
        return self.foreign_key.split(".")[-1]

    def get_parent_key(self) -> Any:
        return self.parent.get_attribute(self.local_key)

    def get_qualified_parent_key_name(self) -> str:
        return f"{self.parent.get_table()}.{self.local_key}"


class HasOne(HasOneOrMany):
    """At most one related row per parent; unmatched parents get None."""

    def get_results(self) -> "Entity | None":
        return self.query.first()

    def init_relation(self, models: list["Entity"], relation: str) -> list["Entity"]:
        for model in models:
            model.set_relation(relation, None)
        return models

    def match(self, models: list["Entity"], results: Collection, relation: str) -> list["Entity"]:
        return self.match_one(models, results, relation)


class HasMany(HasOneOrMany):
    """Any number of related rows per parent; unmatched parents get an empty collection."""

    def get_results(self) -> Collection:
        return self.query.get()

    def init_relation(self, models: list["Entity"], relation: str) -> list["Entity"]:
        for model in models:
            model.set_relation(relation, self.related.new_collection())
        return models

    def match(self, models: list["Entity"], results: Collection, relation: str) -> list["Entity"]:
        return self.match_many(models, results, relation)


class MorphOneOrMany(HasOneOrMany):
    """Has-one/many whose related rows also record the parent's morph class."""

    def __init__(
        self,
        query: "EntityBuilder",
        parent: "Entity",
        type: str,
        id: str,
        local_key: str,
    ):
        self.morph_type = type
        self.morph_class = parent.get_morph_class()

        super().__init__(query, parent, id, local_key)

    def add_constraints(self) -> None:
        if self.constraints_enabled():
            super().add_constraints()
            self.query.where(self.morph_type, "=", self.morph_class)

    def add_eager_constraints(self, models: list["Entity"]) -> None:
        super().add_eager_constraints(models)
        self.query.where(self.morph_type, "=", self.morph_class)

    def get_relation_count_query(self, query: "EntityBuilder", parent: "EntityBuilder") -> "EntityBuilder":
        query = super().get_relation_count_query(query, parent)
        return query.where(self.morph_type, "=", self.morph_class)

    def save(self, model: "Entity") -> "Entity | bool":
        model.set_attribute(self.get_plain_morph_type(), self.morph_class)
        return super().save(model)

    def create(self, attributes: dict[str, Any] | None = None) -> "Entity":
        instance = self.related.new_instance(attributes)
        instance.set_attribute(self.get_plain_foreign_key(), self.get_parent_key())
        instance.set_attribute(self.get_plain_morph_type(), self.morph_class)
        instance.save()
        return instance

    def get_morph_type(self) -> str:
        return self.morph_type

    def get_plain_morph_type(self) -> str:
        return self.morph_type.split(".")[-1]

    def get_morph_class(self) -> str:
        return self.morph_class


class MorphOne(MorphOneOrMany):
    def get_results(self) -> "Entity | None":
        return self.query.first()

    def init_relation(self, models: list["Entity"], relation: str) -> list["Entity"]:
        for model in models:
            model.set_relation(relation, None)
        return models

    def match(self, models: list["Entity"], results: Collection, relation: str) -> list["Entity"]:
        return self.match_one(models, results, relation)


class MorphMany(MorphOneOrMany):
    def get_results(self) -> Collection:
        return self.query.get()

    def init_relation(self, models: list["Entity"], relation: str) -> list["Entity"]:
        for model in models:
            model.set_relation(relation, self.related.new_collection())
        return models

    def match(self, models: list["Entity"], results: Collection, relation: str) -> list["Entity"]:
        return self.match_many(models, results, relation)
