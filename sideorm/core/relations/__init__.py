"""Relation types between entities."""

from sideorm.core.relations.base import Relation
from sideorm.core.relations.belongs_to import BelongsTo
from sideorm.core.relations.belongs_to_many import BelongsToMany, MorphToMany
from sideorm.core.relations.has_one_or_many import HasMany, HasOne, HasOneOrMany, MorphMany, MorphOne, MorphOneOrMany
from sideorm.core.relations.morph import MorphTo
from sideorm.core.relations.pivot import MorphPivot, Pivot
from sideorm.core.relations.through import BelongsToThrough, HasManyThrough, HasOneThrough, ThroughRelation

__all__ = [
    "BelongsTo",
    "BelongsToMany",
    "BelongsToThrough",
    "HasMany",
    "HasManyThrough",
    "HasOne",
    "HasOneOrMany",
    "HasOneThrough",
    "MorphMany",
    "MorphOne",
    "MorphOneOrMany",
    "MorphPivot",
    "MorphTo",
    "MorphToMany",
    "Pivot",
    "Relation",
    "ThroughRelation",
]
