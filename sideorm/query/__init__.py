"""Fluent SQL query building on top of SQLGlot."""

from sideorm.query.builder import QueryBuilder
from sideorm.query.expression import Raw, raw
from sideorm.query.grammar import Grammar
from sideorm.query.join import JoinClause

__all__ = ["Grammar", "JoinClause", "QueryBuilder", "Raw", "raw"]
