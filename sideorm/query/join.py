"""Join clause definitions."""

from typing import Any


class JoinClause:
    """One ``JOIN`` on a query, with its ``ON`` conditions.

    Conditions compare two columns (``on``) or a column against a bound value
    (``where``). They are combined in declaration order using their boolean.
    """

    def __init__(self, type: str, table: str):
        self.type = type
        self.table = table
        self.clauses: list[dict[str, Any]] = []

    def on(self, first: str, operator: str, second: Any, boolean: str = "and", where: bool = False) -> "JoinClause":
        self.clauses.append(
            {"first": first, "operator": operator, "second": second, "boolean": boolean, "where": where}
        )
        return self

    def or_on(self, first: str, operator: str, second: str) -> "JoinClause":
        return self.on(first, operator, second, "or")

    def where(self, first: str, operator: str, second: Any, boolean: str = "and") -> "JoinClause":
        return self.on(first, operator, second, boolean, True)

    def or_where(self, first: str, operator: str, second: Any) -> "JoinClause":
        return self.where(first, operator, second, "or")

    def where_null(self, column: str, boolean: str = "and") -> "JoinClause":
        self.clauses.append({"first": column, "operator": "is", "second": None, "boolean": boolean, "where": True})
        return self
