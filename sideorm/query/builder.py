"""Fluent query builder executed through a Connection."""

import copy
from collections.abc import Callable, Iterable
from typing import TYPE_CHECKING, Any

from sideorm.exceptions import ArgumentError
from sideorm.query.expression import Raw
from sideorm.query.grammar import OPERATORS, Grammar, column_label
from sideorm.query.join import JoinClause

if TYPE_CHECKING:
    from sideorm.db.connection import Connection

BINDING_TYPES = ("select", "join", "where", "having", "order")

_UNSET = object()


class QueryBuilder:
    """Chainable SQL query against one connection.

    Query state is kept structurally (column lists, where dicts, join clauses)
    and only compiled to SQL by the grammar when the query runs. Scopes rely on
    this to find and remove predicates they added earlier.

    Example:
        >>> rows = (
        ...     connection.table("users")
        ...     .where("votes", ">", 100)
        ...     .or_where("name", "John")
        ...     .order_by("name")
        ...     .get()
        ... )
    """

    def __init__(self, connection: "Connection", grammar: Grammar | None = None):
        self.connection = connection
        self.grammar = grammar or Grammar(connection.dialect)

        self.columns: list[Any] | None = None
        self.distinct_ = False
        self.from_table: str | None = None
        self.joins: list[JoinClause] = []
        self.wheres: list[dict[str, Any]] = []
        self.groups: list[Any] = []
        self.havings: list[dict[str, Any]] = []
        self.orders: list[dict[str, Any]] = []
        self.limit_value: int | None = None
        self.offset_value: int | None = None
        self.bindings: dict[str, list] = {key: [] for key in BINDING_TYPES}

    def new_query(self) -> "QueryBuilder":
        """Fresh builder on the same connection."""
        return QueryBuilder(self.connection, self.grammar)

    def copy(self) -> "QueryBuilder":
        """Independent copy sharing only the connection and grammar."""
        return copy.copy(self)

    def __copy__(self) -> "QueryBuilder":
        clone = self.new_query()
        memo = {id(self.connection): self.connection, id(self.grammar): self.grammar}
        for key, value in self.__dict__.items():
            if key in ("connection", "grammar"):
                continue
            setattr(clone, key, copy.deepcopy(value, memo))
        return clone

    # Select

    def select(self, *columns: Any) -> "QueryBuilder":
        self.columns = _flatten(columns) or ["*"]
        return self

    def add_select(self, *columns: Any) -> "QueryBuilder":
        if self.columns is None:
            self.columns = []
        self.columns.extend(_flatten(columns))
        return self

    def select_raw(self, sql: str, bindings: list | None = None) -> "QueryBuilder":
        return self.add_select({"type": "raw", "sql": sql, "bindings": list(bindings or [])})

    def select_sub(self, query: "QueryBuilder | Callable[[QueryBuilder], Any]", alias: str) -> "QueryBuilder":
        """Add a sub-select as a column named ``alias``."""
        if callable(query) and not isinstance(query, QueryBuilder):
            callback = query
            query = self.new_query()
            callback(query)
        return self.add_select({"type": "sub", "query": query, "alias": alias})

    def distinct(self) -> "QueryBuilder":
        self.distinct_ = True
        return self

    def from_(self, table: str) -> "QueryBuilder":
        self.from_table = table
        return self

    # Joins

    def join(
        self,
        table: str,
        first: str | Callable[[JoinClause], Any],
        operator: str | None = None,
        second: Any = None,
        type: str = "inner",
        where: bool = False,
    ) -> "QueryBuilder":
        """Add a join. Pass a callable as ``first`` to build a multi-condition clause."""
        clause = JoinClause(type, table)

        if callable(first):
            first(clause)
        else:
            if second is None and operator is not None:
                operator, second = "=", operator
            clause.on(first, operator, second, "and", where)

        self.joins.append(clause)
        return self

    def join_where(self, table: str, first: str, operator: str, second: Any, type: str = "inner") -> "QueryBuilder":
        return self.join(table, first, operator, second, type, True)

    def left_join(self, table: str, first: Any, operator: str | None = None, second: Any = None) -> "QueryBuilder":
        return self.join(table, first, operator, second, "left")

    def right_join(self, table: str, first: Any, operator: str | None = None, second: Any = None) -> "QueryBuilder":
        return self.join(table, first, operator, second, "right")

    # Wheres

    def where(
        self,
        column: Any,
        operator: Any = _UNSET,
        value: Any = _UNSET,
        boolean: str = "and",
    ) -> "QueryBuilder":
        """Add a basic where clause.

        Args:
            column: Column name, ``Raw`` fragment, sub-query, a dict of
                column/value pairs, or a callable building a nested group
            operator: Comparison operator, or the value when ``value`` is omitted
            value: Value to compare against (bound as a parameter)
            boolean: ``"and"`` or ``"or"``

        Raises:
            ArgumentError: If the operator is unknown, or an operator is given
                without a value to compare against
        """
        if isinstance(column, dict):
            items = column

            def nested(query: QueryBuilder) -> None:
                for key, item in items.items():
                    query.where(key, "=", item)

            return self.where_nested(nested, boolean)

        if callable(column) and not isinstance(column, QueryBuilder):
            return self.where_nested(column, boolean)

        if operator is _UNSET:
            raise ArgumentError("Value must be provided.")

        if value is _UNSET:
            if isinstance(operator, str) and operator.lower() in OPERATORS:
                raise ArgumentError(f"Value must be provided for operator [{operator}].")
            operator, value = "=", operator
        elif not isinstance(operator, str) or operator.lower() not in OPERATORS:
            raise ArgumentError(f"Illegal operator [{operator}] in where clause")
        elif value is None and operator not in ("=", "!=", "<>"):
            raise ArgumentError("Value must be provided.")

        if value is None:
            return self.where_null(column, boolean, operator != "=")

        if callable(value) and not isinstance(value, QueryBuilder):
            callback = value
            value = self.new_query()
            callback(value)

        self.wheres.append(
            {"type": "basic", "column": column, "operator": operator, "value": value, "boolean": boolean}
        )
        return self

    def or_where(self, column: Any, operator: Any = _UNSET, value: Any = _UNSET) -> "QueryBuilder":
        return self.where(column, operator, value, "or")

    def where_column(self, first: str, operator: str, second: str | None = None, boolean: str = "and") -> "QueryBuilder":
        if second is None:
            operator, second = "=", operator
        self.wheres.append(
            {"type": "column", "first": first, "operator": operator, "second": second, "boolean": boolean}
        )
        return self

    def where_raw(self, sql: str, bindings: list | None = None, boolean: str = "and") -> "QueryBuilder":
        self.wheres.append({"type": "raw", "sql": sql, "bindings": list(bindings or []), "boolean": boolean})
        return self

    def or_where_raw(self, sql: str, bindings: list | None = None) -> "QueryBuilder":
        return self.where_raw(sql, bindings, "or")

    def where_in(self, column: Any, values: Any, boolean: str = "and", not_: bool = False) -> "QueryBuilder":
        if callable(values) and not isinstance(values, QueryBuilder):
            callback = values
            values = self.new_query()
            callback(values)
        elif not isinstance(values, QueryBuilder):
            values = list(values)

        self.wheres.append({"type": "in", "column": column, "values": values, "boolean": boolean, "not": not_})
        return self

    def or_where_in(self, column: Any, values: Any) -> "QueryBuilder":
        return self.where_in(column, values, "or")

    def where_not_in(self, column: Any, values: Any, boolean: str = "and") -> "QueryBuilder":
        return self.where_in(column, values, boolean, True)

    def or_where_not_in(self, column: Any, values: Any) -> "QueryBuilder":
        return self.where_in(column, values, "or", True)

    def where_null(self, column: Any, boolean: str = "and", not_: bool = False) -> "QueryBuilder":
        self.wheres.append({"type": "null", "column": column, "boolean": boolean, "not": not_})
        return self

    def or_where_null(self, column: Any) -> "QueryBuilder":
        return self.where_null(column, "or")

    def where_not_null(self, column: Any, boolean: str = "and") -> "QueryBuilder":
        return self.where_null(column, boolean, True)

    def or_where_not_null(self, column: Any) -> "QueryBuilder":
        return self.where_null(column, "or", True)

    def where_between(self, column: Any, values: Iterable, boolean: str = "and", not_: bool = False) -> "QueryBuilder":
        values = list(values)
        if len(values) != 2:
            raise ArgumentError("where_between expects exactly two values")
        self.wheres.append({"type": "between", "column": column, "values": values, "boolean": boolean, "not": not_})
        return self

    def where_not_between(self, column: Any, values: Iterable, boolean: str = "and") -> "QueryBuilder":
        return self.where_between(column, values, boolean, True)

    def where_nested(self, callback: Callable[["QueryBuilder"], Any], boolean: str = "and") -> "QueryBuilder":
        query = self.new_query()
        query.from_table = self.from_table
        callback(query)
        return self.add_nested_where_query(query, boolean)

    def add_nested_where_query(self, query: "QueryBuilder", boolean: str = "and") -> "QueryBuilder":
        if query.wheres:
            self.wheres.append({"type": "nested", "query": query, "boolean": boolean})
        return self

    def where_exists(self, query: Any, boolean: str = "and", not_: bool = False) -> "QueryBuilder":
        if callable(query) and not isinstance(query, QueryBuilder):
            callback = query
            query = self.new_query()
            callback(query)
        self.wheres.append({"type": "exists", "query": query, "boolean": boolean, "not": not_})
        return self

    def or_where_exists(self, query: Any) -> "QueryBuilder":
        return self.where_exists(query, "or")

    def where_not_exists(self, query: Any, boolean: str = "and") -> "QueryBuilder":
        return self.where_exists(query, boolean, True)

    def merge_wheres(self, wheres: list[dict[str, Any]], bindings: list | None = None) -> "QueryBuilder":
        """Append where clauses taken from another builder."""
        self.wheres.extend(copy.deepcopy(wheres, {id(self.connection): self.connection}))
        if bindings:
            self.bindings["where"].extend(bindings)
        return self

    # Grouping and ordering

    def group_by(self, *columns: Any) -> "QueryBuilder":
        self.groups.extend(_flatten(columns))
        return self

    def having(self, column: Any, operator: Any = _UNSET, value: Any = _UNSET, boolean: str = "and") -> "QueryBuilder":
        if value is _UNSET:
            operator, value = "=", operator
        self.havings.append(
            {"type": "basic", "column": column, "operator": operator, "value": value, "boolean": boolean}
        )
        return self

    def or_having(self, column: Any, operator: Any = _UNSET, value: Any = _UNSET) -> "QueryBuilder":
        return self.having(column, operator, value, "or")

    def having_raw(self, sql: str, bindings: list | None = None, boolean: str = "and") -> "QueryBuilder":
        self.havings.append({"type": "raw", "sql": sql, "bindings": list(bindings or []), "boolean": boolean})
        return self

    def order_by(self, column: Any, direction: str = "asc") -> "QueryBuilder":
        direction = direction.lower()
        if direction not in ("asc", "desc"):
            raise ArgumentError(f"Order direction must be 'asc' or 'desc', got '{direction}'")
        self.orders.append({"type": "basic", "column": column, "direction": direction})
        return self

    def order_by_desc(self, column: Any) -> "QueryBuilder":
        return self.order_by(column, "desc")

    def order_by_raw(self, sql: str, bindings: list | None = None) -> "QueryBuilder":
        self.orders.append({"type": "raw", "sql": sql, "bindings": list(bindings or [])})
        return self

    def latest(self, column: str = "created_at") -> "QueryBuilder":
        return self.order_by(column, "desc")

    def oldest(self, column: str = "created_at") -> "QueryBuilder":
        return self.order_by(column, "asc")

    def limit(self, value: int | None) -> "QueryBuilder":
        self.limit_value = value if value is None or value >= 0 else None
        return self

    take = limit

    def offset(self, value: int | None) -> "QueryBuilder":
        self.offset_value = max(0, value) if value is not None else None
        return self

    skip = offset

    def for_page(self, page: int, per_page: int = 15) -> "QueryBuilder":
        return self.skip((page - 1) * per_page).take(per_page)

    # Bindings

    def add_binding(self, value: Any, type: str = "where") -> "QueryBuilder":
        """Append extra bindings to one of the binding buckets.

        Raises:
            ArgumentError: If ``type`` is not a known binding bucket
        """
        if type not in self.bindings:
            raise ArgumentError(f"Invalid binding type: {type}.")

        if isinstance(value, list):
            self.bindings[type].extend(value)
        else:
            self.bindings[type].append(value)
        return self

    def get_bindings(self) -> list:
        return self.grammar.compile_select(self)[1]

    def to_sql(self) -> str:
        return self.grammar.compile_select(self)[0]

    # Terminals

    def get(self, columns: list | None = None) -> list[dict[str, Any]]:
        """Run the query and return rows as dictionaries."""
        original = self.columns
        if original is None and columns:
            self.columns = list(columns)

        sql, bindings = self.grammar.compile_select(self)
        self.columns = original

        return self.connection.select(sql, bindings)

    def first(self, columns: list | None = None) -> dict[str, Any] | None:
        rows = self.copy().take(1).get(columns)
        return rows[0] if rows else None

    def find(self, id: Any, columns: list | None = None) -> dict[str, Any] | None:
        return self.copy().where("id", "=", id).first(columns)

    def value(self, column: str) -> Any:
        row = self.first([column])
        return row[column_label(column)] if row else None

    def pluck(self, column: str, key: str | None = None) -> list | dict:
        """Values of one column, optionally keyed by another."""
        columns = [column] if key is None else [column, key]
        rows = self.copy().get(columns) if self.columns is None else self.get()

        label = column_label(column)
        if key is None:
            return [row[label] for row in rows]

        key_label = column_label(key)
        return {row[key_label]: row[label] for row in rows}

    lists = pluck

    def exists(self) -> bool:
        query = self.copy()
        query.columns = [Raw("1 AS present")]
        query.orders = []
        return bool(query.take(1).get())

    def count(self, column: str = "*") -> int:
        return int(self.aggregate("count", column) or 0)

    def min(self, column: str) -> Any:
        return self.aggregate("min", column)

    def max(self, column: str) -> Any:
        return self.aggregate("max", column)

    def sum(self, column: str) -> Any:
        result = self.aggregate("sum", column)
        return result if result is not None else 0

    def avg(self, column: str) -> Any:
        return self.aggregate("avg", column)

    def aggregate(self, function: str, column: str = "*") -> Any:
        query = self.copy()
        query.columns = [Raw(f"{function}({column}) AS aggregate")]
        query.orders = []
        query.bindings["select"] = []
        query.bindings["order"] = []
        query.limit_value = None
        query.offset_value = None

        rows = query.get()
        return rows[0]["aggregate"] if rows else None

    def insert(self, values: dict[str, Any] | list[dict[str, Any]]) -> int:
        """Insert one or more rows. Returns the inserted row count."""
        rows = [values] if isinstance(values, dict) else list(values)
        if not rows:
            return 0

        sql, bindings = self.grammar.compile_insert(self, rows)
        return self.connection.insert(sql, bindings)

    def insert_get_id(self, values: dict[str, Any], sequence: str = "id") -> Any:
        """Insert one row and return the value generated for ``sequence``."""
        sql, bindings = self.grammar.compile_insert(self, [values], returning=sequence)
        row = self.connection.select_one(sql, bindings)
        return row[sequence] if row else None

    def update(self, values: dict[str, Any]) -> int:
        sql, bindings = self.grammar.compile_update(self, values)
        return self.connection.update(sql, bindings)

    def increment(self, column: str, amount: int | float = 1, extra: dict[str, Any] | None = None) -> int:
        if not isinstance(amount, (int, float)):
            raise ArgumentError("Non-numeric value passed to increment method.")
        values = {column: Raw(f"{column.split('.')[-1]} + {amount}")}
        values.update(extra or {})
        return self.update(values)

    def decrement(self, column: str, amount: int | float = 1, extra: dict[str, Any] | None = None) -> int:
        if not isinstance(amount, (int, float)):
            raise ArgumentError("Non-numeric value passed to decrement method.")
        values = {column: Raw(f"{column.split('.')[-1]} - {amount}")}
        values.update(extra or {})
        return self.update(values)

    def delete(self, id: Any = None) -> int:
        if id is not None:
            self.where("id", "=", id)
        sql, bindings = self.grammar.compile_delete(self)
        return self.connection.delete(sql, bindings)

    def truncate(self) -> None:
        query = self.new_query().from_(self.from_table)
        sql, bindings = self.grammar.compile_delete(query)
        self.connection.statement(sql, bindings)


def _flatten(columns: Iterable[Any]) -> list[Any]:
    flattened: list[Any] = []
    for column in columns:
        if isinstance(column, (list, tuple)):
            flattened.extend(column)
        else:
            flattened.append(column)
    return flattened
