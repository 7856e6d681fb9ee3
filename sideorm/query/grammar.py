"""Compile QueryBuilder state into SQL using SQLGlot expressions."""

from typing import TYPE_CHECKING, Any

import sqlglot
from sqlglot import exp

from sideorm.query.expression import Raw
from sideorm.query.join import JoinClause

if TYPE_CHECKING:
    from sideorm.query.builder import QueryBuilder


COMPARISONS = {
    "=": exp.EQ,
    "==": exp.EQ,
    "!=": exp.NEQ,
    "<>": exp.NEQ,
    "<": exp.LT,
    "<=": exp.LTE,
    ">": exp.GT,
    ">=": exp.GTE,
    "like": exp.Like,
    "ilike": exp.ILike,
}

NEGATED = {"not like": "like", "not ilike": "ilike"}

OPERATORS = set(COMPARISONS) | set(NEGATED)


def split_alias(value: str) -> tuple[str, str | None]:
    """Split ``"name as alias"`` into its parts."""
    lowered = value.lower()
    if " as " in lowered:
        index = lowered.rindex(" as ")
        return value[:index].strip(), value[index + 4 :].strip()
    return value, None


def column_label(column: str | Raw) -> str:
    """Result-set label a selected column will come back under."""
    name, alias = split_alias(str(column))
    if alias:
        return alias
    return name.split(".")[-1]


class Grammar:
    """Builds SQLGlot expression trees from a query's structural state.

    Every value is emitted as a ``?`` placeholder. Bindings are collected while
    the tree is built, in the same order the placeholders appear in the
    rendered SQL text.
    """

    def __init__(self, dialect: str = "duckdb"):
        self.dialect = dialect

    # Statements

    def compile_select(self, query: "QueryBuilder") -> tuple[str, list]:
        bindings: list = []
        select = self.select_expression(query, bindings)
        return select.sql(dialect=self.dialect), bindings

    def select_expression(self, query: "QueryBuilder", bindings: list) -> exp.Select:
        """Build the SELECT expression for ``query``, appending its bindings."""
        columns = [self.select_column(column, bindings) for column in (query.columns or ["*"])]
        bindings.extend(query.bindings["select"])

        select = exp.Select().select(*columns, copy=False)
        if query.distinct_:
            select = select.distinct(copy=False)

        if query.from_table:
            select = select.from_(self.table(query.from_table), copy=False)

        for join in query.joins:
            select = select.join(self.join(join, bindings), copy=False)
        bindings.extend(query.bindings["join"])

        condition = self.wheres(query.wheres, bindings)
        if condition is not None:
            select = select.where(condition, copy=False)
        bindings.extend(query.bindings["where"])

        if query.groups:
            select = select.group_by(*[self.column(group) for group in query.groups], copy=False)

        having = self.wheres(query.havings, bindings)
        if having is not None:
            select = select.having(having, copy=False)
        bindings.extend(query.bindings["having"])

        if query.orders:
            select = select.order_by(*[self.order(order, bindings) for order in query.orders], copy=False)
        bindings.extend(query.bindings["order"])

        if query.limit_value is not None:
            select = select.limit(query.limit_value, copy=False)
        if query.offset_value is not None:
            select = select.offset(query.offset_value, copy=False)

        return select

    def compile_insert(
        self, query: "QueryBuilder", rows: list[dict[str, Any]], returning: str | None = None
    ) -> tuple[str, list]:
        bindings: list = []
        columns = list(dict.fromkeys(column for row in rows for column in row))

        if not columns:
            table = self.table(query.from_table).sql(dialect=self.dialect)
            sql = f"INSERT INTO {table} DEFAULT VALUES"
            if returning:
                sql += f" RETURNING {exp.column(returning).sql(dialect=self.dialect)}"
            return sql, bindings

        tuples = []
        for row in rows:
            tuples.append(tuple(self.value(row.get(column), bindings) for column in columns))

        insert = exp.insert(
            exp.values(tuples),
            self.table(query.from_table),
            columns=columns,
            returning=returning,
            dialect=self.dialect,
        )
        return insert.sql(dialect=self.dialect), bindings

    def compile_update(self, query: "QueryBuilder", values: dict[str, Any]) -> tuple[str, list]:
        bindings: list = []
        assignments = [
            exp.EQ(this=exp.column(column.split(".")[-1]), expression=self.value(value, bindings))
            for column, value in values.items()
        ]

        update = exp.Update(this=self.table(query.from_table), expressions=assignments)

        condition = self.wheres(query.wheres, bindings)
        if condition is not None:
            update.set("where", exp.Where(this=condition))
        bindings.extend(query.bindings["where"])

        return update.sql(dialect=self.dialect), bindings

    def compile_delete(self, query: "QueryBuilder") -> tuple[str, list]:
        bindings: list = []
        delete = exp.Delete(this=self.table(query.from_table))

        condition = self.wheres(query.wheres, bindings)
        if condition is not None:
            delete.set("where", exp.Where(this=condition))
        bindings.extend(query.bindings["where"])

        return delete.sql(dialect=self.dialect), bindings

    # Building blocks

    def raw(self, value: Raw | str) -> exp.Expression:
        return sqlglot.parse_one(str(value), dialect=self.dialect)

    def table(self, name: str) -> exp.Expression:
        base, alias = split_alias(name)
        table = exp.to_table(base)
        if alias:
            return exp.alias_(table, alias, table=True)
        return table

    def column(self, name: Any) -> exp.Expression:
        """Column reference for ``name`` (``col``, ``table.col``, ``table.*``, ``col as alias``)."""
        if isinstance(name, Raw):
            return self.raw(name)
        if isinstance(name, exp.Expression):
            return name

        base, alias = split_alias(name)
        if alias:
            return exp.alias_(self.column(base), alias)

        if base == "*":
            return exp.Star()

        parts = base.split(".")
        if parts[-1] == "*":
            return exp.Column(this=exp.Star(), table=exp.to_identifier(parts[-2]))

        return exp.column(parts[-1], table=parts[-2] if len(parts) > 1 else None)

    def select_column(self, column: Any, bindings: list) -> exp.Expression:
        if isinstance(column, dict):
            if column["type"] == "sub":
                sub = self.select_expression(column["query"], bindings)
                return exp.alias_(exp.Subquery(this=sub), column["alias"])
            if column["type"] == "raw":
                bindings.extend(column["bindings"])
                return self.raw(column["sql"])
        return self.column(column)

    def value(self, value: Any, bindings: list) -> exp.Expression:
        """Placeholder for a bound value, or inline SQL for raw values and sub-queries."""
        from sideorm.query.builder import QueryBuilder

        if isinstance(value, Raw):
            return self.raw(value)
        if isinstance(value, QueryBuilder):
            return exp.Subquery(this=self.select_expression(value, bindings))

        bindings.append(value)
        return exp.Placeholder()

    def operand(self, column: Any, bindings: list) -> exp.Expression:
        """Left-hand side of a predicate: a column, raw fragment or sub-query."""
        from sideorm.query.builder import QueryBuilder

        if isinstance(column, QueryBuilder):
            return exp.Subquery(this=self.select_expression(column, bindings))
        return self.column(column)

    def order(self, order: dict[str, Any], bindings: list) -> exp.Expression:
        if order["type"] == "raw":
            bindings.extend(order["bindings"])
            return self.raw(order["sql"])
        return exp.Ordered(this=self.column(order["column"]), desc=order["direction"] == "desc")

    def join(self, join: JoinClause, bindings: list) -> exp.Join:
        groups: list[list[exp.Expression]] = []
        for clause in join.clauses:
            left = self.column(clause["first"])
            if clause["operator"] == "is":
                condition = exp.Is(this=left, expression=exp.Null())
            elif clause["where"]:
                condition = self.compare(clause["operator"], left, self.value(clause["second"], bindings))
            else:
                condition = self.compare(clause["operator"], left, self.column(clause["second"]))
            self._group(groups, clause["boolean"], condition)

        kwargs = {}
        if join.type in ("left", "right", "full"):
            kwargs["side"] = join.type.upper()
        elif join.type == "cross":
            kwargs["kind"] = "CROSS"

        on = self._combine(groups)
        if on is not None:
            kwargs["on"] = on
        return exp.Join(this=self.table(join.table), **kwargs)

    def compare(self, operator: str, left: exp.Expression, right: exp.Expression) -> exp.Expression:
        operator = operator.lower()
        if operator in NEGATED:
            return exp.Not(this=COMPARISONS[NEGATED[operator]](this=left, expression=right))
        return COMPARISONS[operator](this=left, expression=right)

    # Where clauses

    def wheres(self, wheres: list[dict[str, Any]], bindings: list) -> exp.Expression | None:
        """Combine where clauses honouring and/or precedence.

        Consecutive ``and`` clauses are grouped; each ``or`` clause starts a new
        group; groups are joined with OR.
        """
        groups: list[list[exp.Expression]] = []
        for where in wheres:
            condition = getattr(self, f"where_{where['type']}")(where, bindings)
            self._group(groups, where["boolean"], condition)
        return self._combine(groups)

    def where_signature(self, where: dict[str, Any]) -> tuple[str, str, list]:
        """Compile one where clause to ``(boolean, sql, bindings)``.

        Two clauses with equal signatures filter identically, even when they
        hold distinct sub-builders (nested groups, IN and EXISTS subqueries).
        """
        bindings: list = []
        condition = getattr(self, f"where_{where['type']}")(where, bindings)
        return where["boolean"], condition.sql(dialect=self.dialect), bindings

    def _group(self, groups: list[list[exp.Expression]], boolean: str, condition: exp.Expression) -> None:
        if not groups or boolean == "or":
            groups.append([condition])
        else:
            groups[-1].append(condition)

    def _combine(self, groups: list[list[exp.Expression]]) -> exp.Expression | None:
        if not groups:
            return None
        return exp.or_(*[exp.and_(*group, copy=False) for group in groups], copy=False)

    def where_basic(self, where: dict[str, Any], bindings: list) -> exp.Expression:
        left = self.operand(where["column"], bindings)
        return self.compare(where["operator"], left, self.value(where["value"], bindings))

    def where_column(self, where: dict[str, Any], bindings: list) -> exp.Expression:
        return self.compare(where["operator"], self.column(where["first"]), self.column(where["second"]))

    def where_in(self, where: dict[str, Any], bindings: list) -> exp.Expression:
        from sideorm.query.builder import QueryBuilder

        column = self.column(where["column"])
        values = where["values"]

        if isinstance(values, QueryBuilder):
            condition = exp.In(this=column, query=exp.Subquery(this=self.select_expression(values, bindings)))
        elif not values:
            # Empty IN is always false, empty NOT IN always true
            truth = 1 if where["not"] else 0
            return exp.EQ(this=exp.Literal.number(truth), expression=exp.Literal.number(1))
        else:
            condition = exp.In(this=column, expressions=[self.value(value, bindings) for value in values])

        return exp.Not(this=condition) if where["not"] else condition

    def where_null(self, where: dict[str, Any], bindings: list) -> exp.Expression:
        condition = exp.Is(this=self.column(where["column"]), expression=exp.Null())
        return exp.Not(this=condition) if where["not"] else condition

    def where_between(self, where: dict[str, Any], bindings: list) -> exp.Expression:
        low, high = where["values"]
        condition = exp.Between(
            this=self.column(where["column"]),
            low=self.value(low, bindings),
            high=self.value(high, bindings),
        )
        return exp.Not(this=condition) if where["not"] else condition

    def where_nested(self, where: dict[str, Any], bindings: list) -> exp.Expression:
        inner = self.wheres(where["query"].wheres, bindings)
        if inner is None:
            return exp.EQ(this=exp.Literal.number(1), expression=exp.Literal.number(1))
        return exp.Paren(this=inner)

    def where_exists(self, where: dict[str, Any], bindings: list) -> exp.Expression:
        condition = exp.Exists(this=self.select_expression(where["query"], bindings))
        return exp.Not(this=condition) if where["not"] else condition

    def where_raw(self, where: dict[str, Any], bindings: list) -> exp.Expression:
        bindings.extend(where["bindings"])
        return exp.Paren(this=self.raw(where["sql"]))
