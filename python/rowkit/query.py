"""Fluent SELECT query builder."""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Self

from rowkit.exceptions import PreconditionError
from rowkit.quoting import create_placeholders
from rowkit.record import Record

if TYPE_CHECKING:
    from rowkit.connection import Connection


@dataclass(frozen=True)
class On:
    """Join constraint between two columns; both sides are identifier-quoted.

    Example:
        >>> On("user.id", "=", "profile.user_id")  # ON `user`.`id` = `profile`.`user_id`
    """

    left: str
    operator: str
    right: str


@dataclass(frozen=True)
class Raw:
    """Join constraint compiled into the query verbatim, with no escaping."""

    sql: str


type JoinConstraint = On | Raw | str | tuple[str, str, str]


@dataclass
class WhereCondition:
    """One AND-ed WHERE fragment with its bound values."""

    fragment: str
    values: list[Any] = field(default_factory=list)


class Query[R: Record]:
    """Builds and runs a SELECT against one table.

    Every builder method returns the query itself, so calls chain. Nothing
    touches the database until find_one(), find_many(), find_array() or an
    aggregate such as count() is called; each of those recompiles the
    statement from the current state.

    Example:
        >>> conn.create_query("contact").where_gt("id", 1).order_by_asc("id").limit(2).find_many()
        >>> conn.create_query(Contact).where_like("email", "%@example.org").count()
    """

    def __init__(
        self,
        connection: Connection,
        table_name: str | None = None,
        record_type: type[R] | None = None,
    ) -> None:
        self._connection = connection
        self._table_name = table_name
        self._record_type: type[Record] = record_type or Record
        self._table_alias: str | None = None
        self._result_columns: list[str] = ["*"]
        self._using_default_result_columns = True
        self._join_sources: list[str] = []
        self._distinct = False
        self._is_raw_query = False
        self._raw_query = ""
        self._raw_parameters: Sequence[Any] | Mapping[str, Any] = ()
        self._where_conditions: list[WhereCondition] = []
        self._limit: int | None = None
        self._offset: int | None = None
        self._order_by: list[str] = []
        self._group_by: list[str] = []

    def __repr__(self) -> str:
        return f"<Query {self._table_name!r}>"

    @property
    def table_name(self) -> str | None:
        return self._table_name

    # ========== Execution ==========

    def find_one(self, id: Any = None) -> R | None:
        """Run the query expecting a single row.

        As a shortcut, passing ``id`` adds a primary-key condition first.

        Returns:
            The first matching record, or None if no rows matched.
        """
        if id is not None:
            self.where_id_is(id)
        self.limit(1)
        rows = self._run()
        if not rows:
            return None
        return self._create_instance_from_row(rows[0])

    def find_many(self) -> list[R]:
        """Run the query and return every matching row as a record."""
        return [self._create_instance_from_row(row) for row in self._run()]

    def find_array(self) -> list[dict[str, Any]]:
        """Run the query and return plain row dicts instead of records."""
        return self._run()

    def count(self) -> int:
        """Return the number of rows the query matches."""
        value = self._aggregate("COUNT(*)", "count")
        return int(value) if value is not None else 0

    def sum(self, column: str) -> Any:
        """Return the sum of a column, or None if no rows matched."""
        return self._aggregate(f"SUM({self._quote_identifier(column)})", "sum")

    def avg(self, column: str) -> Any:
        """Return the average of a column, or None if no rows matched."""
        return self._aggregate(f"AVG({self._quote_identifier(column)})", "avg")

    def min(self, column: str) -> Any:
        """Return the minimum value of a column."""
        return self._aggregate(f"MIN({self._quote_identifier(column)})", "min")

    def max(self, column: str) -> Any:
        """Return the maximum value of a column."""
        return self._aggregate(f"MAX({self._quote_identifier(column)})", "max")

    def exists(self) -> bool:
        """Check if any matching rows exist."""
        return self.count() > 0

    def raw_query(self, query: str, parameters: Sequence[Any] | Mapping[str, Any] = ()) -> Self:
        """Use a hand-written statement instead of the built one.

        Once set, every other builder call is ignored when compiling.
        Placeholders are ``?`` with a sequence of parameters, or the
        driver's named style with a mapping.
        """
        self._is_raw_query = True
        self._raw_query = query
        self._raw_parameters = parameters
        return self

    def to_sql(self) -> tuple[str, list[Any] | dict[str, Any]]:
        """Compile the statement without running it."""
        return self._build_select()

    def _aggregate(self, expr: str, alias: str) -> Any:
        """Run ``SELECT <expr> AS alias`` with the current filters.

        Offset is ignored so the aggregate covers every matching row.
        Result columns, limit and offset are restored afterwards so the
        query can still be used for find_many().
        """
        saved = (self._result_columns, self._using_default_result_columns, self._limit, self._offset)
        self._result_columns = ["*"]
        self._using_default_result_columns = True
        self._offset = None
        try:
            self.select_expr(expr, alias)
            result = self.find_one()
        finally:
            (
                self._result_columns,
                self._using_default_result_columns,
                self._limit,
                self._offset,
            ) = saved
        return result.get(alias) if result is not None else None

    def _run(self) -> list[dict[str, Any]]:
        sql, params = self._build_select()
        return self._connection.execute(sql, params).rows

    def _create_instance_from_row(self, row: Mapping[str, Any]) -> R:
        return self._record_type.create_from_data(  # type: ignore[return-value]
            self._connection, self._table_name, row
        )

    # ========== Result Columns ==========

    def table_alias(self, alias: str) -> Self:
        """Alias the main table, e.g. for self-joins."""
        self._table_alias = alias
        return self

    def select(self, column: str, alias: str | None = None) -> Self:
        """Add a quoted column to the result set (replaces the default ``*``).

        Example:
            >>> query.select("name").select("contact.email", "mail")
        """
        return self._add_result_column(self._quote_identifier(column), alias)

    def select_expr(self, expr: str, alias: str | None = None) -> Self:
        """Add an unquoted expression such as ``COUNT(*)`` to the result set."""
        return self._add_result_column(expr, alias)

    def distinct(self) -> Self:
        self._distinct = True
        return self

    def _add_result_column(self, expr: str, alias: str | None = None) -> Self:
        if alias is not None:
            expr += " AS " + self._quote_identifier(alias)

        if self._using_default_result_columns:
            self._result_columns = [expr]
            self._using_default_result_columns = False
        else:
            self._result_columns.append(expr)
        return self

    # ========== Joins ==========

    def join(self, table: str, constraint: JoinConstraint, table_alias: str | None = None) -> Self:
        """Add a plain JOIN.

        The constraint is an :class:`On` (or a ``(left, op, right)`` tuple),
        whose columns get quoted, or a :class:`Raw` (or plain string) used
        as-is.

        Example:
            >>> query.join("profile", On("user.id", "=", "profile.user_id"))
            >>> query.join("profile", ("user.id", "=", "p.user_id"), "p")
        """
        return self._add_join_source("", table, constraint, table_alias)

    def inner_join(self, table: str, constraint: JoinConstraint, table_alias: str | None = None) -> Self:
        return self._add_join_source("INNER", table, constraint, table_alias)

    def left_outer_join(self, table: str, constraint: JoinConstraint, table_alias: str | None = None) -> Self:
        return self._add_join_source("LEFT OUTER", table, constraint, table_alias)

    def right_outer_join(self, table: str, constraint: JoinConstraint, table_alias: str | None = None) -> Self:
        return self._add_join_source("RIGHT OUTER", table, constraint, table_alias)

    def full_outer_join(self, table: str, constraint: JoinConstraint, table_alias: str | None = None) -> Self:
        return self._add_join_source("FULL OUTER", table, constraint, table_alias)

    def _add_join_source(
        self,
        join_operator: str,
        table: str,
        constraint: JoinConstraint,
        table_alias: str | None = None,
    ) -> Self:
        join_operator = f"{join_operator} JOIN".strip()
        constraint = _coerce_constraint(constraint)

        source = self._quote_identifier(table)
        if table_alias is not None:
            source += " " + self._quote_identifier(table_alias)

        if isinstance(constraint, On):
            left = self._quote_identifier(constraint.left)
            right = self._quote_identifier(constraint.right)
            condition = f"{left} {constraint.operator} {right}"
        else:
            condition = constraint.sql

        self._join_sources.append(f"{join_operator} {source} ON {condition}")
        return self

    # ========== Where Conditions ==========

    def where(self, column: str, value: Any) -> Self:
        """Add a ``column = value`` condition.

        Each call adds another condition; all of them are ANDed together.
        """
        return self.where_equal(column, value)

    def where_equal(self, column: str, value: Any) -> Self:
        return self._add_simple_where(column, "=", value)

    def where_not_equal(self, column: str, value: Any) -> Self:
        return self._add_simple_where(column, "!=", value)

    def where_id_is(self, id: Any) -> Self:
        """Add a condition on the table's primary-key column."""
        id_column = self._connection.get_id_column(self._require_table(), self._record_type)
        return self.where(id_column, id)

    def where_like(self, column: str, value: Any) -> Self:
        return self._add_simple_where(column, "LIKE", value)

    def where_not_like(self, column: str, value: Any) -> Self:
        return self._add_simple_where(column, "NOT LIKE", value)

    def where_gt(self, column: str, value: Any) -> Self:
        return self._add_simple_where(column, ">", value)

    def where_lt(self, column: str, value: Any) -> Self:
        return self._add_simple_where(column, "<", value)

    def where_gte(self, column: str, value: Any) -> Self:
        return self._add_simple_where(column, ">=", value)

    def where_lte(self, column: str, value: Any) -> Self:
        return self._add_simple_where(column, "<=", value)

    def where_in(self, column: str, values: Sequence[Any]) -> Self:
        """Add a ``column IN (...)`` condition.

        An empty ``values`` compiles to ``IN ()``, which most databases
        reject, so callers must not pass one.
        """
        placeholders = create_placeholders(len(values))
        return self._add_where(f"{self._quote_identifier(column)} IN ({placeholders})", values)

    def where_not_in(self, column: str, values: Sequence[Any]) -> Self:
        placeholders = create_placeholders(len(values))
        return self._add_where(f"{self._quote_identifier(column)} NOT IN ({placeholders})", values)

    def where_null(self, column: str) -> Self:
        return self._add_where(f"{self._quote_identifier(column)} IS NULL")

    def where_not_null(self, column: str) -> Self:
        return self._add_where(f"{self._quote_identifier(column)} IS NOT NULL")

    def where_raw(self, clause: str, parameters: Sequence[Any] = ()) -> Self:
        """Add a hand-written condition with ``?`` placeholders."""
        return self._add_where(clause, parameters)

    def _add_where(self, fragment: str, values: Sequence[Any] = ()) -> Self:
        self._where_conditions.append(WhereCondition(fragment, list(values)))
        return self

    def _add_simple_where(self, column: str, operator: str, value: Any) -> Self:
        return self._add_where(f"{self._quote_identifier(column)} {operator} ?", [value])

    # ========== Ordering, Grouping, Paging ==========

    def limit(self, limit: int) -> Self:
        self._limit = int(limit)
        return self

    def offset(self, offset: int) -> Self:
        self._offset = int(offset)
        return self

    def order_by_asc(self, column: str) -> Self:
        return self._add_order_by(column, "ASC")

    def order_by_desc(self, column: str) -> Self:
        return self._add_order_by(column, "DESC")

    def group_by(self, column: str) -> Self:
        self._group_by.append(self._quote_identifier(column))
        return self

    def _add_order_by(self, column: str, ordering: str) -> Self:
        self._order_by.append(f"{self._quote_identifier(column)} {ordering}")
        return self

    # ========== Compilation ==========

    def _build_select(self) -> tuple[str, list[Any] | dict[str, Any]]:
        """Assemble the SELECT statement and its bound values."""
        if self._is_raw_query:
            if isinstance(self._raw_parameters, Mapping):
                return self._raw_query, dict(self._raw_parameters)
            return self._raw_query, list(self._raw_parameters)

        where_sql, values = self._build_where()
        sql = _join_if_not_empty([
            self._build_select_start(),
            self._build_join(),
            where_sql,
            self._build_group_by(),
            self._build_order_by(),
            self._build_limit(),
            self._build_offset(),
        ])
        return sql, values

    def _build_select_start(self) -> str:
        result_columns = ", ".join(self._result_columns)
        if self._distinct:
            result_columns = "DISTINCT " + result_columns

        fragment = f"SELECT {result_columns} FROM {self._quote_identifier(self._require_table())}"
        if self._table_alias is not None:
            fragment += " " + self._quote_identifier(self._table_alias)
        return fragment

    def _build_join(self) -> str:
        return " ".join(self._join_sources)

    def _build_where(self) -> tuple[str, list[Any]]:
        if not self._where_conditions:
            return "", []

        values: list[Any] = []
        for condition in self._where_conditions:
            values.extend(condition.values)
        fragments = " AND ".join(condition.fragment for condition in self._where_conditions)
        return f"WHERE {fragments}", values

    def _build_group_by(self) -> str:
        if not self._group_by:
            return ""
        return "GROUP BY " + ", ".join(self._group_by)

    def _build_order_by(self) -> str:
        if not self._order_by:
            return ""
        return "ORDER BY " + ", ".join(self._order_by)

    def _build_limit(self) -> str:
        return f"LIMIT {self._limit}" if self._limit is not None else ""

    def _build_offset(self) -> str:
        return f"OFFSET {self._offset}" if self._offset is not None else ""

    def _require_table(self) -> str:
        if not self._table_name:
            raise PreconditionError("Query has no table; pass one to create_query()")
        return self._table_name

    def _quote_identifier(self, identifier: str) -> str:
        return self._connection.quote_identifier(identifier)


def _coerce_constraint(constraint: JoinConstraint) -> On | Raw:
    """Normalise a join constraint, failing fast on anything malformed."""
    if isinstance(constraint, (On, Raw)):
        return constraint
    if isinstance(constraint, str):
        return Raw(constraint)
    if isinstance(constraint, (tuple, list)):
        if len(constraint) != 3:
            raise PreconditionError(
                f"Join constraint must be (left, operator, right), got {len(constraint)} items"
            )
        return On(*constraint)
    raise PreconditionError(f"Unsupported join constraint: {constraint!r}")


def _join_if_not_empty(pieces: list[str]) -> str:
    """Join the non-blank pieces with single spaces."""
    return " ".join(piece.strip() for piece in pieces if piece and piece.strip())
