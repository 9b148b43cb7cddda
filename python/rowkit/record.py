"""Active-record wrapper around a single table row."""

from __future__ import annotations

from collections.abc import Iterator, Mapping
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, ClassVar, Self

from rowkit.exceptions import PreconditionError
from rowkit.fields import Field
from rowkit.quoting import create_placeholders

if TYPE_CHECKING:
    from rowkit.connection import Connection


@dataclass(frozen=True)
class Inserted:
    """save() inserted a new row; ``new_id`` is the generated primary key."""

    new_id: Any


@dataclass(frozen=True)
class Updated:
    """save() updated an existing row, or had nothing to write."""

    success: bool


type SaveResult = Inserted | Updated


class Record:
    """One row of a table: its current values plus the fields changed since load.

    Subclass to bind a table and add typed accessors:

    Example:
        >>> class Contact(Record):
        ...     __tablename__ = "contact"
        ...     name: Field[str] = column()
        >>> contact = conn.create_record(Contact, {"name": "Alice"})
        >>> contact.save()
        Inserted(new_id=1)
    """

    __tablename__: ClassVar[str | None] = None
    __id_column__: ClassVar[str | None] = None
    __fields__: ClassVar[dict[str, Field[Any]]] = {}

    def __init_subclass__(cls, **kwargs: Any) -> None:
        super().__init_subclass__(**kwargs)

        # Table name defaults to the pluralised class name
        if "__tablename__" not in cls.__dict__:
            cls.__tablename__ = cls.__name__.lower() + "s"

        fields: dict[str, Field[Any]] = {}
        for klass in reversed(cls.__mro__):
            for attr_name, attr_value in vars(klass).items():
                if isinstance(attr_value, Field):
                    fields[attr_name] = attr_value
        cls.__fields__ = fields

    def __init__(self, connection: Connection, table_name: str | None = None) -> None:
        table_name = table_name or type(self).__tablename__
        if not table_name:
            raise PreconditionError(f"{type(self).__name__} has no table name")
        self._connection = connection
        self._table_name = table_name
        self._data: dict[str, Any] = {}
        self._dirty: dict[str, Any] = {}
        self._is_new = False

    @classmethod
    def create_new(
        cls,
        connection: Connection,
        table_name: str | None = None,
        data: Mapping[str, Any] | None = None,
    ) -> Self:
        """Create a record for insertion; every supplied field is dirty."""
        record = cls.create_from_data(connection, table_name, data or {})
        record._is_new = True
        record.force_all_dirty()
        return record

    @classmethod
    def create_from_data(
        cls,
        connection: Connection,
        table_name: str | None,
        data: Mapping[str, Any],
    ) -> Self:
        """Create a clean record from an existing row."""
        record = cls(connection, table_name)
        record.hydrate(data)
        return record

    def __repr__(self) -> str:
        pk = self._get_id_column()
        if pk in self._data:
            return f"<{type(self).__name__} {self._table_name} {pk}={self._data[pk]!r}>"
        return f"<{type(self).__name__} {self._table_name} new>"

    # ========== Field Access ==========

    @property
    def table_name(self) -> str:
        return self._table_name

    @property
    def is_new(self) -> bool:
        """True until the record has been inserted."""
        return self._is_new

    def get(self, key: str, default: Any = None) -> Any:
        """Return a field's value, or ``default`` if it is unset."""
        return self._data.get(key, default)

    def set(self, key: str, value: Any) -> None:
        """Set a field's value and mark it dirty."""
        self._data[key] = value
        self._dirty[key] = value

    def has(self, key: str) -> bool:
        return key in self._data

    def is_dirty(self, key: str) -> bool:
        """Check whether a field changed since the record was last saved."""
        return key in self._dirty

    def as_array(self, *keys: str) -> dict[str, Any]:
        """Return the row as a dict, optionally restricted to ``keys``.

        Requested keys that are not set are simply left out.
        """
        if not keys:
            return dict(self._data)
        wanted = set(keys)
        return {key: value for key, value in self._data.items() if key in wanted}

    def hydrate(self, data: Mapping[str, Any]) -> Self:
        """Replace all field values without marking anything dirty."""
        self._data = dict(data)
        return self

    def force_all_dirty(self) -> Self:
        """Mark every field that is currently set as dirty."""
        self._dirty = dict(self._data)
        return self

    def id(self) -> Any:
        """Return the primary-key value, or None if it is unset."""
        return self._data.get(self._get_id_column())

    def __getitem__(self, key: str) -> Any:
        return self._data[key]

    def __setitem__(self, key: str, value: Any) -> None:
        self.set(key, value)

    def __contains__(self, key: object) -> bool:
        return key in self._data

    def __iter__(self) -> Iterator[str]:
        return iter(self._data)

    # ========== Persistence ==========

    def save(self) -> SaveResult:
        """Write dirty fields to the database.

        Returns:
            Inserted(new_id) for a new record, Updated(success) otherwise.
            A saved record with no dirty fields is not written at all.
        """
        values = list(self._dirty.values())

        if not self._is_new:
            if not values:
                return Updated(success=True)
            values.append(self._require_id("update"))
            self._connection.execute(self._build_update(), values)
            self._dirty.clear()
            return Updated(success=True)

        id_column = self._get_id_column()
        sql = self._build_insert()
        # psycopg2 has no usable lastrowid, so ask for the key back
        returning = self._connection.dialect_name == "postgresql"
        if returning:
            sql += f" RETURNING {self._quote_identifier(id_column)}"

        result = self._connection.execute(sql, values)
        if returning:
            row = result.first()
            new_id = row.get(id_column) if row is not None else None
        else:
            new_id = result.lastrowid

        self._dirty.clear()
        self._is_new = False
        if self._data.get(id_column) is None:
            self._data[id_column] = new_id
        return Inserted(new_id=new_id)

    def delete(self) -> bool:
        """Delete this row by primary key."""
        params = [self._require_id("delete")]
        sql = " ".join([
            "DELETE FROM",
            self._quote_identifier(self._table_name),
            "WHERE",
            self._quote_identifier(self._get_id_column()),
            "= ?",
        ])
        self._connection.execute(sql, params)
        return True

    def _build_update(self) -> str:
        field_list = ", ".join(f"{self._quote_identifier(key)} = ?" for key in self._dirty)
        return " ".join([
            "UPDATE",
            self._quote_identifier(self._table_name),
            "SET",
            field_list,
            "WHERE",
            self._quote_identifier(self._get_id_column()),
            "= ?",
        ])

    def _build_insert(self) -> str:
        table = self._quote_identifier(self._table_name)
        if not self._dirty:
            return f"INSERT INTO {table} DEFAULT VALUES"
        field_list = ", ".join(self._quote_identifier(key) for key in self._dirty)
        placeholders = create_placeholders(len(self._dirty))
        return f"INSERT INTO {table} ({field_list}) VALUES ({placeholders})"

    def _require_id(self, operation: str) -> Any:
        pk = self._data.get(self._get_id_column())
        if pk is None:
            raise PreconditionError(
                f"Cannot {operation} {self._table_name} row: "
                f"primary key {self._get_id_column()!r} is not set"
            )
        return pk

    def _get_id_column(self) -> str:
        return self._connection.get_id_column(self._table_name, type(self))

    def _quote_identifier(self, identifier: str) -> str:
        return self._connection.quote_identifier(identifier)


class RecordRegistry:
    """Record subtypes known to a connection, looked up by class name."""

    def __init__(self) -> None:
        self._types: dict[str, type[Record]] = {}

    def __contains__(self, name: object) -> bool:
        return name in self._types

    def register(self, record_type: type[Record]) -> type[Record]:
        if not (isinstance(record_type, type) and issubclass(record_type, Record)):
            raise PreconditionError(f"{record_type!r} is not a Record subclass")
        self._types[record_type.__name__] = record_type
        return record_type

    def resolve(self, table_or_type: str | type[Record] | None) -> type[Record] | None:
        """Return the record subtype named by the argument, or None for a plain table."""
        if isinstance(table_or_type, type):
            if issubclass(table_or_type, Record):
                return table_or_type
            raise PreconditionError(f"{table_or_type!r} is not a Record subclass")
        if isinstance(table_or_type, str):
            return self._types.get(table_or_type)
        return None
