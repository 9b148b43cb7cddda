"""Typed field accessors for record subtypes."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, overload

if TYPE_CHECKING:
    from rowkit.record import Record


class Field[T]:
    """Descriptor exposing one column of a record as a typed attribute.

    Reads go through :meth:`Record.get` and writes through
    :meth:`Record.set`, so assigning a field marks it dirty.

    Example:
        >>> class Contact(Record):
        ...     __tablename__ = "contact"
        ...     name: Field[str] = column()
        ...     email_address: Field[str] = column("email")
        >>> contact.name = "Alice"
        >>> contact.is_dirty("name")
        True
    """

    def __init__(self, column_name: str | None = None, *, default: T | None = None) -> None:
        self.name: str | None = None
        self.column_name = column_name
        self.default = default

    def __set_name__(self, owner: type, name: str) -> None:
        self.name = name
        if self.column_name is None:
            self.column_name = name

    @overload
    def __get__(self, instance: None, owner: type | None = None) -> Field[T]: ...

    @overload
    def __get__(self, instance: Record, owner: type | None = None) -> T | None: ...

    def __get__(self, instance: Record | None, owner: type | None = None) -> Any:
        if instance is None:
            return self
        return instance.get(self.column_name, self.default)  # type: ignore[arg-type]

    def __set__(self, instance: Record, value: T | None) -> None:
        instance.set(self.column_name, value)  # type: ignore[arg-type]

    def __repr__(self) -> str:
        return f"Field({self.column_name!r})"


def column(column_name: str | None = None, /, *, default: Any = None) -> Any:
    """Declare a typed accessor for a record column.

    Args:
        column_name: Database column, when it differs from the attribute name
        default: Value returned while the column is unset

    Example:
        >>> id: Field[int] = column()
        >>> email: Field[str] = column("email_address")
    """
    return Field(column_name, default=default)
