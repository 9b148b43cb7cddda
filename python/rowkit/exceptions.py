"""Exception hierarchy for rowkit."""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from typing import Any


class RowkitError(Exception):
    """Base class for every error raised by rowkit."""


class ConfigurationError(RowkitError, ValueError):
    """An option is unknown, has an unsupported value, or was set too late."""


class ConnectionError(RowkitError):  # noqa: A001
    """The underlying database client could not be constructed."""


class QueryExecutionError(RowkitError):
    """A compiled statement failed inside the database client.

    The original driver error is available as ``__cause__``.
    """

    def __init__(
        self,
        message: str,
        sql: str,
        params: Sequence[Any] | Mapping[str, Any] = (),
    ) -> None:
        super().__init__(message)
        self.sql = sql
        self.params = params


class PreconditionError(RowkitError, ValueError):
    """An operation was invoked against invalid state.

    Raised for programming errors such as deleting a record without a
    primary key or passing a join constraint of the wrong shape.
    """
