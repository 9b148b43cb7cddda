"""Database connection handle: configuration, client lifecycle and execution."""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any

import structlog
from sqlalchemy import create_engine
from sqlalchemy.engine import Connection as Client
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.exc import SQLAlchemyError, StatementError

from rowkit.config import CONNECTION_OPTIONS, ConnectionConfig
from rowkit.exceptions import ConfigurationError, ConnectionError, QueryExecutionError
from rowkit.query import Query
from rowkit.quoting import IdentifierQuoter, detect_quote_character, translate_placeholders
from rowkit.record import Record, RecordRegistry

logger = structlog.get_logger(__name__)

_UNSET: Any = object()


@dataclass
class ExecuteResult:
    """Outcome of one statement: fetched rows plus cursor metadata."""

    rows: list[dict[str, Any]] = field(default_factory=list)
    rowcount: int = -1
    lastrowid: Any = None

    def all(self) -> list[dict[str, Any]]:
        """Get all rows as dictionaries."""
        return list(self.rows)

    def first(self) -> dict[str, Any] | None:
        """Get the first row, or None if there were no rows."""
        return self.rows[0] if self.rows else None


@dataclass(frozen=True)
class LoggedQuery:
    """A statement recorded in the query log, as written (``?`` placeholders)."""

    sql: str
    params: tuple[Any, ...] | dict[str, Any]


class Connection:
    """A single database connection plus the settings used to open it.

    The SQLAlchemy client is created lazily on first use and owned by this
    object. Not safe for concurrent use from several threads.

    Example:
        >>> conn = Connection(ConnectionConfig("sqlite:///app.db"))
        >>> contacts = conn.create_query("contact").where_gt("id", 1).find_many()
        >>> record = conn.create_record("contact", {"name": "Alice"})
        >>> record.save()
    """

    def __init__(self, config: ConnectionConfig | None = None) -> None:
        self._config = config or ConnectionConfig()
        self._engine: Engine | None = None
        self._client: Client | None = None
        self._quoter: IdentifierQuoter | None = None
        self._registry = RecordRegistry()
        self._query_log: list[LoggedQuery] = []

    def __enter__(self) -> Connection:
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        self.close()

    def __repr__(self) -> str:
        state = "open" if self._client is not None else "closed"
        return f"<Connection {state}>"

    # ========== Configuration ==========

    @property
    def config(self) -> ConnectionConfig:
        return self._config

    def configure(self, key: str, value: Any = _UNSET) -> None:
        """Set one configuration option.

        As a shortcut, a single argument is taken as the connection string.
        Options that shape the client must be set before it is first used.

        Example:
            >>> conn.configure("sqlite:///app.db")
            >>> conn.configure("identifier_quote_character", '"')
        """
        if value is _UNSET:
            key, value = "connection_string", key

        if self._client is not None and key in CONNECTION_OPTIONS:
            raise ConfigurationError(
                f"Cannot change {key!r} after the connection has been opened"
            )

        self._config = self._config.replace_option(key, value)
        if key == "identifier_quote_character":
            self._quoter = None

    # ========== Client Lifecycle ==========

    def get_client(self) -> Client:
        """Return the SQLAlchemy connection, opening it on first call."""
        if self._client is None:
            config = self._config
            try:
                url = make_url(config.connection_string)
                if config.username is not None:
                    url = url.set(username=config.username)
                if config.password is not None:
                    url = url.set(password=config.password)
                engine = create_engine(url, connect_args=dict(config.driver_options or {}))
            except (SQLAlchemyError, ImportError) as exc:
                # ImportError: the dialect's DBAPI driver is not installed
                raise ConnectionError(f"Invalid connection settings: {exc}") from exc

            try:
                client = engine.connect()
            except (SQLAlchemyError, TypeError) as exc:
                # TypeError: driver_options the DBAPI connect() does not accept
                engine.dispose()
                raise ConnectionError(
                    f"Could not connect to {url.render_as_string(hide_password=True)}: {exc}"
                ) from exc

            self._engine = engine
            self.set_client(client)
            logger.debug(
                "connection.opened",
                dialect=client.dialect.name,
                quote_character=self._get_quoter().quote_character,
            )
        return self._client  # type: ignore[return-value]

    def set_client(self, client: Client) -> None:
        """Use a ready-made SQLAlchemy connection instead of opening one."""
        self._client = client
        self._quoter = None

    @property
    def dialect_name(self) -> str:
        """Dialect family of the client, e.g. ``sqlite`` or ``postgresql``."""
        return self.get_client().dialect.name

    def close(self) -> None:
        """Close the client; a later call to get_client() reconnects."""
        if self._client is not None:
            self._client.close()
            self._client = None
        if self._engine is not None:
            self._engine.dispose()
            self._engine = None
        self._quoter = None

    # ========== Identifier Quoting ==========

    def quote_identifier(self, identifier: str) -> str:
        """Quote a table or column name, handling ``table.column`` and ``*``.

        Example:
            >>> conn.quote_identifier("user.id")
            '`user`.`id`'
        """
        return self._get_quoter().quote(identifier)

    def _get_quoter(self) -> IdentifierQuoter:
        if self._quoter is None:
            quote = self._config.identifier_quote_character
            if quote is None:
                quote = detect_quote_character(self.get_client().dialect.name)
            self._quoter = IdentifierQuoter(quote)
        return self._quoter

    # ========== Queries and Records ==========

    def register(self, record_type: type[Record]) -> type[Record]:
        """Register a record subtype so it can be named by class name.

        Usable as a class decorator.

        Example:
            >>> @conn.register
            ... class Contact(Record):
            ...     __tablename__ = "contact"
            >>> conn.create_query("Contact").find_many()
        """
        return self._registry.register(record_type)

    def create_query(self, table_or_type: str | type[Record] | None = None) -> Query:
        """Start a SELECT query on a table or record subtype."""
        record_type = self._registry.resolve(table_or_type)
        if record_type is not None:
            return Query(self, record_type.__tablename__, record_type)
        return Query(self, table_or_type)  # type: ignore[arg-type]

    def create_record(
        self,
        table_or_type: str | type[Record],
        data: Mapping[str, Any] | None = None,
    ) -> Record:
        """Create a new, unsaved record. Every supplied field is dirty."""
        record_type = self._registry.resolve(table_or_type)
        if record_type is not None:
            return record_type.create_new(self, record_type.__tablename__, data)
        return Record.create_new(self, table_or_type, data)  # type: ignore[arg-type]

    def get_id_column(self, table_name: str, record_type: type[Record] | None = None) -> str:
        """Resolve the primary-key column for a table."""
        if record_type is not None and record_type.__id_column__:
            return record_type.__id_column__
        return self._config.id_column_overrides.get(table_name, self._config.id_column)

    # ========== Execution ==========

    def execute(
        self,
        sql: str,
        params: Sequence[Any] | Mapping[str, Any] = (),
    ) -> ExecuteResult:
        """Execute one statement with ``?`` placeholders and commit.

        Mapping params are handed to the driver as named parameters without
        placeholder translation.

        Raises:
            QueryExecutionError: If the driver rejects the statement
        """
        client = self.get_client()

        bound: Sequence[Any] | Mapping[str, Any]
        if isinstance(params, Mapping):
            statement, bound = sql, dict(params)
        else:
            statement, bound = translate_placeholders(sql, params, client.dialect.paramstyle)

        if self._config.logging:
            self._log_query(sql, params)

        try:
            result = client.exec_driver_sql(statement, bound)  # type: ignore[arg-type]
            if result.returns_rows:
                rows = [dict(row) for row in result.mappings()]
                outcome = ExecuteResult(rows=rows, rowcount=len(rows))
            else:
                outcome = ExecuteResult(rowcount=result.rowcount, lastrowid=result.lastrowid)
            client.commit()
        except StatementError as exc:
            try:
                client.rollback()
            except SQLAlchemyError as rollback_exc:
                logger.warning("statement.rollback_failed", sql=sql, error=str(rollback_exc))
            raise QueryExecutionError(f"Statement failed: {exc.orig or exc}", sql, params) from exc

        return outcome

    # ========== Query Log ==========

    @property
    def query_log(self) -> list[LoggedQuery]:
        """Statements executed while ``logging`` was enabled, oldest first."""
        return list(self._query_log)

    @property
    def last_query(self) -> LoggedQuery | None:
        return self._query_log[-1] if self._query_log else None

    def _log_query(self, sql: str, params: Sequence[Any] | Mapping[str, Any]) -> None:
        logged = dict(params) if isinstance(params, Mapping) else tuple(params)
        self._query_log.append(LoggedQuery(sql, logged))
        logger.debug("statement.execute", sql=sql, params=logged)
