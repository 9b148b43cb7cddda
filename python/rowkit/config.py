"""Connection configuration."""

from __future__ import annotations

import configparser
import dataclasses
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from rowkit.exceptions import ConfigurationError

SUPPORTED_ERROR_MODES = frozenset({"exception"})

# Options that shape the client itself; they cannot change once it is live.
CONNECTION_OPTIONS = frozenset({"connection_string", "username", "password", "driver_options"})


@dataclass(frozen=True)
class ConnectionConfig:
    """Immutable settings for a :class:`rowkit.Connection`.

    Example:
        >>> config = ConnectionConfig("sqlite:///app.db", logging=True)
        >>> config = ConnectionConfig.from_ini("rowkit.ini")
    """

    connection_string: str = "sqlite://"
    """SQLAlchemy database URL."""

    username: str | None = None
    """Overrides the user name embedded in the URL."""

    password: str | None = None
    """Overrides the password embedded in the URL."""

    driver_options: Mapping[str, Any] | None = None
    """Extra keyword arguments for the DBAPI ``connect()`` call."""

    error_mode: str = "exception"
    """How client errors surface. Only ``"exception"`` is supported."""

    identifier_quote_character: str | None = None
    """Character used to quote identifiers; ``None`` autodetects it."""

    id_column: str = "id"
    """Primary-key column used when a table has no override."""

    id_column_overrides: Mapping[str, str] = field(default_factory=dict)
    """Per-table primary-key columns."""

    logging: bool = False
    """Record executed statements in the query log."""

    caching: bool = False
    """Accepted for compatibility; has no effect."""

    def __post_init__(self) -> None:
        if self.error_mode not in SUPPORTED_ERROR_MODES:
            raise ConfigurationError(
                f"Unsupported error_mode {self.error_mode!r}; "
                f"expected one of {sorted(SUPPORTED_ERROR_MODES)}"
            )
        quote = self.identifier_quote_character
        if quote is not None and len(quote) != 1:
            raise ConfigurationError(
                f"identifier_quote_character must be a single character, got {quote!r}"
            )

    @classmethod
    def option_names(cls) -> frozenset[str]:
        return frozenset(f.name for f in dataclasses.fields(cls))

    def replace_option(self, key: str, value: Any) -> ConnectionConfig:
        """Return a copy with one option changed."""
        if key not in self.option_names():
            raise ConfigurationError(f"Unknown configuration option: {key!r}")
        return dataclasses.replace(self, **{key: value})

    @classmethod
    def from_mapping(cls, options: Mapping[str, Any]) -> ConnectionConfig:
        """Build a config from a plain mapping, rejecting unknown keys.

        Example:
            >>> ConnectionConfig.from_mapping({"connection_string": "sqlite://", "logging": True})
        """
        unknown = set(options) - cls.option_names()
        if unknown:
            raise ConfigurationError(f"Unknown configuration options: {sorted(unknown)}")
        return cls(**dict(options))

    @classmethod
    def from_ini(cls, path: Path | str, section: str = "rowkit") -> ConnectionConfig:
        """Load configuration from an ini file.

        Example rowkit.ini:
            [rowkit]
            connection_string = sqlite:///app.db
            identifier_quote_character = "
            id_column_overrides = person=person_id, account=account_no
            driver_options = timeout=5, check_same_thread=false
            logging = true

        Raises:
            FileNotFoundError: If the file doesn't exist
            ConfigurationError: If the section is missing or an option is invalid
        """
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"Config file not found: {path}")

        # Interpolation off so URL-encoded passwords survive.
        parser = configparser.ConfigParser(interpolation=None)
        parser.read(path)

        if section not in parser:
            raise ConfigurationError(f"No [{section}] section in {path}")

        values = parser[section]
        options: dict[str, Any] = {}
        for key in values:
            if key in ("logging", "caching"):
                try:
                    options[key] = values.getboolean(key)
                except ValueError as exc:
                    raise ConfigurationError(f"Invalid boolean for {key!r} in {path}") from exc
            elif key == "id_column_overrides":
                options[key] = _parse_overrides(values[key])
            elif key == "driver_options":
                options[key] = _parse_driver_options(values[key])
            else:
                options[key] = values[key]

        return cls.from_mapping(options)


def _parse_overrides(raw: str) -> dict[str, str]:
    """Parse ``a=b, c=d`` into a dict."""
    result: dict[str, str] = {}
    for item in raw.split(","):
        item = item.strip()
        if not item:
            continue
        name, sep, value = item.partition("=")
        if not sep or not name.strip() or not value.strip():
            raise ConfigurationError(f"Expected 'name=value', got {item!r}")
        result[name.strip()] = value.strip()
    return result


def _parse_driver_options(raw: str) -> dict[str, Any]:
    """Parse ``a=b, c=d`` driver options, converting numbers and booleans.

    Example:
        >>> _parse_driver_options("timeout=5, check_same_thread=false")
        {'timeout': 5, 'check_same_thread': False}
    """
    return {name: _coerce_scalar(value) for name, value in _parse_overrides(raw).items()}


def _coerce_scalar(value: str) -> Any:
    for convert in (int, float):
        try:
            return convert(value)
        except ValueError:
            pass
    boolean = configparser.ConfigParser.BOOLEAN_STATES.get(value.lower())
    return value if boolean is None else boolean
