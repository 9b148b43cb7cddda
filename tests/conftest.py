"""Pytest configuration and fixtures."""

import os

import pytest

from rowkit import Connection, ConnectionConfig


@pytest.fixture
def sqlite_connection():
    """Create a connection to an in-memory SQLite database."""
    conn = Connection(ConnectionConfig("sqlite://"))
    yield conn
    conn.close()


@pytest.fixture
def connection(sqlite_connection):
    """Create a connection with an empty contact table."""
    sqlite_connection.execute("""
        CREATE TABLE contact (
            id INTEGER PRIMARY KEY,
            name TEXT,
            email TEXT
        )
    """)
    return sqlite_connection


@pytest.fixture
def seeded(connection):
    """Contact table holding ids 1 to 4."""
    for name in ["Alice", "Bob", "Charlie", "Diana"]:
        connection.execute(
            "INSERT INTO contact (name, email) VALUES (?, ?)",
            [name, f"{name.lower()}@example.org"],
        )
    return connection


@pytest.fixture
def postgres_connection():
    """Create a PostgreSQL connection.

    Set DATABASE_URL environment variable to use a real PostgreSQL database.
    Otherwise, this fixture is skipped.
    """
    url = os.environ.get("DATABASE_URL")
    if not url:
        pytest.skip("DATABASE_URL not set")

    conn = Connection(ConnectionConfig(url))
    yield conn
    conn.close()
