"""Tests for record persistence and dirty tracking."""

import pytest

from rowkit import Field, Inserted, PreconditionError, Record, Updated, column


class Contact(Record):
    __tablename__ = "contact"

    contact_id: Field[int] = column("id")
    name: Field[str] = column()
    email: Field[str] = column()


class Person(Record):
    __tablename__ = "person"
    __id_column__ = "person_id"

    name: Field[str] = column()


class Widget(Record):
    pass


def test_record_fields_collected():
    """Test that typed fields and table names are picked up."""
    assert set(Contact.__fields__) == {"contact_id", "name", "email"}
    assert Contact.__fields__["contact_id"].column_name == "id"
    assert Widget.__tablename__ == "widgets"


def test_create_record_marks_all_dirty(connection):
    """Test that supplied data is dirty on a new record."""
    record = connection.create_record("contact", {"name": "Testi", "email": "t@example.org"})
    assert record.is_new
    assert record.is_dirty("name")
    assert record.is_dirty("email")
    assert not record.is_dirty("id")


def test_insert_and_find(connection):
    """Test the documented insert-then-find scenario."""
    record = connection.create_record("contact")
    record.set("name", "Testi")
    result = record.save()

    assert isinstance(result, Inserted)
    assert result.new_id == 1
    assert not record.is_new
    assert not record.is_dirty("name")
    assert record.id() == 1

    found = connection.create_query("contact").find_one(result.new_id)
    assert found.get("name") == "Testi"


def test_update_only_dirty_fields(connection):
    """Test that update writes the changed fields and clears them."""
    connection.create_record("contact", {"name": "Alice", "email": "a@example.org"}).save()
    record = connection.create_query("contact").find_one(1)

    connection.configure("logging", True)
    record["email"] = "alice@example.org"
    assert record.is_dirty("email")
    assert not record.is_dirty("name")

    assert record.save() == Updated(success=True)
    assert not record.is_dirty("email")
    assert connection.last_query.sql == "UPDATE `contact` SET `email` = ? WHERE `id` = ?"
    assert connection.last_query.params == ("alice@example.org", 1)
    assert connection.create_query("contact").find_one(1).get("email") == "alice@example.org"


def test_save_without_changes_is_noop(connection):
    """Test that saving a clean record runs no statement."""
    connection.create_record("contact", {"name": "Alice"}).save()
    record = connection.create_query("contact").find_one(1)

    connection.configure("logging", True)
    assert record.save() == Updated(success=True)
    assert connection.query_log == []


def test_insert_with_no_fields(connection):
    """Test inserting a record with every column defaulted."""
    result = connection.create_record("contact").save()
    assert result == Inserted(new_id=1)
    assert connection.create_query("contact").where_null("name").count() == 1


def test_insert_keeps_explicit_id(connection):
    """Test that a supplied primary key is kept."""
    record = connection.create_record("contact", {"id": 42, "name": "Zed"})
    assert record.save() == Inserted(new_id=42)
    assert record.id() == 42


def test_delete(connection):
    """Test deleting by primary key."""
    connection.create_record("contact", {"name": "Alice"}).save()
    record = connection.create_query("contact").find_one(1)
    assert record.delete() is True
    assert connection.create_query("contact").count() == 0


def test_delete_without_id_fails(connection):
    """Test that delete requires a primary key."""
    record = connection.create_record("contact", {"name": "Alice"})
    with pytest.raises(PreconditionError):
        record.delete()


def test_update_without_id_fails(connection):
    """Test that update requires a primary key."""
    record = Record.create_from_data(connection, "contact", {"name": "Alice"})
    record.set("name", "Bob")
    with pytest.raises(PreconditionError):
        record.save()
    assert record.is_dirty("name")


def test_get_set_and_as_array(connection):
    """Test plain field access."""
    record = Record.create_from_data(connection, "contact", {"id": 1, "name": "Alice", "email": None})
    assert record.get("name") == "Alice"
    assert record.get("missing") is None
    assert record.get("missing", "n/a") == "n/a"
    assert record.has("email")
    assert "email" in record
    assert record["id"] == 1
    with pytest.raises(KeyError):
        record["missing"]

    assert record.as_array() == {"id": 1, "name": "Alice", "email": None}
    assert record.as_array("name", "missing") == {"name": "Alice"}
    assert list(record) == ["id", "name", "email"]


def test_hydrate_does_not_dirty(connection):
    """Test that hydrate replaces data without marking fields dirty."""
    record = Record(connection, "contact")
    record.hydrate({"id": 5, "name": "Eve"})
    assert not record.is_dirty("name")
    record.force_all_dirty()
    assert record.is_dirty("id")
    assert record.is_dirty("name")


def test_typed_subtype_round_trip(connection):
    """Test creating and querying through a record subtype."""
    contact = connection.create_record(Contact)
    contact.name = "Tester2"
    contact.email = "Tester2@example.org"
    assert contact.is_dirty("name")
    assert isinstance(contact.save(), Inserted)
    assert contact.contact_id == 1

    found = connection.create_query(Contact).where("email", "Tester2@example.org").find_one()
    assert isinstance(found, Contact)
    assert found.name == "Tester2"


def test_registered_subtype_by_name(connection):
    """Test naming a registered subtype instead of passing the class."""
    connection.register(Contact)
    connection.create_record("Contact", {"name": "Alice"}).save()

    records = connection.create_query("Contact").find_many()
    assert [type(r) for r in records] == [Contact]

    # Unregistered names are plain table names
    assert type(connection.create_query("contact").find_one(1)) is Record


def test_register_rejects_non_records(connection):
    """Test that only Record subclasses can be registered."""
    with pytest.raises(PreconditionError):
        connection.register(dict)
    with pytest.raises(PreconditionError):
        connection.create_query(dict)


def test_subtype_id_column(connection):
    """Test a record subtype with its own primary-key column."""
    connection.execute("CREATE TABLE person (person_id INTEGER PRIMARY KEY, name TEXT)")
    person = connection.create_record(Person, {"name": "Ada"})
    assert person.save() == Inserted(new_id=1)
    assert person.get("person_id") == 1

    found = connection.create_query(Person).find_one(1)
    found.name = "Ada L."
    found.save()
    assert connection.create_query(Person).find_one(1).name == "Ada L."


def test_repr(connection):
    """Test the record repr."""
    assert repr(connection.create_record(Contact)) == "<Contact contact new>"
    assert repr(Record.create_from_data(connection, "contact", {"id": 3})) == "<Record contact id=3>"


def test_postgres_insert_returns_id(postgres_connection):
    """Test that INSERT uses RETURNING to get the key on PostgreSQL."""
    conn = postgres_connection
    conn.execute("DROP TABLE IF EXISTS rowkit_contact")
    conn.execute("CREATE TABLE rowkit_contact (id SERIAL PRIMARY KEY, name TEXT)")
    try:
        result = conn.create_record("rowkit_contact", {"name": "100% real"}).save()
        assert isinstance(result, Inserted)
        found = conn.create_query("rowkit_contact").find_one(result.new_id)
        assert found.get("name") == "100% real"
    finally:
        conn.execute("DROP TABLE rowkit_contact")
