"""Unit tests for the SQLite primary-store adapter."""

import sqlite3

import pytest

from search_mirror.adapters.record_store import SqliteRecordStore
from search_mirror.deployment_config import EntityIndexConfig, IndexRegistry


pytestmark = pytest.mark.unit


def test_column_types_and_primary_key(store):
    assert store.column_types("Person") == {
        "id": "INTEGER",
        "first_name": "VARCHAR(64)",
        "last_name": "VARCHAR(64)",
        "bio": "TEXT",
        "age": "INTEGER",
    }
    assert store.primary_key("Person") == "id"


def test_primary_key_detection_for_custom_key():
    conn = sqlite3.connect(":memory:")
    conn.execute("CREATE TABLE tags (slug TEXT PRIMARY KEY, label TEXT)")

    assert SqliteRecordStore(conn).primary_key("tags") == "slug"


def test_configured_primary_key_overrides_the_schema(connection):
    registry = IndexRegistry(
        entities=[EntityIndexConfig(entity_type="Person", table="people", index="site", primary_key="last_name")]
    )
    store = SqliteRecordStore.from_registry(connection, registry)
    store.save("Person", {"first_name": "Ada", "last_name": "Lovelace"})

    assert store.primary_key("Person") == "last_name"
    assert store.read_by_key("Person", "Lovelace")["first_name"] == "Ada"
    assert store.list_keys("Person") == ["Lovelace"]


def test_unknown_table(store):
    with pytest.raises(ValueError, match="does not exist"):
        store.column_types("Invoice")


def test_save_insert_update_and_last_inserted_key(store):
    key = store.save("Person", {"first_name": "Ada", "last_name": "Lovelace"})

    assert store.last_inserted_key("Person") == key
    assert store.read_by_key("Person", key)["first_name"] == "Ada"

    assert store.save("Person", {"id": key, "first_name": "Augusta"}) == key
    assert store.read_by_key("Person", key)["first_name"] == "Augusta"
    assert store.read_by_key("Person", str(key))["id"] == key


def test_read_missing_key(store):
    assert store.read_by_key("Person", 404) is None


def test_delete(store, people):
    assert store.delete("Person", people["Ada"]) is True
    assert store.delete("Person", people["Ada"]) is False
    assert store.read_by_key("Person", people["Ada"]) is None


def test_find_all_with_conditions_fields_and_order(store, people):
    rows = store.find_all(
        "Person",
        {"id": [people["Grace"], people["Ada"]]},
        fields=["id", "first_name"],
        order="first_name DESC",
    )

    assert rows == [
        {"id": people["Grace"], "first_name": "Grace"},
        {"id": people["Ada"], "first_name": "Ada"},
    ]


def test_find_all_with_empty_in_list_matches_nothing(store, people):
    assert store.find_all("Person", {"id": []}) == []


def test_find_all_null_condition(store, people):
    key = store.save("Person", {"first_name": "Nobody"})

    assert [row["id"] for row in store.find_all("Person", {"bio": None})] == [key]


def test_list_keys_pages_in_key_order(store, people):
    assert store.list_keys("Person", limit=2, page=1) == [people["Ada"], people["Alan"]]
    assert store.list_keys("Person", limit=2, page=2) == [people["Grace"]]
    assert store.list_keys("Person", {"age": 41}) == [people["Alan"]]


def test_unknown_columns_are_rejected(store):
    with pytest.raises(ValueError, match="Unknown column"):
        store.find_all("Person", {"password": "x"})
    with pytest.raises(ValueError, match="Invalid order"):
        store.find_all("Person", order="id; DROP TABLE people")
