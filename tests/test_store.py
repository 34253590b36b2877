"""In-memory and SQLite key-value stores."""

import os
import tempfile

import pytest

from devconfirm.database import create_db_engine, init_db
from devconfirm.store import InMemoryStore, SQLStore


def _sql_store(namespace="things"):
    path = os.path.join(tempfile.mkdtemp(), "kv.db")
    engine = create_db_engine(path)
    init_db(engine)
    return SQLStore(engine, namespace), engine


@pytest.fixture(params=["memory", "sqlite"])
def store(request):
    if request.param == "memory":
        return InMemoryStore()
    return _sql_store()[0]


def test_get_set_delete(store):
    assert store.get("a") is None
    store.set("a", {"n": 1})
    assert store.get("a") == {"n": 1}
    assert store.delete("a") is True
    assert store.get("a") is None
    assert store.delete("a") is False


def test_list_keeps_insertion_order_across_updates(store):
    store.set("b", {"k": "b"})
    store.set("a", {"k": "a"})
    store.set("c", {"k": "c"})
    store.set("b", {"k": "b2"})
    assert [v["k"] for v in store.list()] == ["b2", "a", "c"]


def test_values_are_copies(store):
    store.set("a", {"items": [1]})
    value = store.get("a")
    value["items"].append(2)
    assert store.get("a") == {"items": [1]}


def test_sql_namespaces_are_isolated():
    devices, engine = _sql_store("devices")
    confirmations = SQLStore(engine, "confirmations")
    devices.set("x", {"kind": "device"})
    confirmations.set("x", {"kind": "confirmation"})
    assert devices.get("x") == {"kind": "device"}
    assert confirmations.get("x") == {"kind": "confirmation"}
    assert len(devices.list()) == 1
