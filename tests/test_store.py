import sqlite3
import threading
from unittest.mock import MagicMock, patch

import pytest
from google.api_core import exceptions as google_exceptions

from rental_bot.db import connect
from services import inventory
from services import store as store_module
from services.store import (
    FirestoreToolStore,
    PreconditionFailed,
    SqliteToolStore,
    StoreUnavailable,
    ToolNotFound,
    ToolRecord,
    normalize_status,
)


@pytest.fixture
def sqlite_store(tmp_path):
    s = SqliteToolStore(tmp_path / "tools.db")
    s.upsert(ToolRecord(id="unlocktool", name="UnlockTool", price=20, duration_minutes=30))
    return s


def test_record_from_fields_reads_both_pricing_forms():
    flat = ToolRecord.from_fields("a", {"name": "A", "status": "In Use", "price": 20, "duration": 30})
    assert flat.status == "in_use"
    assert flat.duration_minutes == 30

    tiered = ToolRecord.from_fields("b", {"rates": {1: 10, "3": 25}})
    assert tiered.name == "b"
    assert tiered.status == "available"
    assert tiered.rates == {"1": 10, "3": 25}


def test_record_to_fields_skips_missing_pricing():
    assert ToolRecord(id="a", name="A").to_fields() == {"name": "A", "status": "available"}


@pytest.mark.parametrize(
    "raw, expected",
    [("Available", "available"), ("in use", "in_use"), ("IN-USE", "in_use"), (None, "available")],
)
def test_normalize_status(raw, expected):
    assert normalize_status(raw) == expected


def test_sqlite_get_and_list(sqlite_store):
    tool = sqlite_store.get_by_id("unlocktool")
    assert tool.name == "UnlockTool"
    assert tool.price == 20
    assert [t.id for t in sqlite_store.list_all()] == ["unlocktool"]


def test_sqlite_get_missing_raises(sqlite_store):
    with pytest.raises(ToolNotFound):
        sqlite_store.get_by_id("hammer")


def test_sqlite_conditional_update(sqlite_store):
    sqlite_store.conditional_update("unlocktool", {"status": "available"}, {"status": "in_use"})
    assert sqlite_store.get_by_id("unlocktool").status == "in_use"

    with pytest.raises(PreconditionFailed):
        sqlite_store.conditional_update("unlocktool", {"status": "available"}, {"status": "in_use"})

    with pytest.raises(ToolNotFound):
        sqlite_store.conditional_update("hammer", {"status": "available"}, {"status": "in_use"})


def test_sqlite_conditional_update_rejects_unknown_fields(sqlite_store):
    with pytest.raises(ValueError):
        sqlite_store.conditional_update("unlocktool", {"colour": "red"}, {"status": "in_use"})


def test_sqlite_concurrent_conditional_updates(sqlite_store):
    barrier = threading.Barrier(2)
    outcomes = []

    def claim():
        barrier.wait()
        try:
            sqlite_store.conditional_update("unlocktool", {"status": "available"}, {"status": "in_use"})
            outcomes.append("ok")
        except PreconditionFailed:
            outcomes.append("precondition_failed")

    threads = [threading.Thread(target=claim) for _ in range(2)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert sorted(outcomes) == ["ok", "precondition_failed"]
    assert sqlite_store.get_by_id("unlocktool").status == "in_use"


def test_sqlite_errors_become_store_unavailable(sqlite_store):
    with patch("services.store.connect.get_conn", side_effect=sqlite3.OperationalError("disk I/O error")):
        with pytest.raises(StoreUnavailable):
            sqlite_store.list_all()


def _snapshot(doc_id, fields, exists=True):
    snap = MagicMock()
    snap.id = doc_id
    snap.exists = exists
    snap.to_dict.return_value = fields
    return snap


def test_firestore_list_and_get():
    client = MagicMock()
    collection = client.collection.return_value
    collection.stream.return_value = [_snapshot("unlocktool", {"name": "UnlockTool", "price": 20})]
    collection.document.return_value.get.return_value = _snapshot("unlocktool", {"name": "UnlockTool"})

    fs = FirestoreToolStore(client, "tools")
    assert [t.name for t in fs.list_all()] == ["UnlockTool"]
    assert fs.get_by_id("unlocktool").name == "UnlockTool"
    client.collection.assert_called_with("tools")
    collection.document.assert_called_with("unlocktool")


def test_firestore_get_missing_raises():
    client = MagicMock()
    client.collection.return_value.document.return_value.get.return_value = _snapshot("x", None, exists=False)
    with pytest.raises(ToolNotFound):
        FirestoreToolStore(client).get_by_id("x")


def test_firestore_api_errors_become_store_unavailable():
    client = MagicMock()
    client.collection.return_value.stream.side_effect = google_exceptions.ServiceUnavailable("down")
    with patch("services.retry.time.sleep"):
        with pytest.raises(StoreUnavailable):
            FirestoreToolStore(client).list_all()
    assert client.collection.return_value.stream.call_count == 3


def test_transaction_body_applies_update_when_expected_matches():
    transaction = MagicMock()
    ref = MagicMock()
    ref.get.return_value = _snapshot("unlocktool", {"status": "Available"})

    store_module._apply_conditional_update(
        transaction, ref, "unlocktool", {"status": "available"}, {"status": "in_use"}
    )
    ref.get.assert_called_once_with(transaction=transaction)
    transaction.update.assert_called_once_with(ref, {"status": "in_use"})


def test_transaction_body_rejects_stale_status():
    transaction = MagicMock()
    ref = MagicMock()
    ref.get.return_value = _snapshot("unlocktool", {"status": "in_use"})

    with pytest.raises(PreconditionFailed):
        store_module._apply_conditional_update(
            transaction, ref, "unlocktool", {"status": "available"}, {"status": "in_use"}
        )
    transaction.update.assert_not_called()


def test_transaction_body_missing_document():
    ref = MagicMock()
    ref.get.return_value = _snapshot("x", None, exists=False)
    with pytest.raises(ToolNotFound):
        store_module._apply_conditional_update(MagicMock(), ref, "x", {"status": "available"}, {"status": "in_use"})


def test_build_store_sqlite(tmp_path):
    cfg = {"store": {"backend": "sqlite"}, "memory": {"db_path": str(tmp_path / "b.db")}}
    built = store_module.build_store(cfg)
    assert isinstance(built, SqliteToolStore)
    assert built.path == (tmp_path / "b.db").resolve()


def test_build_store_rejects_unknown_backend():
    with pytest.raises(ValueError):
        store_module.build_store({"store": {"backend": "mongo"}})


def _passthrough(func):
    return func


@pytest.fixture
def fs_client():
    client = MagicMock()
    ref = client.collection.return_value.document.return_value
    ref.get.return_value = _snapshot("unlocktool", {"name": "UnlockTool", "status": "available"})
    return client


def test_firestore_conditional_update_runs_in_a_transaction(fs_client):
    with patch("services.store.firestore.transactional") as transactional:
        FirestoreToolStore(fs_client).conditional_update(
            "unlocktool", {"status": "available"}, {"status": "in_use"}
        )

    transactional.assert_called_once_with(store_module._apply_conditional_update)
    ref = fs_client.collection.return_value.document.return_value
    transactional.return_value.assert_called_once_with(
        fs_client.transaction.return_value, ref, "unlocktool", {"status": "available"}, {"status": "in_use"}
    )


def test_firestore_conditional_update_applies_update(fs_client):
    with patch("services.store.firestore.transactional", side_effect=_passthrough):
        FirestoreToolStore(fs_client).conditional_update(
            "unlocktool", {"status": "available"}, {"status": "in_use"}
        )

    ref = fs_client.collection.return_value.document.return_value
    fs_client.transaction.return_value.update.assert_called_once_with(ref, {"status": "in_use"})


def test_firestore_conditional_update_errors_propagate(fs_client):
    ref = fs_client.collection.return_value.document.return_value
    store = FirestoreToolStore(fs_client)

    with patch("services.store.firestore.transactional", side_effect=_passthrough):
        ref.get.return_value = _snapshot("unlocktool", {"status": "in_use"})
        with pytest.raises(PreconditionFailed):
            store.conditional_update("unlocktool", {"status": "available"}, {"status": "in_use"})

        ref.get.return_value = _snapshot("unlocktool", None, exists=False)
        with pytest.raises(ToolNotFound):
            store.conditional_update("unlocktool", {"status": "available"}, {"status": "in_use"})

        ref.get.side_effect = google_exceptions.Aborted("contention")
        with pytest.raises(StoreUnavailable):
            store.conditional_update("unlocktool", {"status": "available"}, {"status": "in_use"})


def test_firestore_rent_lost_race_reports_in_use(fs_client):
    ref = fs_client.collection.return_value.document.return_value
    ref.get.side_effect = [
        _snapshot("unlocktool", {"name": "UnlockTool", "status": "available"}),
        _snapshot("unlocktool", {"name": "UnlockTool", "status": "in_use"}),
    ]

    with patch("services.store.firestore.transactional", side_effect=_passthrough):
        reply = inventory.rent_tool(FirestoreToolStore(fs_client), "UnlockTool")

    assert "currently in use" in reply
    fs_client.transaction.return_value.update.assert_not_called()


def test_init_db_uses_the_given_path_only(tmp_path):
    path = tmp_path / "nested" / "tools.db"
    connect.init_db(path)

    con = connect.get_conn(path)
    try:
        tables = [row["name"] for row in con.execute("SELECT name FROM sqlite_master WHERE type='table'")]
    finally:
        con.close()
    assert tables == ["tools"]
    assert not hasattr(connect, "DB_PATH")
