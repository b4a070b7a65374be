from datetime import datetime, timezone
from unittest.mock import MagicMock

import pytest
from pymongo.errors import PyMongoError

from database import DESCENDING, DocumentStore, MemoryStore, MongoStore, matches
from errors import DOCUMENT_NOT_FOUND, STORE_UNAVAILABLE, ExternalServiceError, NotFoundError


def test_reads_are_copies(store):
    store.set("users", "u1", {"name": "Asha", "profile": {"city": "Pune"}})
    doc = store.get("users", "u1")
    doc["profile"]["city"] = "Goa"
    assert store.get("users", "u1")["profile"]["city"] == "Pune"
    assert doc["id"] == "u1"


def test_dotted_update(store):
    store.set("users", "u1", {"subscription": {"active": True, "plan": "Weekly Plan"}})
    store.update("users", "u1", {"subscription.active": False})
    assert store.get("users", "u1")["subscription"] == {"active": False, "plan": "Weekly Plan"}


def test_update_missing_document(store):
    with pytest.raises(NotFoundError) as exc:
        store.update("users", "ghost", {"tokens": 1})
    assert exc.value.code == DOCUMENT_NOT_FOUND


def test_delete(store):
    store.set("orders", "o1", {"total": 1})
    assert store.delete("orders", "o1") is True
    assert store.delete("orders", "o1") is False
    assert store.get("orders", "o1") is None


@pytest.mark.parametrize("filter_dict, expected", [
    ({"delivery_details.status": "pending"}, True),
    ({"delivery_details.status": {"$in": ["delivered"]}}, False),
    ({"total_quantity": {"$gte": 2, "$lt": 5}}, True),
    ({"total_quantity": {"$gt": 3}}, False),
    ({"owner_user_id": {"$ne": "u2"}}, True),
    ({"delivered_at": {"$exists": False}}, True),
    ({"missing": None}, True),
])
def test_matches(filter_dict, expected):
    doc = {"owner_user_id": "u1", "total_quantity": 3, "delivery_details": {"status": "pending"}}
    assert matches(doc, filter_dict) is expected


def test_query_sort_and_limit(store):
    for n, day in enumerate([3, 1, 2]):
        store.set("orders", f"o{n}", {"created_at": datetime(2024, 5, day, tzinfo=timezone.utc)})
    store.set("orders", "undated", {})

    newest = store.query("orders", sort=[("created_at", DESCENDING)])
    assert [d["id"] for d in newest] == ["o0", "o2", "o1", "undated"]
    assert [d["id"] for d in store.query("orders", sort=[("created_at", 1)], limit=2)] == ["undated", "o1"]


def test_transaction_is_all_or_nothing(store):
    store.set("users", "u1", {"tokens": 5})

    def apply(txn):
        txn.write("users", "u1", {"tokens": 0})
        txn.write("orders", "missing", {"token_deducted": True})

    with pytest.raises(NotFoundError):
        store.run_transaction(apply)
    assert store.get("users", "u1")["tokens"] == 5


def test_transaction_discards_writes_on_error(store):
    store.set("users", "u1", {"tokens": 5})

    def apply(txn):
        txn.write("users", "u1", {"tokens": txn.read("users", "u1")["tokens"] - 1})
        raise RuntimeError("boom")

    with pytest.raises(RuntimeError):
        store.run_transaction(apply)
    assert store.get("users", "u1")["tokens"] == 5


def test_subscribe_delivers_snapshots_until_unsubscribed(store):
    seen = []
    unsubscribe = store.subscribe("orders", {"owner_user_id": "u1"}, lambda docs: seen.append([d["id"] for d in docs]))

    store.set("orders", "o1", {"owner_user_id": "u1"})
    store.set("orders", "o2", {"owner_user_id": "u2"})
    unsubscribe()
    store.set("orders", "o3", {"owner_user_id": "u1"})

    assert seen == [[], ["o1"], ["o1"]]


def test_failing_listener_does_not_break_writes(store):
    def boom(docs):
        raise RuntimeError("listener")

    store.subscribe("menu", None, boom)
    store.set("menu", "m1", {"name": "Idli"})
    assert store.get("menu", "m1")["name"] == "Idli"


def test_create_document_stamps_dates():
    store = MemoryStore()
    doc_id = store.create_document("feedback", {"feedback": "tasty"})
    doc = store.get("feedback", doc_id)
    assert doc["created_at"] == doc["updated_at"]
    assert store.collection_names() == ["feedback"]
    assert store.get_documents("feedback", {"feedback": "tasty"})[0]["id"] == doc_id


def test_incomplete_store_cannot_be_built():
    class HalfStore(DocumentStore):
        def get(self, collection, doc_id):
            return None

    with pytest.raises(TypeError):
        HalfStore()


# MongoStore against a mocked pymongo client

@pytest.fixture
def mongo():
    client = MagicMock()
    db = client.__getitem__.return_value
    collection = db.__getitem__.return_value
    store = MongoStore("mongodb://unused", "campus", client=client)
    return store, client, db, collection


def test_mongo_get_maps_object_id(mongo):
    store, client, db, collection = mongo
    collection.find_one.return_value = {"_id": "u1", "tokens": 3}

    assert store.get("users", "u1") == {"id": "u1", "tokens": 3}
    client.__getitem__.assert_called_with("campus")
    db.__getitem__.assert_called_with("users")
    collection.find_one.assert_called_once_with({"_id": "u1"})


def test_mongo_get_missing(mongo):
    store, _, _, collection = mongo
    collection.find_one.return_value = None
    assert store.get("users", "ghost") is None


def test_mongo_set_upserts(mongo):
    store, _, _, collection = mongo
    store.set("orders", "o1", {"total": 2})
    collection.replace_one.assert_called_once_with({"_id": "o1"}, {"total": 2}, upsert=True)


def test_mongo_update_missing_document(mongo):
    store, _, _, collection = mongo
    collection.update_one.return_value.matched_count = 0

    with pytest.raises(NotFoundError) as exc:
        store.update("users", "ghost", {"subscription.active": False})

    assert exc.value.code == DOCUMENT_NOT_FOUND
    collection.update_one.assert_called_once_with({"_id": "ghost"}, {"$set": {"subscription.active": False}})


def test_mongo_query_sorts_and_limits(mongo):
    store, _, _, collection = mongo
    cursor = collection.find.return_value
    cursor.sort.return_value = cursor
    cursor.limit.return_value = cursor
    cursor.__iter__.return_value = iter([{"_id": "o2", "total": 1}])

    docs = store.query("orders", {"owner_user_id": "u1"}, sort=[("created_at", DESCENDING)], limit=5)

    assert docs == [{"id": "o2", "total": 1}]
    collection.find.assert_called_once_with({"owner_user_id": "u1"})
    cursor.sort.assert_called_once_with([("created_at", DESCENDING)])
    cursor.limit.assert_called_once_with(5)


def test_mongo_transaction_commits_inside_session(mongo):
    store, client, _, collection = mongo
    session = client.start_session.return_value.__enter__.return_value
    session.with_transaction.side_effect = lambda callback: callback(session)
    collection.find_one.return_value = {"_id": "u1", "tokens": 5}
    collection.update_one.return_value.matched_count = 1

    def apply(txn):
        user = txn.read("users", "u1")
        txn.write("users", "u1", {"tokens": user["tokens"] - 2})
        return user["tokens"] - 2

    assert store.run_transaction(apply) == 3
    collection.find_one.assert_called_once_with({"_id": "u1"}, session=session)
    collection.update_one.assert_called_once_with({"_id": "u1"}, {"$set": {"tokens": 3}}, session=session)


def test_mongo_transaction_update_of_missing_document(mongo):
    store, client, _, collection = mongo
    session = client.start_session.return_value.__enter__.return_value
    session.with_transaction.side_effect = lambda callback: callback(session)
    collection.update_one.return_value.matched_count = 0

    with pytest.raises(NotFoundError):
        store.run_transaction(lambda txn: txn.write("orders", "gone", {"token_deducted": True}))


def test_mongo_driver_errors_become_store_unavailable(mongo):
    store, _, _, collection = mongo
    collection.find_one.side_effect = PyMongoError("connection refused")

    with pytest.raises(ExternalServiceError) as exc:
        store.get("users", "u1")

    assert exc.value.code == STORE_UNAVAILABLE
    assert exc.value.status_code == 503
