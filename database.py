"""
Document store for Campus Kitchen.

Two interchangeable stores expose the same surface:

- MongoStore: MongoDB through pymongo, used when DATABASE_URL and DATABASE_NAME
  are set.
- MemoryStore: a process-local store used for development and tests.

Documents are addressed by (collection, id). Reads return plain dicts with the
document id under "id". Filters use the MongoDB query syntax; MemoryStore
understands equality on dotted paths plus $in, $nin, $ne, $gt, $gte, $lt, $lte
and $exists.
"""

import copy
import logging
from abc import ABC, abstractmethod
import os
import threading
from collections import defaultdict
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Tuple

from bson import ObjectId
from pydantic import BaseModel
from pymongo import DESCENDING, MongoClient
from pymongo.errors import PyMongoError

from errors import DOCUMENT_NOT_FOUND, STORE_UNAVAILABLE, ExternalServiceError, NotFoundError

logger = logging.getLogger(__name__)

DATABASE_URL = os.getenv("DATABASE_URL")
DATABASE_NAME = os.getenv("DATABASE_NAME")

Sort = Optional[List[Tuple[str, int]]]
Listener = Callable[[List[dict]], None]

_MISSING = object()


def new_id() -> str:
    return str(ObjectId())


def _to_doc(data: Any) -> dict:
    if isinstance(data, BaseModel):
        return data.model_dump()
    return dict(data)


def _lookup(doc: dict, path: str) -> Any:
    value: Any = doc
    for part in path.split("."):
        if not isinstance(value, dict) or part not in value:
            return _MISSING
        value = value[part]
    return value


def _set_path(doc: dict, path: str, value: Any) -> None:
    parts = path.split(".")
    target = doc
    for part in parts[:-1]:
        child = target.get(part)
        if not isinstance(child, dict):
            child = {}
            target[part] = child
        target = child
    target[parts[-1]] = value


def _compare(value: Any, op: str, arg: Any) -> bool:
    if op == "$exists":
        return (value is not _MISSING) == bool(arg)
    if value is _MISSING:
        value = None
    if op == "$in":
        return value in arg
    if op == "$nin":
        return value not in arg
    if op == "$ne":
        return value != arg
    if value is None:
        return False
    if op == "$gt":
        return value > arg
    if op == "$gte":
        return value >= arg
    if op == "$lt":
        return value < arg
    if op == "$lte":
        return value <= arg
    raise ValueError(f"unsupported query operator: {op}")


def matches(doc: dict, filter_dict: Optional[dict]) -> bool:
    for path, cond in (filter_dict or {}).items():
        value = _lookup(doc, path)
        if isinstance(cond, dict) and cond and all(k.startswith("$") for k in cond):
            if not all(_compare(value, op, arg) for op, arg in cond.items()):
                return False
        else:
            if (None if value is _MISSING else value) != cond:
                return False
    return True


def _sorted(docs: List[dict], sort: Sort) -> List[dict]:
    for path, direction in reversed(sort or []):
        present = [d for d in docs if _lookup(d, path) not in (_MISSING, None)]
        absent = [d for d in docs if _lookup(d, path) in (_MISSING, None)]
        present.sort(key=lambda d: _lookup(d, path), reverse=direction == DESCENDING)
        docs = present + absent if direction == DESCENDING else absent + present
    return docs


def _notify(callback: Listener, snapshot: List[dict]) -> None:
    try:
        callback(snapshot)
    except Exception:
        logger.exception("store listener failed")


class Transaction(ABC):
    """Reads see committed state; writes are buffered until commit()."""

    def __init__(self) -> None:
        self._writes: List[Tuple[str, str, str, dict]] = []

    @abstractmethod
    def read(self, collection: str, doc_id: str) -> Optional[dict]:
        ...

    def write(self, collection: str, doc_id: str, partial: Dict[str, Any]) -> None:
        self._writes.append(("update", collection, doc_id, dict(partial)))

    def set(self, collection: str, doc_id: str, data: Any) -> None:
        self._writes.append(("set", collection, doc_id, _to_doc(data)))

    @abstractmethod
    def commit(self) -> None:
        ...


class DocumentStore(ABC):
    name = "abstract"

    @abstractmethod
    def get(self, collection: str, doc_id: str) -> Optional[dict]:
        ...

    @abstractmethod
    def set(self, collection: str, doc_id: str, data: Any) -> None:
        ...

    @abstractmethod
    def update(self, collection: str, doc_id: str, partial: Dict[str, Any]) -> None:
        ...

    @abstractmethod
    def delete(self, collection: str, doc_id: str) -> bool:
        ...

    @abstractmethod
    def query(self, collection: str, filter_dict: Optional[dict] = None,
              sort: Sort = None, limit: Optional[int] = None) -> List[dict]:
        ...

    @abstractmethod
    def subscribe(self, collection: str, filter_dict: Optional[dict],
                  callback: Listener) -> Callable[[], None]:
        ...

    @abstractmethod
    def run_transaction(self, fn: Callable[[Transaction], Any]) -> Any:
        ...

    @abstractmethod
    def collection_names(self) -> List[str]:
        ...

    def create_document(self, collection: str, data: Any) -> str:
        doc = _to_doc(data)
        now = datetime.now(timezone.utc)
        doc.setdefault("created_at", now)
        doc["updated_at"] = now
        doc_id = new_id()
        self.set(collection, doc_id, doc)
        return doc_id

    def get_documents(self, collection: str, filter_dict: Optional[dict] = None,
                      limit: Optional[int] = None) -> List[dict]:
        return self.query(collection, filter_dict, limit=limit)


# In-process store

class MemoryTransaction(Transaction):
    def __init__(self, store: "MemoryStore") -> None:
        super().__init__()
        self._store = store

    def read(self, collection: str, doc_id: str) -> Optional[dict]:
        return self._store.get(collection, doc_id)

    def commit(self) -> None:
        for op, collection, doc_id, _ in self._writes:
            if op == "update" and self._store.get(collection, doc_id) is None:
                raise NotFoundError(DOCUMENT_NOT_FOUND, f"No {collection} document {doc_id}")
        touched = set()
        for op, collection, doc_id, data in self._writes:
            if op == "set":
                self._store._put(collection, doc_id, data)
            else:
                self._store._patch(collection, doc_id, data)
            touched.add(collection)
        self._writes = []
        self._store._pending_notify.update(touched)


class MemoryStore(DocumentStore):
    name = "memory"

    def __init__(self) -> None:
        self._data: Dict[str, Dict[str, dict]] = defaultdict(dict)
        self._listeners: Dict[str, List[Tuple[Optional[dict], Listener]]] = defaultdict(list)
        self._lock = threading.RLock()
        self._pending_notify: set = set()

    def _out(self, doc_id: str, doc: dict) -> dict:
        out = copy.deepcopy(doc)
        out.setdefault("id", doc_id)
        return out

    def _put(self, collection: str, doc_id: str, data: dict) -> None:
        self._data[collection][doc_id] = copy.deepcopy(data)

    def _patch(self, collection: str, doc_id: str, partial: Dict[str, Any]) -> None:
        doc = self._data[collection].get(doc_id)
        if doc is None:
            raise NotFoundError(DOCUMENT_NOT_FOUND, f"No {collection} document {doc_id}")
        for path, value in partial.items():
            _set_path(doc, path, copy.deepcopy(value))

    def _flush_notifications(self) -> None:
        with self._lock:
            collections, self._pending_notify = self._pending_notify, set()
            work = [
                (collection, filter_dict, callback)
                for collection in collections
                for filter_dict, callback in list(self._listeners[collection])
            ]
        for collection, filter_dict, callback in work:
            _notify(callback, self.query(collection, filter_dict))

    def get(self, collection: str, doc_id: str) -> Optional[dict]:
        with self._lock:
            doc = self._data[collection].get(doc_id)
            return None if doc is None else self._out(doc_id, doc)

    def set(self, collection: str, doc_id: str, data: Any) -> None:
        with self._lock:
            self._put(collection, doc_id, _to_doc(data))
            self._pending_notify.add(collection)
        self._flush_notifications()

    def update(self, collection: str, doc_id: str, partial: Dict[str, Any]) -> None:
        with self._lock:
            self._patch(collection, doc_id, partial)
            self._pending_notify.add(collection)
        self._flush_notifications()

    def delete(self, collection: str, doc_id: str) -> bool:
        with self._lock:
            removed = self._data[collection].pop(doc_id, None) is not None
            if removed:
                self._pending_notify.add(collection)
        self._flush_notifications()
        return removed

    def query(self, collection: str, filter_dict: Optional[dict] = None,
              sort: Sort = None, limit: Optional[int] = None) -> List[dict]:
        with self._lock:
            docs = [
                self._out(doc_id, doc)
                for doc_id, doc in self._data[collection].items()
                if matches(doc, filter_dict)
            ]
        docs = _sorted(docs, sort)
        return docs[:limit] if limit else docs

    def subscribe(self, collection: str, filter_dict: Optional[dict],
                  callback: Listener) -> Callable[[], None]:
        entry = (filter_dict, callback)
        with self._lock:
            self._listeners[collection].append(entry)
        _notify(callback, self.query(collection, filter_dict))

        def unsubscribe() -> None:
            with self._lock:
                if entry in self._listeners[collection]:
                    self._listeners[collection].remove(entry)

        return unsubscribe

    def run_transaction(self, fn: Callable[[Transaction], Any]) -> Any:
        # the store lock is held for the whole read-check-write sequence
        with self._lock:
            txn = MemoryTransaction(self)
            result = fn(txn)
            txn.commit()
        self._flush_notifications()
        return result

    def collection_names(self) -> List[str]:
        with self._lock:
            return sorted(name for name, docs in self._data.items() if docs)


# MongoDB store

def _from_mongo(doc: Optional[dict]) -> Optional[dict]:
    if doc is None:
        return None
    doc = dict(doc)
    doc.setdefault("id", str(doc.pop("_id")))
    doc.pop("_id", None)
    return doc


class MongoTransaction(Transaction):
    def __init__(self, db, session) -> None:
        super().__init__()
        self._db = db
        self._session = session

    def read(self, collection: str, doc_id: str) -> Optional[dict]:
        return _from_mongo(self._db[collection].find_one({"_id": doc_id}, session=self._session))

    def commit(self) -> None:
        for op, collection, doc_id, data in self._writes:
            if op == "set":
                self._db[collection].replace_one({"_id": doc_id}, data, upsert=True, session=self._session)
            else:
                res = self._db[collection].update_one({"_id": doc_id}, {"$set": data}, session=self._session)
                if res.matched_count == 0:
                    raise NotFoundError(DOCUMENT_NOT_FOUND, f"No {collection} document {doc_id}")
        self._writes = []


class MongoStore(DocumentStore):
    name = "mongodb"

    def __init__(self, database_url: str, database_name: str, client: Optional[MongoClient] = None) -> None:
        self._client = client or MongoClient(database_url, tz_aware=True)
        self.db = self._client[database_name]

    @contextmanager
    def _driver_errors(self):
        try:
            yield
        except PyMongoError as e:
            logger.exception("MongoDB call failed")
            raise ExternalServiceError(STORE_UNAVAILABLE, f"Database error: {str(e)[:80]}") from e

    def get(self, collection: str, doc_id: str) -> Optional[dict]:
        with self._driver_errors():
            return _from_mongo(self.db[collection].find_one({"_id": doc_id}))

    def set(self, collection: str, doc_id: str, data: Any) -> None:
        with self._driver_errors():
            self.db[collection].replace_one({"_id": doc_id}, _to_doc(data), upsert=True)

    def update(self, collection: str, doc_id: str, partial: Dict[str, Any]) -> None:
        with self._driver_errors():
            res = self.db[collection].update_one({"_id": doc_id}, {"$set": dict(partial)})
        if res.matched_count == 0:
            raise NotFoundError(DOCUMENT_NOT_FOUND, f"No {collection} document {doc_id}")

    def delete(self, collection: str, doc_id: str) -> bool:
        with self._driver_errors():
            return self.db[collection].delete_one({"_id": doc_id}).deleted_count > 0

    def query(self, collection: str, filter_dict: Optional[dict] = None,
              sort: Sort = None, limit: Optional[int] = None) -> List[dict]:
        with self._driver_errors():
            cursor = self.db[collection].find(filter_dict or {})
            if sort:
                cursor = cursor.sort(sort)
            if limit:
                cursor = cursor.limit(limit)
            return [_from_mongo(d) for d in cursor]

    def subscribe(self, collection: str, filter_dict: Optional[dict],
                  callback: Listener) -> Callable[[], None]:
        # change streams need a replica set; on a standalone server the
        # listener only delivers the initial snapshot
        stop = threading.Event()

        def run() -> None:
            _notify(callback, self.query(collection, filter_dict))
            try:
                with self.db[collection].watch(max_await_time_ms=500) as stream:
                    while not stop.is_set() and stream.alive:
                        if stream.try_next() is not None:
                            _notify(callback, self.query(collection, filter_dict))
            except (PyMongoError, ExternalServiceError):
                logger.warning("change stream on %s stopped", collection, exc_info=True)

        threading.Thread(target=run, name=f"watch-{collection}", daemon=True).start()
        return stop.set

    def run_transaction(self, fn: Callable[[Transaction], Any]) -> Any:
        def callback(session):
            txn = MongoTransaction(self.db, session)
            result = fn(txn)
            txn.commit()
            return result

        with self._driver_errors():
            with self._client.start_session() as session:
                return session.with_transaction(callback)

    def collection_names(self) -> List[str]:
        with self._driver_errors():
            return self.db.list_collection_names()


_store: Optional[DocumentStore] = None


def get_store() -> DocumentStore:
    """FastAPI dependency returning the process-wide store."""
    global _store
    if _store is None:
        if DATABASE_URL and DATABASE_NAME:
            _store = MongoStore(DATABASE_URL, DATABASE_NAME)
        else:
            logger.warning("DATABASE_URL/DATABASE_NAME not set, using in-memory store")
            _store = MemoryStore()
    return _store
