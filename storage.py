"""
Per-user local key/value storage for the cart and the last delivery address.

Values are JSON text, one slot per (prefix, user id) key.
"""

import json
import logging
import os
import re
import threading
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)

CART_STORAGE_DIR = os.getenv("CART_STORAGE_DIR")

CART_KEY = "campusBiteCart"
ADDRESS_KEY = "campusBiteAddress"


def slot_key(prefix: str, user_id: str) -> str:
    return f"{prefix}:{user_id}"


class LocalStorage:
    def get_item(self, key: str) -> Optional[str]:
        raise NotImplementedError

    def set_item(self, key: str, value: str) -> None:
        raise NotImplementedError

    def remove_item(self, key: str) -> None:
        raise NotImplementedError

    def load_json(self, key: str, default: Any = None) -> Any:
        raw = self.get_item(key)
        if raw is None:
            return default
        try:
            return json.loads(raw)
        except ValueError:
            logger.error("Failed to parse saved slot %s, clearing it", key)
            self.remove_item(key)
            return default

    def save_json(self, key: str, value: Any) -> None:
        self.set_item(key, json.dumps(value))


class MemoryLocalStorage(LocalStorage):
    def __init__(self) -> None:
        self._items: Dict[str, str] = {}
        self._lock = threading.Lock()

    def get_item(self, key: str) -> Optional[str]:
        with self._lock:
            return self._items.get(key)

    def set_item(self, key: str, value: str) -> None:
        with self._lock:
            self._items[key] = value

    def remove_item(self, key: str) -> None:
        with self._lock:
            self._items.pop(key, None)


class FileLocalStorage(LocalStorage):
    """One JSON file per key inside a directory."""

    def __init__(self, directory: str) -> None:
        self.directory = directory
        os.makedirs(directory, exist_ok=True)

    def _path(self, key: str) -> str:
        return os.path.join(self.directory, re.sub(r"[^A-Za-z0-9_.-]", "_", key) + ".json")

    def get_item(self, key: str) -> Optional[str]:
        try:
            with open(self._path(key), encoding="utf-8") as fh:
                return fh.read()
        except FileNotFoundError:
            return None

    def set_item(self, key: str, value: str) -> None:
        tmp = self._path(key) + ".tmp"
        with open(tmp, "w", encoding="utf-8") as fh:
            fh.write(value)
        os.replace(tmp, self._path(key))

    def remove_item(self, key: str) -> None:
        try:
            os.remove(self._path(key))
        except FileNotFoundError:
            pass


_local_storage: Optional[LocalStorage] = None


def get_local_storage() -> LocalStorage:
    """FastAPI dependency returning the process-wide local storage."""
    global _local_storage
    if _local_storage is None:
        _local_storage = FileLocalStorage(CART_STORAGE_DIR) if CART_STORAGE_DIR else MemoryLocalStorage()
    return _local_storage


def load_address(storage: LocalStorage, user_id: str) -> Dict[str, Optional[str]]:
    saved = storage.load_json(slot_key(ADDRESS_KEY, user_id), {}) or {}
    return {"location": saved.get("location"), "phone": saved.get("phone")}


def save_address(storage: LocalStorage, user_id: str, location: Optional[str], phone: Optional[str]) -> None:
    try:
        storage.save_json(slot_key(ADDRESS_KEY, user_id), {"location": location, "phone": phone})
    except OSError:
        logger.exception("Failed to save delivery address for %s", user_id)
