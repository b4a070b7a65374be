"""
Menu catalog over the "menu" collection.

Listings are served from a TTL cache that a store listener clears whenever the
collection changes.
"""

import logging
import os
from functools import lru_cache
from typing import List, Optional

from cache import TTLCache
from database import DocumentStore
from errors import MENU_ITEM_NOT_FOUND, MENU_ITEM_UNAVAILABLE, NotFoundError, ValidationError
from schemas import Menuitem, utcnow

logger = logging.getLogger(__name__)

MENU_CACHE_SECONDS = float(os.getenv("MENU_CACHE_SECONDS", "30"))
CACHE_KEY = "menu:all"


class MenuCatalog:
    def __init__(self, store: DocumentStore, cache: Optional[TTLCache] = None) -> None:
        self.store = store
        self.cache = cache or TTLCache(MENU_CACHE_SECONDS)
        self._unsubscribe = store.subscribe("menu", None, self._on_change)

    def _on_change(self, snapshot: List[dict]) -> None:
        self.cache.remove(CACHE_KEY)

    def close(self) -> None:
        self._unsubscribe()

    def list_items(self, category: Optional[str] = None, available_only: bool = False) -> List[dict]:
        items = self.cache.get_or_load(CACHE_KEY, lambda: self.store.query("menu", sort=[("name", 1)]))
        if category:
            items = [i for i in items if (i.get("category") or "").lower() == category.lower()]
        if available_only:
            items = [i for i in items if i.get("available", True)]
        return items

    def get_item(self, item_id: str) -> Menuitem:
        doc = self.store.get("menu", item_id)
        if doc is None:
            raise NotFoundError(MENU_ITEM_NOT_FOUND, "Menu item not found")
        return Menuitem.model_validate(doc)

    def orderable_item(self, item_id: str) -> Menuitem:
        item = self.get_item(item_id)
        if not item.available:
            raise ValidationError(MENU_ITEM_UNAVAILABLE, f"{item.name} is not available right now")
        return item

    def create_item(self, item: Menuitem) -> dict:
        item_id = self.store.create_document("menu", item)
        logger.info("menu item %s created", item_id)
        return self.store.get("menu", item_id)

    def update_item(self, item_id: str, item: Menuitem) -> dict:
        self.get_item(item_id)
        self.store.update("menu", item_id, item.model_dump() | {"updated_at": utcnow()})
        return self.store.get("menu", item_id)

    def delete_item(self, item_id: str) -> None:
        if not self.store.delete("menu", item_id):
            raise NotFoundError(MENU_ITEM_NOT_FOUND, "Menu item not found")
        logger.info("menu item %s deleted", item_id)


@lru_cache(maxsize=None)
def catalog_for(store: DocumentStore) -> MenuCatalog:
    return MenuCatalog(store)
