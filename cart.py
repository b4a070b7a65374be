"""
Cart: per-user ordered list of menu lines.

- at most one line per item_id
- a quantity of zero or less removes the line
- every mutation is written straight to the user's local storage slot; write
  failures are logged and the in-memory cart stays authoritative
"""

import logging
from typing import List, Optional

from pydantic import ValidationError as ModelValidationError

from schemas import CartLine, Menuitem
from storage import CART_KEY, LocalStorage, slot_key

logger = logging.getLogger(__name__)


class Cart:
    def __init__(self, user_id: str, storage: LocalStorage) -> None:
        self.user_id = user_id
        self.storage = storage
        self.key = slot_key(CART_KEY, user_id)
        self.lines: List[CartLine] = self._load()

    def _load(self) -> List[CartLine]:
        try:
            saved = self.storage.load_json(self.key, [])
            return [CartLine.model_validate(line) for line in saved or []]
        except (OSError, TypeError, ModelValidationError):
            logger.exception("Failed to load saved cart for %s", self.user_id)
            return []

    def _persist(self) -> None:
        try:
            self.storage.save_json(self.key, [line.model_dump() for line in self.lines])
        except Exception:
            logger.exception("Failed to save cart for %s", self.user_id)

    def _find(self, item_id: str) -> Optional[CartLine]:
        for line in self.lines:
            if line.item_id == item_id:
                return line
        return None

    def add_line(self, item_id: str, item: Menuitem) -> CartLine:
        line = self._find(item_id)
        if line is not None:
            line.quantity += 1
        else:
            line = CartLine(item_id=item_id, name=item.name, unit_price=item.price, quantity=1)
            self.lines.append(line)
        self._persist()
        return line

    def set_quantity(self, item_id: str, quantity: int) -> None:
        if quantity <= 0:
            self.remove_line(item_id)
            return
        line = self._find(item_id)
        if line is None:
            return
        line.quantity = quantity
        self._persist()

    def remove_line(self, item_id: str) -> None:
        line = self._find(item_id)
        if line is None:
            return
        self.lines.remove(line)
        self._persist()

    def clear(self) -> None:
        self.lines = []
        try:
            self.storage.remove_item(self.key)
        except Exception:
            logger.exception("Failed to erase saved cart for %s", self.user_id)

    def total_item_count(self) -> int:
        return sum(line.quantity for line in self.lines)

    def total_price(self) -> float:
        return round(sum(line.unit_price * line.quantity for line in self.lines), 2)

    def is_empty(self) -> bool:
        return not self.lines

    def snapshot(self) -> List[CartLine]:
        return [line.model_copy() for line in self.lines]

    def as_dict(self) -> dict:
        return {
            "items": [line.model_dump() for line in self.lines],
            "total_items": self.total_item_count(),
            "total": self.total_price(),
        }
