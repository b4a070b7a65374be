"""
Admin dashboard queries: users, orders, activities and feedback with a date
window, newest/oldest sort and free-text search, plus deletes.
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, List, Literal, Optional

import activity
from database import DocumentStore
from errors import DOCUMENT_NOT_FOUND, NotFoundError
from schemas import utcnow
from subscriptions import add_months

logger = logging.getLogger(__name__)

Collection = Literal["users", "orders", "activities", "feedback"]
Deletable = Literal["user", "order", "activity"]
Period = Literal["all", "today", "week", "month"]
SortOrder = Literal["newest", "oldest"]

# collection -> field holding the record's date
COLLECTIONS = {
    "users": "created_at",
    "orders": "created_at",
    "activities": "timestamp",
    "feedback": "timestamp",
}
DELETABLE = {"user": "users", "order": "orders", "activity": "activities"}
SEARCH_FIELDS = ("id", "email", "name", "type", "details")


def _as_datetime(value: Any) -> Optional[datetime]:
    if isinstance(value, str):
        try:
            value = datetime.fromisoformat(value)
        except ValueError:
            return None
    if not isinstance(value, datetime):
        return None
    # naive values are stored UTC
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


def in_period(value: Any, period: Period, now: Optional[datetime] = None) -> bool:
    if period == "all":
        return True
    when = _as_datetime(value)
    if when is None:
        return False
    now = now or utcnow()
    if period == "today":
        return when.date() == now.date()
    if period == "week":
        return when >= now - timedelta(days=7)
    return when >= add_months(now, -1)


def search_matches(doc: dict, q: Optional[str]) -> bool:
    if not q:
        return True
    needle = q.lower()
    return any(needle in str(doc.get(f) or "").lower() for f in SEARCH_FIELDS)


def listing(store: DocumentStore, collection: str, period: Period = "all",
            sort: SortOrder = "newest", q: Optional[str] = None,
            now: Optional[datetime] = None) -> List[dict]:
    date_field = COLLECTIONS[collection]
    docs = [
        d for d in store.query(collection)
        # users are listed regardless of the date window
        if (collection == "users" or in_period(d.get(date_field), period, now)) and search_matches(d, q)
    ]
    dated = [d for d in docs if _as_datetime(d.get(date_field)) is not None]
    undated = [d for d in docs if _as_datetime(d.get(date_field)) is None]
    dated.sort(key=lambda d: _as_datetime(d.get(date_field)), reverse=sort == "newest")
    if collection == "users":
        for d in dated + undated:
            d.pop("password_hash", None)
    return dated + undated


def delete_item(store: DocumentStore, admin_user: dict, kind: str, item_id: str) -> None:
    collection = DELETABLE[kind]
    if not store.delete(collection, item_id):
        raise NotFoundError(DOCUMENT_NOT_FOUND, f"{kind.capitalize()} not found")
    logger.info("admin %s deleted %s %s", admin_user.get("uid"), kind, item_id)
    activity.log_activity(store, admin_user["uid"], activity.ADMIN_ACTION,
                          activity.admin_action("delete", f"{kind} {item_id}"),
                          metadata={"collection": collection, "id": item_id})
