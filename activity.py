"""
Activity log written to the "activities" collection.

log_activity never raises: a failed write is logged and dropped.
"""

import logging
import platform
from typing import Any, Dict, Optional

from database import DocumentStore
from schemas import Activity, utcnow

logger = logging.getLogger(__name__)

LOGIN = "User Login"
LOGOUT = "User Logout"
PASSWORD_RESET = "Password Reset"
SIGNUP = "User Signup"
ORDER_PLACED = "Order Placed"
ORDER_DELIVERED = "Order Delivered"
SUBSCRIPTION_PURCHASED = "Subscription Purchased"
SUBSCRIPTION_UPDATED = "Subscription Updated"
SUBSCRIPTION_EXTENDED = "Subscription Extended"
TOKENS_ADDED = "Tokens Added"
TOKENS_USED = "Tokens Used"
ADMIN_ACTION = "Admin Action"


def order_placed(order_id: str, total: float) -> str:
    return f"Order #{order_id[-8:]} placed with total ${total:.2f}"


def order_delivered(order_id: str, partner: str) -> str:
    return f"Order #{order_id[-8:]} delivered by {partner}"


def subscription_purchased(plan: str, days: int) -> str:
    return f"Subscription purchased: {plan} for {days} days"


def tokens_added(amount: int, reason: str) -> str:
    return f"{amount} tokens added: {reason}"


def tokens_used(amount: int, purpose: str) -> str:
    return f"{amount} tokens used for {purpose}"


def admin_action(action: str, target: str) -> str:
    return f"Admin performed {action} on {target}"


def log_activity(store: DocumentStore, user_id: str, type: str, details: str,
                 metadata: Optional[Dict[str, Any]] = None,
                 user_details: Optional[Dict[str, Optional[str]]] = None) -> Optional[str]:
    try:
        if user_details is None:
            user = store.get("users", user_id)
            if user:
                user_details = {"name": user.get("name"), "email": user.get("email")}
        activity = Activity(
            user_id=user_id,
            type=type,
            details=details,
            user_details=user_details,
            metadata={
                **(metadata or {}),
                "platform": platform.system(),
                "timestamp": utcnow().isoformat(),
            },
        )
        return store.create_document("activities", activity)
    except Exception:
        logger.exception("Error logging activity %s for %s", type, user_id)
        return None
