"""
Checkout and order listings.

An order is written once at checkout with its delivery sub-record pending.
After that only the delivery confirmation flow mutates it.
"""

import logging
import os
import random
import string
import time
from datetime import timedelta
from typing import List, Optional

import activity
import subscriptions
from cart import Cart
from database import DESCENDING, DocumentStore
from errors import (
    EMPTY_CART,
    MISSING_DELIVERY_DETAILS,
    NO_TOKENS,
    ORDER_NOT_FOUND,
    ORDER_NOT_SAVED,
    SUBSCRIPTION_INACTIVE,
    CampusKitchenError,
    ExternalServiceError,
    InsufficientBalanceError,
    NotFoundError,
    ValidationError,
)
from schemas import DeliveryDetails, Order, UserDetails, utcnow
from storage import load_address, save_address

logger = logging.getLogger(__name__)

ORDER_ETA_MINUTES = int(os.getenv("ORDER_ETA_MINUTES", "30"))

_SUFFIX_ALPHABET = string.ascii_lowercase + string.digits


def generate_order_id() -> str:
    """order-<epoch millis>-<8 random chars>; practically unique, not guaranteed."""
    millis = int(time.time() * 1000)
    suffix = "".join(random.choices(_SUFFIX_ALPHABET, k=8))
    return f"order-{millis}-{suffix}"


def checkout(store: DocumentStore, cart: Cart, location: Optional[str] = None,
             phone: Optional[str] = None) -> Order:
    user = subscriptions.refresh(store, cart.user_id)

    if cart.is_empty():
        raise ValidationError(EMPTY_CART, "Your cart is empty. Add some items before checking out.",
                              title="Empty Cart")
    if (user.get("tokens") or 0) <= 0:
        raise InsufficientBalanceError(NO_TOKENS, "No tokens available. Subscribe to a meal plan to order.")
    sub = subscriptions.get_subscription(user)
    if not (sub and sub.active):
        raise ValidationError(SUBSCRIPTION_INACTIVE, "Your subscription is not active. Please renew to continue ordering meals.",
                              title="Subscription expired")

    saved = load_address(cart.storage, cart.user_id)
    location = (location or saved["location"] or "").strip()
    phone = (phone or saved["phone"] or "").strip()
    if not location or not phone:
        raise ValidationError(MISSING_DELIVERY_DETAILS, "Please provide a delivery location and phone number.",
                              title="Delivery details required")

    now = utcnow()
    items = cart.snapshot()
    order = Order(
        id=generate_order_id(),
        owner_user_id=cart.user_id,
        items=items,
        total_quantity=sum(line.quantity for line in items),
        total=round(sum(line.unit_price * line.quantity for line in items), 2),
        delivery_details=DeliveryDetails(
            status="pending",
            estimated_time=now + timedelta(minutes=ORDER_ETA_MINUTES),
            location=location,
            phone=phone,
        ),
        user_details=UserDetails(
            name=user.get("name") or "Customer",
            email=user.get("email") or "",
            phone=phone,
        ),
        created_at=now,
        updated_at=now,
    )

    try:
        store.set("orders", order.id, order.model_dump())
        if store.get("orders", order.id) is None:
            raise ExternalServiceError(ORDER_NOT_SAVED, "Failed to verify order creation")
    except CampusKitchenError as e:
        logger.error("Error saving order %s: %s", order.id, e.description)
        raise ExternalServiceError(ORDER_NOT_SAVED, "Failed to save order to database",
                                   title="Failed to place order") from e

    cart.clear()
    save_address(cart.storage, cart.user_id, location, phone)
    logger.info("order %s placed by %s (%s items)", order.id, cart.user_id, order.total_quantity)
    activity.log_activity(store, cart.user_id, activity.ORDER_PLACED,
                          activity.order_placed(order.id, order.total),
                          metadata={"order_id": order.id, "total_items": order.total_quantity})
    return order


def get_order(store: DocumentStore, order_id: str) -> Order:
    doc = store.get("orders", order_id)
    if doc is None:
        raise NotFoundError(ORDER_NOT_FOUND, "Order not found")
    return Order.model_validate(doc)


def orders_for_user(store: DocumentStore, user_id: str) -> List[Order]:
    docs = store.query("orders", {"owner_user_id": user_id}, sort=[("created_at", DESCENDING)])
    return [Order.model_validate(d) for d in docs]


def pending_deliveries(store: DocumentStore) -> List[Order]:
    docs = store.query("orders", {"delivery_details.status": "pending"}, sort=[("created_at", DESCENDING)])
    return [Order.model_validate(d) for d in docs]


def completed_deliveries(store: DocumentStore, partner_id: str) -> List[Order]:
    docs = store.query(
        "orders",
        {"delivery_details.status": "delivered", "delivery_details.delivery_partner_id": partner_id},
        sort=[("delivery_details.delivered_at", DESCENDING)],
    )
    return [Order.model_validate(d) for d in docs]
