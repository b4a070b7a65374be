"""
Delivery confirmation: a delivery partner scans the customer's QR code.

The order lookup, the delivered check, the token deduction and the order update
run in one store transaction, so two scans of the same code cannot both deduct.
"""

import logging
from datetime import datetime
from typing import Optional

import activity
import qrcodes
from database import DocumentStore, Transaction
from errors import (
    ALREADY_DELIVERED,
    INSUFFICIENT_TOKENS,
    INVALID_PAYLOAD,
    ORDER_NOT_FOUND,
    USER_NOT_FOUND,
    CampusKitchenError,
    DecodeError,
    InsufficientBalanceError,
    NotFoundError,
    StateConflictError,
    ValidationError,
)
from schemas import Order, utcnow

logger = logging.getLogger(__name__)


def required_tokens(order: Order) -> int:
    return sum(line.quantity for line in order.items)


def confirm_delivery(store: DocumentStore, raw_payload: str, partner: dict,
                     now: Optional[datetime] = None) -> dict:
    """Mark the scanned order delivered and charge its owner one token per unit.

    Raises ValidationError(invalid_payload), NotFoundError(order_not_found or
    user_not_found), StateConflictError(already_delivered) or
    InsufficientBalanceError(insufficient_tokens). A rejection writes nothing.
    """
    try:
        payload = qrcodes.decode(raw_payload)
    except DecodeError as e:
        logger.info("rejected scan by %s: %s", partner.get("uid"), e.code)
        raise ValidationError(INVALID_PAYLOAD, e.description, title="Invalid QR code") from e

    now = now or utcnow()

    def apply(txn: Transaction):
        doc = txn.read("orders", payload.order_id)
        if doc is None:
            raise NotFoundError(ORDER_NOT_FOUND, "Order not found")
        order = Order.model_validate(doc)
        if order.delivery_details.status == "delivered":
            raise StateConflictError(ALREADY_DELIVERED, "Order already delivered")

        user = txn.read("users", order.owner_user_id)
        if user is None:
            raise NotFoundError(USER_NOT_FOUND, "User not found")

        needed = required_tokens(order)
        balance = user.get("tokens") or 0
        if balance < needed:
            raise InsufficientBalanceError(
                INSUFFICIENT_TOKENS,
                f"The customer has {balance} tokens but this delivery needs {needed}.",
            )

        txn.write("users", order.owner_user_id, {"tokens": balance - needed})
        txn.write("orders", order.id, {
            "delivery_details.status": "delivered",
            "delivery_details.delivered_at": now,
            "delivery_details.delivery_partner_id": partner.get("uid"),
            "delivery_details.delivery_partner_name": partner.get("name"),
            "delivery_details.delivery_partner_email": partner.get("email"),
            "tracking_status": "delivered",
            "token_deducted": True,
            "tokens_deducted": needed,
            "updated_at": now,
        })
        return order, needed, balance - needed

    try:
        order, needed, remaining = store.run_transaction(apply)
    except CampusKitchenError as e:
        logger.info("rejected delivery of %s by %s: %s", payload.order_id, partner.get("uid"), e.code)
        raise

    logger.info("order %s delivered by %s, %s tokens deducted", order.id, partner.get("uid"), needed)
    partner_label = partner.get("name") or partner.get("email") or partner.get("uid")
    activity.log_activity(store, partner.get("uid"), activity.ORDER_DELIVERED,
                          activity.order_delivered(order.id, partner_label),
                          metadata={"order_id": order.id, "customer_id": order.owner_user_id})
    activity.log_activity(store, order.owner_user_id, activity.TOKENS_USED,
                          activity.tokens_used(needed, f"order #{order.id[-8:]}"),
                          metadata={"order_id": order.id})
    return {
        "order_id": order.id,
        "verification_code": qrcodes.verification_code(order.id),
        "tokens_deducted": needed,
        "remaining_tokens": remaining,
    }
