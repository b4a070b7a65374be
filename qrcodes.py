"""
Text carried inside an order's QR code.

The payload is JSON tagged with type "campus-bite-order". The verification code
is the last six characters of the order id, upper-cased, for a human
cross-check. Nothing is signed: any client that knows an order id can build a
payload that decodes.
"""

import json
import logging
import time

from pydantic import ValidationError as ModelValidationError

from errors import MALFORMED_PAYLOAD, WRONG_TYPE, DecodeError
from schemas import (
    QR_PAYLOAD_TYPE,
    Order,
    QRItem,
    QROrderDetails,
    QRPayload,
    QRUserDetails,
)

logger = logging.getLogger(__name__)


def verification_code(order_id: str) -> str:
    return order_id[-6:].upper()


def encode(order: Order) -> str:
    """Serialize an order for its QR code; falls back to a minimal payload on error."""
    try:
        payload = QRPayload(
            order_id=order.id,
            timestamp=int(time.time() * 1000),
            order_details=QROrderDetails(
                items=[QRItem(name=i.name, quantity=i.quantity, price=i.unit_price) for i in order.items],
                total=order.total or 0,
                status=order.status or "pending",
                tracking_status=order.tracking_status or "order_placed",
                created_at=order.created_at.isoformat(),
            ),
            user_details=QRUserDetails(
                name=order.user_details.name or "N/A",
                email=order.user_details.email or "N/A",
                phone=order.user_details.phone,
            ),
            verification_code=verification_code(order.id),
        )
        return payload.model_dump_json(by_alias=True, exclude_none=True)
    except Exception:
        logger.exception("Error generating QR code data")
        return json.dumps({
            "type": QR_PAYLOAD_TYPE,
            "orderId": getattr(order, "id", None),
            "error": "Failed to generate QR code data",
        })


def decode(raw_text: str) -> QRPayload:
    """Parse scanned QR text. Only the JSON shape and the type tag are checked."""
    try:
        data = json.loads(raw_text)
    except (TypeError, ValueError) as e:
        raise DecodeError(MALFORMED_PAYLOAD, "The QR code does not contain order data") from e
    if not isinstance(data, dict):
        raise DecodeError(MALFORMED_PAYLOAD, "The QR code does not contain order data")
    if data.get("type") != QR_PAYLOAD_TYPE:
        raise DecodeError(WRONG_TYPE, "Invalid QR code")
    try:
        return QRPayload.model_validate(data)
    except ModelValidationError as e:
        raise DecodeError(MALFORMED_PAYLOAD, "The QR code does not contain order data") from e
