"""
Error taxonomy for Campus Kitchen.

Every rejected operation carries a machine-readable reason code plus a short
title/description pair the client can show as a notification.
"""

from typing import Optional


class CampusKitchenError(Exception):
    status_code = 400
    default_title = "Error"

    def __init__(self, code: str, description: str, title: Optional[str] = None):
        super().__init__(description)
        self.code = code
        self.title = title or self.default_title
        self.description = description

    def as_dict(self) -> dict:
        return {"code": self.code, "title": self.title, "detail": self.description}


class ValidationError(CampusKitchenError):
    status_code = 400
    default_title = "Invalid request"


class NotFoundError(CampusKitchenError):
    status_code = 404
    default_title = "Not found"


class StateConflictError(CampusKitchenError):
    status_code = 409
    default_title = "Already done"


class InsufficientBalanceError(CampusKitchenError):
    status_code = 402
    default_title = "Insufficient Tokens"


class ExternalServiceError(CampusKitchenError):
    status_code = 503
    default_title = "Service unavailable"


class AuthenticationError(CampusKitchenError):
    status_code = 401
    default_title = "Authentication Required"


class PermissionDeniedError(CampusKitchenError):
    status_code = 403
    default_title = "Unauthorized Access"


# Reason codes
EMPTY_CART = "empty_cart"
MISSING_DELIVERY_DETAILS = "missing_delivery_details"
NO_TOKENS = "no_tokens"
SUBSCRIPTION_INACTIVE = "subscription_inactive"
NO_SUBSCRIPTION = "no_subscription"
UNKNOWN_PLAN = "unknown_plan"
ALREADY_EXTENDED = "already_extended"

MALFORMED_PAYLOAD = "malformed_payload"
WRONG_TYPE = "wrong_type"
INVALID_PAYLOAD = "invalid_payload"
ORDER_NOT_FOUND = "order_not_found"
ALREADY_DELIVERED = "already_delivered"
USER_NOT_FOUND = "user_not_found"
INSUFFICIENT_TOKENS = "insufficient_tokens"

MENU_ITEM_NOT_FOUND = "menu_item_not_found"
MENU_ITEM_UNAVAILABLE = "menu_item_unavailable"
DOCUMENT_NOT_FOUND = "document_not_found"
STORE_UNAVAILABLE = "store_unavailable"
ORDER_NOT_SAVED = "order_not_saved"

EMAIL_TAKEN = "email_taken"
INVALID_CREDENTIALS = "invalid_credentials"
INVALID_RESET_TOKEN = "invalid_reset_token"
NOT_AUTHENTICATED = "not_authenticated"
FORBIDDEN = "forbidden"


class DecodeError(ValidationError):
    """Raised by the QR decoder; code is MALFORMED_PAYLOAD or WRONG_TYPE."""

    default_title = "Invalid QR code"
