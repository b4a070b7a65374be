"""
Subscription and token ledger kept on each user record.

Expiry is lazy: refresh() flips an overdue subscription to inactive the next
time the record is read. No background job runs.
"""

import calendar
import logging
from datetime import datetime, timedelta
from typing import Optional

import activity
from database import DocumentStore, Transaction
from errors import (
    ALREADY_EXTENDED,
    NO_SUBSCRIPTION,
    UNKNOWN_PLAN,
    USER_NOT_FOUND,
    NotFoundError,
    StateConflictError,
    ValidationError,
)
from schemas import Subscription, utcnow

logger = logging.getLogger(__name__)

PLANS = {
    "weekly": {"name": "Weekly Plan", "price": 699, "days": 7, "tokens": 7},
    "biweekly": {"name": "Bi-Weekly Plan", "price": 1299, "days": 15, "tokens": 15},
    "monthly": {"name": "Monthly Plan", "price": 2499, "days": 30, "tokens": 30},
}

EXTENSION_MONTHS = 2


def add_months(value: datetime, months: int) -> datetime:
    month_index = value.month - 1 + months
    year = value.year + month_index // 12
    month = month_index % 12 + 1
    day = min(value.day, calendar.monthrange(year, month)[1])
    return value.replace(year=year, month=month, day=day)


def _read_user(txn: Transaction, user_id: str) -> dict:
    user = txn.read("users", user_id)
    if user is None:
        raise NotFoundError(USER_NOT_FOUND, "User not found")
    return user


def get_subscription(user: dict) -> Optional[Subscription]:
    raw = user.get("subscription")
    return Subscription.model_validate(raw) if raw else None


def is_current(sub: Optional[Subscription], now: Optional[datetime] = None) -> bool:
    return bool(sub and sub.active and sub.end_date >= (now or utcnow()))


def can_place_order(user: dict) -> bool:
    sub = get_subscription(user)
    return user.get("tokens", 0) > 0 and bool(sub and sub.active)


def purchase(store: DocumentStore, user_id: str, plan: str, token_grant: int, days: int,
             price: float, plan_id: Optional[str] = None, now: Optional[datetime] = None) -> dict:
    """Record a paid subscription.

    Switching from a still-running plan to a different one tops the balance up
    by the grant difference; otherwise the balance is set to the new grant.
    """
    now = now or utcnow()
    new_sub = Subscription(
        plan=plan,
        plan_id=plan_id,
        token_grant=token_grant,
        days=days,
        price=price,
        start_date=now,
        end_date=now + timedelta(days=days),
        active=True,
        has_extended=False,
    )

    def apply(txn: Transaction):
        user = _read_user(txn, user_id)
        current = get_subscription(user)
        balance = user.get("tokens", 0) or 0
        plan_changed = (
            is_current(current, now)
            and (current.plan_id or current.plan) != (plan_id or plan)
        )
        if plan_changed:
            tokens = max(0, balance + token_grant - current.token_grant)
        else:
            tokens = token_grant
        txn.write("users", user_id, {"subscription": new_sub.model_dump(), "tokens": tokens})
        return plan_changed, tokens, tokens - balance

    plan_changed, tokens, added = store.run_transaction(apply)
    logger.info("user %s subscribed to %s, balance %s", user_id, plan, tokens)
    activity.log_activity(
        store, user_id,
        activity.SUBSCRIPTION_UPDATED if plan_changed else activity.SUBSCRIPTION_PURCHASED,
        activity.subscription_purchased(plan, days),
        metadata={"plan_id": plan_id, "price": price, "tokens": tokens},
    )
    if added > 0:
        activity.log_activity(store, user_id, activity.TOKENS_ADDED, activity.tokens_added(added, plan))
    return store.get("users", user_id)


def purchase_plan(store: DocumentStore, user_id: str, plan_id: str) -> dict:
    plan = PLANS.get(plan_id)
    if plan is None:
        raise ValidationError(UNKNOWN_PLAN, f"Unknown subscription plan: {plan_id}")
    return purchase(store, user_id, plan["name"], plan["tokens"], plan["days"], plan["price"], plan_id=plan_id)


def consume_one_token(store: DocumentStore, user_id: str) -> bool:
    def apply(txn: Transaction) -> bool:
        user = _read_user(txn, user_id)
        if not can_place_order(user):
            return False
        txn.write("users", user_id, {"tokens": user["tokens"] - 1})
        return True

    used = store.run_transaction(apply)
    if used:
        activity.log_activity(store, user_id, activity.TOKENS_USED, activity.tokens_used(1, "order"))
    return used


def refresh(store: DocumentStore, user_id: str, now: Optional[datetime] = None) -> dict:
    user = store.get("users", user_id)
    if user is None:
        raise NotFoundError(USER_NOT_FOUND, "User not found")
    sub = get_subscription(user)
    if sub and sub.active and sub.end_date < (now or utcnow()):
        store.update("users", user_id, {"subscription.active": False})
        user["subscription"]["active"] = False
        logger.info("subscription for %s expired on %s", user_id, sub.end_date.isoformat())
    return user


def extend(store: DocumentStore, user_id: str) -> dict:
    """One-time extension of the current subscription by two months."""
    def apply(txn: Transaction) -> None:
        user = _read_user(txn, user_id)
        sub = get_subscription(user)
        if sub is None:
            raise ValidationError(NO_SUBSCRIPTION, "You don't have a subscription to extend")
        if sub.has_extended:
            raise StateConflictError(ALREADY_EXTENDED, "Token expiration has already been extended once")
        txn.write("users", user_id, {
            "subscription.end_date": add_months(sub.end_date, EXTENSION_MONTHS),
            "subscription.active": True,
            "subscription.has_extended": True,
        })

    store.run_transaction(apply)
    activity.log_activity(store, user_id, activity.SUBSCRIPTION_EXTENDED,
                          f"Subscription extended by {EXTENSION_MONTHS} months")
    return store.get("users", user_id)
