"""
Identity: sign-up, sign-in with opaque bearer tokens, sign-out, password reset.

Sessions live in the "sessions" collection keyed by token and expire after
SESSION_HOURS. Reset tokens live in "password_resets", are single-use and
expire after PASSWORD_RESET_MINUTES. New accounts are always customers; the
admin and delivery roles are granted by an admin through set_role().
"""

import hashlib
import hmac
import logging
import os
import secrets
from datetime import timedelta
from functools import lru_cache
from typing import Callable, List, Optional, Tuple

import activity
from database import DocumentStore, new_id
from errors import (
    EMAIL_TAKEN,
    INVALID_CREDENTIALS,
    INVALID_RESET_TOKEN,
    USER_NOT_FOUND,
    AuthenticationError,
    NotFoundError,
    ValidationError,
)
from schemas import Role, User, utcnow

logger = logging.getLogger(__name__)

SESSIONS = "sessions"
PASSWORD_RESETS = "password_resets"
PBKDF2_ROUNDS = 100_000
SESSION_HOURS = int(os.getenv("SESSION_HOURS", "168"))
PASSWORD_RESET_MINUTES = int(os.getenv("PASSWORD_RESET_MINUTES", "60"))

AuthListener = Callable[[Optional[dict]], None]


def hash_password(password: str, salt: Optional[str] = None) -> str:
    salt = salt or secrets.token_hex(16)
    digest = hashlib.pbkdf2_hmac("sha256", password.encode(), bytes.fromhex(salt), PBKDF2_ROUNDS)
    return f"{salt}${digest.hex()}"


def verify_password(password: str, stored: Optional[str]) -> bool:
    if not stored or "$" not in stored:
        return False
    salt = stored.split("$", 1)[0]
    return hmac.compare_digest(hash_password(password, salt), stored)


def public_user(user: Optional[dict]) -> Optional[dict]:
    if user is None:
        return None
    out = dict(user)
    out.pop("password_hash", None)
    return out


class AuthService:
    def __init__(self, store: DocumentStore) -> None:
        self.store = store
        self._listeners: List[AuthListener] = []

    def _emit(self, user: Optional[dict]) -> None:
        for callback in list(self._listeners):
            try:
                callback(user)
            except Exception:
                logger.exception("auth listener failed")

    def on_auth_state_changed(self, callback: AuthListener) -> Callable[[], None]:
        self._listeners.append(callback)

        def unsubscribe() -> None:
            if callback in self._listeners:
                self._listeners.remove(callback)

        return unsubscribe

    def _find_by_email(self, email: str) -> Optional[dict]:
        found = self.store.query("users", {"email": email.strip().lower()}, limit=1)
        return found[0] if found else None

    def sign_up(self, email: str, password: str, name: str) -> dict:
        email = email.strip().lower()
        if self._find_by_email(email):
            raise ValidationError(EMAIL_TAKEN, "Email already registered", title="Sign Up Failed")
        uid = new_id()
        user = User(uid=uid, name=name, email=email, password_hash=hash_password(password))
        self.store.set("users", uid, user.model_dump())
        logger.info("user %s signed up", uid)
        activity.log_activity(self.store, uid, activity.SIGNUP, "New customer account created",
                              user_details={"name": name, "email": email})
        return public_user(self.store.get("users", uid))

    def set_role(self, admin_user: dict, uid: str, role: Role) -> dict:
        if self.store.get("users", uid) is None:
            raise NotFoundError(USER_NOT_FOUND, "User not found")
        self.store.update("users", uid, {"role": role})
        logger.info("admin %s set role of %s to %s", admin_user.get("uid"), uid, role)
        activity.log_activity(self.store, admin_user["uid"], activity.ADMIN_ACTION,
                              activity.admin_action(f"role change to {role}", f"user {uid}"),
                              metadata={"user_id": uid, "role": role})
        return public_user(self.store.get("users", uid))

    def purge_expired_sessions(self) -> int:
        stale = self.store.query(SESSIONS, {"expires_at": {"$lt": utcnow()}})
        for session in stale:
            self.store.delete(SESSIONS, session["id"])
        return len(stale)

    def sign_in(self, email: str, password: str) -> Tuple[str, dict]:
        user = self._find_by_email(email)
        if user is None or not verify_password(password, user.get("password_hash")):
            raise AuthenticationError(INVALID_CREDENTIALS, "Invalid credentials", title="Sign In Failed")
        self.purge_expired_sessions()
        token = secrets.token_urlsafe(32)
        now = utcnow()
        self.store.set(SESSIONS, token, {
            "uid": user["id"],
            "created_at": now,
            "expires_at": now + timedelta(hours=SESSION_HOURS),
        })
        activity.log_activity(self.store, user["id"], activity.LOGIN, "User signed in")
        user = public_user(user)
        self._emit(user)
        return token, user

    def sign_out(self, token: str) -> None:
        session = self.store.get(SESSIONS, token)
        if session is None:
            return
        self.store.delete(SESSIONS, token)
        activity.log_activity(self.store, session["uid"], activity.LOGOUT, "User signed out")
        self._emit(None)

    def current_user(self, token: Optional[str]) -> Optional[dict]:
        if not token:
            return None
        session = self.store.get(SESSIONS, token)
        if session is None:
            return None
        expires_at = session.get("expires_at")
        if expires_at is not None and expires_at < utcnow():
            self.store.delete(SESSIONS, token)
            return None
        return public_user(self.store.get("users", session["uid"]))

    def request_password_reset(self, email: str) -> Optional[str]:
        """Issue a reset token for the account, or None when no account matches.

        The token is handed to whatever delivers it to the user (mail is not
        part of this service); the HTTP route never echoes it back.
        """
        user = self._find_by_email(email)
        if user is None:
            logger.info("password reset requested for unknown email")
            return None
        token = secrets.token_urlsafe(32)
        now = utcnow()
        self.store.set(PASSWORD_RESETS, token, {
            "uid": user["id"],
            "created_at": now,
            "expires_at": now + timedelta(minutes=PASSWORD_RESET_MINUTES),
        })
        logger.info("password reset issued for %s", user["id"])
        return token

    def confirm_password_reset(self, token: str, new_password: str) -> None:
        reset = self.store.get(PASSWORD_RESETS, token)
        # single use: the token is gone whether or not it is still valid
        if reset is None or not self.store.delete(PASSWORD_RESETS, token) or reset["expires_at"] < utcnow():
            raise ValidationError(INVALID_RESET_TOKEN, "This reset link is invalid or has expired",
                                  title="Password Reset Failed")
        uid = reset["uid"]
        if self.store.get("users", uid) is None:
            raise NotFoundError(USER_NOT_FOUND, "User not found")
        self.store.update("users", uid, {"password_hash": hash_password(new_password)})
        for session in self.store.query(SESSIONS, {"uid": uid}):
            self.store.delete(SESSIONS, session["id"])
        activity.log_activity(self.store, uid, activity.PASSWORD_RESET, "Password reset")


@lru_cache(maxsize=None)
def auth_for(store: DocumentStore) -> AuthService:
    return AuthService(store)
