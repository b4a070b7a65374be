from datetime import timedelta

import pytest

from auth import PASSWORD_RESETS, SESSIONS, AuthService, hash_password, verify_password
from errors import (
    EMAIL_TAKEN,
    INVALID_CREDENTIALS,
    INVALID_RESET_TOKEN,
    USER_NOT_FOUND,
    AuthenticationError,
    NotFoundError,
    ValidationError,
)
from schemas import utcnow


def test_password_hash_round_trip():
    stored = hash_password("secret1")
    assert verify_password("secret1", stored)
    assert not verify_password("secret2", stored)
    assert not verify_password("secret1", None)


def test_sign_up_and_sign_in(store):
    service = AuthService(store)
    user = service.sign_up(" Asha@Campus.edu ", "secret1", "Asha")

    assert user["email"] == "asha@campus.edu"
    assert "password_hash" not in user
    assert user["tokens"] == 0

    token, signed_in = service.sign_in("asha@campus.edu", "secret1")
    assert signed_in["uid"] == user["uid"]
    assert service.current_user(token)["uid"] == user["uid"]


def test_duplicate_email(store):
    service = AuthService(store)
    service.sign_up("a@campus.edu", "secret1", "A")
    with pytest.raises(ValidationError) as exc:
        service.sign_up("A@campus.edu", "secret2", "B")
    assert exc.value.code == EMAIL_TAKEN


@pytest.mark.parametrize("email, password", [("a@campus.edu", "wrong!"), ("nobody@campus.edu", "secret1")])
def test_bad_credentials(store, email, password):
    service = AuthService(store)
    service.sign_up("a@campus.edu", "secret1", "A")
    with pytest.raises(AuthenticationError) as exc:
        service.sign_in(email, password)
    assert exc.value.code == INVALID_CREDENTIALS


def test_auth_state_listener(store):
    service = AuthService(store)
    service.sign_up("a@campus.edu", "secret1", "A")
    seen = []
    unsubscribe = service.on_auth_state_changed(lambda u: seen.append(u and u["email"]))

    token, _ = service.sign_in("a@campus.edu", "secret1")
    service.sign_out(token)
    unsubscribe()
    service.sign_in("a@campus.edu", "secret1")

    assert seen == ["a@campus.edu", None]
    assert service.current_user(token) is None


def test_auth_events_are_logged(store):
    service = AuthService(store)
    service.sign_up("a@campus.edu", "secret1", "A")
    token, _ = service.sign_in("a@campus.edu", "secret1")
    service.sign_out(token)

    types = [a["type"] for a in store.query("activities", sort=[("timestamp", 1)])]
    assert sorted(types) == ["User Login", "User Logout", "User Signup"]


def test_new_accounts_are_customers(store):
    user = AuthService(store).sign_up("a@campus.edu", "secret1", "A")
    assert user["role"] == "customer"


def test_set_role(store):
    service = AuthService(store)
    user = service.sign_up("a@campus.edu", "secret1", "A")

    updated = service.set_role({"uid": "boss"}, user["uid"], "delivery")

    assert updated["role"] == "delivery"
    assert store.query("activities", {"type": "Admin Action"})[0]["metadata"]["role"] == "delivery"
    with pytest.raises(NotFoundError) as exc:
        service.set_role({"uid": "boss"}, "ghost", "admin")
    assert exc.value.code == USER_NOT_FOUND


def test_expired_session_is_rejected_and_removed(store):
    service = AuthService(store)
    service.sign_up("a@campus.edu", "secret1", "A")
    token, _ = service.sign_in("a@campus.edu", "secret1")

    store.update(SESSIONS, token, {"expires_at": utcnow() - timedelta(minutes=1)})

    assert service.current_user(token) is None
    assert store.get(SESSIONS, token) is None


def test_sign_in_purges_stale_sessions(store):
    service = AuthService(store)
    service.sign_up("a@campus.edu", "secret1", "A")
    stale, _ = service.sign_in("a@campus.edu", "secret1")
    store.update(SESSIONS, stale, {"expires_at": utcnow() - timedelta(days=1)})

    fresh, _ = service.sign_in("a@campus.edu", "secret1")

    assert [s["id"] for s in store.query(SESSIONS)] == [fresh]


def test_password_reset(store):
    service = AuthService(store)
    service.sign_up("a@campus.edu", "secret1", "A")
    session, _ = service.sign_in("a@campus.edu", "secret1")

    token = service.request_password_reset("A@campus.edu")
    service.confirm_password_reset(token, "newpass1")

    assert service.current_user(session) is None
    service.sign_in("a@campus.edu", "newpass1")
    with pytest.raises(AuthenticationError):
        service.sign_in("a@campus.edu", "secret1")
    with pytest.raises(ValidationError) as exc:
        service.confirm_password_reset(token, "again123")
    assert exc.value.code == INVALID_RESET_TOKEN


def test_password_reset_unknown_email(store):
    assert AuthService(store).request_password_reset("nobody@campus.edu") is None
    assert store.query(PASSWORD_RESETS) == []


def test_expired_reset_token(store):
    service = AuthService(store)
    service.sign_up("a@campus.edu", "secret1", "A")
    token = service.request_password_reset("a@campus.edu")
    store.update(PASSWORD_RESETS, token, {"expires_at": utcnow() - timedelta(seconds=1)})

    with pytest.raises(ValidationError) as exc:
        service.confirm_password_reset(token, "newpass1")

    assert exc.value.code == INVALID_RESET_TOKEN
    assert store.get(PASSWORD_RESETS, token) is None
    service.sign_in("a@campus.edu", "secret1")
