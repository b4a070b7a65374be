from datetime import timedelta

import pytest
from fastapi.testclient import TestClient

from database import MemoryStore, get_store
from main import app
from schemas import Subscription, User, utcnow
from storage import MemoryLocalStorage, get_local_storage


@pytest.fixture
def store():
    return MemoryStore()


@pytest.fixture
def local_storage():
    return MemoryLocalStorage()


@pytest.fixture
def client(store, local_storage):
    app.dependency_overrides[get_store] = lambda: store
    app.dependency_overrides[get_local_storage] = lambda: local_storage
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


def add_user(store, uid, tokens=0, role="customer", plan_days_left=10, token_grant=7,
             plan_id="weekly", active=True, has_extended=False, subscribed=True):
    now = utcnow()
    subscription = None
    if subscribed:
        subscription = Subscription(
            plan="Weekly Plan",
            plan_id=plan_id,
            token_grant=token_grant,
            days=7,
            price=699,
            start_date=now - timedelta(days=1),
            end_date=now + timedelta(days=plan_days_left),
            active=active,
            has_extended=has_extended,
        )
    user = User(uid=uid, name=uid.title(), email=f"{uid}@campus.edu", role=role,
                tokens=tokens, subscription=subscription)
    store.set("users", uid, user.model_dump())
    return store.get("users", uid)
