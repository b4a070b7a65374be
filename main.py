import logging
import os
from typing import List, Optional

from fastapi import Depends, FastAPI, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from pydantic import BaseModel, Field

import admin
import delivery
import orders
import qrcodes
import subscriptions
from auth import auth_for
from cart import Cart
from database import DocumentStore, get_store
from errors import FORBIDDEN, NOT_AUTHENTICATED, AuthenticationError, CampusKitchenError, PermissionDeniedError
from menu import catalog_for
from schemas import Feedback, Menuitem, Role
from storage import LocalStorage, get_local_storage, load_address, save_address

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)

app = FastAPI(title="Campus Kitchen API")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

security = HTTPBearer(auto_error=False)


@app.exception_handler(CampusKitchenError)
def handle_campus_kitchen_error(request: Request, exc: CampusKitchenError):
    return JSONResponse(status_code=exc.status_code, content=exc.as_dict())


# Auth dependencies

def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    store: DocumentStore = Depends(get_store),
) -> dict:
    user = auth_for(store).current_user(credentials.credentials if credentials else None)
    if user is None:
        raise AuthenticationError(NOT_AUTHENTICATED, "Please sign in to continue.")
    return user


def require_role(*roles: str):
    def dependency(user: dict = Depends(get_current_user)) -> dict:
        if user.get("role") not in roles:
            raise PermissionDeniedError(FORBIDDEN, "You don't have permission to access this page.")
        return user
    return dependency


def get_cart(user: dict = Depends(get_current_user), storage: LocalStorage = Depends(get_local_storage)) -> Cart:
    return Cart(user["uid"], storage)


@app.get("/")
def root():
    return {"message": "Campus Kitchen API running"}


@app.get("/test")
def test_database(store: DocumentStore = Depends(get_store)):
    status = {
        "backend": "✅ Running",
        "database": "❌ Not Available",
        "database_url": "✅ Set" if os.getenv("DATABASE_URL") else "❌ Not Set",
        "database_name": "✅ Set" if os.getenv("DATABASE_NAME") else "❌ Not Set",
        "store": store.name,
        "collections": [],
    }
    try:
        status["collections"] = store.collection_names()[:10]
        status["database"] = "✅ Connected & Working"
    except CampusKitchenError as e:
        status["database"] = f"⚠️ Connected but Error: {e.description[:80]}"
    return status


# Auth

class SignupRequest(BaseModel):
    name: str
    email: str
    password: str = Field(..., min_length=6)


class LoginRequest(BaseModel):
    email: str
    password: str


@app.post("/api/auth/signup", status_code=201)
def signup(payload: SignupRequest, store: DocumentStore = Depends(get_store)):
    return auth_for(store).sign_up(payload.email, payload.password, payload.name)


@app.post("/api/auth/login")
def login(payload: LoginRequest, store: DocumentStore = Depends(get_store)):
    token, user = auth_for(store).sign_in(payload.email, payload.password)
    return {"token": token, "user": user}


@app.post("/api/auth/logout")
def logout(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    store: DocumentStore = Depends(get_store),
):
    if credentials:
        auth_for(store).sign_out(credentials.credentials)
    return {"success": True}


@app.get("/api/auth/me")
def me(user: dict = Depends(get_current_user)):
    return user


class ResetRequest(BaseModel):
    email: str


class ResetConfirm(BaseModel):
    token: str
    new_password: str = Field(..., min_length=6)


@app.post("/api/auth/password-reset", status_code=202)
def request_password_reset(payload: ResetRequest, store: DocumentStore = Depends(get_store)):
    # same answer whether or not the email is registered
    auth_for(store).request_password_reset(payload.email)
    return {"success": True}


@app.post("/api/auth/password-reset/confirm")
def confirm_password_reset(payload: ResetConfirm, store: DocumentStore = Depends(get_store)):
    auth_for(store).confirm_password_reset(payload.token, payload.new_password)
    return {"success": True}


# Menu

@app.get("/api/menu")
def list_menu(category: Optional[str] = None, store: DocumentStore = Depends(get_store)):
    return catalog_for(store).list_items(category=category)


@app.post("/api/menu", status_code=201)
def create_menu_item(payload: Menuitem, store: DocumentStore = Depends(get_store),
                     _: dict = Depends(require_role("admin"))):
    return catalog_for(store).create_item(payload)


@app.put("/api/menu/{item_id}")
def update_menu_item(item_id: str, payload: Menuitem, store: DocumentStore = Depends(get_store),
                     _: dict = Depends(require_role("admin"))):
    return catalog_for(store).update_item(item_id, payload)


@app.delete("/api/menu/{item_id}")
def delete_menu_item(item_id: str, store: DocumentStore = Depends(get_store),
                     _: dict = Depends(require_role("admin"))):
    catalog_for(store).delete_item(item_id)
    return {"success": True}


# Cart

class AddToCart(BaseModel):
    item_id: str


class SetQuantity(BaseModel):
    quantity: int


class DeliveryAddress(BaseModel):
    location: Optional[str] = None
    phone: Optional[str] = None


@app.get("/api/cart")
def view_cart(cart: Cart = Depends(get_cart)):
    return cart.as_dict()


@app.post("/api/cart/items")
def add_to_cart(payload: AddToCart, cart: Cart = Depends(get_cart), store: DocumentStore = Depends(get_store)):
    item = catalog_for(store).orderable_item(payload.item_id)
    cart.add_line(payload.item_id, item)
    return cart.as_dict()


@app.put("/api/cart/items/{item_id}")
def update_cart_quantity(item_id: str, payload: SetQuantity, cart: Cart = Depends(get_cart)):
    cart.set_quantity(item_id, payload.quantity)
    return cart.as_dict()


@app.delete("/api/cart/items/{item_id}")
def remove_from_cart(item_id: str, cart: Cart = Depends(get_cart)):
    cart.remove_line(item_id)
    return cart.as_dict()


@app.delete("/api/cart")
def clear_cart(cart: Cart = Depends(get_cart)):
    cart.clear()
    return cart.as_dict()


@app.get("/api/cart/address")
def get_delivery_address(user: dict = Depends(get_current_user),
                         storage: LocalStorage = Depends(get_local_storage)):
    return load_address(storage, user["uid"])


@app.put("/api/cart/address")
def set_delivery_address(payload: DeliveryAddress, user: dict = Depends(get_current_user),
                         storage: LocalStorage = Depends(get_local_storage)):
    save_address(storage, user["uid"], payload.location, payload.phone)
    return load_address(storage, user["uid"])


# Orders

@app.post("/api/checkout", status_code=201)
def checkout(payload: DeliveryAddress, cart: Cart = Depends(get_cart), store: DocumentStore = Depends(get_store)):
    order = orders.checkout(store, cart, location=payload.location, phone=payload.phone)
    return {"order": order, "qr_code": qrcodes.encode(order)}


@app.get("/api/orders")
def my_orders(user: dict = Depends(get_current_user), store: DocumentStore = Depends(get_store)):
    return orders.orders_for_user(store, user["uid"])


def _visible_order(store: DocumentStore, order_id: str, user: dict):
    order = orders.get_order(store, order_id)
    if order.owner_user_id != user["uid"] and user.get("role") not in ("admin", "delivery"):
        raise PermissionDeniedError(FORBIDDEN, "You don't have permission to view this order.")
    return order


@app.get("/api/orders/{order_id}")
def order_details(order_id: str, user: dict = Depends(get_current_user), store: DocumentStore = Depends(get_store)):
    return _visible_order(store, order_id, user)


@app.get("/api/orders/{order_id}/qr")
def order_qr_code(order_id: str, user: dict = Depends(get_current_user), store: DocumentStore = Depends(get_store)):
    order = _visible_order(store, order_id, user)
    return {"order_id": order.id, "verification_code": qrcodes.verification_code(order.id),
            "qr_code": qrcodes.encode(order)}


# Subscription / tokens

class PurchaseRequest(BaseModel):
    plan_id: str


def _token_summary(user: dict) -> dict:
    return {
        "tokens": user.get("tokens", 0),
        "subscription": user.get("subscription"),
        "can_place_order": subscriptions.can_place_order(user),
    }


@app.get("/api/subscription/plans")
def subscription_plans():
    return [{"id": plan_id, **plan} for plan_id, plan in subscriptions.PLANS.items()]


@app.get("/api/subscription")
def my_subscription(user: dict = Depends(get_current_user), store: DocumentStore = Depends(get_store)):
    return _token_summary(subscriptions.refresh(store, user["uid"]))


@app.post("/api/subscription/purchase")
def purchase_subscription(payload: PurchaseRequest, user: dict = Depends(get_current_user),
                          store: DocumentStore = Depends(get_store)):
    return _token_summary(subscriptions.purchase_plan(store, user["uid"], payload.plan_id))


@app.post("/api/subscription/extend")
def extend_subscription(user: dict = Depends(get_current_user), store: DocumentStore = Depends(get_store)):
    return _token_summary(subscriptions.extend(store, user["uid"]))


@app.post("/api/subscription/use-token")
def use_token(user: dict = Depends(get_current_user), store: DocumentStore = Depends(get_store)):
    used = subscriptions.consume_one_token(store, user["uid"])
    return {"used": used, **_token_summary(store.get("users", user["uid"]))}


# Delivery

class ScanRequest(BaseModel):
    payload: str = Field(..., description="Raw text decoded from the customer's QR code")


@app.get("/api/delivery/pending")
def pending_deliveries(store: DocumentStore = Depends(get_store), _: dict = Depends(require_role("delivery"))):
    return orders.pending_deliveries(store)


@app.get("/api/delivery/completed")
def completed_deliveries(store: DocumentStore = Depends(get_store),
                         partner: dict = Depends(require_role("delivery"))):
    return orders.completed_deliveries(store, partner["uid"])


@app.post("/api/delivery/confirm")
def confirm_delivery(payload: ScanRequest, store: DocumentStore = Depends(get_store),
                     partner: dict = Depends(require_role("delivery"))):
    return delivery.confirm_delivery(store, payload.payload, partner)


# Feedback

class FeedbackCreate(BaseModel):
    name: str
    email: str
    feedback: str
    rating: int = Field(0, ge=0, le=5)


@app.post("/api/feedback", status_code=201)
def submit_feedback(payload: FeedbackCreate, store: DocumentStore = Depends(get_store)):
    feedback_id = store.create_document("feedback", Feedback(**payload.model_dump()))
    return {"id": feedback_id}


# Admin

@app.get("/api/admin/{collection}")
def admin_listing(
    collection: admin.Collection,
    period: admin.Period = "all",
    sort: admin.SortOrder = "newest",
    q: Optional[str] = Query(None, description="Search id, email, name, type or details"),
    store: DocumentStore = Depends(get_store),
    _: dict = Depends(require_role("admin")),
) -> List[dict]:
    return admin.listing(store, collection, period=period, sort=sort, q=q)


class RoleUpdate(BaseModel):
    role: Role


@app.put("/api/admin/users/{uid}/role")
def admin_set_role(uid: str, payload: RoleUpdate, store: DocumentStore = Depends(get_store),
                   user: dict = Depends(require_role("admin"))):
    return auth_for(store).set_role(user, uid, payload.role)


@app.delete("/api/admin/{kind}/{item_id}")
def admin_delete(kind: admin.Deletable, item_id: str, store: DocumentStore = Depends(get_store),
                 user: dict = Depends(require_role("admin"))):
    admin.delete_item(store, user, kind, item_id)
    return {"success": True}


# Schema inspector for the built-in DB viewer
@app.get("/schema")
def get_schema_defs():
    from inspect import getmembers, isclass
    import schemas as s
    models = {name: cls.model_json_schema() for name, cls in getmembers(s)
              if isclass(cls) and issubclass(cls, BaseModel) and cls.__module__ == s.__name__
              and not name.startswith("_")}
    return models


if __name__ == "__main__":
    import uvicorn
    port = int(os.getenv("PORT", 8000))
    uvicorn.run(app, host="0.0.0.0", port=port)
