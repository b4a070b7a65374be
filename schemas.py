"""
Database Schemas for Campus Kitchen

Each top-level Pydantic model maps to a MongoDB collection:
- User      -> "users"
- Menuitem  -> "menu"
- Order     -> "orders"
- Activity  -> "activities"
- Feedback  -> "feedback"

CartLine, DeliveryDetails and UserDetails are embedded records. The QR models
describe the text carried inside an order's QR code and use camelCase keys on
the wire.
"""

from datetime import datetime, timezone
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

Role = Literal["customer", "admin", "delivery"]
OrderStatus = Literal["pending", "completed", "cancelled"]
TrackingStatus = Literal["order_placed", "preparing", "ready", "delivered"]
DeliveryStatus = Literal["pending", "delivered"]

QR_PAYLOAD_TYPE = "campus-bite-order"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Subscription(BaseModel):
    plan: str = Field(..., description="Plan display name")
    plan_id: Optional[str] = Field(None, description="Catalog plan id")
    token_grant: int = Field(..., ge=0, description="Tokens granted by the plan")
    days: int = Field(30, ge=1, description="Validity in days")
    price: float = Field(0, ge=0, description="Price paid")
    start_date: datetime
    end_date: datetime
    active: bool = True
    has_extended: bool = False


class User(BaseModel):
    uid: str = Field(..., description="Stable id issued at sign-up")
    name: Optional[str] = Field(None, description="Display name")
    email: str = Field(..., description="Email address")
    phone: Optional[str] = None
    password_hash: Optional[str] = Field(None, description="Salted password hash")
    role: Role = "customer"
    tokens: int = Field(0, ge=0, description="Token balance")
    subscription: Optional[Subscription] = None
    created_at: datetime = Field(default_factory=utcnow)


class Menuitem(BaseModel):
    name: str = Field(..., description="Item name")
    description: Optional[str] = Field(None, description="Item description")
    price: float = Field(0, ge=0, description="Unit price, zero under token pricing")
    image_url: Optional[str] = Field(None, description="Image URL")
    category: Optional[str] = Field(None, description="breakfast | lunch | ...")
    available: bool = Field(True, description="Availability status")


class CartLine(BaseModel):
    item_id: str = Field(..., description="Menu item id")
    name: str = Field(..., description="Item name snapshot")
    unit_price: float = Field(0, ge=0, description="Unit price snapshot")
    quantity: int = Field(1, ge=1, description="Quantity")


class UserDetails(BaseModel):
    name: str = "N/A"
    email: str = "N/A"
    phone: Optional[str] = None


class DeliveryDetails(BaseModel):
    status: DeliveryStatus = "pending"
    estimated_time: Optional[datetime] = None
    delivered_at: Optional[datetime] = None
    delivery_partner_id: Optional[str] = None
    delivery_partner_name: Optional[str] = None
    delivery_partner_email: Optional[str] = None
    location: Optional[str] = None
    phone: Optional[str] = None


class Order(BaseModel):
    id: str = Field(..., description="order-<millis>-<suffix>")
    owner_user_id: str
    items: List[CartLine] = Field(default_factory=list)
    total_quantity: int = Field(0, ge=0)
    total: float = Field(0, ge=0)
    status: OrderStatus = "pending"
    tracking_status: TrackingStatus = "order_placed"
    delivery_details: DeliveryDetails = Field(default_factory=DeliveryDetails)
    user_details: UserDetails = Field(default_factory=UserDetails)
    using_tokens: bool = True
    token_deducted: bool = False
    tokens_deducted: int = Field(0, ge=0)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class Activity(BaseModel):
    user_id: str
    type: str
    details: str
    user_details: Optional[Dict[str, Optional[str]]] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)
    timestamp: datetime = Field(default_factory=utcnow)


class Feedback(BaseModel):
    name: str = Field(..., min_length=1)
    email: str = Field(..., min_length=3)
    feedback: str = Field(..., min_length=1)
    rating: int = Field(0, ge=0, le=5)
    status: Literal["pending", "reviewed", "resolved"] = "pending"
    timestamp: datetime = Field(default_factory=utcnow)


# QR payload (wire format, camelCase keys)

class _QRModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class QRItem(_QRModel):
    name: str
    quantity: int
    price: float = 0


class QROrderDetails(_QRModel):
    items: List[QRItem] = Field(default_factory=list)
    total: float = 0
    status: str = "pending"
    tracking_status: str = "order_placed"
    created_at: str


class QRUserDetails(_QRModel):
    name: str = "N/A"
    email: str = "N/A"
    phone: Optional[str] = None


class QRPayload(_QRModel):
    type: str = QR_PAYLOAD_TYPE
    order_id: str
    timestamp: Optional[int] = Field(None, description="Milliseconds since epoch at encode time")
    order_details: Optional[QROrderDetails] = None
    user_details: Optional[QRUserDetails] = None
    verification_code: Optional[str] = None
    error: Optional[str] = None
