import json
from types import SimpleNamespace

import pytest

import qrcodes
from errors import MALFORMED_PAYLOAD, WRONG_TYPE, DecodeError
from schemas import CartLine, Order, UserDetails


def sample_order():
    return Order(
        id="order-1718000000000-ab12cd34",
        owner_user_id="u1",
        items=[
            CartLine(item_id="a", name="Idli", quantity=2),
            CartLine(item_id="b", name="Poha", unit_price=1.5, quantity=1),
        ],
        total_quantity=3,
        total=1.5,
        user_details=UserDetails(name="Asha", email="asha@campus.edu", phone="98765"),
    )


def test_round_trip_keeps_order_identity_and_items():
    order = sample_order()
    payload = qrcodes.decode(qrcodes.encode(order))

    assert payload.order_id == order.id
    assert payload.verification_code == "12CD34"
    assert [(i.name, i.quantity) for i in payload.order_details.items] == [("Idli", 2), ("Poha", 1)]
    assert payload.user_details.email == "asha@campus.edu"


def test_encoded_text_uses_camel_case_keys():
    data = json.loads(qrcodes.encode(sample_order()))
    assert data["type"] == "campus-bite-order"
    assert set(data) >= {"orderId", "timestamp", "orderDetails", "userDetails", "verificationCode"}
    assert data["orderDetails"]["trackingStatus"] == "order_placed"


def test_encode_degrades_instead_of_raising():
    order = SimpleNamespace(id="order-1718000000000-broken")

    data = json.loads(qrcodes.encode(order))
    assert data == {
        "type": "campus-bite-order",
        "orderId": order.id,
        "error": "Failed to generate QR code data",
    }


@pytest.mark.parametrize("raw", ["not json", "[1, 2]", None, '{"type": "campus-bite-order"}'])
def test_decode_rejects_malformed(raw):
    with pytest.raises(DecodeError) as exc:
        qrcodes.decode(raw)
    assert exc.value.code == MALFORMED_PAYLOAD


def test_decode_rejects_wrong_type():
    with pytest.raises(DecodeError) as exc:
        qrcodes.decode(json.dumps({"type": "other-app", "orderId": "x"}))
    assert exc.value.code == WRONG_TYPE


def test_degraded_payload_still_decodes():
    payload = qrcodes.decode(json.dumps({"type": "campus-bite-order", "orderId": "order-1-x", "error": "oops"}))
    assert payload.order_id == "order-1-x"
    assert payload.error == "oops"
