import asyncio

import pytest
from fakeredis import FakeServer, aioredis as fake_aioredis

from conftest import bearer, make_user
from errors import NotFoundError
from services.cart_session import (
    GUEST_IDENTITY,
    Cart,
    CartSessionStore,
    add_line,
    identity_for,
    merge_carts,
    switch_cart,
    update_quantity,
)

DEVICE = {"X-Device-Id": "device-1"}


def line(product_id, quantity=1, price=100.0):
    return {"productId": product_id, "name": f"Product {product_id}", "price": price, "quantity": quantity}


def test_add_line_sums_same_product():
    cart = add_line(Cart(), "p1", "Hammer", 150000, 1)
    cart = add_line(cart, "p1", "Hammer", 150000, 2)
    cart = add_line(cart, "p2", "Pliers", 85000, 1)

    assert [(item.product_id, item.quantity) for item in cart.items] == [("p1", 3), ("p2", 1)]
    assert cart.total == 535000
    assert cart.item_count == 4


def test_update_quantity_below_one_removes_line():
    cart = add_line(Cart(), "p1", "Hammer", 150000, 2)
    line_id = cart.items[0].id

    assert update_quantity(cart, line_id, 5).items[0].quantity == 5
    assert update_quantity(cart, line_id, 0).items == ()
    with pytest.raises(NotFoundError):
        update_quantity(cart, "missing", 1)


def test_switch_cart_swaps_without_merging():
    guest = add_line(Cart(), "p1", "Hammer", 150000, 1)
    saved = add_line(Cart(identity="user:u1"), "p2", "Pliers", 85000, 2)

    active, stash = switch_cart(guest, saved)

    assert active is saved
    assert stash is guest

    active, stash = switch_cart(guest, None)
    assert active.items == ()
    assert stash is guest


def test_merge_carts_is_union():
    base = add_line(Cart(), "p1", "Hammer", 150000, 1)
    incoming = add_line(add_line(Cart(), "p1", "Hammer", 150000, 2), "p2", "Pliers", 85000, 1)

    merged = merge_carts(base, incoming)

    assert {item.product_id: item.quantity for item in merged.items} == {"p1": 3, "p2": 1}


def test_identity_for():
    assert identity_for(None) == GUEST_IDENTITY
    assert identity_for("u1") == "user:u1"


def test_device_header_required(client):
    assert client.get("/api/cart/session").status_code == 400


def test_session_cart_lifecycle(client):
    empty = client.get("/api/cart/session", headers=DEVICE).json()
    assert empty == {"identity": "guest", "items": [], "total": 0, "itemCount": 0}

    client.post("/api/cart/session/items", json=line("p1", 2), headers=DEVICE)
    cart = client.post("/api/cart/session/items", json=line("p1", 1), headers=DEVICE).json()
    assert len(cart["items"]) == 1
    assert cart["items"][0]["quantity"] == 3
    assert cart["total"] == 300

    line_id = cart["items"][0]["id"]
    cart = client.put(f"/api/cart/session/items/{line_id}", json={"quantity": 0}, headers=DEVICE).json()
    assert cart["items"] == []

    missing = client.put(f"/api/cart/session/items/{line_id}", json={"quantity": 1}, headers=DEVICE)
    assert missing.status_code == 404


def test_devices_have_separate_carts(client):
    client.post("/api/cart/session/items", json=line("p1"), headers=DEVICE)

    other = client.get("/api/cart/session", headers={"X-Device-Id": "device-2"}).json()

    assert other["items"] == []


def test_login_swaps_and_logout_restores_guest_cart(client, db):
    user = make_user(db)
    client.post("/api/cart/session/items", json=line("guest-item"), headers=DEVICE)

    signed_in = client.post("/api/cart/session/switch", headers={**DEVICE, **bearer(user)}).json()
    assert signed_in["identity"] == f"user:{user.id}"
    assert signed_in["items"] == []

    client.post("/api/cart/session/items", json=line("user-item", 2), headers=DEVICE)

    signed_out = client.post("/api/cart/session/switch", headers=DEVICE).json()
    assert signed_out["identity"] == "guest"
    assert [i["productId"] for i in signed_out["items"]] == ["guest-item"]

    again = client.post("/api/cart/session/switch", headers={**DEVICE, **bearer(user)}).json()
    assert [(i["productId"], i["quantity"]) for i in again["items"]] == [("user-item", 2)]


def test_guest_carts_stay_on_their_device(client, db):
    alice = make_user(db, email="alice@example.com")
    bob = make_user(db, email="bob@example.com")
    device_a = {"X-Device-Id": "device-a"}
    device_c = {"X-Device-Id": "device-c"}

    client.post("/api/cart/session/switch", headers={**device_c, **bearer(bob)})
    client.post("/api/cart/session/items", json=line("p1"), headers=device_a)
    client.post("/api/cart/session/switch", headers={**device_a, **bearer(alice)})

    c_guest = client.post("/api/cart/session/switch", headers=device_c).json()
    a_guest = client.post("/api/cart/session/switch", headers=device_a).json()

    assert c_guest["identity"] == "guest"
    assert c_guest["items"] == []
    assert [(i["productId"], i["quantity"]) for i in a_guest["items"]] == [("p1", 1)]


def test_user_cart_saved_per_device(client, db):
    user = make_user(db)
    phone = {"X-Device-Id": "phone"}
    tablet = {"X-Device-Id": "tablet"}

    client.post("/api/cart/session/switch", headers={**phone, **bearer(user)})
    client.post("/api/cart/session/items", json=line("phone-item"), headers=phone)
    client.post("/api/cart/session/switch", headers=phone)

    on_tablet = client.post("/api/cart/session/switch", headers={**tablet, **bearer(user)}).json()
    back_on_phone = client.post("/api/cart/session/switch", headers={**phone, **bearer(user)}).json()

    assert on_tablet["items"] == []
    assert [i["productId"] for i in back_on_phone["items"]] == ["phone-item"]


def test_concurrent_adds_are_not_lost():
    async def scenario():
        redis_client = fake_aioredis.FakeRedis(server=FakeServer(), decode_responses=True)
        store = CartSessionStore(redis_client)
        await asyncio.gather(*(store.add("d1", "p1", "Hammer", 150000, 1) for _ in range(5)))
        await asyncio.gather(*(store.add("d1", f"p{n}", "Item", 1000, 1) for n in range(2, 6)))
        return await store.get("d1")

    cart = asyncio.run(scenario())

    assert {item.product_id: item.quantity for item in cart.items} == {
        "p1": 5, "p2": 1, "p3": 1, "p4": 1, "p5": 1
    }


def test_switch_to_same_identity_keeps_cart(client):
    client.post("/api/cart/session/items", json=line("p1"), headers=DEVICE)

    cart = client.post("/api/cart/session/switch", headers=DEVICE).json()

    assert [i["productId"] for i in cart["items"]] == ["p1"]


def test_merge_on_login_empties_guest_cart():
    async def scenario():
        redis_client = fake_aioredis.FakeRedis(server=FakeServer(), decode_responses=True)
        store = CartSessionStore(redis_client, merge_on_login=True)

        await store.switch("d1", "u1")
        await store.add("d1", "p1", "Hammer", 150000, 1)
        await store.switch("d1", None)
        await store.add("d1", "p1", "Hammer", 150000, 2)
        await store.add("d1", "p2", "Pliers", 85000, 1)

        merged = await store.switch("d1", "u1")
        guest = await store.switch("d1", None)
        return merged, guest

    merged, guest = asyncio.run(scenario())

    assert merged.identity == "user:u1"
    assert {item.product_id: item.quantity for item in merged.items} == {"p1": 3, "p2": 1}
    assert guest.items == ()
