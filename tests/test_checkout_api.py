import pytest

from singlepiece.config.admin_config import admin_config
from singlepiece.schema.full_schema import InventoryStatus, OrderStatus, PaymentStatus

url_prefix = "/api/v1"

CUSTOMER = {"fullName": "Meera Iyer", "email": "meera@example.com", "phoneNumber": "9123456780",
            "addressLine1": "7 Lake View", "city": "Chennai", "state": "TN", "pincode": "600001"}


def _buy(productId, **extra):
    return {**CUSTOMER, "productId": productId, **extra}


async def _reserve(ac_client, headers, item):
    resp = await ac_client.post(f"{url_prefix}/checkout/buy-now", json=_buy(item), headers=headers)
    assert resp.status_code == 201, resp.text
    return resp.json()["data"]["order"]["orderId"]


@pytest.mark.asyncio
async def test_health(ac_client):
    resp = await ac_client.get(f"{url_prefix}/health")
    assert resp.status_code == 200
    assert resp.json()["data"]["status"] == "healthy"
    assert resp.headers.get("X-Request-ID")


@pytest.mark.asyncio
async def test_claim_routes_need_a_token(ac_client, make_product):
    await make_product("GZ-RING-001")

    resp = await ac_client.post(f"{url_prefix}/checkout/buy-now", json=_buy("GZ-RING-001"))
    assert resp.status_code == 401
    assert resp.json()["error"]["code"] == "INVALID_AUTH"

    resp = await ac_client.post(f"{url_prefix}/checkout/buy-now", json=_buy("GZ-RING-001"),
                                headers={"Authorization": "Bearer not-a-jwt"})
    assert resp.status_code == 401


@pytest.mark.asyncio
async def test_buy_now_status_mapping(ac_client, clock, make_product, auth_headers):
    await make_product("GZ-RING-001")
    alice, bob = auth_headers("buyer-a"), auth_headers("buyer-b")

    resp = await ac_client.post(f"{url_prefix}/checkout/buy-now", json=_buy("GZ-RING-001"), headers=alice)
    assert resp.status_code == 201
    data = resp.json()["data"]
    assert data["order"]["timeLeft"] == 900
    assert data["payment"]["amount"] == data["order"]["totalAmount"]
    assert data["product"]["id"] == "GZ-RING-001"

    clock.advance(minutes=4)
    resp = await ac_client.post(f"{url_prefix}/checkout/buy-now", json=_buy("GZ-RING-001"), headers=bob)
    assert resp.status_code == 409
    error = resp.json()["error"]
    assert error["code"] == "ITEM_RESERVED"
    assert error["details"]["timeLeft"] == 11 * 60

    resp = await ac_client.post(f"{url_prefix}/checkout/buy-now", json=_buy("GZ-NOPE-404"), headers=bob)
    assert resp.status_code == 404

    resp = await ac_client.post(f"{url_prefix}/checkout/buy-now", json={"productId": "GZ-RING-001"}, headers=bob)
    assert resp.status_code == 422


@pytest.mark.asyncio
async def test_paid_item_is_sold_for_good(ac_client, make_product, auth_headers, load_product, load_entry):
    await make_product("GZ-VASE-001")
    alice, bob = auth_headers("buyer-a"), auth_headers("buyer-b")

    order_ref = await _reserve(ac_client, alice, "GZ-VASE-001")
    resp = await ac_client.post(f"{url_prefix}/payments/{order_ref}/submit",
                                json={"paymentMethod": "upi", "upiTransactionId": "UPI123456789"},
                                headers=alice)
    assert resp.status_code == 200
    assert resp.json()["data"]["orderStatus"] == "sold"

    resp = await ac_client.get(f"{url_prefix}/payments/{order_ref}", headers=alice)
    assert resp.status_code == 200
    assert resp.json()["data"]["paymentStatus"] == "verified"
    assert resp.json()["data"]["items"][0]["productId"] == "GZ-VASE-001"

    resp = await ac_client.get(f"{url_prefix}/products/GZ-VASE-001/status")
    assert resp.json()["data"]["inventoryStatus"] == "sold"
    assert resp.json()["data"]["canBeReserved"] is False

    resp = await ac_client.post(f"{url_prefix}/checkout/buy-now", json=_buy("GZ-VASE-001"), headers=bob)
    assert resp.status_code == 410
    assert resp.json()["error"]["code"] == "ITEM_SOLD"

    # another buyer cannot see or pay for the entry
    resp = await ac_client.get(f"{url_prefix}/payments/{order_ref}", headers=bob)
    assert resp.status_code == 404

    product = await load_product("GZ-VASE-001")
    assert product.inventory_status == InventoryStatus.SOLD
    order, payment = await load_entry(order_ref)
    assert order.status == OrderStatus.SOLD
    assert payment.status == PaymentStatus.VERIFIED


@pytest.mark.asyncio
async def test_lapsed_item_is_swept_and_claimable_again(ac_client, clock, make_product, auth_headers,
                                                        load_product, load_entry):
    await make_product("GZ-LAMP-002")
    alice, bob = auth_headers("buyer-a"), auth_headers("buyer-b")
    admin = auth_headers("admin-1", roles=["admin"])

    order_ref = await _reserve(ac_client, alice, "GZ-LAMP-002")
    clock.advance(minutes=16)

    resp = await ac_client.post(f"{url_prefix}/admin/inventory/cleanup-expired", headers=admin)
    assert resp.status_code == 200
    assert resp.json()["data"]["released"] == 1
    assert resp.json()["data"]["expired_entries"] == 1

    assert (await load_product("GZ-LAMP-002")).inventory_status == InventoryStatus.AVAILABLE
    order, payment = await load_entry(order_ref)
    assert payment.status == PaymentStatus.EXPIRED

    resp = await ac_client.post(f"{url_prefix}/payments/{order_ref}/submit",
                                json={"paymentMethod": "upi", "upiTransactionId": "UPI123456789"},
                                headers=alice)
    assert resp.status_code == 400
    assert resp.json()["error"]["code"] == "CONFLICTING_STATE"

    second = await _reserve(ac_client, bob, "GZ-LAMP-002")
    assert second != order_ref
    assert (await load_product("GZ-LAMP-002")).reserved_by == "buyer-b"


@pytest.mark.asyncio
async def test_submit_after_deadline_is_gone(ac_client, clock, make_product, auth_headers, load_entry):
    await make_product("GZ-MUG-003")
    alice = auth_headers("buyer-a")
    order_ref = await _reserve(ac_client, alice, "GZ-MUG-003")

    clock.advance(minutes=15)
    resp = await ac_client.post(f"{url_prefix}/payments/{order_ref}/submit",
                                json={"paymentMethod": "bank_transfer", "bankReference": "HDFC000123"},
                                headers=alice)
    assert resp.status_code == 410
    assert resp.json()["error"]["code"] == "RESERVATION_EXPIRED"

    order, payment = await load_entry(order_ref)
    assert payment.status == PaymentStatus.EXPIRED


@pytest.mark.asyncio
async def test_bad_proof_is_rejected(ac_client, make_product, auth_headers):
    await make_product("GZ-MUG-004")
    alice = auth_headers("buyer-a")
    order_ref = await _reserve(ac_client, alice, "GZ-MUG-004")

    resp = await ac_client.post(f"{url_prefix}/payments/{order_ref}/submit",
                                json={"paymentMethod": "upi", "upiTransactionId": "abc"},
                                headers=alice)
    assert resp.status_code == 400
    assert resp.json()["error"]["code"] == "VALIDATION_ERROR"

    resp = await ac_client.post(f"{url_prefix}/payments/{order_ref}/submit",
                                json={"paymentMethod": "cash"}, headers=alice)
    assert resp.status_code == 422

    resp = await ac_client.get(f"{url_prefix}/payments/my-pending", headers=alice)
    assert resp.status_code == 200
    pending = resp.json()["data"]
    assert pending["pagination"]["total"] == 1
    assert pending["payments"][0]["orderId"] == order_ref
    assert pending["payments"][0]["timeLeft"] == 900


@pytest.mark.asyncio
async def test_cart_flow(ac_client, make_product, auth_headers, load_product):
    for key in ("GZ-SET-001", "GZ-SET-002"):
        await make_product(key, price=500)
    alice = auth_headers("buyer-a")

    resp = await ac_client.post(f"{url_prefix}/cart/items", json={"item_key": "GZ-SET-001"}, headers=alice)
    assert resp.status_code == 201
    resp = await ac_client.post(f"{url_prefix}/cart/items", json={"item_key": "GZ-SET-001"}, headers=alice)
    assert resp.status_code == 200
    await ac_client.post(f"{url_prefix}/cart/items", json={"item_key": "GZ-SET-002"}, headers=alice)
    resp = await ac_client.post(f"{url_prefix}/cart/items", json={"item_key": "GZ-NOPE"}, headers=alice)
    assert resp.status_code == 404

    resp = await ac_client.get(f"{url_prefix}/cart/items", headers=alice)
    assert [i["productId"] for i in resp.json()["data"]["items"]] == ["GZ-SET-001", "GZ-SET-002"]
    assert resp.json()["data"]["totals"]["subtotal"] == 1000

    resp = await ac_client.post(f"{url_prefix}/checkout/cart", json=CUSTOMER, headers=alice)
    assert resp.status_code == 201
    data = resp.json()["data"]
    assert len(data["orderIds"]) == 1
    assert data["totalAmount"] == 1000 + 180 + 99

    resp = await ac_client.get(f"{url_prefix}/cart/items", headers=alice)
    assert resp.json()["data"]["items"] == []

    resp = await ac_client.post(f"{url_prefix}/checkout/cart", json=CUSTOMER, headers=alice)
    assert resp.status_code == 400

    resp = await ac_client.post(f"{url_prefix}/checkout/{data['orderIds'][0]}/cancel", headers=alice)
    assert resp.status_code == 200
    assert resp.json()["data"]["released"] == 2
    assert (await load_product("GZ-SET-002")).inventory_status == InventoryStatus.AVAILABLE


@pytest.mark.asyncio
async def test_admin_routes_need_admin(ac_client, make_product, auth_headers, monkeypatch):
    await make_product("GZ-RING-009")
    alice = auth_headers("buyer-a")
    order_ref = await _reserve(ac_client, alice, "GZ-RING-009")

    resp = await ac_client.get(f"{url_prefix}/admin/payments/pending")
    assert resp.status_code == 401
    resp = await ac_client.get(f"{url_prefix}/admin/payments/pending", headers=alice)
    assert resp.status_code == 403

    monkeypatch.setattr(admin_config, "ADMIN_SECRET", "s3cret")
    resp = await ac_client.get(f"{url_prefix}/admin/payments/pending", headers={"X-Admin-Key": "s3cret"})
    assert resp.status_code == 200
    assert resp.json()["data"]["payments"][0]["orderId"] == order_ref

    resp = await ac_client.get(f"{url_prefix}/admin/payments", params={"status": "bogus"},
                               headers={"X-Admin-Key": "s3cret"})
    assert resp.status_code == 400


@pytest.mark.asyncio
async def test_admin_verify_and_reject(ac_client, make_product, auth_headers, load_product):
    await make_product("GZ-RING-010")
    await make_product("GZ-RING-011")
    admin = auth_headers("admin-1", roles=["admin"])
    first = await _reserve(ac_client, auth_headers("buyer-a"), "GZ-RING-010")
    second = await _reserve(ac_client, auth_headers("buyer-b"), "GZ-RING-011")

    resp = await ac_client.post(f"{url_prefix}/admin/payments/{first}/verify",
                                json={"notes": "seen in bank statement"}, headers=admin)
    assert resp.status_code == 200
    assert (await load_product("GZ-RING-010")).inventory_status == InventoryStatus.SOLD

    resp = await ac_client.post(f"{url_prefix}/admin/payments/{first}/reject", headers=admin)
    assert resp.status_code == 400

    resp = await ac_client.post(f"{url_prefix}/admin/payments/{second}/reject",
                                json={"reason": "no matching transfer"}, headers=admin)
    assert resp.status_code == 200
    assert resp.json()["data"]["released"] == 1
    assert (await load_product("GZ-RING-011")).inventory_status == InventoryStatus.AVAILABLE

    resp = await ac_client.post(f"{url_prefix}/admin/payments/GZ0000000000000XXXXX/verify", headers=admin)
    assert resp.status_code == 404

    resp = await ac_client.get(f"{url_prefix}/admin/payments", params={"status": "failed"}, headers=admin)
    assert [p["orderId"] for p in resp.json()["data"]["payments"]] == [second]


@pytest.mark.asyncio
async def test_product_reads(ac_client, clock, make_product, auth_headers):
    product = await make_product("GZ-BOWL-020", category="ceramics")
    await make_product("GZ-BOWL-021", category="ceramics")
    await make_product("GZ-SCARF-022", category="textiles")
    await _reserve(ac_client, auth_headers("buyer-a"), "GZ-BOWL-020")

    resp = await ac_client.get(f"{url_prefix}/products", params={"category": "ceramics"})
    assert resp.json()["data"]["count"] == 2

    resp = await ac_client.get(f"{url_prefix}/products/availability")
    assert resp.json()["data"]["summary"] == {"total": 3, "available": 2, "reserved": 1, "sold": 0}

    resp = await ac_client.get(f"{url_prefix}/products/{product.public_id}/status")
    assert resp.status_code == 200
    assert resp.json()["data"]["isReserved"] is True

    resp = await ac_client.get(f"{url_prefix}/products/GZ-BOWL-020/can-reserve")
    assert resp.json()["data"]["canReserve"] is False

    # a lapsed hold reads as available before any sweep
    clock.advance(minutes=15)
    resp = await ac_client.get(f"{url_prefix}/products/GZ-BOWL-020/can-reserve")
    assert resp.json()["data"] == {"productId": "GZ-BOWL-020", "canReserve": True, "reason": None}

    resp = await ac_client.get(f"{url_prefix}/products/GZ-NOPE/status")
    assert resp.status_code == 404
