from esummit.model.db import ROLE_ADMIN

from conftest import signup


def _order(client, **overrides):
    body = {
        "item": "tshirt2", "size": "L", "bundleType": "duo", "utr": "UTR-M1",
    }
    body.update(overrides)
    return client.post("/api/merch/orders", json=body)


def test_create_order_uses_profile_details(client):
    signup(client, "guest@example.com", name="Guest", phone="9876543210")
    r = _order(client)
    assert r.status_code == 200, r.text
    order = r.json()["order"]
    assert order["name"] == "Guest"
    assert order["email"] == "guest@example.com"
    assert order["phone_number"] == "+919876543210"
    assert order["item_name"] == "T-Shirt Design 2"
    assert order["quantity"] == 2
    assert order["amount"] == 679
    assert order["status"] == "pending"
    assert order["payment_status"] == "pending_verification"

    mine = client.get("/api/merch/orders").json()["orders"]
    assert [o["id"] for o in mine] == [order["id"]]


def test_bundle_from_quantity(client):
    signup(client, "guest@example.com")
    order = _order(client, bundleType=None, quantity=3).json()["order"]
    assert order["bundle_type"] == "triple"
    assert order["amount"] == 999


def test_create_order_validation(client):
    signup(client, "guest@example.com")
    assert _order(client, utr=None).json()["error"] == (
        "Please provide EITHER a Transaction UTR OR a Payment Screenshot"
    )
    assert _order(client, size="XXXL").json()["error"] == "Please select a size"
    assert _order(client, item="hoodie").json()["error"] == "Please select an item"
    assert _order(client, bundleType="dozen").json()["error"] == "Please select a bundle"
    assert _order(client, phoneNumber="123").status_code == 400
    r = _order(client, bundleType=None, quantity="two")
    assert r.status_code == 400
    assert r.json()["error"] == "Please select a bundle"
    assert _order(client, bundleType=None, quantity=7).json()["error"] == "Please select a bundle"


def test_admin_workflow(client):
    signup(client, "guest@example.com")
    first = _order(client).json()["order"]["id"]
    second = _order(client, bundleType="solo").json()["order"]["id"]

    signup(client, "admin@example.com", role=ROLE_ADMIN)
    r = client.post(f"/api/admin/merch/{first}/verify-payment")
    assert r.json()["order"]["payment_status"] == "paid"

    r = client.post(f"/api/admin/merch/{first}/deliver")
    assert r.status_code == 400

    r = client.post(f"/api/admin/merch/{first}/confirm", json={"notes": "ok"})
    assert r.json()["order"]["status"] == "confirmed"
    assert r.json()["order"]["admin_notes"] == "ok"
    r = client.post(f"/api/admin/merch/{first}/deliver")
    assert r.json()["order"]["status"] == "delivered"

    r = client.post(f"/api/admin/merch/{second}/reject", json={})
    assert r.status_code == 400
    assert r.json()["error"] == "Please add a note explaining the rejection"
    r = client.post(f"/api/admin/merch/{second}/reject", json={"notes": "UTR not found"})
    assert r.json()["order"]["status"] == "rejected"

    assert client.post(f"/api/admin/merch/{second}/teleport").status_code == 404
    assert client.post("/api/admin/merch/missing/confirm").status_code == 404

    delivered = client.get("/api/admin/merch", params={"status": "delivered"}).json()
    assert [o["id"] for o in delivered["orders"]] == [first]
    unpaid = client.get("/api/admin/merch",
                        params={"payment_status": "pending_verification"}).json()
    assert [o["id"] for o in unpaid["orders"]] == [second]
    assert len(client.get("/api/admin/merch", params={"status": "all"}).json()["orders"]) == 2


def test_merch_admin_is_guarded(client):
    signup(client, "guest@example.com")
    assert client.get("/api/admin/merch").status_code == 403
