from esummit.model.db import ROLE_ADMIN

from conftest import book_solo, signup


def test_unified_view(client):
    signup(client, "guest@example.com", name="Guest")
    book_solo(client)
    client.post("/api/merch/orders",
                json={"item": "tshirt1", "size": "M", "bundleType": "solo", "utr": "U2"})
    client.post("/api/accommodation",
                json={"gender": "Male", "selectedDays": ["2026-01-30"], "utr": "U3"})

    signup(client, "admin@example.com", role=ROLE_ADMIN)
    r = client.get("/api/admin/unified-view")
    assert r.status_code == 200
    assert r.headers["cache-control"] == "public, s-maxage=300, stale-while-revalidate=600"

    data = r.json()["data"]
    assert [d["category"] for d in data] == ["Accommodation", "Merchandise", "Ticket"]
    accom, order, ticket = data
    assert ticket["id"].startswith("ticket-")
    assert ticket["type"] == "SOLO"
    assert ticket["status"] == "Pending Verification"
    assert ticket["fulfillment_status"] == "Not Issued"
    assert ticket["user_name"] == "Guest"
    assert order["type"] == "SOLO"
    assert order["amount"] == 349
    assert accom["type"] == "MALE - 2026-01-30 to 2026-01-30"
    assert accom["fulfillment_status"] == "Pending"
    assert accom["phone_number"] == "+919876543210"


def test_unified_view_is_admin_only(client):
    signup(client, "guest@example.com")
    assert client.get("/api/admin/unified-view").status_code == 403
