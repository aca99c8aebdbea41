from esummit.model.db import ROLE_ADMIN, ROLE_SUPER_ADMIN
from esummit.model.tickets import group_by_booking

from conftest import book_solo, login, signup

USER_PAGES = (
    "/dashboard", "/dashboard/pass", "/dashboard/merch",
    "/dashboard/accommodation", "/dashboard/request-access",
)
ADMIN_PAGES = (
    "/admin", "/admin/verify", "/admin/bands", "/admin/merch",
    "/admin/accommodation", "/admin/users", "/admin/unified",
    "/admin/reminder", "/admin/scan",
)


def _admin(client, email="boss@example.com", role=ROLE_ADMIN):
    signup(client, email, name="Boss", role=role)
    # drop the session snapshot taken before the role change
    client.post("/api/profile/clear-cache")


def test_user_pages_render(client):
    signup(client, "guest@example.com", name="Guest")
    for path in USER_PAGES:
        r = client.get(path, follow_redirects=False)
        assert r.status_code == 200, path
        assert 'href="/dashboard/merch"' in r.text


def test_user_pages_show_records(client):
    signup(client, "guest@example.com", name="Guest")
    book_solo(client)
    client.post("/api/merch/orders", json={
        "item": "tshirt1", "size": "M", "bundleType": "solo", "utr": "UTR-M1",
    })
    client.post("/api/accommodation", json={
        "gender": "Female", "selectedDays": ["2026-01-30"], "utr": "UTR-A1",
    })

    body = client.get("/dashboard").text
    assert "SOLO" in body
    assert "pending verification" in body
    assert "T-Shirt Design 1" in body
    assert "2026-01-30" in body
    assert "+91 98765 43210" in body

    assert "T-Shirt Design 1" in client.get("/dashboard/merch").text
    body = client.get("/dashboard/accommodation").text
    assert "Your request" in body
    assert 'name="selectedDays"' not in body


def test_pass_page_offers_every_pass(client):
    signup(client, "guest@example.com")
    body = client.get("/dashboard/pass").text
    for key in ("solo", "duo", "quad", "bumper"):
        assert f'value="{key}"' in body
    assert 'data-api="/api/tickets/book"' in body


def test_request_access_page(client):
    signup(client, "student@iiitdm.ac.in")
    assert 'data-api="/api/admin/verify-password"' in client.get(
        "/dashboard/request-access").text

    signup(client, "guest@example.com")
    body = client.get("/dashboard/request-access").text
    assert "verify-password" not in body
    assert "institute e-mail" in body


def test_admin_pages_render(client):
    _admin(client)
    for path in ADMIN_PAGES:
        r = client.get(path, follow_redirects=False)
        assert r.status_code == 200, path
        assert 'href="/admin/bands"' in r.text
        assert 'href="/admin/settings"' not in r.text


def test_admin_pages_need_admin(client):
    signup(client, "guest@example.com")
    for path in ADMIN_PAGES:
        r = client.get(path, follow_redirects=False)
        assert r.headers["location"] == "/dashboard", path


def test_settings_page_is_for_super_admins(client):
    _admin(client)
    r = client.get("/admin/settings", follow_redirects=False)
    assert r.status_code == 303
    assert r.headers["location"] == "/admin"

    _admin(client, "root@example.com", role=ROLE_SUPER_ADMIN)
    r = client.get("/admin/settings", follow_redirects=False)
    assert r.status_code == 200
    assert 'data-api="/api/admin/passwords"' in r.text
    assert 'href="/admin/settings"' in client.get("/admin").text


def test_verify_page_lists_pending_booking(client):
    signup(client, "guest@example.com", name="Asha Rao")
    ticket = book_solo(client, utr="UTR998877")

    _admin(client)
    body = client.get("/admin/verify").text
    assert "Asha Rao" in body
    assert "UTR998877" in body
    assert f'/api/admin/tickets/{ticket["id"]}/verify' in body
    assert "/api/email/send-approval" in body

    client.post(f"/api/admin/tickets/{ticket['id']}/verify", json={"action": "approve"})
    assert "Nothing waiting for verification." in client.get("/admin/verify").text


def test_bands_page_formats_phone(client):
    signup(client, "guest@example.com", name="Asha Rao", phone="9876543210")
    ticket = book_solo(client)

    _admin(client)
    client.post(f"/api/admin/tickets/{ticket['id']}/verify", json={"action": "approve"})
    body = client.get("/admin/bands").text
    assert "Asha Rao" in body
    assert "+91 98765 43210" in body
    assert "Issue band" in body

    client.post("/api/admin/issue-band", json={"ticketId": ticket["id"]})
    assert "Issue band" not in client.get("/admin/bands").text


def test_admin_filters(client):
    signup(client, "guest@example.com", name="Guest")
    client.post("/api/merch/orders", json={
        "item": "tshirt1", "size": "M", "bundleType": "solo", "utr": "UTR-M1",
    })

    _admin(client)
    assert "T-Shirt Design 1" in client.get("/admin/merch").text
    assert "T-Shirt Design 1" not in client.get("/admin/merch?status=delivered").text
    assert "Guest" in client.get("/admin/unified?category=Merchandise").text
    assert "No records." in client.get("/admin/unified?category=Ticket").text


def test_group_by_booking():
    def t(tid, group=None, utr=None, amount=180, issued=None):
        return {"id": tid, "booking_group_id": group, "utr": utr,
                "screenshot_path": None, "amount": amount,
                "band_issued_at": issued}

    groups = group_by_booking([
        t("a", group="g1"),
        t("b", group="g1", utr="UTR1", issued="2026-01-30T10:00:00+00:00"),
        t("c", amount=200, issued="2026-01-30T10:00:00+00:00"),
    ])
    assert [g["key"] for g in groups] == ["g1", "c"]

    pair, solo = groups
    assert pair["lead"]["id"] == "b"
    assert [m["id"] for m in pair["members"]] == ["a", "b"]
    assert pair["amount"] == 360
    assert pair["issued"] is False
    assert solo["booking_group_id"] is None
    assert solo["issued"] is True
