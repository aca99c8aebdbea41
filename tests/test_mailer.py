import asyncio
import json

import httpx

from esummit import mailer as mailer_mod
from esummit.mailer import Mailer, Recipient, from_address, unique_recipients
from esummit.model.db import PAY_PAID, ROLE_ADMIN
from esummit.server import app

from conftest import book_solo, signup, sql


class Outbox:
    """Fake Resend endpoint that records every message it accepts."""

    def __init__(self, fail_for=()):
        self.sent = []
        self.fail_for = set(fail_for)

    def __call__(self, request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        if body["to"][0] in self.fail_for:
            return httpx.Response(422, json={"message": "Invalid `to` field"})
        self.sent.append((request.headers["authorization"], body))
        return httpx.Response(200, json={"id": f"email-{len(self.sent)}"})


def _mailer(outbox, **kw):
    http = httpx.AsyncClient(transport=httpx.MockTransport(outbox))
    return Mailer(http, api_key="re_key", api_url="https://resend.test/emails", **kw)


def test_from_address_fallbacks():
    assert from_address("") == mailer_mod.DEFAULT_FROM
    assert from_address("E-Summit <hi@esummit26-iiitdm.vercel.app>") == mailer_mod.DEFAULT_FROM
    assert from_address("E-Summit <hi@ecell.in>") == "E-Summit <hi@ecell.in>"


def test_unique_recipients():
    out = unique_recipients([
        ("a@x.com", "Ann"), ("b@x.com", None), ("a@x.com", "Again"), ("", "Nobody"),
    ])
    assert [(r.email, r.name) for r in out] == [("a@x.com", "Ann"), ("b@x.com", "Attendee")]


def test_payment_approval_message():
    outbox = Outbox()
    res = asyncio.run(_mailer(outbox).send_payment_approval(
        "guest@example.com", "Guest", "duo", 998))
    assert res.success and res.id == "email-1"

    auth, body = outbox.sent[0]
    assert auth == "Bearer re_key"
    assert body["from"] == mailer_mod.DEFAULT_FROM
    assert body["to"] == ["guest@example.com"]
    assert body["subject"] == "Payment Approved - E-Summit '26"
    assert "Guest" in body["html"]
    assert "998" in body["html"]


def test_rejected_by_provider():
    res = asyncio.run(_mailer(Outbox(fail_for={"bad@example.com"})).send_payment_rejection(
        "bad@example.com", "Bad", "solo", 499))
    assert not res.success
    assert res.error == "Invalid `to` field"


def test_transport_error():
    def boom(request):
        raise httpx.ConnectError("connection refused")

    http = httpx.AsyncClient(transport=httpx.MockTransport(boom))
    res = asyncio.run(Mailer(http, api_key="k").send("a@x.com", "hi", "<p>hi</p>"))
    assert not res.success
    assert "connection refused" in res.error


def test_reminders_in_batches(monkeypatch):
    monkeypatch.setattr(mailer_mod, "BATCH_PAUSE_SECONDS", 0)
    recipients = [Recipient(f"user{i}@example.com", f"User {i}") for i in range(23)]
    outbox = Outbox(fail_for={"user4@example.com", "user17@example.com"})

    out = asyncio.run(_mailer(outbox).send_reminders(recipients, "Gates open", "See you\nat 9"))
    assert (out.total, out.sent, out.failed) == (23, 21, 2)
    assert out.errors == [
        "user4@example.com: Invalid `to` field",
        "user17@example.com: Invalid `to` field",
    ]
    _, body = outbox.sent[0]
    assert body["subject"] == "Gates open"
    assert "at 9" in body["html"]


def test_approval_route(client, monkeypatch):
    outbox = Outbox()
    monkeypatch.setattr(app.state, "mailer", _mailer(outbox))
    signup(client, "admin@example.com", role=ROLE_ADMIN)

    r = client.post("/api/email/send-approval", json={"to": "guest@example.com"})
    assert r.status_code == 400
    assert r.json()["error"] == "Missing required fields"

    r = client.post("/api/email/send-approval", json={
        "to": "guest@example.com", "userName": "Guest", "ticketType": "solo", "amount": 499,
    })
    assert r.json() == {"success": True}
    assert len(outbox.sent) == 1


def test_rejection_route_reports_failure(client, monkeypatch):
    monkeypatch.setattr(app.state, "mailer", _mailer(Outbox(fail_for={"guest@example.com"})))
    signup(client, "admin@example.com", role=ROLE_ADMIN)
    r = client.post("/api/email/send-rejection", json={
        "to": "guest@example.com", "userName": "Guest", "ticketType": "solo", "amount": 499,
    })
    assert r.status_code == 500
    assert r.json() == {"success": False, "error": "Invalid `to` field"}


def test_mail_routes_need_admin(client):
    signup(client, "guest@example.com")
    r = client.post("/api/email/send-approval", json={})
    assert r.status_code == 403


def test_reminder_route(client, monkeypatch):
    monkeypatch.setattr(mailer_mod, "BATCH_PAUSE_SECONDS", 0)
    outbox = Outbox()
    monkeypatch.setattr(app.state, "mailer", _mailer(outbox))

    signup(client, "one@example.com", name="One")
    book_solo(client, utr="UTR-1")
    book_solo(client, utr="UTR-2")
    signup(client, "two@example.com", name="Two")
    book_solo(client, utr="UTR-3")
    signup(client, "admin@example.com", role=ROLE_ADMIN)

    r = client.post("/api/admin/send-reminder", json={"subject": "", "message": "x"})
    assert r.json()["error"] == "Subject and message are required"

    r = client.post("/api/admin/send-reminder", json={"subject": "Hi", "message": "Soon"})
    assert r.status_code == 400
    assert r.json()["error"] == "No ticket holders found"

    r = client.post("/api/admin/send-reminder", json={
        "subject": "Hi", "message": "Soon", "testMode": True, "testEmail": "me@example.com",
    })
    assert r.json() == {"success": True, "message": "Test email sent", "emailId": "email-1"}
    assert outbox.sent[-1][1]["subject"] == "[TEST] Hi"

    sql("UPDATE tickets SET status = ?", (PAY_PAID,))
    r = client.post("/api/admin/send-reminder", json={"subject": "Hi", "message": "Soon"})
    assert r.json() == {
        "success": True, "totalRecipients": 2, "sent": 2, "failed": 0, "errors": [],
    }
    assert sorted(b["to"][0] for _, b in outbox.sent[1:]) == [
        "one@example.com", "two@example.com",
    ]
