import asyncio

from esummit.model import adminpass
from esummit.model.adminpass import check_password, first_match, hash_password
from esummit.model.db import ROLE_ADMIN, ROLE_SUPER_ADMIN

from conftest import login, signup, sql


def _super(client):
    signup(client, "root@iiitdm.ac.in", name="Root", role=ROLE_SUPER_ADMIN)


def _create(client, password="volunteer26", label="Volunteers", **extra):
    r = client.post("/api/admin/passwords",
                    json={"password": password, "label": label, **extra})
    assert r.status_code == 200, r.text
    return r.json()


def test_hashing():
    h = hash_password("volunteer26")
    assert h != "volunteer26"
    assert check_password("volunteer26", h)
    assert not check_password("volunteer27", h)
    assert not check_password("volunteer26", "not-a-bcrypt-hash")


def test_create_and_list(client):
    _super(client)
    body = _create(client, maxUses=3)
    assert body["success"] is True
    assert body["plainPassword"] == "volunteer26"
    assert body["password"]["max_uses"] == 3
    assert body["password"]["current_uses"] == 0
    assert "password_hash" not in body["password"]

    items = client.get("/api/admin/passwords").json()["passwords"]
    assert [p["label"] for p in items] == ["Volunteers"]
    stored = sql("SELECT password_hash FROM admin_passwords")[0][0]
    assert stored.startswith("$2")


def test_create_validation(client):
    _super(client)
    r = client.post("/api/admin/passwords", json={"password": "short", "label": "x"})
    assert r.status_code == 400
    assert r.json()["error"] == "Password must be at least 6 characters"
    r = client.post("/api/admin/passwords", json={"password": "longenough", "label": " "})
    assert r.json()["error"] == "Label is required"


def test_super_admin_only(client):
    signup(client, "admin@example.com", role=ROLE_ADMIN)
    assert client.get("/api/admin/passwords").status_code == 403
    r = client.post("/api/admin/passwords", json={"password": "abcdef", "label": "x"})
    assert r.status_code == 403
    assert r.json()["error"] == "Super admin access required"
    assert client.get("/api/admin/access-logs").status_code == 403


def test_update_and_delete(client):
    _super(client)
    pid = _create(client)["password"]["id"]

    r = client.patch("/api/admin/passwords", json={"id": pid})
    assert r.status_code == 400
    assert r.json()["error"] == "No updates provided"

    r = client.patch("/api/admin/passwords", json={"id": pid, "isActive": False, "maxUses": 5})
    assert r.json()["password"]["is_active"] is False
    assert r.json()["password"]["max_uses"] == 5

    r = client.patch("/api/admin/passwords", json={"id": "nope", "isActive": True})
    assert r.status_code == 404

    assert client.delete("/api/admin/passwords", params={"id": pid}).json() == {"success": True}
    assert client.delete("/api/admin/passwords", params={"id": pid}).status_code == 404
    assert client.delete("/api/admin/passwords").status_code == 400


def test_internal_user_becomes_admin(client):
    _super(client)
    _create(client, maxUses=1)

    signup(client, "cs22b001@iiitdm.ac.in", name="Student")
    r = client.post("/api/admin/verify-password", json={"password": "wrong-one"})
    assert r.status_code == 400
    assert r.json()["error"].startswith("Invalid password")

    r = client.post("/api/admin/verify-password", json={"password": "volunteer26"})
    assert r.status_code == 200
    assert r.json()["success"] is True
    assert client.get("/api/profile").json()["profile"]["role"] == "admin"
    # the session profile was dropped, so the admin pages open right away
    assert client.get("/admin", follow_redirects=False).status_code == 200

    assert sql("SELECT current_uses FROM admin_passwords")[0][0] == 1

    r = client.post("/api/admin/verify-password", json={"password": "volunteer26"})
    assert r.status_code == 400
    assert r.json()["alreadyAdmin"] is True

    # single-use password is spent now
    signup(client, "cs22b002@iiitdm.ac.in")
    r = client.post("/api/admin/verify-password", json={"password": "volunteer26"})
    assert r.status_code == 400
    assert r.json()["error"].startswith("No admin passwords are currently active")

    login(client, "root@iiitdm.ac.in")
    logs = client.get("/api/admin/access-logs").json()["logs"]
    assert len(logs) == 1
    assert logs[0]["user_email"] == "cs22b001@iiitdm.ac.in"
    assert logs[0]["password_label"] == "Volunteers"
    assert logs[0]["user"] == {"full_name": "Student", "role": "admin"}


def test_expired_and_inactive_passwords_are_skipped(client):
    _super(client)
    _create(client, password="expired01", label="Old", expiresAt="2020-01-01T00:00:00Z")
    pid = _create(client, password="disabled1", label="Off")["password"]["id"]
    client.patch("/api/admin/passwords", json={"id": pid, "isActive": False})

    signup(client, "cs22b001@iiitdm.ac.in")
    for pw in ("expired01", "disabled1"):
        r = client.post("/api/admin/verify-password", json={"password": pw})
        assert r.status_code == 400


def test_external_user_cannot_redeem(client):
    _super(client)
    _create(client)
    signup(client, "guest@example.com")
    r = client.post("/api/admin/verify-password", json={"password": "volunteer26"})
    assert r.status_code == 403
    assert r.json()["notInternal"] is True


def test_password_required(client):
    signup(client, "cs22b001@iiitdm.ac.in")
    r = client.post("/api/admin/verify-password", json={})
    assert r.status_code == 400
    assert r.json()["error"] == "Password is required"


def test_bcrypt_runs_off_the_event_loop(client, monkeypatch):
    where = []

    def _where():
        try:
            asyncio.get_running_loop()
            where.append("loop")
        except RuntimeError:
            where.append("worker")

    def hashing(password):
        _where()
        return hash_password(password)

    def checking(password, password_hash):
        _where()
        return check_password(password, password_hash)

    monkeypatch.setattr(adminpass, "hash_password", hashing)
    monkeypatch.setattr(adminpass, "check_password", checking)

    _super(client)
    _create(client, password="first-pass", label="One")
    _create(client, password="second-pass", label="Two")
    signup(client, "student@iiitdm.ac.in", name="Student")
    r = client.post("/api/admin/verify-password", json={"password": "second-pass"})
    assert r.json()["label"] == "Two"
    assert len(where) >= 3
    assert set(where) == {"worker"}


def test_first_match():
    hashes = [hash_password("alpha-01"), hash_password("beta-02")]
    assert first_match("beta-02", hashes) == 1
    assert first_match("gamma-03", hashes) is None
    assert first_match("alpha-01", []) is None
