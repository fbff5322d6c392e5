from models.admin_alert import AdminAlert
from models.ip_blacklist import IPBlacklistEntry
from models.login_attempt import LoginAttempt
from models.security_event import SecurityEvent


def test_register_and_me(client):
    resp = client.post("/auth/register", json={
        "email": "New.Donor@Example.org",
        "password": "longenough1",
        "full_name": "New Donor",
        "blood_group": "o-",
    })
    assert resp.status_code == 201

    resp = client.post("/auth/login", json={"email": "new.donor@example.org", "password": "longenough1"})
    assert resp.status_code == 200
    assert resp.get_json()["user"]["blood_group"] == "O-"
    assert resp.get_json()["user"]["roles"] == ["DONOR"]

    me = client.get("/auth/me")
    assert me.status_code == 200
    assert me.get_json()["email"] == "new.donor@example.org"


def test_register_validation(client, make_user):
    make_user("taken@example.org")

    assert client.post("/auth/register", json={"email": "nope", "password": "longenough1"}).status_code == 400
    assert client.post("/auth/register", json={"email": "a@b.org", "password": "short"}).status_code == 400
    assert client.post(
        "/auth/register", json={"email": "a@b.org", "password": "longenough1", "blood_group": "Z+"}
    ).status_code == 400
    assert client.post(
        "/auth/register", json={"email": "taken@example.org", "password": "longenough1"}
    ).status_code == 409


def test_login_requires_fields(client):
    assert client.post("/auth/login", json={"email": "a@b.org"}).status_code == 400


def test_failed_logins_count_down_then_lock(make_user, login):
    make_user("donor@example.org")

    for remaining in (4, 3, 2, 1):
        resp = login("donor@example.org", "wrong-password")
        assert resp.status_code == 401
        assert resp.get_json()["attempts_remaining"] == remaining

    assert resp.get_json()["captcha_required"] is True

    resp = login("donor@example.org", "wrong-password")
    assert resp.status_code == 423
    assert resp.get_json()["lockout_until"] is not None

    # correct password is refused while locked
    resp = login("donor@example.org")
    assert resp.status_code == 423

    alerts = AdminAlert.query.filter_by(alert_type="account_locked").all()
    assert len(alerts) == 1
    assert alerts[0].severity == "high"


def test_lock_expires(make_user, login, clock):
    make_user("donor@example.org")
    for _ in range(5):
        login("donor@example.org", "wrong-password")

    clock.advance(minutes=61)
    assert login("donor@example.org").status_code == 200


def test_unknown_email_is_tracked_like_a_real_one(login):
    for _ in range(4):
        assert login("ghost@example.org", "whatever").status_code == 401
    assert login("ghost@example.org", "whatever").status_code == 423


def test_attempts_are_recorded(make_user, login):
    make_user("donor@example.org")
    login("donor@example.org", "wrong-password", ip="203.0.113.9")
    login("donor@example.org", ip="203.0.113.9")

    rows = LoginAttempt.query.order_by(LoginAttempt.id).all()
    assert [r.success for r in rows] == [False, True]
    assert rows[0].failure_reason == "invalid_credentials"
    assert rows[0].ip == "203.0.113.9"
    assert rows[1].user_id is not None
    assert SecurityEvent.query.filter_by(event_type="LOGIN_SUCCESS").count() == 1


def test_admin_login_rejects_non_admins(make_user, login):
    make_user("donor@example.org")
    resp = login("donor@example.org", path="/auth/admin/login")
    assert resp.status_code == 401


def test_admin_login_locks_after_three_failures(make_user, login):
    make_user("admin@example.org", roles=("ADMIN",))

    assert login("admin@example.org", "bad", path="/auth/admin/login").get_json()["attempts_remaining"] == 2
    assert login("admin@example.org", "bad", path="/auth/admin/login").status_code == 401
    assert login("admin@example.org", "bad", path="/auth/admin/login").status_code == 423


def test_admin_login_success(make_user, login):
    make_user("admin@example.org", roles=("ADMIN",))
    resp = login("admin@example.org", path="/auth/admin/login")
    assert resp.status_code == 200
    assert "ADMIN" in resp.get_json()["user"]["roles"]


def test_abusive_ip_gets_blacklisted_then_blocked(login):
    ip = "9.9.9.9"
    statuses = [login("victim@example.org", "guess", ip=ip).status_code for _ in range(10)]
    assert statuses == [401] * 4 + [423] * 6

    entry = IPBlacklistEntry.query.filter_by(ip=ip, is_active=True).one()
    assert entry.severity == "medium"
    assert AdminAlert.query.filter_by(alert_type="ip_blacklisted").count() == 1

    resp = login("someone@example.org", "guess", ip=ip)
    assert resp.status_code == 403
    assert resp.get_json()["reason"] == "brute_force"


def test_ip_spraying_many_emails_gets_blacklisted(login):
    ip = "9.9.9.9"
    statuses = [login(f"u{i}@example.org", "guess", ip=ip).status_code for i in range(10)]
    assert statuses == [401] * 10

    assert IPBlacklistEntry.query.filter_by(ip=ip, is_active=True).count() == 1
    assert AdminAlert.query.filter_by(alert_type="ip_blacklisted").count() == 1
    assert AdminAlert.query.filter_by(alert_type="account_locked").count() == 0

    assert login("u10@example.org", "guess", ip=ip).status_code == 403


def test_blacklist_outage_fails_closed(make_user, login, break_store):
    make_user("donor@example.org")
    break_store("find_active_blacklist")

    resp = login("donor@example.org")
    assert resp.status_code == 503
    assert resp.get_json()["retryable"] is True


def test_count_outage_fails_closed(make_user, login, break_store):
    make_user("donor@example.org")
    break_store("count_failed_attempts")

    resp = login("donor@example.org")
    assert resp.status_code == 503


def test_alert_outage_does_not_block_login(make_user, login, break_store):
    make_user("donor@example.org")
    break_store("insert_admin_alert")

    for _ in range(4):
        login("donor@example.org", "wrong-password")
    assert login("donor@example.org", "wrong-password").status_code == 423
    assert AdminAlert.query.count() == 0


def test_login_attempts_endpoint(make_user, login, client):
    make_user("donor@example.org")
    login("donor@example.org", "wrong-password")
    login("donor@example.org", "wrong-password")

    resp = client.get(
        "/auth/login-attempts",
        query_string={"email": "donor@example.org"},
        headers={"X-Forwarded-For": "203.0.113.5"},
    )
    body = resp.get_json()
    assert resp.status_code == 200
    assert body["failed_attempts"] == 2
    assert body["ip_failed_attempts"] == 2
    assert body["is_locked"] is False

    assert client.get("/auth/login-attempts").status_code == 400


def test_logout_revokes_session(make_user, login, client):
    make_user("donor@example.org")
    login("donor@example.org")

    assert client.post("/auth/logout").status_code == 200
    assert client.get("/auth/me").status_code == 401
