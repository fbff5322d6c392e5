import pytest

from models.account_lockout import AccountLockout
from models.admin_alert import AdminAlert
from models.security_event import SecurityEvent
from security.alerts import rate_limit_exceeded_alert, account_locked_alert


@pytest.fixture
def admin(make_user, login):
    user = make_user("admin@example.org", roles=("ADMIN",))
    assert login("admin@example.org", ip="192.0.2.1").status_code == 200
    return user


def test_console_requires_admin_role(client, make_user, login):
    assert client.get("/admin/security/alerts").status_code == 401

    make_user("donor@example.org")
    login("donor@example.org")
    assert client.get("/admin/security/alerts").status_code == 403


def test_super_admin_passes(client, make_user, login):
    make_user("root@example.org", roles=("SUPER_ADMIN",))
    login("root@example.org")
    assert client.get("/admin/security/blacklist").status_code == 200


def test_list_and_filter_alerts(client, admin, security, clock):
    security.alerts.dispatch([
        rate_limit_exceeded_alert("1.1.1.1", "/auth/login", 21, clock()),
        account_locked_alert("x@y.org", None, "1.1.1.1", 5, 300, "high", clock()),
    ])

    body = client.get("/admin/security/alerts").get_json()
    assert body["total"] == 2
    assert {a["alert_type"] for a in body["alerts"]} == {"rate_limit_exceeded", "account_locked"}

    body = client.get("/admin/security/alerts", query_string={"severity": "high"}).get_json()
    assert body["total"] == 1
    assert body["alerts"][0]["details"]["lockout_duration"] == 300

    assert client.get("/admin/security/alerts", query_string={"severity": "bogus"}).status_code == 400


def test_mark_alert_read(client, admin, security, clock):
    security.alerts.dispatch([rate_limit_exceeded_alert("1.1.1.1", "/auth/login", 21, clock())])
    alert_id = AdminAlert.query.one().id

    assert client.post(f"/admin/security/alerts/{alert_id}/read").status_code == 200
    assert client.post("/admin/security/alerts/9999/read").status_code == 404

    stats = client.get("/admin/security/alerts/stats").get_json()
    assert stats["total"] == 1
    assert stats["unread"] == 0
    assert stats["by_type"] == {"rate_limit_exceeded": 1}

    unread = client.get("/admin/security/alerts", query_string={"unread_only": "true"}).get_json()
    assert unread["total"] == 0


def test_blacklist_crud(client, admin):
    resp = client.post("/admin/security/blacklist", json={
        "ip": "6.6.6.6", "reason": "malicious", "severity": "critical", "expires_hours": 48,
    })
    assert resp.status_code == 201
    assert resp.get_json()["expires_at"] is not None

    again = client.post("/admin/security/blacklist", json={"ip": "6.6.6.6", "severity": "high"})
    assert again.status_code == 409

    listing = client.get("/admin/security/blacklist").get_json()
    assert [e["ip"] for e in listing["blacklisted_ips"]] == ["6.6.6.6"]
    assert listing["statistics"]["by_severity"] == {"critical": 1}

    assert client.delete("/admin/security/blacklist/6.6.6.6").status_code == 200
    assert client.delete("/admin/security/blacklist/6.6.6.6").status_code == 404
    assert SecurityEvent.query.filter_by(event_type="ADMIN_BLACKLIST_ADD").count() == 1


@pytest.mark.parametrize(
    "payload",
    [
        {"severity": "high"},
        {"ip": "6.6.6.6"},
        {"ip": "6.6.6.6", "severity": "high", "reason": "dislike"},
        {"ip": "6.6.6.6", "severity": "urgent"},
        {"ip": "6.6.6.6", "severity": "high", "expires_hours": -1},
    ],
)
def test_blacklist_add_validation(client, admin, payload):
    assert client.post("/admin/security/blacklist", json=payload).status_code == 400


def test_blacklisted_ip_cannot_log_in(client, admin, make_user, login):
    client.post("/admin/security/blacklist", json={"ip": "6.6.6.6", "severity": "high"})
    make_user("donor@example.org")
    assert login("donor@example.org", ip="6.6.6.6").status_code == 403


def test_ip_analysis(client, admin, login):
    for _ in range(6):
        login("victim@example.org", "guess", ip="7.7.7.7")

    body = client.get("/admin/security/ips/7.7.7.7/analysis").get_json()
    assert body["failed_attempts"] >= 6
    assert body["risk_score"] >= 30
    assert body["last_failure_at"] is not None


def test_unlock_account(client, admin, make_user, login):
    make_user("donor@example.org")
    for _ in range(5):
        login("donor@example.org", "wrong-password")
    assert AccountLockout.query.filter_by(is_active=True).count() == 1

    resp = client.post("/admin/security/lockouts/unlock", json={"email": "donor@example.org"})
    assert resp.status_code == 200
    assert client.post("/admin/security/lockouts/unlock", json={"email": "donor@example.org"}).status_code == 404
    assert client.post("/admin/security/lockouts/unlock", json={}).status_code == 400


def test_events_feed(client, admin):
    events = client.get("/admin/security/events").get_json()
    assert any(e["event_type"] == "LOGIN_SUCCESS" for e in events)

    only = client.get("/admin/security/events", query_string={"event_type": "LOGIN_SUCCESS"}).get_json()
    assert {e["event_type"] for e in only} == {"LOGIN_SUCCESS"}


def test_alert_preferences_default_then_saved(client, admin, clock):
    body = client.get("/admin/security/alert-preferences").get_json()
    assert body["email_alerts"] is True
    assert body["alert_types"] is None
    assert body["severity_threshold"] == "high"
    assert body["updated_at"] is None

    resp = client.post(
        "/admin/security/alert-preferences",
        json={"alert_types": ["ip_blacklisted", "account_locked"], "severity_threshold": "medium"},
    )
    assert resp.status_code == 200

    body = client.get("/admin/security/alert-preferences").get_json()
    assert body["user_id"] == admin.id
    assert body["alert_types"] == ["account_locked", "ip_blacklisted"]
    assert body["severity_threshold"] == "medium"
    assert body["email_alerts"] is True
    assert body["updated_at"] == clock().isoformat()

    client.post("/admin/security/alert-preferences", json={"email_alerts": False})
    body = client.get("/admin/security/alert-preferences").get_json()
    assert body["email_alerts"] is False
    assert body["severity_threshold"] == "medium"


@pytest.mark.parametrize("payload", [
    {},
    {"email_alerts": "yes"},
    {"alert_types": ["not_a_type"]},
    {"alert_types": "ip_blacklisted"},
    {"severity_threshold": "urgent"},
])
def test_alert_preferences_validation(client, admin, payload):
    assert client.post("/admin/security/alert-preferences", json=payload).status_code == 400


def test_alert_preferences_require_admin(client, make_user, login):
    make_user("donor@example.org")
    login("donor@example.org")
    assert client.get("/admin/security/alert-preferences").status_code == 403
    assert client.post("/admin/security/alert-preferences", json={"email_alerts": False}).status_code == 403
