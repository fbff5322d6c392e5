from datetime import timedelta

from models.account_lockout import AccountLockout
from models.ip_blacklist import IPBlacklistEntry

EMAIL = "donor@example.org"
IP = "198.51.100.7"


def fail(guard, times, email=EMAIL, ip=IP, user_id=None):
    for _ in range(times):
        guard.record_login_attempt(ip, False, email=email, user_id=user_id, failure_reason="invalid_credentials")


def test_below_threshold_is_allowed_with_captcha(security):
    guard = security.guard
    fail(guard, 4)

    decision = guard.check_login_allowed(email=EMAIL, ip=IP)

    assert decision.allowed is True
    assert decision.captcha_required is True
    assert decision.attempts_remaining == 1
    assert decision.alerts == []


def test_captcha_not_required_before_two_failures(security):
    fail(security.guard, 1)
    decision = security.guard.check_login_allowed(email=EMAIL, ip=IP)
    assert decision.allowed is True
    assert decision.captcha_required is False
    assert decision.attempts_remaining == 4


def test_fifth_failure_creates_level_one_email_lockout(security, clock):
    guard = security.guard
    fail(guard, 5)

    decision = guard.check_login_allowed(email=EMAIL, ip=IP)

    assert decision.allowed is False
    assert decision.captcha_required is True
    assert decision.lockout_until == clock() + timedelta(minutes=5)

    lockout = AccountLockout.query.one()
    assert lockout.scope == "email"
    assert lockout.email == EMAIL
    assert lockout.level == 1
    assert lockout.is_active is True

    assert [(a.alert_type, a.severity) for a in decision.alerts] == [
        ("account_locked", "high"),
        ("multiple_failed_attempts", "medium"),
    ]
    assert decision.alerts[1].details["attempt_count"] == 5
    assert decision.alerts[1].details["email"] == EMAIL


def test_active_lockout_denies_without_new_lockout(security):
    guard = security.guard
    fail(guard, 5)
    guard.check_login_allowed(email=EMAIL, ip=IP)

    decision = guard.check_login_allowed(email=EMAIL, ip=IP)

    assert decision.allowed is False
    assert decision.alerts == []
    assert AccountLockout.query.count() == 1


def test_known_user_gets_user_scoped_lockout(security):
    fail(security.guard, 5, user_id=42)
    security.guard.check_login_allowed(email=EMAIL, ip=IP, user_id=42)

    lockout = AccountLockout.query.one()
    assert lockout.scope == "user"
    assert lockout.user_id == 42


def test_admin_threshold_is_stricter(security):
    fail(security.guard, 3)

    assert security.guard.check_login_allowed(email=EMAIL, ip=IP, is_admin=False).allowed is True
    decision = security.guard.check_login_allowed(email=EMAIL, ip=IP, is_admin=True)

    assert decision.allowed is False
    assert AccountLockout.query.one().level == 1


def test_lockout_escalates_after_expiry(security, clock):
    guard = security.guard
    fail(guard, 5)
    guard.check_login_allowed(email=EMAIL, ip=IP)

    clock.advance(minutes=6)
    fail(guard, 3)
    decision = guard.check_login_allowed(email=EMAIL, ip=IP)

    assert decision.allowed is False
    assert decision.lockout_until == clock() + timedelta(minutes=15)
    active = AccountLockout.query.filter_by(is_active=True).all()
    assert len(active) == 1
    assert active[0].level == 2


def test_failures_outside_window_are_forgotten(security, clock):
    fail(security.guard, 4)
    clock.advance(minutes=61)

    decision = security.guard.check_login_allowed(email=EMAIL, ip=IP)
    assert decision.allowed is True
    assert decision.attempts_remaining == 5


def test_unlock_gives_a_fresh_start(security, clock):
    guard = security.guard
    fail(guard, 5)
    guard.check_login_allowed(email=EMAIL, ip=IP)

    clock.advance(seconds=30)
    assert guard.unlock_account(email=EMAIL, unlocked_by=1) is True
    assert guard.active_lockout(email=EMAIL) is None

    decision = guard.check_login_allowed(email=EMAIL, ip=IP)
    assert decision.allowed is True
    assert decision.attempts_remaining == 5


def test_unlock_without_active_lockout(security):
    assert security.guard.unlock_account(email=EMAIL) is False


def test_ip_only_request_blacklists_without_account_lockout(security, clock):
    # 10 failures from one IP within the hour, no prior entry
    fail(security.guard, 10, email=None, ip="9.9.9.9")

    decision = security.guard.check_login_allowed(ip="9.9.9.9")

    assert decision.allowed is False
    assert AccountLockout.query.count() == 0

    entry = IPBlacklistEntry.query.one()
    assert entry.ip == "9.9.9.9"
    assert entry.severity == "medium"
    assert entry.reason == "brute_force"
    assert entry.expires_at == clock() + timedelta(hours=24)

    types = [a.alert_type for a in decision.alerts]
    assert types.count("ip_blacklisted") == 1
    assert "multiple_failed_attempts" in types


def test_lockout_and_blacklist_both_fire_for_abusive_ip(security):
    fail(security.guard, 12)

    decision = security.guard.check_login_allowed(email=EMAIL, ip=IP)

    assert decision.allowed is False
    types = [a.alert_type for a in decision.alerts]
    assert types[0] == "account_locked"
    assert "ip_blacklisted" in types
    assert AccountLockout.query.one().level == 3
    assert IPBlacklistEntry.query.one().severity == "medium"


def test_failed_attempts_alert_only_when_lockout_is_created(security):
    guard = security.guard
    fail(guard, 5)
    first = guard.check_login_allowed(email=EMAIL, ip=IP)
    fail(guard, 1)
    second = guard.check_login_allowed(email=EMAIL, ip=IP)

    assert [a.alert_type for a in first.alerts].count("multiple_failed_attempts") == 1
    assert second.alerts == []


def test_escalate_ip_counts_failures_across_emails(security):
    for i in range(9):
        fail(security.guard, 1, email=f"u{i}@example.org", ip="9.9.9.9")
    assert security.guard.escalate_ip("9.9.9.9") == []
    assert IPBlacklistEntry.query.count() == 0

    fail(security.guard, 1, email="u9@example.org", ip="9.9.9.9")
    alerts = security.guard.escalate_ip("9.9.9.9", email="u9@example.org")

    assert IPBlacklistEntry.query.filter_by(ip="9.9.9.9", is_active=True).count() == 1
    assert [a.alert_type for a in alerts].count("ip_blacklisted") == 1
    # Already listed: nothing new to report
    assert security.guard.escalate_ip("9.9.9.9") == []


def test_locked_account_check_leaves_ip_alone(security):
    fail(security.guard, 5)
    security.guard.check_login_allowed(email=EMAIL, ip=IP)
    fail(security.guard, 10, ip="9.9.9.9")

    decision = security.guard.check_login_allowed(email=EMAIL, ip="9.9.9.9")

    assert decision.allowed is False
    assert decision.alerts == []
    assert IPBlacklistEntry.query.count() == 0


def test_purge_drops_old_attempts(security, clock):
    fail(security.guard, 3)
    clock.advance(days=31)
    fail(security.guard, 1)

    result = security.guard.purge(retention_days=30)

    assert result["login_attempts"] == 3
    assert security.guard.failed_attempts(email=EMAIL) == 1


# -- store failures ----------------------------------------------------------

def test_count_failure_fails_closed(security, break_store):
    break_store("count_failed_attempts")

    decision = security.guard.check_login_allowed(email=EMAIL, ip=IP)

    assert decision.allowed is False
    assert decision.retryable is True


def test_lockout_lookup_failure_fails_closed(security, break_store):
    break_store("find_active_lockout")

    decision = security.guard.check_login_allowed(email=EMAIL, ip=IP)

    assert decision.allowed is False
    assert decision.retryable is True


def test_lockout_write_failure_still_denies(security, break_store):
    fail(security.guard, 5)
    break_store("insert_lockout")

    decision = security.guard.check_login_allowed(email=EMAIL, ip=IP)

    assert decision.allowed is False
    assert decision.retryable is False
    assert decision.lockout_until is None
    assert decision.alerts == []


def test_blacklist_write_failure_fails_open(security, break_store):
    fail(security.guard, 10, email=None, ip="9.9.9.9")
    break_store("insert_blacklist_entry")

    decision = security.guard.check_login_allowed(ip="9.9.9.9")

    assert decision.allowed is False
    assert decision.retryable is False
    assert decision.alerts == []
    assert IPBlacklistEntry.query.count() == 0
