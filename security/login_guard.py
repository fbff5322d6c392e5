import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Optional

from models.account_lockout import AccountLockout
from models.login_attempt import LoginAttempt
from security.alerts import account_locked_alert, multiple_failed_attempts_alert
from security.errors import PersistenceError
from security.lockout import build_levels, level_for_attempts

logger = logging.getLogger(__name__)


@dataclass
class LoginDecision:
    allowed: bool
    captcha_required: bool
    reason: Optional[str] = None
    lockout_until: Optional[datetime] = None
    attempts_remaining: Optional[int] = None
    # Store was unreachable; the caller should ask the user to retry later
    retryable: bool = False
    alerts: list = field(default_factory=list)

    def to_dict(self):
        return {
            "allowed": self.allowed,
            "reason": self.reason,
            "lockout_until": self.lockout_until.isoformat() if self.lockout_until else None,
            "captcha_required": self.captcha_required,
            "attempts_remaining": self.attempts_remaining,
        }


class LoginGuard:
    """
    Decides whether a login may proceed, based on the append-only attempt log.

    Email, user id and IP are all consulted; the most restrictive answer wins.
    Lockouts and counts fail closed. Side effects that only inform operators
    (alerts, IP blacklisting) are returned or handled best effort.
    """

    def __init__(
        self,
        store,
        blacklist,
        clock=datetime.utcnow,
        max_attempts=5,
        admin_max_attempts=3,
        window=timedelta(hours=1),
        captcha_after=2,
        lockout_levels=None,
    ):
        self.store = store
        self.blacklist = blacklist
        self.clock = clock
        self.max_attempts = max_attempts
        self.admin_max_attempts = admin_max_attempts
        self.window = window
        self.captcha_after = captcha_after
        self.levels = build_levels(lockout_levels)

    @classmethod
    def from_config(cls, config, store, blacklist, clock=datetime.utcnow):
        return cls(
            store,
            blacklist,
            clock=clock,
            max_attempts=config.get("MAX_LOGIN_ATTEMPTS", 5),
            admin_max_attempts=config.get("ADMIN_MAX_LOGIN_ATTEMPTS", 3),
            window=timedelta(minutes=config.get("LOGIN_FAILURE_WINDOW_MINUTES", 60)),
            captcha_after=config.get("CAPTCHA_AFTER_FAILURES", 2),
            lockout_levels=config.get("LOCKOUT_LEVELS"),
        )

    def threshold_for(self, is_admin: bool) -> int:
        return self.admin_max_attempts if is_admin else self.max_attempts

    def check_login_allowed(self, email=None, ip=None, user_id=None, is_admin=False) -> LoginDecision:
        now = self.clock()
        try:
            lockout = self.store.find_active_lockout(now, email=email, user_id=user_id)
            if lockout is not None:
                return self._locked(f"Account locked until {lockout.locked_until.isoformat()}", lockout)

            if ip:
                ip_lockout = self.store.find_active_lockout(now, ip=ip)
                if ip_lockout is not None:
                    return self._locked(f"IP address locked until {ip_lockout.locked_until.isoformat()}", ip_lockout)

            since = now - self.window
            # An unlock starts the count afresh for that identity
            unlocked_at = self.store.last_unlock_at(email=email, user_id=user_id)
            if unlocked_at is not None and unlocked_at > since:
                since = unlocked_at
            failures = self.store.count_failed_attempts(since, email=email, ip=ip, user_id=user_id)
        except PersistenceError:
            logger.exception("Login check failed for email=%s ip=%s; denying", email, ip)
            return LoginDecision(
                allowed=False,
                captcha_required=True,
                reason="Login temporarily unavailable. Please try again shortly.",
                retryable=True,
            )

        threshold = self.threshold_for(is_admin)
        if failures < threshold:
            return LoginDecision(
                allowed=True,
                captcha_required=failures >= self.captcha_after,
                attempts_remaining=threshold - failures,
            )

        alerts = []
        lockout_until = None
        try:
            lockout, lockout_alerts = self.create_lockout(email=email, user_id=user_id, ip=ip, attempts=failures)
        except PersistenceError:
            # Still denied: the count alone is enough to refuse this attempt
            logger.exception("Could not persist lockout for email=%s user_id=%s", email, user_id)
        else:
            alerts.extend(lockout_alerts)
            if lockout is not None:
                lockout_until = lockout.locked_until

        alerts.extend(self._escalate_ip(ip, email, now))

        return LoginDecision(
            allowed=False,
            captcha_required=True,
            reason="Too many failed attempts. Account locked.",
            lockout_until=lockout_until,
            alerts=alerts,
        )

    def create_lockout(self, attempts: int, email=None, user_id=None, ip=None):
        """
        Locks the account (user scope when a user id is known, else email).
        Returns (lockout, pending_alerts); (None, []) when there is no account
        identity to lock. IP-level penalties go through the blacklist instead.
        """
        if user_id is None and not email:
            return None, []

        now = self.clock()
        level = level_for_attempts(attempts, self.levels)
        lockout = AccountLockout(
            user_id=user_id,
            email=email,
            ip=ip or "unknown",
            scope="user" if user_id is not None else "email",
            attempts=attempts,
            level=level.level,
            locked_until=now + level.duration,
            is_active=True,
            created_at=now,
        )
        self.store.insert_lockout(lockout)
        logger.warning(
            "Locked %s=%s at level %s until %s after %s failures",
            lockout.scope, user_id if user_id is not None else email, level.level,
            lockout.locked_until.isoformat(), attempts,
        )

        alert = account_locked_alert(
            email=email,
            user_id=user_id,
            ip=ip,
            attempt_count=attempts,
            lockout_seconds=int(level.duration.total_seconds()),
            severity="high",
            now=now,
        )
        failures_alert = multiple_failed_attempts_alert(ip or "unknown", attempts, now, email=email, user_id=user_id)
        return lockout, [alert, failures_alert]

    def escalate_ip(self, ip, email=None) -> list:
        """
        Re-evaluates the IP after a failure has been recorded, whatever account
        it targeted. Returns pending alerts for a newly created blacklist entry.
        """
        return self._escalate_ip(ip, email, self.clock())

    def record_login_attempt(
        self,
        ip,
        success,
        email=None,
        user_id=None,
        user_agent=None,
        failure_reason=None,
        device_fingerprint=None,
    ) -> LoginAttempt:
        attempt = LoginAttempt(
            user_id=user_id,
            email=email,
            ip=ip or "unknown",
            user_agent=user_agent[:255] if user_agent else None,
            success=bool(success),
            failure_reason=failure_reason,
            device_fingerprint=device_fingerprint,
            created_at=self.clock(),
        )
        return self.store.insert_login_attempt(attempt)

    def failed_attempts(self, email=None, ip=None, user_id=None) -> int:
        return self.store.count_failed_attempts(self.clock() - self.window, email=email, ip=ip, user_id=user_id)

    def last_failed_attempt(self, email=None, ip=None):
        return self.store.last_failed_attempt(self.clock() - self.window, email=email, ip=ip)

    def active_lockout(self, email=None, user_id=None, ip=None):
        return self.store.find_active_lockout(self.clock(), email=email, user_id=user_id, ip=ip)

    def unlock_account(self, email=None, user_id=None, ip=None, unlocked_by=None) -> bool:
        if not email and user_id is None and not ip:
            raise ValueError("email, user_id or ip is required")
        count = self.store.deactivate_lockout(
            self.clock(), email=email, user_id=user_id, ip=ip, unlocked_by=unlocked_by
        )
        if count:
            logger.info("Unlocked %s lockout(s) for email=%s user_id=%s ip=%s", count, email, user_id, ip)
        return count > 0

    def purge(self, retention_days=30) -> dict:
        now = self.clock()
        return {
            "login_attempts": self.store.purge_login_attempts(now - timedelta(days=retention_days)),
            "lockouts": self.store.purge_expired_lockouts(now),
        }

    def _locked(self, reason, lockout) -> LoginDecision:
        return LoginDecision(
            allowed=False,
            captcha_required=True,
            reason=reason,
            lockout_until=lockout.locked_until,
        )

    def _escalate_ip(self, ip, email, now):
        if not ip:
            return []
        try:
            ip_failures = self.store.count_failed_attempts(now - self.window, ip=ip)
        except PersistenceError:
            logger.exception("Could not count failures for %s; skipping blacklist check", ip)
            return []
        _, alerts = self.blacklist.auto_blacklist(ip, ip_failures, email=email)
        return alerts
