import logging
from dataclasses import dataclass, field
from datetime import datetime

from security.errors import PersistenceError

logger = logging.getLogger(__name__)

SEVERITY_ORDER = {"low": 0, "medium": 1, "high": 2, "critical": 3}


@dataclass(frozen=True)
class PendingAlert:
    """An admin alert decided by the pipeline but not yet persisted."""

    alert_type: str
    severity: str
    title: str
    message: str
    details: dict = field(default_factory=dict)


def failed_attempts_severity(count: int) -> str:
    if count >= 15:
        return "critical"
    if count >= 10:
        return "high"
    return "medium"


def risk_score_severity(risk_score: int) -> str:
    if risk_score >= 80:
        return "critical"
    if risk_score >= 60:
        return "high"
    if risk_score >= 40:
        return "medium"
    return "low"


def multiple_failed_attempts_alert(ip, attempt_count, now, email=None, user_id=None) -> PendingAlert:
    suffix = f" for user {email}" if email else ""
    return PendingAlert(
        alert_type="multiple_failed_attempts",
        severity=failed_attempts_severity(attempt_count),
        title=f"Multiple Failed Login Attempts: {attempt_count}",
        message=f"Detected {attempt_count} failed login attempts from IP {ip}{suffix}",
        details={
            "ip": ip,
            "email": email,
            "user_id": user_id,
            "attempt_count": attempt_count,
            "timestamp": now.isoformat(),
        },
    )


def suspicious_activity_alert(ip, activity_type, risk_score, now, email=None, user_id=None) -> PendingAlert:
    return PendingAlert(
        alert_type="suspicious_activity",
        severity=risk_score_severity(risk_score),
        title="Suspicious Activity Detected",
        message=f"Suspicious activity detected from IP {ip}: {activity_type}. Risk Score: {risk_score}/100",
        details={
            "ip": ip,
            "email": email,
            "user_id": user_id,
            "risk_score": risk_score,
            "timestamp": now.isoformat(),
        },
    )


def ip_blacklisted_alert(ip, reason, severity, attempt_count, now, email=None) -> PendingAlert:
    return PendingAlert(
        alert_type="ip_blacklisted",
        severity=severity,
        title=f"IP Address Blacklisted: {ip}",
        message=(
            f"IP address {ip} has been automatically blacklisted after "
            f"{attempt_count} failed login attempts. Reason: {reason}"
        ),
        details={
            "ip": ip,
            "email": email,
            "attempt_count": attempt_count,
            "timestamp": now.isoformat(),
        },
    )


def account_locked_alert(email, user_id, ip, attempt_count, lockout_seconds, severity, now) -> PendingAlert:
    who = email or (f"user #{user_id}" if user_id is not None else "unknown account")
    return PendingAlert(
        alert_type="account_locked",
        severity=severity,
        title=f"Account Locked: {who}",
        message=(
            f"Account {who} has been locked for {round(lockout_seconds / 60)} minutes "
            f"after {attempt_count} failed attempts"
        ),
        details={
            "ip": ip,
            "email": email,
            "user_id": user_id,
            "attempt_count": attempt_count,
            "lockout_duration": lockout_seconds,
            "timestamp": now.isoformat(),
        },
    )


def rate_limit_exceeded_alert(ip, endpoint, attempt_count, now) -> PendingAlert:
    return PendingAlert(
        alert_type="rate_limit_exceeded",
        severity="medium",
        title=f"Rate Limit Exceeded: {endpoint}",
        message=f"Rate limit exceeded on {endpoint}. IP: {ip}, Attempts: {attempt_count}",
        details={
            "ip": ip,
            "attempt_count": attempt_count,
            "timestamp": now.isoformat(),
        },
    )


class AlertDispatcher:
    """
    Persists pending alerts and fans them out. Best effort: a failure here is
    logged and never reaches the caller.

    Email goes to every admin whose alert preferences match the alert, plus
    the fixed ``fallback_recipients`` for alerts at or above
    ``email_min_severity``.
    """

    def __init__(
        self, store, clock=datetime.utcnow, notifier=None, email_min_severity="high", fallback_recipients=()
    ):
        self.store = store
        self.clock = clock
        self.notifier = notifier
        self.email_min_severity = email_min_severity
        self.fallback_recipients = list(fallback_recipients or ())

    def dispatch(self, alerts) -> int:
        stored = 0
        for alert in alerts or ():
            try:
                self.store.insert_admin_alert(
                    alert_type=alert.alert_type,
                    severity=alert.severity,
                    title=alert.title,
                    message=alert.message,
                    details=alert.details,
                    created_at=self.clock(),
                )
            except PersistenceError:
                logger.exception("Failed to persist admin alert %s", alert.alert_type)
                continue

            stored += 1
            logger.info("Admin alert [%s] %s - %s", alert.severity, alert.title, alert.message)
            self._notify(alert)
        return stored

    def recipients_for(self, alert) -> list:
        recipients = []
        if SEVERITY_ORDER.get(alert.severity, 0) >= SEVERITY_ORDER.get(self.email_min_severity, 2):
            recipients.extend(self.fallback_recipients)
        try:
            matched = self.store.alert_recipients(alert.alert_type, alert.severity)
        except PersistenceError:
            logger.exception("Could not load alert preferences for %s", alert.alert_type)
            matched = []
        for email in matched:
            if email not in recipients:
                recipients.append(email)
        return recipients

    def _notify(self, alert):
        if self.notifier is None:
            return
        recipients = self.recipients_for(alert)
        if not recipients:
            return
        try:
            self.notifier(alert, recipients)
        except Exception:
            logger.exception("Admin alert notification failed for %s", alert.alert_type)
