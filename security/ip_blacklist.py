import logging
from collections import namedtuple
from datetime import datetime, timedelta

from models.ip_blacklist import IPBlacklistEntry, BLACKLIST_REASONS, SEVERITIES
from security.alerts import (
    ip_blacklisted_alert,
    multiple_failed_attempts_alert,
    suspicious_activity_alert,
)
from security.errors import PersistenceError

logger = logging.getLogger(__name__)

AUTO_BLACKLIST_THRESHOLD = 10
SUSPICIOUS_RISK_THRESHOLD = 40

BlacklistStatus = namedtuple("BlacklistStatus", ["blocked", "reason", "severity", "expires_at", "added_by"])
IPAnalysis = namedtuple(
    "IPAnalysis",
    ["ip", "total_attempts", "failed_attempts", "success_rate", "risk_score", "last_failure_at"],
)

NOT_BLOCKED = BlacklistStatus(False, None, None, None, None)


def auto_blacklist_policy(attempts: int) -> tuple[str, timedelta]:
    """Severity and TTL for an automatic brute-force blacklisting."""
    if attempts >= 20:
        return "critical", timedelta(days=7)
    if attempts >= 15:
        return "high", timedelta(hours=24)
    return "medium", timedelta(hours=24)


def risk_score(total: int, failed: int) -> int:
    score = 0
    if failed > 5:
        score += 30
    if failed > 10:
        score += 20
    if total and (total - failed) / total < 0.1:
        score += 25
    return min(score, 100)


class IPBlacklist:
    def __init__(self, store, clock=datetime.utcnow, threshold=AUTO_BLACKLIST_THRESHOLD, trusted_ips=()):
        self.store = store
        self.clock = clock
        self.threshold = threshold
        self.trusted_ips = frozenset(trusted_ips or ())

    def status(self, ip: str) -> BlacklistStatus:
        """Raises PersistenceError; callers on the auth path treat that as blocked."""
        entry = self.store.find_active_blacklist(ip, self.clock())
        if entry is None:
            return NOT_BLOCKED
        return BlacklistStatus(True, entry.reason, entry.severity, entry.expires_at, entry.added_by)

    def add(self, ip, reason, severity, description=None, added_by=None, expires_at=None):
        """
        Blacklists `ip`. Returns the new entry, or None when it is already
        actively blacklisted.
        """
        if reason not in BLACKLIST_REASONS:
            raise ValueError(f"Invalid reason: {reason}")
        if severity not in SEVERITIES:
            raise ValueError(f"Invalid severity: {severity}")

        now = self.clock()
        if self.store.find_active_blacklist(ip, now) is not None:
            return None

        entry = IPBlacklistEntry(
            ip=ip,
            reason=reason,
            severity=severity,
            description=description,
            added_by=added_by,
            expires_at=expires_at,
            is_active=True,
            created_at=now,
        )
        self.store.insert_blacklist_entry(entry)
        logger.warning("IP %s blacklisted (%s, %s) until %s", ip, reason, severity, expires_at or "forever")
        return entry

    def remove(self, ip, removed_by=None) -> bool:
        return self.store.deactivate_blacklist_entry(ip, self.clock(), removed_by=removed_by) > 0

    def auto_blacklist(self, ip: str, attempts: int, email=None):
        """
        Escalates an abusive IP to the blacklist. Idempotent while an entry is
        active. Returns (created, pending_alerts); store failures are logged
        and reported as (False, []).
        """
        if attempts < self.threshold or not ip or ip in self.trusted_ips:
            return False, []

        severity, ttl = auto_blacklist_policy(attempts)
        now = self.clock()
        try:
            entry = self.add(
                ip,
                reason="brute_force",
                severity=severity,
                description=f"Auto-blacklisted after {attempts} failed attempts",
                expires_at=now + ttl,
            )
        except PersistenceError:
            logger.exception("Auto-blacklist of %s failed", ip)
            return False, []

        if entry is None:
            return False, []

        alerts = [
            ip_blacklisted_alert(ip, "brute_force", severity, attempts, now, email=email),
            multiple_failed_attempts_alert(ip, attempts, now, email=email),
        ]
        try:
            analysis = self.analyze(ip)
        except PersistenceError:
            logger.exception("IP analysis of %s failed", ip)
        else:
            if analysis.risk_score >= SUSPICIOUS_RISK_THRESHOLD:
                alerts.append(
                    suspicious_activity_alert(ip, "brute_force_login", analysis.risk_score, now, email=email)
                )
        return True, alerts

    def analyze(self, ip: str) -> IPAnalysis:
        since = self.clock() - timedelta(days=1)
        total, failed = self.store.count_attempts(since, ip)
        last = self.store.last_failed_attempt(since, ip=ip)
        success_rate = (total - failed) / total if total else 0.0
        return IPAnalysis(
            ip=ip,
            total_attempts=total,
            failed_attempts=failed,
            success_rate=success_rate,
            risk_score=risk_score(total, failed),
            last_failure_at=last.created_at if last else None,
        )

    def active_entries(self, limit=100, offset=0):
        return self.store.list_active_blacklist(self.clock(), limit=limit, offset=offset)

    def statistics(self) -> dict:
        return self.store.blacklist_statistics(self.clock())

    def cleanup(self) -> int:
        return self.store.expire_blacklist_entries(self.clock())
