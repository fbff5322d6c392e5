import json
from datetime import datetime, timedelta
from functools import wraps

from sqlalchemy import func, or_
from sqlalchemy.exc import SQLAlchemyError

from models import db
from models.login_attempt import LoginAttempt
from models.account_lockout import AccountLockout
from models.ip_blacklist import IPBlacklistEntry
from models.admin_alert import AdminAlert
from models.alert_preference import AlertPreference
from models.user import User
from security.errors import PersistenceError


def _persistence(fn):
    """Roll back and re-raise SQLAlchemy failures as PersistenceError."""
    @wraps(fn)
    def wrapper(self, *args, **kwargs):
        try:
            return fn(self, *args, **kwargs)
        except SQLAlchemyError as exc:
            self.session.rollback()
            raise PersistenceError(f"{fn.__name__} failed: {exc}") from exc
    return wrapper


def _attempt_filter(query, email=None, ip=None, user_id=None):
    # Supplied dimensions are AND-combined into one count
    if email:
        query = query.filter(LoginAttempt.email == email)
    if ip:
        query = query.filter(LoginAttempt.ip == ip)
    if user_id is not None:
        query = query.filter(LoginAttempt.user_id == user_id)
    return query


class SecurityStore:
    """
    Persistence for the login defense pipeline, backed by the Flask-SQLAlchemy session.
    Every write commits immediately.
    """

    def __init__(self, session=None):
        self._session = session

    @property
    def session(self):
        return self._session if self._session is not None else db.session

    # -- login attempts ---------------------------------------------------

    @_persistence
    def insert_login_attempt(self, attempt: LoginAttempt) -> LoginAttempt:
        self.session.add(attempt)
        self.session.commit()
        return attempt

    @_persistence
    def count_failed_attempts(self, since: datetime, email=None, ip=None, user_id=None) -> int:
        q = self.session.query(LoginAttempt).filter(
            LoginAttempt.success.is_(False),
            LoginAttempt.created_at >= since,
        )
        return _attempt_filter(q, email=email, ip=ip, user_id=user_id).count()

    @_persistence
    def count_attempts(self, since: datetime, ip: str) -> tuple[int, int]:
        """Returns (total, failed) attempts from `ip` since `since`."""
        rows = (
            self.session.query(LoginAttempt.success, func.count(LoginAttempt.id))
            .filter(LoginAttempt.ip == ip, LoginAttempt.created_at >= since)
            .group_by(LoginAttempt.success)
            .all()
        )
        counts = {bool(success): n for success, n in rows}
        return counts.get(True, 0) + counts.get(False, 0), counts.get(False, 0)

    @_persistence
    def last_failed_attempt(self, since: datetime, email=None, ip=None):
        q = self.session.query(LoginAttempt).filter(
            LoginAttempt.success.is_(False),
            LoginAttempt.created_at >= since,
        )
        return _attempt_filter(q, email=email, ip=ip).order_by(LoginAttempt.created_at.desc()).first()

    @_persistence
    def purge_login_attempts(self, before: datetime) -> int:
        deleted = self.session.query(LoginAttempt).filter(LoginAttempt.created_at < before).delete(synchronize_session=False)
        self.session.commit()
        return deleted

    # -- lockouts ---------------------------------------------------------

    @_persistence
    def find_active_lockout(self, now: datetime, email=None, user_id=None, ip=None):
        """
        Active lockout matching {email, scope=email} or {user_id, scope=user} or {ip, scope=ip}.
        """
        clauses = []
        if email:
            clauses.append((AccountLockout.scope == "email") & (AccountLockout.email == email))
        if user_id is not None:
            clauses.append((AccountLockout.scope == "user") & (AccountLockout.user_id == user_id))
        if ip:
            clauses.append((AccountLockout.scope == "ip") & (AccountLockout.ip == ip))
        if not clauses:
            return None

        return (
            self.session.query(AccountLockout)
            .filter(
                or_(*clauses),
                AccountLockout.is_active.is_(True),
                AccountLockout.locked_until > now,
            )
            .order_by(AccountLockout.locked_until.desc())
            .first()
        )

    @_persistence
    def insert_lockout(self, lockout: AccountLockout) -> AccountLockout:
        # Supersede any active lockout on the same (scope, key)
        prior = self.session.query(AccountLockout).filter(
            AccountLockout.scope == lockout.scope,
            AccountLockout.is_active.is_(True),
        )
        if lockout.scope == "user":
            prior = prior.filter(AccountLockout.user_id == lockout.user_id)
        elif lockout.scope == "email":
            prior = prior.filter(AccountLockout.email == lockout.email)
        else:
            prior = prior.filter(AccountLockout.ip == lockout.ip)
        prior.update({"is_active": False}, synchronize_session=False)

        self.session.add(lockout)
        self.session.commit()
        return lockout

    @_persistence
    def deactivate_lockout(self, now: datetime, email=None, user_id=None, ip=None, unlocked_by=None) -> int:
        q = self.session.query(AccountLockout).filter(
            AccountLockout.is_active.is_(True),
            AccountLockout.locked_until > now,
        )
        if email:
            q = q.filter(AccountLockout.email == email)
        if user_id is not None:
            q = q.filter(AccountLockout.user_id == user_id)
        if ip:
            q = q.filter(AccountLockout.ip == ip)

        count = q.update(
            {"is_active": False, "unlocked_at": now, "unlocked_by": unlocked_by},
            synchronize_session=False,
        )
        self.session.commit()
        return count

    @_persistence
    def last_unlock_at(self, email=None, user_id=None):
        """Most recent manual unlock for the identity, or None."""
        clauses = []
        if email:
            clauses.append(AccountLockout.email == email)
        if user_id is not None:
            clauses.append(AccountLockout.user_id == user_id)
        if not clauses:
            return None
        return (
            self.session.query(func.max(AccountLockout.unlocked_at))
            .filter(or_(*clauses), AccountLockout.unlocked_at.isnot(None))
            .scalar()
        )

    @_persistence
    def purge_expired_lockouts(self, now: datetime) -> int:
        deleted = self.session.query(AccountLockout).filter(
            AccountLockout.is_active.is_(False),
            AccountLockout.locked_until < now,
        ).delete(synchronize_session=False)
        self.session.commit()
        return deleted

    # -- ip blacklist -----------------------------------------------------

    @_persistence
    def find_active_blacklist(self, ip: str, now: datetime):
        return (
            self.session.query(IPBlacklistEntry)
            .filter(
                IPBlacklistEntry.ip == ip,
                IPBlacklistEntry.is_active.is_(True),
                or_(IPBlacklistEntry.expires_at.is_(None), IPBlacklistEntry.expires_at > now),
            )
            .first()
        )

    @_persistence
    def insert_blacklist_entry(self, entry: IPBlacklistEntry) -> IPBlacklistEntry:
        # An expired row may still be flagged active; retire it so one active row remains
        self.session.query(IPBlacklistEntry).filter(
            IPBlacklistEntry.ip == entry.ip,
            IPBlacklistEntry.is_active.is_(True),
        ).update({"is_active": False}, synchronize_session=False)
        self.session.add(entry)
        self.session.commit()
        return entry

    @_persistence
    def deactivate_blacklist_entry(self, ip: str, now: datetime, removed_by=None) -> int:
        count = self.session.query(IPBlacklistEntry).filter(
            IPBlacklistEntry.ip == ip,
            IPBlacklistEntry.is_active.is_(True),
        ).update(
            {"is_active": False, "removed_at": now, "removed_by": removed_by},
            synchronize_session=False,
        )
        self.session.commit()
        return count

    @_persistence
    def expire_blacklist_entries(self, now: datetime) -> int:
        count = self.session.query(IPBlacklistEntry).filter(
            IPBlacklistEntry.is_active.is_(True),
            IPBlacklistEntry.expires_at.isnot(None),
            IPBlacklistEntry.expires_at < now,
        ).update({"is_active": False}, synchronize_session=False)
        self.session.commit()
        return count

    @_persistence
    def list_active_blacklist(self, now: datetime, limit=100, offset=0):
        return (
            self.session.query(IPBlacklistEntry)
            .filter(
                IPBlacklistEntry.is_active.is_(True),
                or_(IPBlacklistEntry.expires_at.is_(None), IPBlacklistEntry.expires_at > now),
            )
            .order_by(IPBlacklistEntry.created_at.desc())
            .offset(offset)
            .limit(limit)
            .all()
        )

    @_persistence
    def blacklist_statistics(self, now: datetime) -> dict:
        active = self.session.query(IPBlacklistEntry).filter(
            IPBlacklistEntry.is_active.is_(True),
            or_(IPBlacklistEntry.expires_at.is_(None), IPBlacklistEntry.expires_at > now),
        )
        by_reason = dict(
            active.with_entities(IPBlacklistEntry.reason, func.count(IPBlacklistEntry.id))
            .group_by(IPBlacklistEntry.reason).all()
        )
        by_severity = dict(
            active.with_entities(IPBlacklistEntry.severity, func.count(IPBlacklistEntry.id))
            .group_by(IPBlacklistEntry.severity).all()
        )
        return {
            "total_blacklisted": active.count(),
            "by_reason": by_reason,
            "by_severity": by_severity,
            "recent_additions": active.filter(IPBlacklistEntry.created_at >= now - timedelta(days=1)).count(),
        }

    # -- admin alerts -----------------------------------------------------

    @_persistence
    def insert_admin_alert(self, alert_type, severity, title, message, details, created_at) -> AdminAlert:
        row = AdminAlert(
            alert_type=alert_type,
            severity=severity,
            title=title,
            message=message,
            details_json=json.dumps(details, default=str) if details else None,
            created_at=created_at,
        )
        self.session.add(row)
        self.session.commit()
        return row

    @_persistence
    def count_admin_alerts(self, alert_type=None, severity=None, unread_only=False, since=None) -> int:
        return self._alert_query(alert_type, severity, unread_only, since).count()

    @_persistence
    def list_admin_alerts(self, alert_type=None, severity=None, unread_only=False, limit=50, offset=0):
        return (
            self._alert_query(alert_type, severity, unread_only, None)
            .order_by(AdminAlert.created_at.desc(), AdminAlert.id.desc())
            .offset(offset)
            .limit(limit)
            .all()
        )

    @_persistence
    def alert_statistics(self, now: datetime) -> dict:
        by_severity = dict(
            self.session.query(AdminAlert.severity, func.count(AdminAlert.id)).group_by(AdminAlert.severity).all()
        )
        by_type = dict(
            self.session.query(AdminAlert.alert_type, func.count(AdminAlert.id)).group_by(AdminAlert.alert_type).all()
        )
        return {
            "total": self.session.query(AdminAlert).count(),
            "unread": self.session.query(AdminAlert).filter(AdminAlert.is_read.is_(False)).count(),
            "by_severity": by_severity,
            "by_type": by_type,
            "recent_24h": self.session.query(AdminAlert).filter(AdminAlert.created_at >= now - timedelta(days=1)).count(),
        }

    @_persistence
    def mark_alert_read(self, alert_id: int, reader_id, now: datetime) -> bool:
        count = self.session.query(AdminAlert).filter(AdminAlert.id == alert_id).update(
            {"is_read": True, "read_at": now, "read_by": str(reader_id)},
            synchronize_session=False,
        )
        self.session.commit()
        return count > 0

    def _alert_query(self, alert_type, severity, unread_only, since):
        q = self.session.query(AdminAlert)
        if alert_type:
            q = q.filter(AdminAlert.alert_type == alert_type)
        if severity:
            q = q.filter(AdminAlert.severity == severity)
        if unread_only:
            q = q.filter(AdminAlert.is_read.is_(False))
        if since is not None:
            q = q.filter(AdminAlert.created_at >= since)
        return q

    # -- alert preferences ------------------------------------------------

    @_persistence
    def get_alert_preference(self, user_id: int):
        return self.session.query(AlertPreference).filter(AlertPreference.user_id == user_id).first()

    @_persistence
    def save_alert_preference(self, user_id: int, now: datetime, **fields) -> AlertPreference:
        pref = self.session.query(AlertPreference).filter(AlertPreference.user_id == user_id).first()
        if pref is None:
            pref = AlertPreference(user_id=user_id, email_alerts=True, severity_threshold="high")
            self.session.add(pref)
        for name, value in fields.items():
            setattr(pref, name, value)
        pref.updated_at = now
        self.session.commit()
        return pref

    @_persistence
    def alert_recipients(self, alert_type: str, severity: str) -> list:
        """Emails of admins whose preferences ask for this alert."""
        rows = (
            self.session.query(AlertPreference)
            .join(User, AlertPreference.user_id == User.id)
            .filter(AlertPreference.email_alerts.is_(True))
            .order_by(User.email)
            .all()
        )
        return [p.user.email for p in rows if p.user.is_admin and p.wants(alert_type, severity)]
