from datetime import datetime
from models.db import db

BLACKLIST_REASONS = ("malicious", "brute_force", "spam", "geographic", "manual")
SEVERITIES = ("low", "medium", "high", "critical")


class IPBlacklistEntry(db.Model):
    __tablename__ = "ip_blacklist"

    id = db.Column(db.Integer, primary_key=True)
    ip = db.Column(db.String(64), nullable=False, index=True)

    reason = db.Column(db.String(20), nullable=False)
    severity = db.Column(db.String(10), nullable=False)
    description = db.Column(db.String(255), nullable=True)
    expires_at = db.Column(db.DateTime, nullable=True)  # NULL = permanent

    is_active = db.Column(db.Boolean, default=True, nullable=False)
    added_by = db.Column(db.Integer, nullable=True)
    removed_by = db.Column(db.Integer, nullable=True)
    removed_at = db.Column(db.DateTime, nullable=True)

    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)

    def to_dict(self):
        return {
            "id": self.id,
            "ip": self.ip,
            "reason": self.reason,
            "severity": self.severity,
            "description": self.description,
            "expires_at": self.expires_at.isoformat() if self.expires_at else None,
            "is_active": self.is_active,
            "added_by": self.added_by,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
