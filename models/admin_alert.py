import json
from datetime import datetime
from models.db import db

ALERT_TYPES = (
    "ip_blacklisted",
    "multiple_failed_attempts",
    "suspicious_activity",
    "rate_limit_exceeded",
    "account_locked",
)


class AdminAlert(db.Model):
    __tablename__ = "admin_alerts"

    id = db.Column(db.Integer, primary_key=True)
    alert_type = db.Column(db.String(40), nullable=False, index=True)
    severity = db.Column(db.String(10), nullable=False, index=True)
    title = db.Column(db.String(200), nullable=False)
    message = db.Column(db.Text, nullable=False)
    details_json = db.Column(db.Text, nullable=True)

    is_read = db.Column(db.Boolean, default=False, nullable=False, index=True)
    read_at = db.Column(db.DateTime, nullable=True)
    read_by = db.Column(db.String(255), nullable=True)

    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False, index=True)

    @property
    def details(self):
        return json.loads(self.details_json) if self.details_json else {}

    def to_dict(self):
        return {
            "id": self.id,
            "alert_type": self.alert_type,
            "severity": self.severity,
            "title": self.title,
            "message": self.message,
            "details": self.details,
            "is_read": self.is_read,
            "read_at": self.read_at.isoformat() if self.read_at else None,
            "read_by": self.read_by,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
