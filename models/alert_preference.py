import json
from datetime import datetime
from models.db import db
from models.ip_blacklist import SEVERITIES


class AlertPreference(db.Model):
    """Per-admin choice of which security alerts arrive by email."""

    __tablename__ = "admin_alert_preferences"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), unique=True, nullable=False)

    email_alerts = db.Column(db.Boolean, default=True, nullable=False)
    # JSON list of alert types; NULL means every type
    alert_types_json = db.Column(db.Text, nullable=True)
    severity_threshold = db.Column(db.String(10), default="high", nullable=False)

    updated_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)

    user = db.relationship("User")

    @property
    def alert_types(self):
        return json.loads(self.alert_types_json) if self.alert_types_json is not None else None

    @alert_types.setter
    def alert_types(self, value):
        self.alert_types_json = json.dumps(sorted(set(value))) if value is not None else None

    def wants(self, alert_type: str, severity: str) -> bool:
        if not self.email_alerts:
            return False
        types = self.alert_types
        if types is not None and alert_type not in types:
            return False
        return SEVERITIES.index(severity) >= SEVERITIES.index(self.severity_threshold)

    def to_dict(self):
        return {
            "user_id": self.user_id,
            "email_alerts": self.email_alerts,
            "alert_types": self.alert_types,
            "severity_threshold": self.severity_threshold,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }
