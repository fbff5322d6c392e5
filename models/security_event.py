from datetime import datetime
from models.db import db


class SecurityEvent(db.Model):
    __tablename__ = "security_events"

    id = db.Column(db.Integer, primary_key=True)
    event_type = db.Column(db.String(40), nullable=False, index=True)  # e.g. login_attempt, ip_blocked
    severity = db.Column(db.String(10), nullable=False)
    user_id = db.Column(db.Integer, nullable=True)  # nullable for unauth events

    ip = db.Column(db.String(64), nullable=True)
    user_agent = db.Column(db.String(255), nullable=True)
    endpoint = db.Column(db.String(120), nullable=True)
    details_json = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False, index=True)
