from datetime import datetime
from models.db import db


class LoginAttempt(db.Model):
    """Append-only log of login tries. Rows are never updated, only purged."""

    __tablename__ = "login_attempts"

    id = db.Column(db.Integer, primary_key=True)

    user_id = db.Column(db.Integer, nullable=True, index=True)
    email = db.Column(db.String(255), nullable=True, index=True)
    ip = db.Column(db.String(64), nullable=False, index=True)
    user_agent = db.Column(db.String(255), nullable=True)

    success = db.Column(db.Boolean, nullable=False)
    failure_reason = db.Column(db.String(120), nullable=True)
    device_fingerprint = db.Column(db.String(128), nullable=True)

    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False, index=True)
