from datetime import datetime
from models.db import db


class RateLimitWindow(db.Model):
    __tablename__ = "rate_limit_windows"

    id = db.Column(db.Integer, primary_key=True)
    ip = db.Column(db.String(64), nullable=False, index=True)
    endpoint = db.Column(db.String(60), nullable=False)

    window_start = db.Column(db.DateTime, nullable=False)
    count = db.Column(db.Integer, default=0, nullable=False)

    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    __table_args__ = (
        db.UniqueConstraint("ip", "endpoint", name="uq_rate_limit_windows_ip_endpoint"),
    )
