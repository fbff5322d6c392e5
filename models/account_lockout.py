from datetime import datetime
from models.db import db

LOCKOUT_SCOPES = ("user", "email", "ip")


class AccountLockout(db.Model):
    __tablename__ = "account_lockouts"

    id = db.Column(db.Integer, primary_key=True)

    user_id = db.Column(db.Integer, nullable=True, index=True)
    email = db.Column(db.String(255), nullable=True, index=True)
    ip = db.Column(db.String(64), nullable=False)

    scope = db.Column(db.String(10), nullable=False)  # user | email | ip
    attempts = db.Column(db.Integer, nullable=False)
    level = db.Column(db.Integer, nullable=False)  # 1..4
    locked_until = db.Column(db.DateTime, nullable=False, index=True)

    is_active = db.Column(db.Boolean, default=True, nullable=False)
    unlocked_at = db.Column(db.DateTime, nullable=True)
    unlocked_by = db.Column(db.Integer, nullable=True)

    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)

    def to_dict(self):
        return {
            "id": self.id,
            "user_id": self.user_id,
            "email": self.email,
            "ip": self.ip,
            "scope": self.scope,
            "attempts": self.attempts,
            "level": self.level,
            "locked_until": self.locked_until.isoformat(),
            "is_active": self.is_active,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
