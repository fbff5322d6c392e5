from collections import namedtuple
from datetime import datetime, timedelta
from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from models import db
from models.rate_limit_window import RateLimitWindow
from security.errors import PersistenceError

RateLimitResult = namedtuple("RateLimitResult", ["allowed", "retry_after", "count", "limit"])

# endpoint -> (max requests config key, default)
LIMITS = {
    "login": ("LOGIN_RATE_MAX_REQUESTS", 20),
    "admin_login": ("ADMIN_LOGIN_RATE_MAX_REQUESTS", 10),
    "register": ("REGISTER_RATE_MAX_REQUESTS", 5),
}


def check_and_increment(ip: str, endpoint: str, now: datetime = None) -> RateLimitResult:
    """
    Returns RateLimitResult(allowed, retry_after_seconds, count_in_window, limit).
    Simple fixed window per (ip, endpoint).
    """
    now = now or datetime.utcnow()
    key, default = LIMITS.get(endpoint, ("LOGIN_RATE_MAX_REQUESTS", 20))
    max_requests = current_app.config.get(key, default)
    window_seconds = current_app.config.get("LOGIN_RATE_WINDOW_SECONDS", 60)

    try:
        row = RateLimitWindow.query.filter_by(ip=ip, endpoint=endpoint).first()
        if not row:
            row = RateLimitWindow(ip=ip, endpoint=endpoint, window_start=now, count=0)
            db.session.add(row)

        window_end = row.window_start + timedelta(seconds=window_seconds)

        # Reset window if expired
        if now >= window_end:
            row.window_start = now
            row.count = 0
            window_end = now + timedelta(seconds=window_seconds)

        row.count += 1
        db.session.commit()
    except SQLAlchemyError as exc:
        db.session.rollback()
        raise PersistenceError(f"rate limit update failed: {exc}") from exc

    if row.count > max_requests:
        retry_after = int((window_end - now).total_seconds())
        return RateLimitResult(False, max(retry_after, 1), row.count, max_requests)

    return RateLimitResult(True, 0, row.count, max_requests)
