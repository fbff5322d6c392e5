import json
import logging

from flask import request
from sqlalchemy.exc import SQLAlchemyError

from models import db
from models.security_event import SecurityEvent
from utils.request_context import client_ip, user_agent

logger = logging.getLogger(__name__)


def log_event(event_type: str, severity: str = "low", user_id=None, details=None):
    """
    Append a security event for the current request. Audit writes never
    interrupt the request that triggered them.
    """
    row = SecurityEvent(
        event_type=event_type,
        severity=severity,
        user_id=user_id,
        ip=client_ip(),
        user_agent=user_agent(),
        endpoint=request.path[:120],
        details_json=json.dumps(details, default=str) if details else None,
    )
    try:
        db.session.add(row)
        db.session.commit()
    except SQLAlchemyError:
        db.session.rollback()
        logger.exception("Failed to write security event %s", event_type)
