from datetime import timedelta

from flask import Blueprint, jsonify, g, request

from models.admin_alert import ALERT_TYPES
from models.ip_blacklist import BLACKLIST_REASONS, SEVERITIES
from models.security_event import SecurityEvent
from security.rbac import require_roles
from security.services import get_security
from utils.audit import log_event

admin_security_bp = Blueprint("admin_security", __name__, url_prefix="/admin/security")


def _paging(default_limit):
    limit = request.args.get("limit", type=int) or default_limit
    offset = request.args.get("offset", type=int) or 0
    return max(1, min(limit, 500)), max(offset, 0)


@admin_security_bp.get("/alerts")
@require_roles("ADMIN")
def list_alerts():
    limit, offset = _paging(50)
    severity = request.args.get("severity") or None
    alert_type = request.args.get("alert_type") or None
    unread_only = request.args.get("unread_only") == "true"

    if severity and severity not in SEVERITIES:
        return jsonify(error="Invalid severity"), 400
    if alert_type and alert_type not in ALERT_TYPES:
        return jsonify(error="Invalid alert_type"), 400

    store = get_security().store
    rows = store.list_admin_alerts(
        alert_type=alert_type, severity=severity, unread_only=unread_only, limit=limit, offset=offset
    )
    return jsonify(
        alerts=[r.to_dict() for r in rows],
        total=store.count_admin_alerts(alert_type=alert_type, severity=severity, unread_only=unread_only),
    ), 200


@admin_security_bp.get("/alerts/stats")
@require_roles("ADMIN")
def alert_stats():
    sec = get_security()
    return jsonify(sec.store.alert_statistics(sec.now())), 200


@admin_security_bp.post("/alerts/<int:alert_id>/read")
@require_roles("ADMIN")
def mark_alert_read(alert_id: int):
    sec = get_security()
    if not sec.store.mark_alert_read(alert_id, g.user.id, sec.now()):
        return jsonify(error="Alert not found"), 404
    return jsonify(message="Alert marked as read"), 200


@admin_security_bp.get("/alert-preferences")
@require_roles("ADMIN")
def get_alert_preferences():
    pref = get_security().store.get_alert_preference(g.user.id)
    if pref is None:
        # Defaults apply until the admin saves a preference
        return jsonify(
            user_id=g.user.id,
            email_alerts=True,
            alert_types=None,
            severity_threshold="high",
            updated_at=None,
        ), 200
    return jsonify(pref.to_dict()), 200


@admin_security_bp.post("/alert-preferences")
@require_roles("ADMIN")
def set_alert_preferences():
    data = request.get_json(silent=True) or {}
    fields = {}

    if "email_alerts" in data:
        if not isinstance(data["email_alerts"], bool):
            return jsonify(error="email_alerts must be true or false"), 400
        fields["email_alerts"] = data["email_alerts"]

    if "alert_types" in data:
        alert_types = data["alert_types"]
        if alert_types is not None:
            if not isinstance(alert_types, list) or any(t not in ALERT_TYPES for t in alert_types):
                return jsonify(error="Invalid alert_types", allowed=list(ALERT_TYPES)), 400
        fields["alert_types"] = alert_types

    if "severity_threshold" in data:
        if data["severity_threshold"] not in SEVERITIES:
            return jsonify(error="Invalid severity_threshold"), 400
        fields["severity_threshold"] = data["severity_threshold"]

    if not fields:
        return jsonify(error="No preferences supplied"), 400

    sec = get_security()
    pref = sec.store.save_alert_preference(g.user.id, sec.now(), **fields)
    log_event("ADMIN_ALERT_PREFERENCES", "low", user_id=g.user.id, details={"fields": sorted(fields)})
    return jsonify(pref.to_dict()), 200


@admin_security_bp.get("/blacklist")
@require_roles("ADMIN")
def list_blacklist():
    limit, offset = _paging(100)
    blacklist = get_security().blacklist
    return jsonify(
        blacklisted_ips=[e.to_dict() for e in blacklist.active_entries(limit=limit, offset=offset)],
        statistics=blacklist.statistics(),
    ), 200


@admin_security_bp.post("/blacklist")
@require_roles("ADMIN")
def add_to_blacklist():
    data = request.get_json(silent=True) or {}
    ip = (data.get("ip") or "").strip()
    reason = data.get("reason") or "manual"
    severity = data.get("severity")
    expires_hours = data.get("expires_hours")

    if not ip or not severity:
        return jsonify(error="ip and severity are required"), 400
    if reason not in BLACKLIST_REASONS:
        return jsonify(error="Invalid reason"), 400
    if severity not in SEVERITIES:
        return jsonify(error="Invalid severity"), 400
    if expires_hours is not None and (not isinstance(expires_hours, (int, float)) or expires_hours <= 0):
        return jsonify(error="expires_hours must be a positive number"), 400

    sec = get_security()
    expires_at = sec.now() + timedelta(hours=expires_hours) if expires_hours else None
    entry = sec.blacklist.add(
        ip,
        reason=reason,
        severity=severity,
        description=(data.get("description") or "").strip() or None,
        added_by=g.user.id,
        expires_at=expires_at,
    )
    if entry is None:
        return jsonify(error="IP address is already blacklisted"), 409

    log_event("ADMIN_BLACKLIST_ADD", "medium", user_id=g.user.id, details={"ip": ip, "reason": reason})
    return jsonify(entry.to_dict()), 201


@admin_security_bp.delete("/blacklist/<ip>")
@require_roles("ADMIN")
def remove_from_blacklist(ip: str):
    if not get_security().blacklist.remove(ip, removed_by=g.user.id):
        return jsonify(error="IP address not found in blacklist"), 404

    log_event("ADMIN_BLACKLIST_REMOVE", "medium", user_id=g.user.id, details={"ip": ip})
    return jsonify(message="IP address removed from blacklist"), 200


@admin_security_bp.get("/ips/<ip>/analysis")
@require_roles("ADMIN")
def analyze_ip(ip: str):
    analysis = get_security().blacklist.analyze(ip)
    result = analysis._asdict()
    result["last_failure_at"] = analysis.last_failure_at.isoformat() if analysis.last_failure_at else None
    return jsonify(result), 200


@admin_security_bp.post("/lockouts/unlock")
@require_roles("ADMIN")
def unlock_account():
    data = request.get_json(silent=True) or {}
    email = (data.get("email") or "").strip().lower() or None
    user_id = data.get("user_id")
    ip = (data.get("ip") or "").strip() or None

    if not email and user_id is None and not ip:
        return jsonify(error="email, user_id or ip is required"), 400
    if user_id is not None and not isinstance(user_id, int):
        return jsonify(error="user_id must be an integer"), 400

    unlocked = get_security().guard.unlock_account(email=email, user_id=user_id, ip=ip, unlocked_by=g.user.id)
    if not unlocked:
        return jsonify(error="No active lockout found"), 404

    log_event("ADMIN_UNLOCK", "medium", user_id=g.user.id, details={"email": email, "target_user_id": user_id, "ip": ip})
    return jsonify(message="Account unlocked"), 200


@admin_security_bp.get("/events")
@require_roles("ADMIN")
def list_events():
    limit, _ = _paging(200)
    event_type = request.args.get("event_type")

    q = SecurityEvent.query
    if event_type:
        q = q.filter(SecurityEvent.event_type == event_type)
    rows = q.order_by(SecurityEvent.created_at.desc(), SecurityEvent.id.desc()).limit(limit).all()

    return jsonify([
        {
            "id": r.id,
            "event_type": r.event_type,
            "severity": r.severity,
            "user_id": r.user_id,
            "ip": r.ip,
            "user_agent": r.user_agent,
            "endpoint": r.endpoint,
            "details": r.details_json,
            "created_at": r.created_at.isoformat(),
        }
        for r in rows
    ]), 200
