import logging

from flask import Blueprint, request, jsonify, g

from models import db
from models.user import User, Role, BLOOD_GROUPS
from security.alerts import rate_limit_exceeded_alert
from security.errors import PersistenceError
from security.password import hash_password, verify_password
from security.rate_limit import check_and_increment
from security.services import get_security
from security.session import create_session, set_session_cookie, clear_session_cookie, revoke_current_session
from utils.audit import log_event
from utils.auth_context import login_required
from utils.blood import normalize_blood_group
from utils.request_context import client_ip, user_agent, device_fingerprint

logger = logging.getLogger(__name__)

auth_bp = Blueprint("auth", __name__, url_prefix="/auth")

MIN_PASSWORD_LENGTH = 8


def _normalize_email(value) -> str:
    return (value or "").strip().lower() if isinstance(value, str) else ""


def _is_valid_email(email: str) -> bool:
    return "@" in email and len(email) <= 255


def _user_payload(user: User) -> dict:
    return {
        "id": user.id,
        "email": user.email,
        "full_name": user.full_name,
        "blood_group": user.blood_group,
        "is_available": user.is_available,
        "location_geohash": user.location_geohash,
        "roles": [r.name for r in user.roles],
    }


def _record_attempt(sec, ip, success, email=None, user_id=None, failure_reason=None):
    # The attempt log feeds the counters; a lost row only under-counts
    try:
        sec.guard.record_login_attempt(
            ip,
            success,
            email=email,
            user_id=user_id,
            user_agent=user_agent(),
            failure_reason=failure_reason,
            device_fingerprint=device_fingerprint(),
        )
    except PersistenceError:
        logger.exception("Could not record login attempt for %s from %s", email, ip)


def _rate_limited(sec, ip, endpoint):
    result = check_and_increment(ip, endpoint, now=sec.now())
    if result.allowed:
        return None

    log_event("LOGIN_RATE_LIMIT", "medium", details={"endpoint": endpoint, "retry_after": result.retry_after})
    if result.count == result.limit + 1:
        sec.alerts.dispatch([rate_limit_exceeded_alert(ip, request.path, result.count, sec.now())])
    return jsonify(error="Too many login requests. Slow down.", retry_after_seconds=result.retry_after), 429


def _login(admin: bool):
    data = request.get_json(silent=True) or {}
    email = _normalize_email(data.get("email"))
    password = data.get("password") or ""

    if not email or not password:
        return jsonify(error="Email and password are required"), 400

    sec = get_security()
    ip = client_ip()

    limited = _rate_limited(sec, ip, "admin_login" if admin else "login")
    if limited:
        return limited

    try:
        blocked = sec.blacklist.status(ip)
    except PersistenceError:
        logger.exception("Blacklist check failed for %s; denying", ip)
        return jsonify(error="Login temporarily unavailable", retryable=True), 503

    if blocked.blocked:
        _record_attempt(sec, ip, False, email=email, failure_reason="ip_blacklisted")
        log_event(
            "LOGIN_IP_BLOCKED",
            "critical" if blocked.severity == "critical" else "high",
            details={"email": email, "reason": blocked.reason, "severity": blocked.severity},
        )
        return jsonify(
            error="Access denied",
            message="Your IP address has been blocked",
            reason=blocked.reason,
        ), 403

    user = User.query.filter_by(email=email).first()
    user_id = user.id if user else None
    is_admin = admin or (user is not None and user.is_admin)

    decision = sec.guard.check_login_allowed(email=email, ip=ip, user_id=user_id, is_admin=is_admin)
    sec.alerts.dispatch(decision.alerts)

    if not decision.allowed:
        if decision.retryable:
            return jsonify(error=decision.reason, retryable=True), 503
        _record_attempt(sec, ip, False, email=email, user_id=user_id, failure_reason="locked")
        sec.alerts.dispatch(sec.guard.escalate_ip(ip, email))
        log_event("LOGIN_LOCKED", "medium", user_id=user_id, details={"email": email, "reason": decision.reason})
        return jsonify(
            error="Login not allowed",
            message=decision.reason,
            lockout_until=decision.lockout_until.isoformat() if decision.lockout_until else None,
            captcha_required=decision.captcha_required,
        ), 423

    credentials_ok = user is not None and verify_password(password, user.password_hash)
    if not credentials_ok or (admin and not user.is_admin):
        reason = "invalid_admin_credentials" if admin else "invalid_credentials"
        _record_attempt(sec, ip, False, email=email, user_id=user_id, failure_reason=reason)
        log_event("LOGIN_FAIL", "medium", user_id=user_id, details={"email": email, "admin": admin})
        # The IP is judged on its own count, whichever accounts it targets
        sec.alerts.dispatch(sec.guard.escalate_ip(ip, email))

        # Re-evaluate so the failure that crosses the threshold locks immediately
        follow_up = sec.guard.check_login_allowed(email=email, ip=ip, user_id=user_id, is_admin=is_admin)
        sec.alerts.dispatch(follow_up.alerts)
        if not follow_up.allowed and not follow_up.retryable:
            return jsonify(
                error="Too many failed attempts. Account locked.",
                lockout_until=follow_up.lockout_until.isoformat() if follow_up.lockout_until else None,
                captcha_required=True,
            ), 423
        return jsonify(
            error="Invalid credentials",
            captcha_required=follow_up.captcha_required,
            attempts_remaining=follow_up.attempts_remaining,
        ), 401

    _record_attempt(sec, ip, True, email=email, user_id=user.id)
    raw_token = create_session(user.id, now=sec.now())
    log_event("LOGIN_SUCCESS", "low", user_id=user.id, details={"admin": admin})

    resp = jsonify(message="Login OK", user=_user_payload(user))
    set_session_cookie(resp, raw_token)
    return resp, 200


@auth_bp.post("/register")
def register():
    data = request.get_json(silent=True) or {}
    email = _normalize_email(data.get("email"))
    password = data.get("password") or ""
    blood_group = normalize_blood_group(data.get("blood_group")) or None

    if not _is_valid_email(email):
        return jsonify(error="Invalid email"), 400
    if len(password) < MIN_PASSWORD_LENGTH:
        return jsonify(error=f"Password must be at least {MIN_PASSWORD_LENGTH} characters"), 400
    if blood_group and blood_group not in BLOOD_GROUPS:
        return jsonify(error="Invalid blood_group"), 400

    sec = get_security()
    limited = _rate_limited(sec, client_ip(), "register")
    if limited:
        return limited

    if User.query.filter_by(email=email).first():
        log_event("REGISTER_FAIL_EMAIL_EXISTS", details={"email": email})
        return jsonify(error="Email already registered"), 409

    user = User(
        email=email,
        password_hash=hash_password(password),
        full_name=(data.get("full_name") or "").strip() or None,
        blood_group=blood_group,
    )
    db.session.add(user)
    db.session.flush()

    donor_role = Role.query.filter_by(name="DONOR").first()
    if donor_role:
        user.roles.append(donor_role)

    db.session.commit()
    log_event("REGISTER_SUCCESS", user_id=user.id)
    return jsonify(message="Registered successfully", id=user.id), 201


@auth_bp.post("/login")
def login():
    return _login(admin=False)


@auth_bp.post("/admin/login")
def admin_login():
    return _login(admin=True)


@auth_bp.get("/login-attempts")
def login_attempts():
    email = _normalize_email(request.args.get("email"))
    if not email:
        return jsonify(error="Email parameter is required"), 400

    guard = get_security().guard
    ip = client_ip()
    lockout = guard.active_lockout(email=email, ip=ip)
    last = guard.last_failed_attempt(email=email)

    return jsonify(
        email=email,
        ip=ip,
        failed_attempts=guard.failed_attempts(email=email),
        ip_failed_attempts=guard.failed_attempts(ip=ip),
        is_locked=lockout is not None,
        lockout_until=lockout.locked_until.isoformat() if lockout else None,
        last_attempt=last.created_at.isoformat() if last else None,
    ), 200


@auth_bp.get("/me")
@login_required
def me():
    return jsonify(_user_payload(g.user)), 200


@auth_bp.post("/logout")
@login_required
def logout():
    revoke_current_session()
    log_event("LOGOUT", user_id=g.user.id)

    resp = jsonify(message="Logged out")
    clear_session_cookie(resp)
    return resp, 200
