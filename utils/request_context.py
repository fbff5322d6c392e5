import hashlib
from flask import request


def client_ip() -> str:
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.headers.get("X-Real-IP") or request.remote_addr or "unknown"


def user_agent() -> str:
    return (request.headers.get("User-Agent") or "unknown")[:255]


def device_fingerprint() -> str:
    """
    Client supplied fingerprint if present, else a hash of user agent + IP.
    """
    supplied = request.headers.get("X-Device-Fingerprint")
    if supplied:
        return supplied[:128]
    raw = f"{user_agent()}|{client_ip()}"
    return hashlib.sha256(raw.encode("utf-8")).hexdigest()
