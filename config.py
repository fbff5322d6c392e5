import os

BASE_DIR = os.path.abspath(os.path.dirname(__file__))


def _env_int(name, default):
    return int(os.getenv(name, str(default)))


class Config:
    # Secrets
    SECRET_KEY = os.getenv("SECRET_KEY", "dev-only-change-me")

    # SQLite database file stored beside the app as bloodnode.db
    SQLALCHEMY_DATABASE_URI = os.getenv(
        "DATABASE_URL",
        "sqlite:///" + os.path.join(BASE_DIR, "bloodnode.db")
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Session cookie name for our auth token
    AUTH_COOKIE_NAME = "bloodnode_session"

    # 8 hours session lifetime
    SESSION_LIFETIME_SECONDS = 8 * 60 * 60

    # Idle timeout: 20 minutes
    IDLE_TIMEOUT_SECONDS = 20 * 60

    SESSION_COOKIE_HTTPONLY = True
    SESSION_COOKIE_SAMESITE = "Lax"
    SESSION_COOKIE_SECURE = os.getenv("SESSION_COOKIE_SECURE", "false").lower() == "true"

    # Login defense
    MAX_LOGIN_ATTEMPTS = _env_int("MAX_LOGIN_ATTEMPTS", 5)
    ADMIN_MAX_LOGIN_ATTEMPTS = _env_int("ADMIN_MAX_LOGIN_ATTEMPTS", 3)
    LOGIN_FAILURE_WINDOW_MINUTES = _env_int("LOGIN_FAILURE_WINDOW_MINUTES", 60)
    CAPTCHA_AFTER_FAILURES = _env_int("CAPTCHA_AFTER_FAILURES", 2)
    LOCKOUT_LEVELS = [(5, 5), (8, 15), (12, 60), (20, 24 * 60)]  # (attempts, minutes)
    IP_AUTO_BLACKLIST_THRESHOLD = _env_int("IP_AUTO_BLACKLIST_THRESHOLD", 10)
    LOGIN_ATTEMPT_RETENTION_DAYS = _env_int("LOGIN_ATTEMPT_RETENTION_DAYS", 30)
    TRUSTED_IPS = os.getenv("TRUSTED_IPS", "127.0.0.1,::1")

    # Per-IP request limiter for login/register endpoints
    LOGIN_RATE_WINDOW_SECONDS = _env_int("LOGIN_RATE_WINDOW_SECONDS", 60)
    LOGIN_RATE_MAX_REQUESTS = _env_int("LOGIN_RATE_MAX_REQUESTS", 20)
    ADMIN_LOGIN_RATE_MAX_REQUESTS = _env_int("ADMIN_LOGIN_RATE_MAX_REQUESTS", 10)
    REGISTER_RATE_MAX_REQUESTS = _env_int("REGISTER_RATE_MAX_REQUESTS", 5)

    # Donor locations
    LOCATION_GEOHASH_PRECISION = 7
    DEFAULT_SEARCH_RADIUS_KM = float(os.getenv("DEFAULT_SEARCH_RADIUS_KM", "10"))

    # Admin alert fan-out on top of per-admin preferences
    ADMIN_ALERT_EMAILS = os.getenv("ADMIN_ALERT_EMAILS", "")
    ADMIN_ALERT_EMAIL_MIN_SEVERITY = os.getenv("ADMIN_ALERT_EMAIL_MIN_SEVERITY", "high")

    # Email (SMTP)
    SMTP_HOST = os.getenv("SMTP_HOST")
    SMTP_PORT = _env_int("SMTP_PORT", 587)
    SMTP_USERNAME = os.getenv("SMTP_USERNAME")
    SMTP_PASSWORD = os.getenv("SMTP_PASSWORD")
    SMTP_FROM_EMAIL = os.getenv("SMTP_FROM_EMAIL")
    SMTP_USE_TLS = os.getenv("SMTP_USE_TLS", "true").lower() == "true"

    # Logging
    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
    LOG_DIR = os.getenv("LOG_DIR", os.path.join(BASE_DIR, "logs"))
    LOG_TO_FILE = os.getenv("LOG_TO_FILE", "true").lower() == "true"

    DEBUG = False


class TestConfig(Config):
    TESTING = True
    SQLALCHEMY_DATABASE_URI = "sqlite://"
    LOG_TO_FILE = False
    TRUSTED_IPS = ""
    ADMIN_ALERT_EMAILS = ""
    # High enough that defense tests never hit the request limiter by accident
    LOGIN_RATE_MAX_REQUESTS = 1000
    ADMIN_LOGIN_RATE_MAX_REQUESTS = 1000
    REGISTER_RATE_MAX_REQUESTS = 1000
