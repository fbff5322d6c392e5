from .db import db
from .user import User, Role, user_roles
from .session import Session
from .login_attempt import LoginAttempt
from .account_lockout import AccountLockout
from .ip_blacklist import IPBlacklistEntry
from .admin_alert import AdminAlert
from .security_event import SecurityEvent
from .rate_limit_window import RateLimitWindow
from .alert_preference import AlertPreference
