from .health import health_bp
from .auth import auth_bp
from .donors import donors_bp
from .admin_security import admin_security_bp
