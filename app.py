import logging
import os
from logging.handlers import RotatingFileHandler

import click
from flask import Flask, jsonify
from flask_migrate import Migrate

from config import Config
from models import db
from models.user import User, Role
from routes import health_bp, auth_bp, donors_bp, admin_security_bp
from security.errors import PersistenceError
from security.services import init_security, get_security
from utils.auth_context import load_current_user
from utils.emailer import email_admin_alert
from utils.seed import seed_roles


def create_app(config_object=Config, clock=None):
    app = Flask(__name__)
    app.config.from_object(config_object)

    configure_logging(app)

    # Register routes
    app.register_blueprint(health_bp)
    app.register_blueprint(auth_bp)
    app.register_blueprint(donors_bp)
    app.register_blueprint(admin_security_bp)

    # Database init
    db.init_app(app)

    # Migrations
    Migrate(app, db)

    init_security(app, clock=clock, notifier=email_admin_alert)

    # Seed default roles at startup (idempotent)
    with app.app_context():
        if app.config.get("TESTING"):
            db.create_all()
        seed_roles()

    @app.before_request
    def _load_user():
        load_current_user()

    @app.errorhandler(PersistenceError)
    def _storage_unavailable(err):
        app.logger.error("Storage failure: %s", err)
        return jsonify(error="Service temporarily unavailable", retryable=True), 503

    @app.after_request
    def add_security_headers(resp):
        resp.headers["X-Content-Type-Options"] = "nosniff"
        resp.headers["X-Frame-Options"] = "DENY"
        resp.headers["Referrer-Policy"] = "no-referrer"
        resp.headers["Permissions-Policy"] = "microphone=(), camera=()"
        resp.headers["Content-Security-Policy"] = "default-src 'none'; frame-ancestors 'none';"
        return resp

    register_cli(app)

    app.logger.info("BloodNode backend startup")
    return app


def configure_logging(app):
    level = getattr(logging, str(app.config.get("LOG_LEVEL", "INFO")).upper(), logging.INFO)

    if app.config.get("LOG_TO_FILE"):
        log_dir = app.config.get("LOG_DIR", "logs")
        os.makedirs(log_dir, exist_ok=True)
        file_handler = RotatingFileHandler(os.path.join(log_dir, "bloodnode.log"), maxBytes=10240, backupCount=10)
        file_handler.setFormatter(logging.Formatter(
            "%(asctime)s %(levelname)s: %(message)s [in %(pathname)s:%(lineno)d]"
        ))
        file_handler.setLevel(level)
        app.logger.addHandler(file_handler)
        # security.* / utils.* module loggers share the same file
        for name in ("security", "utils", "routes"):
            logging.getLogger(name).addHandler(file_handler)

    app.logger.setLevel(level)
    for name in ("security", "utils", "routes"):
        logging.getLogger(name).setLevel(level)


#-------------------------

def register_cli(app):
    @app.cli.command("make-admin")
    @click.argument("email")
    def make_admin(email):
        """Promote a user to ADMIN by email (bootstrap)."""
        user = User.query.filter_by(email=email.strip().lower()).first()
        if not user:
            click.echo("User not found")
            return

        admin_role = Role.query.filter_by(name="ADMIN").first()
        if not admin_role:
            admin_role = Role(name="ADMIN")
            db.session.add(admin_role)
            db.session.commit()

        if admin_role not in user.roles:
            user.roles.append(admin_role)
            db.session.commit()

        click.echo(f"{user.email} promoted to ADMIN")

    @app.cli.command("unlock-account")
    @click.option("--email", default=None)
    @click.option("--ip", default=None)
    def unlock_account(email, ip):
        """Lift active lockouts for an email and/or IP."""
        if not email and not ip:
            raise click.UsageError("Pass --email and/or --ip")

        email = email.strip().lower() if email else None
        user = User.query.filter_by(email=email).first() if email else None
        unlocked = get_security().guard.unlock_account(
            email=email,
            user_id=user.id if user else None,
            ip=ip,
            unlocked_by=None,
        )
        click.echo("Unlocked" if unlocked else "No active lockout found")

    @app.cli.command("purge-login-attempts")
    @click.option("--days", default=None, type=int, help="Retention in days")
    def purge_login_attempts(days):
        """Delete old login attempts and expired lockouts/blacklist rows."""
        retention = days if days is not None else app.config.get("LOGIN_ATTEMPT_RETENTION_DAYS", 30)
        result = get_security().maintenance_sweep(retention)
        for key, value in result.items():
            click.echo(f"{key}: {value}")


if __name__ == "__main__":
    app = create_app()
    # Run locally
    app.run(host="127.0.0.1", port=5002)
