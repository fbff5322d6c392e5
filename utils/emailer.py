import logging
import smtplib
from email.message import EmailMessage

from flask import current_app

logger = logging.getLogger(__name__)


def send_email(to_email: str, subject: str, body: str):
    host = current_app.config.get("SMTP_HOST")
    port = current_app.config.get("SMTP_PORT", 587)
    username = current_app.config.get("SMTP_USERNAME")
    password = current_app.config.get("SMTP_PASSWORD")
    from_email = current_app.config.get("SMTP_FROM_EMAIL") or username
    use_tls = current_app.config.get("SMTP_USE_TLS", True)

    if not host or not from_email:
        return False, "Email not configured"

    msg = EmailMessage()
    msg["From"] = from_email
    msg["To"] = to_email
    msg["Subject"] = subject
    msg.set_content(body)

    try:
        with smtplib.SMTP(host, port, timeout=10) as server:
            if use_tls:
                server.starttls()
            if username and password:
                server.login(username, password)
            server.send_message(msg)
        return True, None
    except (smtplib.SMTPException, OSError) as exc:
        return False, str(exc)


def email_admin_alert(alert, recipients):
    """Alert notifier: mails a PendingAlert to each recipient address."""
    lines = [alert.message, "", f"Severity: {alert.severity}", f"Type: {alert.alert_type}", ""]
    lines += [f"{k}: {v}" for k, v in alert.details.items() if v is not None]
    body = "\n".join(lines)

    for to_email in recipients:
        ok, error = send_email(to_email, f"Blood Node Security Alert: {alert.title}", body)
        if not ok:
            logger.error("Admin alert email to %s failed: %s", to_email, error)
