from dataclasses import dataclass
from datetime import datetime

from flask import current_app

from security.alerts import AlertDispatcher
from security.ip_blacklist import IPBlacklist
from security.login_guard import LoginGuard
from security.store import SecurityStore

EXTENSION_KEY = "bloodnode_security"


@dataclass
class SecurityServices:
    store: SecurityStore
    blacklist: IPBlacklist
    guard: LoginGuard
    alerts: AlertDispatcher
    clock: object

    def now(self) -> datetime:
        return self.clock()

    def maintenance_sweep(self, retention_days: int) -> dict:
        result = self.guard.purge(retention_days)
        result["expired_blacklist_entries"] = self.blacklist.cleanup()
        return result


def _split_list(raw):
    return [item.strip() for item in (raw or "").split(",") if item.strip()]


def build_services(config, clock=None, store=None, notifier=None) -> SecurityServices:
    clock = clock or datetime.utcnow
    store = store or SecurityStore()
    trusted = _split_list(config.get("TRUSTED_IPS"))
    blacklist = IPBlacklist(
        store,
        clock=clock,
        threshold=config.get("IP_AUTO_BLACKLIST_THRESHOLD", 10),
        trusted_ips=trusted,
    )
    guard = LoginGuard.from_config(config, store, blacklist, clock=clock)
    dispatcher = AlertDispatcher(
        store,
        clock=clock,
        notifier=notifier,
        email_min_severity=config.get("ADMIN_ALERT_EMAIL_MIN_SEVERITY", "high"),
        fallback_recipients=_split_list(config.get("ADMIN_ALERT_EMAILS")),
    )
    return SecurityServices(store=store, blacklist=blacklist, guard=guard, alerts=dispatcher, clock=clock)


def init_security(app, clock=None, notifier=None) -> SecurityServices:
    services = build_services(app.config, clock=clock, notifier=notifier)
    app.extensions[EXTENSION_KEY] = services
    return services


def get_security() -> SecurityServices:
    return current_app.extensions[EXTENSION_KEY]
