import logging

from models import db
from models.user import Role

logger = logging.getLogger(__name__)

# DONOR is granted on registration; admins are promoted with `flask make-admin`
DEFAULT_ROLES = ["DONOR", "ADMIN", "SUPER_ADMIN"]


def seed_roles():
    existing = {r.name for r in Role.query.all()}
    missing = [name for name in DEFAULT_ROLES if name not in existing]
    for name in missing:
        db.session.add(Role(name=name))
    db.session.commit()
    if missing:
        logger.info("Seeded roles: %s", ", ".join(missing))
