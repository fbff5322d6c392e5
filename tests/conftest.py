from datetime import datetime, timedelta

import pytest

from app import create_app
from config import TestConfig
from models import db
from models.user import User, Role
from security.errors import PersistenceError
from security.password import hash_password
from security.services import get_security


class FrozenClock:
    """Callable clock the tests can move forward."""

    def __init__(self, start=None):
        self.current = start or datetime(2026, 3, 1, 12, 0, 0)

    def __call__(self):
        return self.current

    def advance(self, **kwargs):
        self.current += timedelta(**kwargs)
        return self.current


def fail_store(monkeypatch, store, *names):
    """Make the named store methods raise, as if the database were down."""
    def _raise(*args, **kwargs):
        raise PersistenceError("database unavailable")

    for name in names:
        monkeypatch.setattr(store, name, _raise)


@pytest.fixture
def clock():
    return FrozenClock()


@pytest.fixture
def app(clock):
    app = create_app(TestConfig, clock=clock)
    with app.app_context():
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def security(app):
    return get_security()


@pytest.fixture
def make_user(app):
    def _make(email, password="correct-horse-1", roles=("DONOR",), **fields):
        user = User(email=email, password_hash=hash_password(password, rounds=4), **fields)
        for name in roles:
            user.roles.append(Role.query.filter_by(name=name).one())
        db.session.add(user)
        db.session.commit()
        return user
    return _make


@pytest.fixture
def login(client):
    def _login(email, password="correct-horse-1", ip="203.0.113.5", path="/auth/login"):
        return client.post(
            path,
            json={"email": email, "password": password},
            headers={"X-Forwarded-For": ip},
        )
    return _login


@pytest.fixture
def break_store(monkeypatch, security):
    def _break(*names):
        fail_store(monkeypatch, security.store, *names)
    return _break
