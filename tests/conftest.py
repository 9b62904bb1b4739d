"""
Pytest configuration and fixtures.
"""

from datetime import datetime, timedelta, timezone

import pytest

from neoloc.auth.context import RequestContext
from neoloc.auth.database import UserDatabase
from neoloc.auth.memory_store import MemoryStore
from neoloc.auth.passwords import PasswordHasher
from neoloc.config import HubSettings
from neoloc.hub import bootstrap, create_hub


TEST_SECRET = "test-secret-key-for-neoloc-hub"
ADMIN_EMAIL = "admin@neoloc.test"
ADMIN_PASSWORD = "admin-password"
USER_PASSWORD = "user-password"


class MutableClock:
    """
    Test clock.

    Starts slightly behind real time so tokens minted at clock() are never
    issued in the future. Advancing it only moves the stored expiry checks;
    token signatures still verify against real time.
    """

    def __init__(self):
        self.now = datetime.now(timezone.utc) - timedelta(seconds=5)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


@pytest.fixture
def clock():
    """Return a mutable clock shared by every service of the hub."""
    return MutableClock()


@pytest.fixture
def hasher():
    """Bcrypt with the minimum cost factor to keep tests fast."""
    return PasswordHasher(rounds=4)


@pytest.fixture(params=["memory", "sqlite"])
def store(request, tmp_path):
    """Each storage backend in turn."""
    if request.param == "memory":
        return MemoryStore(timeout=1.0)
    return UserDatabase(tmp_path / "hub.db", timeout=1.0)


@pytest.fixture
def settings():
    return HubSettings(
        jwt_secret=TEST_SECRET,
        admin_email=ADMIN_EMAIL,
        admin_password=ADMIN_PASSWORD,
    )


@pytest.fixture
def hub(settings, store, hasher, clock):
    """A bootstrapped hub: system roles, modules, catalogue and administrator."""
    hub = create_hub(settings, store=store, hasher=hasher, clock=clock)
    bootstrap(hub)
    return hub


@pytest.fixture
def admin(hub):
    return hub.users.get_user_by_email(ADMIN_EMAIL)


@pytest.fixture
def request_context():
    return RequestContext(ip_address="10.0.0.7", user_agent="pytest")


@pytest.fixture
def make_user(hub):
    """Factory for users with the shared test password."""
    counter = {"n": 0}

    def _make_user(role="viewer", module_access=(), email=None):
        counter["n"] += 1
        return hub.users.create_user(
            email=email or f"user{counter['n']}@neoloc.test",
            password=USER_PASSWORD,
            full_name=f"Test User {counter['n']}",
            role=role,
            module_access=module_access,
        )

    return _make_user


@pytest.fixture
def module(hub):
    """The 'compras' module from the default directory."""
    return hub.modules.get_module_by_name("compras")
