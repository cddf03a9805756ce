import fnmatch
from decimal import Decimal

import pytest
from fastapi.testclient import TestClient

from payper.api.orders_service import OrderLifecycleService
from payper.core.activity_logger import ActivityLogger
from payper.core.session import SessionManager
from payper.main import create_app
from payper.models.menu import MenuItem
from payper.models.order import CartLine, CustomerDetails, ItemStatus
from payper.models.table import Table
from payper.services.catalog import InMemoryMenuCatalog, InMemoryTableRegistry
from payper.services.order_store import InMemoryOrderStore
from payper.services.redis import RedisClient


class DummyRedis:
    """Just enough of redis-py for sessions; TTLs are recorded, never enforced."""

    def __init__(self):
        self.data = {}
        self.hashes = {}
        self.ttls = {}

    def ping(self):
        return True

    def get(self, key):
        return self.data.get(key)

    def set(self, key, value):
        self.data[key] = value

    def setex(self, key, seconds, value):
        self.data[key] = value
        self.ttls[key] = seconds

    def delete(self, *keys):
        for key in keys:
            self.data.pop(key, None)
            self.hashes.pop(key, None)

    def exists(self, key):
        return int(key in self.data or key in self.hashes)

    def hset(self, name, mapping=None):
        self.hashes.setdefault(name, {}).update(mapping or {})

    def hget(self, name, key):
        return self.hashes.get(name, {}).get(key)

    def hgetall(self, name):
        return dict(self.hashes.get(name, {}))

    def expire(self, key, seconds):
        self.ttls[key] = seconds

    def ttl(self, key):
        return self.ttls.get(key, -1)

    def keys(self, pattern="*"):
        return [k for k in list(self.data) + list(self.hashes) if fnmatch.fnmatch(k, pattern)]


STAFF = {
    "manager": {"id": "u-manager", "email": "manager@payper.test", "role": "manager", "is_active": True},
    "captain": {"id": "u-captain", "email": "captain@payper.test", "role": "captain", "is_active": True},
    "chef": {"id": "u-chef", "email": "chef@payper.test", "role": "chef", "is_active": True},
    "cashier": {"id": "u-cashier", "email": "cashier@payper.test", "role": "cashier", "is_active": True},
}


def cart(**quantities):
    """cart(item_a=2, item_b=1) -> cart lines for item-a and item-b"""
    return [CartLine(menu_item_id=k.replace("_", "-"), quantity=v) for k, v in quantities.items()]


def serve_ticket(engine, order_id, kot_id):
    for status in (ItemStatus.PREPARING, ItemStatus.READY, ItemStatus.SERVED):
        engine.advance_item_status(order_id, kot_id, status)
    return engine.get_order(order_id)


@pytest.fixture
def menu():
    return InMemoryMenuCatalog(
        items=[
            MenuItem(id="item-a", name="ItemA", price=Decimal("50"), category="Mains"),
            MenuItem(id="item-b", name="ItemB", price=Decimal("30"), category="Starters"),
            MenuItem(id="item-c", name="ItemC", price=Decimal("20"), category="Desserts"),
            MenuItem(id="item-d", name="ItemD", price=Decimal("40"), category="Mains", available=False),
        ],
        categories=["Mains", "Starters", "Desserts"],
    )


@pytest.fixture
def tables():
    return InMemoryTableRegistry([
        Table(id="t12", name="Table 12"),
        Table(id="t1", name="Table 1"),
        Table(id="t2", name="Table 2"),
    ])


@pytest.fixture
def store():
    return InMemoryOrderStore()


@pytest.fixture
def activity():
    return ActivityLogger()


@pytest.fixture
def engine(store, menu, tables, activity):
    return OrderLifecycleService(store, menu, tables, activity)


@pytest.fixture
def customer():
    return CustomerDetails(name="Asha", phone="9876543210", address="12 MG Road")


@pytest.fixture
def fake_redis():
    return DummyRedis()


@pytest.fixture
def sessions(fake_redis):
    return SessionManager(redis=RedisClient(client=fake_redis), timeout_minutes=15)


@pytest.fixture
def app(store, menu, tables, sessions, activity):
    app = create_app(
        order_store=store,
        menu_catalog=menu,
        table_registry=tables,
        session_manager=sessions,
        activity=activity,
    )
    for role, profile in STAFF.items():
        sessions.create_session(profile["id"], profile, f"{role}-token")
    return app


@pytest.fixture
def client(app):
    return TestClient(app)


def auth(role):
    return {"Authorization": f"Bearer {role}-token"}
