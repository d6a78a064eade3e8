from datetime import datetime, timedelta, timezone

import pytest

from woodmarket.app import create_app
from woodmarket.config.settings import TestConfig
from woodmarket.models.database import db
from woodmarket.services import AuthService, CartService, OrderService, PasswordHasher
from woodmarket.storage import MemoryStorage

JWT_SECRET = "unit-test-secret-with-enough-length"


class FakeClock:
    """A settable UTC clock."""

    def __init__(self, now=None):
        self.now = now or datetime.now(timezone.utc)

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)


@pytest.fixture
def app():
    app = create_app(TestConfig)
    yield app
    with app.app_context():
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture(params=["memory", "sql"])
def storage(request):
    """Each service test runs against both storage backends."""
    if request.param == "memory":
        storage = MemoryStorage()
        storage.seed_categories()
        yield storage
    else:
        app = request.getfixturevalue("app")
        with app.app_context():
            yield app.extensions["woodmarket"].storage
            db.session.remove()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def auth(storage, clock):
    return AuthService(storage, secret=JWT_SECRET, hasher=PasswordHasher(rounds=4), clock=clock)


@pytest.fixture
def cart(storage):
    return CartService(storage)


@pytest.fixture
def orders(storage):
    return OrderService(storage)


@pytest.fixture
def make_user(storage):
    counter = iter(range(1, 1000))

    def _make_user(role="customer", **overrides):
        n = next(counter)
        fields = {
            "username": f"user{n}",
            "email": f"user{n}@example.com",
            "password_hash": "not-a-real-hash",
            "full_name": f"User {n}",
            "role": role,
        }
        fields.update(overrides)
        return storage.create_user(**fields)
    return _make_user


@pytest.fixture
def supplier(make_user):
    return make_user(role="supplier")


@pytest.fixture
def customer(make_user):
    return make_user()


@pytest.fixture
def make_product(storage, supplier):
    def _make_product(price=1000, stock=10, **overrides):
        fields = {
            "name": "Marine Plywood 18mm",
            "description": "BS1088 okoume, 2440 x 1220 mm",
            "price": price,
            "stock_quantity": stock,
            "supplier_id": supplier.id,
            "category_id": 1,
        }
        fields.update(overrides)
        return storage.create_product(**fields)
    return _make_product
