"""Pytest fixtures for clickmarket tests."""

import random
import tempfile
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from clickmarket.checkout import CheckoutService
from clickmarket.deliveries import DeliveryService
from clickmarket.invoices import InvoiceService
from clickmarket.orders import OrderService
from clickmarket.payments import PaymentService
from clickmarket.store import Database
from clickmarket.users import UserService


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def set(self, now: datetime) -> None:
        self.now = now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


def utc(*args) -> datetime:
    return datetime(*args, tzinfo=timezone.utc)


# 2 x 3100 with 10% tax and 1000 shipping: 6200 + 620 + 1000 = 7820
SAMPLE_LINES = [
    {"product_id": "prod-mil", "product_name": "Mil 5kg", "quantity": 2, "unit_price": 3100},
]

SAMPLE_ADDRESS = {
    "street": "12 rue Carnot",
    "city": "Dakar",
    "phone": "+221770000000",
    "district": "Plateau",
}


@pytest.fixture
def temp_dir():
    """Create a temporary directory."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def clock():
    return FakeClock(utc(2024, 1, 1, 10, 0))


@pytest.fixture
def db(temp_dir):
    return Database(temp_dir / "data")


@pytest.fixture
def payments(db, clock):
    return PaymentService(db, clock=clock)


@pytest.fixture
def deliveries(db, clock):
    return DeliveryService(db, clock=clock, rng=random.Random(42))


@pytest.fixture
def invoices(db, clock):
    return InvoiceService(db, clock=clock)


@pytest.fixture
def orders(db, clock, payments, deliveries, invoices):
    return OrderService(
        db, clock=clock, payments=payments, deliveries=deliveries, invoices=invoices
    )


@pytest.fixture
def users(db, clock):
    return UserService(db, clock=clock)


@pytest.fixture
def checkout(db, clock):
    return CheckoutService(db, clock=clock, rng=random.Random(42))


@pytest.fixture
def client_user(users):
    return users.register_user(
        "client",
        "Awa",
        "Diop",
        "awa@example.com",
        phone="+221770000000",
        address="12 rue Carnot, Dakar",
    )


@pytest.fixture
def zone(users):
    return users.create_zone("Dakar Plateau", "DKR-PLT", 1000)


@pytest.fixture
def draft_order(orders, client_user):
    """A draft order totalling 7820."""
    return orders.create_order(
        client_user.id,
        SAMPLE_LINES,
        shipping_fee=1000,
        tax_rate=10,
        delivery_address=SAMPLE_ADDRESS,
    )
