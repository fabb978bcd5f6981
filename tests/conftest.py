import datetime as dt
import threading

import pytest

from autoshop import stock
from autoshop.database import init_db, make_engine, make_session_factory
from autoshop.engine import ReconciliationEngine
from autoshop.models import Product
from autoshop.payment_gateway import Transaction, transaction_matches

ADMIN_IDS = [900, 901]


class FakeGateway:
    """Stands in for SePayClient.

    ``gate`` lets a test hold find_match open to line up concurrent checks.
    """

    def __init__(self):
        self.transactions = []
        self.calls = []
        self.fail_tokens = set()
        self.gate = None
        self.entered = threading.Event()

    def pay(self, memo, amount):
        self.transactions.append(Transaction(memo=memo, amount=amount))

    def find_match(self, token, min_amount):
        self.calls.append((token, min_amount))
        self.entered.set()
        if self.gate is not None:
            self.gate.wait(timeout=5)
        if token in self.fail_tokens:
            raise RuntimeError("gateway exploded")
        return any(transaction_matches(tx, token, min_amount) for tx in self.transactions)


class RecordingNotifier:
    def __init__(self):
        self.sent = []

    def notify(self, recipient, event, payload):
        self.sent.append((recipient, event, payload))

    def events(self, name):
        return [s for s in self.sent if s[1] == name]


class FakeClock:
    def __init__(self):
        self.now = dt.datetime.now(dt.timezone.utc)

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now += dt.timedelta(**kwargs)


@pytest.fixture
def session_factory(tmp_path):
    bind = make_engine(f"sqlite:///{tmp_path / 'shop.db'}")
    init_db(bind)
    yield make_session_factory(bind)
    bind.dispose()


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def make_product(session_factory):
    def _make(name="Netflix Premium", price=50000, payloads=()):
        session = session_factory()
        try:
            product = Product(name=name, price=price, description="1 month")
            session.add(product)
            session.commit()
            session.refresh(product)
            stock.add_stock(session, product.id, payloads)
            return product.id
        finally:
            session.close()

    return _make


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def engine(session_factory, gateway, notifier, clock):
    return ReconciliationEngine(
        session_factory,
        gateway,
        notifier,
        admin_ids=ADMIN_IDS,
        order_timeout_seconds=20 * 60,
        sweep_interval_seconds=30,
        max_quantity=5,
        clock=clock,
    )
