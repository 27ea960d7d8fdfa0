import os
# Ensure the app factory picks the Testing config & SQLite memory DB
os.environ.setdefault("APP_ENV", "testing")
os.environ.setdefault("TEST_DATABASE_URL", "sqlite:///:memory:")

import json
from types import SimpleNamespace

import pytest
import stripe
from billing_bridge import create_app
from billing_bridge.extensions import db
from billing_bridge.models import User, Profile
from billing_bridge.services import stripe_client

PRICE_CONTENT_PACK = "price_content_pack"
PRICE_PRO_MONTHLY = "price_pro_monthly"
PRICE_PRO_ANNUAL = "price_pro_annual"


@pytest.fixture(scope="session")
def app():
    app = create_app(dict(
        TESTING=True,
        SQLALCHEMY_DATABASE_URI="sqlite:///:memory:",
        APP_BASE_URL="http://example.test",
        WTF_CSRF_ENABLED=False,
        RATELIMIT_ENABLED=False,
        APP_ENV="test",
        STRIPE_SECRET_KEY="sk_test_x",
        STRIPE_PUBLISHABLE_KEY="pk_test_x",
        STRIPE_WEBHOOK_SECRET="whsec_test_x",
        STRIPE_PRICE_CONTENT_PACK=PRICE_CONTENT_PACK,
        STRIPE_PRICE_PRO_MONTHLY=PRICE_PRO_MONTHLY,
        STRIPE_PRICE_PRO_ANNUAL=PRICE_PRO_ANNUAL,
        STRIPE_USE_CHECKOUT=False,
    ))
    with app.app_context():
        db.create_all()
    yield app
    with app.app_context():
        db.drop_all()


@pytest.fixture()
def client(app):
    return app.test_client()


@pytest.fixture(autouse=True)
def _db_clean(app):
    # Clean BEFORE each test
    with app.app_context():
        db.session.rollback()
        for tbl in reversed(db.metadata.sorted_tables):
            db.session.execute(tbl.delete())
        db.session.commit()
    yield
    # And AFTER each test (keeps state hermetic even if a test fails mid-transaction)
    with app.app_context():
        db.session.rollback()
        for tbl in reversed(db.metadata.sorted_tables):
            db.session.execute(tbl.delete())
        db.session.commit()


@pytest.fixture()
def make_user(app):
    """Create a user (and optionally its profile row); returns the user id."""
    def _make(email="buyer@example.com", **profile_fields):
        with app.app_context():
            u = User(email=email)
            db.session.add(u)
            db.session.commit()
            uid = u.id
            if profile_fields:
                profile_fields.setdefault("feature_flags", [])
                db.session.add(Profile(id=uid, **profile_fields))
                db.session.commit()
        return uid
    return _make


class FakeService:
    """Stand-in for one StripeClient service; records calls, replays canned responses."""

    def __init__(self, name, calls):
        self._name = name
        self._calls = calls
        self.responses = {}

    def _respond(self, method, *args, **kwargs):
        self._calls.append((f"{self._name}.{method}", args, kwargs))
        resp = self.responses.get(method)
        if isinstance(resp, Exception):
            raise resp
        return resp(*args, **kwargs) if callable(resp) else resp

    def create(self, *args, **kwargs):
        return self._respond("create", *args, **kwargs)

    def retrieve(self, *args, **kwargs):
        return self._respond("retrieve", *args, **kwargs)

    def update(self, *args, **kwargs):
        return self._respond("update", *args, **kwargs)

    def list(self, *args, **kwargs):
        return self._respond("list", *args, **kwargs)


class FakeStripe:
    def __init__(self):
        self.calls = []
        self.customers = FakeService("customers", self.calls)
        self.prices = FakeService("prices", self.calls)
        self.payment_intents = FakeService("payment_intents", self.calls)
        self.subscriptions = FakeService("subscriptions", self.calls)
        self.billing_portal = SimpleNamespace(sessions=FakeService("billing_portal.sessions", self.calls))
        self.checkout = SimpleNamespace(sessions=FakeService("checkout.sessions", self.calls))

    def called(self, name):
        return [c for c in self.calls if c[0] == name]


@pytest.fixture()
def fake_stripe(monkeypatch):
    fake = FakeStripe()
    monkeypatch.setattr(stripe_client, "get_client", lambda: fake)
    return fake


@pytest.fixture()
def trust_signatures(monkeypatch):
    # Monkeypatch Stripe signature verification to trust our payload
    def _fake_construct_event(payload, sig_header, secret):
        return json.loads(payload)
    monkeypatch.setattr(stripe.Webhook, "construct_event", staticmethod(_fake_construct_event))
