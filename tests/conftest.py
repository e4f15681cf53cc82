import os
from typing import Generator

# Override settings for tests before importing app modules
TEST_DATABASE_URL = "sqlite:///:memory:"
os.environ["DATABASE_URL"] = TEST_DATABASE_URL
os.environ["JWT_SECRET"] = "test-secret-key-for-testing-only"
os.environ["STRIPE_SECRET_KEY"] = "sk_test_mock"
os.environ["STRIPE_WEBHOOK_SECRET"] = "whsec_test_mock"
os.environ["PAYPAL_CLIENT_ID"] = "paypal_client_mock"
os.environ["PAYPAL_CLIENT_SECRET"] = "paypal_secret_mock"
os.environ["PAYPAL_WEBHOOK_ID"] = "paypal_webhook_mock"

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from splitpay.main import app
from splitpay.models import MerchantAccount, Product, User
from splitpay.models.database import Base, get_db
from splitpay.schemas.orders import OrderCreateRequest
from splitpay.services.order_charge_service import ChargeContext
from splitpay.services.order_create_service import OrderCreateService
from splitpay.services.payment_gateways import Captured, GatewayAdapter, PaymentMethod, RefundResult

# Create test database engine
test_engine = create_engine(
    TEST_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=test_engine)


class FakeGateway(GatewayAdapter):
    """Scripted adapter: returns queued results in call order, otherwise captures."""

    processor_id = "stripe"

    def __init__(self, results=None, confirm_results=None):
        self.results = list(results or [])
        self.confirm_results = list(confirm_results or [])
        self.calls: list[dict] = []
        self.confirm_calls: list[str] = []
        self.refund_calls: list[dict] = []

    def authorize_or_capture(self, **kwargs):
        self.calls.append(kwargs)
        if self.results:
            result = self.results.pop(0)
        else:
            n = len(self.calls)
            result = Captured(
                transaction_id=f"ch_{n}",
                payment_intent_id=f"pi_{n}",
                fee_cents=59,
                fee_currency="usd",
                fingerprint="fp_visa",
            )
        if isinstance(result, Exception):
            raise result
        return result

    def confirm(self, client_secret, merchant_account):
        self.confirm_calls.append(client_secret)
        return self.confirm_results.pop(0)

    def refund(self, transaction_id, merchant_account, amount_cents=None, idempotency_key=None, exchange_rates=None):
        self.refund_calls.append({"transaction_id": transaction_id, "amount_cents": amount_cents})
        return RefundResult(success=True, refund_id="re_1", amount_cents=amount_cents)


@pytest.fixture(scope="function")
def db() -> Generator[Session, None, None]:
    """Create a fresh database for each test."""
    Base.metadata.create_all(bind=test_engine)
    db_session = TestSessionLocal()
    try:
        yield db_session
    finally:
        db_session.close()
        Base.metadata.drop_all(bind=test_engine)


@pytest.fixture(scope="function")
def client(db: Session) -> Generator[TestClient, None, None]:
    """Create a test client with database override."""

    def override_get_db():
        try:
            yield db
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def fake_gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture
def seller(db: Session) -> User:
    user = User(email="alice@example.com", name="Alice Books", username="alice")
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


@pytest.fixture
def seller2(db: Session) -> User:
    user = User(email="bob@example.com", name="Bob Music", username="bob")
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


@pytest.fixture
def buyer(db: Session) -> User:
    user = User(email="buyer@example.com", name="Buyer")
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


@pytest.fixture
def platform_accounts(db: Session) -> dict[str, MerchantAccount]:
    """The platform's own Stripe and PayPal accounts, used by sellers without one."""
    accounts = {
        "stripe": MerchantAccount(user_id=None, charge_processor_id="stripe", currency="usd"),
        "paypal": MerchantAccount(user_id=None, charge_processor_id="paypal", currency="usd"),
    }
    db.add_all(accounts.values())
    db.commit()
    return accounts


@pytest.fixture
def brazilian_account(db: Session, seller2: User) -> MerchantAccount:
    account = MerchantAccount(
        user_id=seller2.id,
        charge_processor_id="stripe",
        charge_processor_merchant_id="acct_br_123",
        currency="brl",
        country="BR",
        is_stripe_connect=True,
    )
    db.add(account)
    db.commit()
    db.refresh(account)
    return account


def _product(db: Session, seller: User, permalink: str, price_cents: int, **kwargs) -> Product:
    product = Product(
        seller_id=seller.id,
        permalink=permalink,
        name=permalink.replace("-", " ").title(),
        price_cents=price_cents,
        **kwargs,
    )
    db.add(product)
    db.commit()
    db.refresh(product)
    return product


@pytest.fixture
def ebook(db: Session, seller: User, platform_accounts) -> Product:
    return _product(db, seller, "ebook", 500)


@pytest.fixture
def course(db: Session, seller: User, platform_accounts) -> Product:
    return _product(db, seller, "course", 1500)


@pytest.fixture
def free_guide(db: Session, seller: User, platform_accounts) -> Product:
    return _product(db, seller, "free-guide", 0)


@pytest.fixture
def trial_membership(db: Session, seller: User, platform_accounts) -> Product:
    return _product(
        db,
        seller,
        "membership",
        1000,
        is_recurring_billing=True,
        subscription_duration="monthly",
        free_trial_enabled=True,
        free_trial_duration_amount=1,
        free_trial_duration_unit="week",
    )


@pytest.fixture
def album(db: Session, seller2: User, platform_accounts) -> Product:
    return _product(db, seller2, "album", 1000)


@pytest.fixture
def fan_club(db: Session, seller2: User, platform_accounts) -> Product:
    return _product(
        db, seller2, "fan-club", 500, is_recurring_billing=True, subscription_duration="biannually"
    )


@pytest.fixture
def make_order(db: Session):
    """Create an order through the create service from (uid, permalink, price) tuples or dicts."""

    def _make(items, email="buyer@example.com", processor="stripe", browser_guid="guid-1", **kwargs):
        line_items = []
        for item in items:
            if isinstance(item, dict):
                line_items.append(item)
            else:
                uid, permalink, price = item
                line_items.append({"uid": uid, "permalink": permalink, "perceived_price_cents": price})
        params = OrderCreateRequest(
            email=email,
            line_items=line_items,
            payment_method={"processor": processor, "payment_method_id": "pm_card_visa"},
            browser_guid=browser_guid,
            **kwargs,
        )
        return OrderCreateService(db, params).perform()

    return _make


@pytest.fixture
def charge_context() -> ChargeContext:
    return ChargeContext(
        payment_method=PaymentMethod(processor_id="stripe", payment_method_id="pm_card_visa"),
        browser_guid="guid-1",
    )
