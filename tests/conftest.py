import os

# must be set before localhy.config is imported
os.environ.setdefault("DATABASE_URL", "sqlite:///./localhy_test.db")
os.environ.setdefault("SECRET_KEY", "test-secret-key")
os.environ.setdefault("ENVIRONMENT", "test")

import httpx  # noqa: E402
import pytest  # noqa: E402
from dependency_injector import providers  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402

from localhy.config import Settings  # noqa: E402
from localhy.core.security import create_access_token  # noqa: E402
from localhy.database.connection import build_engine  # noqa: E402
from localhy.models import credits, notification, referral_job  # noqa: E402,F401
from localhy.models.base import Base  # noqa: E402
from localhy.services.change_feed import ChangeFeed  # noqa: E402
from localhy.services.credit_service import CreditService  # noqa: E402
from localhy.services.notification_service import NotificationService  # noqa: E402
from localhy.services.paid_action_service import PaidActionService  # noqa: E402
from localhy.services.payment_webhook_service import PaymentWebhookService  # noqa: E402

CREEM_SECRET = "creem-test-secret"


@pytest.fixture
def test_settings(tmp_path):
    return Settings(
        DATABASE_URL=f"sqlite:///{tmp_path / 'ledger.db'}",
        ENVIRONMENT="test",
        CREEM_WEBHOOK_SECRET=CREEM_SECRET,
        PAYPAL_IPN_VERIFY_URL="https://ipn.test/cgi-bin/webscr",
        PAYPAL_RECEIVER_EMAIL="",
        CHANGE_FEED_QUEUE=None,
    )


@pytest.fixture
def session_factory(test_settings):
    """File-backed SQLite database per test; returns a session factory"""
    engine = build_engine(test_settings)
    Base.metadata.create_all(bind=engine)
    factory = sessionmaker(bind=engine, autocommit=False, autoflush=False, expire_on_commit=False)
    opened = []

    def make_session():
        session = factory()
        opened.append(session)
        return session

    yield make_session

    for session in opened:
        session.close()
    engine.dispose()


@pytest.fixture
def db_session(session_factory):
    return session_factory()


@pytest.fixture
def change_feed(test_settings):
    return ChangeFeed(test_settings)


@pytest.fixture
def credit_service(db_session, test_settings, change_feed):
    return CreditService(db_session, settings=test_settings, change_feed=change_feed)


@pytest.fixture
def notification_service(db_session, change_feed):
    return NotificationService(db_session, change_feed=change_feed)


@pytest.fixture
def paid_action_service(db_session, test_settings, change_feed):
    return PaidActionService(db_session, settings=test_settings, change_feed=change_feed)


@pytest.fixture
def ipn_responses():
    """Bodies PayPal's IPN endpoint answers with, in order (last one repeats)"""
    return ["VERIFIED"]


@pytest.fixture
def ipn_requests():
    return []


@pytest.fixture
def paypal_transport(ipn_responses, ipn_requests):
    def handler(request: httpx.Request) -> httpx.Response:
        ipn_requests.append(request)
        body = ipn_responses.pop(0) if len(ipn_responses) > 1 else ipn_responses[0]
        return httpx.Response(200, text=body)

    return httpx.MockTransport(handler)


@pytest.fixture
def webhook_service(db_session, test_settings, change_feed, paypal_transport):
    return PaymentWebhookService(
        db_session, settings=test_settings, change_feed=change_feed, transport=paypal_transport
    )


@pytest.fixture
def app(db_session, test_settings, change_feed, paypal_transport):
    from localhy.main import create_app

    app = create_app()
    container = app.container  # type: ignore[attr-defined]
    container.repositories.get_db.override(providers.Object(db_session))
    services = container.services
    services.credit_service.override(
        providers.Factory(CreditService, db=db_session, settings=test_settings, change_feed=change_feed)
    )
    services.notification_service.override(
        providers.Factory(NotificationService, db=db_session, change_feed=change_feed)
    )
    services.paid_action_service.override(
        providers.Factory(PaidActionService, db=db_session, settings=test_settings, change_feed=change_feed)
    )
    services.payment_webhook_service.override(
        providers.Factory(
            PaymentWebhookService,
            db=db_session,
            settings=test_settings,
            change_feed=change_feed,
            transport=paypal_transport,
        )
    )
    yield app
    container.unwire()


@pytest.fixture
def client(app):
    return TestClient(app)


def auth_headers(user_id: str = "user-1", role: str = "user") -> dict:
    token = create_access_token({"sub": user_id, "email": f"{user_id}@example.com", "role": role})
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def user_headers():
    return auth_headers("user-1")


@pytest.fixture
def admin_headers():
    return auth_headers("admin-1", role="admin")


@pytest.fixture
def headers_for():
    return auth_headers
