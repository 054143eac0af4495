import os
from typing import Any, Dict, Optional

import httpx
import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("ENVIRONMENT", "test")

from payments.config import Settings
from payments.database import build_engine, build_session_maker, init_db
from payments.main import create_app
from payments.services.family_manager import FamilyPlanManager
from payments.services.family_store import FamilyStore
from payments.services.plan_resolver import EffectivePlanResolver
from payments.services.subscription_store import SubscriptionStore
from payments.services.webhook_applier import ProcessedEventLedger, WebhookEventApplier

TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"


def make_settings(**overrides: Any) -> Settings:
    values: Dict[str, Any] = {
        "DATABASE_URL": TEST_DATABASE_URL,
        "ENVIRONMENT": "test",
        "STRIPE_SECRET_KEY": None,
        "STRIPE_WEBHOOK_SECRET": None,
        "JWT_SECRET": None,
    }
    values.update(overrides)
    return Settings(_env_file=None, **values)


@pytest.fixture
def settings() -> Settings:
    return make_settings()


@pytest_asyncio.fixture
async def db_engine(settings):
    engine = build_engine(settings)
    await init_db(engine)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture
async def db_session(db_engine):
    session_maker = build_session_maker(db_engine)
    async with session_maker() as session:
        yield session


@pytest.fixture
def subscription_store(db_session: AsyncSession) -> SubscriptionStore:
    return SubscriptionStore(db_session)


@pytest.fixture
def family_store(db_session: AsyncSession) -> FamilyStore:
    return FamilyStore(db_session)


@pytest.fixture
def applier(db_session, subscription_store) -> WebhookEventApplier:
    return WebhookEventApplier(subscription_store, ProcessedEventLedger(db_session))


@pytest.fixture
def resolver(subscription_store, family_store) -> EffectivePlanResolver:
    return EffectivePlanResolver(subscription_store, family_store)


@pytest.fixture
def manager(subscription_store, family_store) -> FamilyPlanManager:
    return FamilyPlanManager(subscription_store, family_store)


@pytest.fixture
def app(settings, db_engine):
    application = create_app(settings)
    application.state.engine = db_engine
    application.state.session_maker = build_session_maker(db_engine)
    return application


@pytest_asyncio.fixture
async def client(app):
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as c:
        yield c


# -------------------------
# Stripe event payloads
# -------------------------

def checkout_event(
    user_id: str,
    customer_id: str,
    plan: Optional[str] = "pro",
    subscription_id: str = "sub_123",
    event_id: Optional[str] = None,
) -> Dict[str, Any]:
    metadata = {"user_id": user_id}
    if plan is not None:
        metadata["plan"] = plan
    event: Dict[str, Any] = {
        "type": "checkout.session.completed",
        "data": {
            "object": {
                "id": "cs_test",
                "client_reference_id": user_id,
                "customer": customer_id,
                "subscription": subscription_id,
                "metadata": metadata,
            }
        },
    }
    if event_id:
        event["id"] = event_id
    return event


def subscription_event(
    event_type: str,
    customer_id: str,
    status: str = "active",
    period_end: Optional[int] = None,
    event_id: Optional[str] = None,
) -> Dict[str, Any]:
    obj: Dict[str, Any] = {"id": "sub_123", "customer": customer_id, "status": status}
    if period_end is not None:
        obj["current_period_end"] = period_end
    event: Dict[str, Any] = {"type": event_type, "data": {"object": obj}}
    if event_id:
        event["id"] = event_id
    return event


def invoice_event(event_type: str, customer_id: str) -> Dict[str, Any]:
    return {"type": event_type, "data": {"object": {"id": "in_123", "customer": customer_id}}}
