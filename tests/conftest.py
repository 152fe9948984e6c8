import os
from typing import AsyncGenerator

import pytest
import pytest_asyncio
from dotenv import load_dotenv
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

# Optional overrides for local runs
env_test_path = os.path.join(os.path.dirname(__file__), ".env.test")
if os.path.exists(env_test_path):
    load_dotenv(env_test_path, override=True)

# Tests never talk to a real database server, gateway, carrier or SMTP relay.
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///./.pytest-fulfillment.db")
os.environ["PAYMENT_WEBHOOK_SECRET"] = ""
os.environ["PAYMENT_GATEWAY_ACCESS_TOKEN"] = "test-token"
os.environ["ENVIOPACK_API_KEY"] = ""
os.environ["ENVIOPACK_API_SECRET"] = ""
os.environ["SMTP_USERNAME"] = ""
os.environ["SMTP_PASSWORD"] = ""
os.environ["ADMIN_EMAIL"] = "ops@test.com"

from libs.common.config import get_settings  # noqa: E402

# Clear cached settings to reload with the env above
get_settings.cache_clear()
settings = get_settings()

from libs.db.base import Base  # noqa: E402
from services.fulfillment_service import models as _models  # noqa: E402, F401
from services.fulfillment_service.app.main import app  # noqa: E402
from services.fulfillment_service.services.notifications import (  # noqa: E402
    NotificationDispatcher,
)
from services.fulfillment_service.services.shipping import (  # noqa: E402
    ShippingOrchestrator,
)

from tests.stubs import EmailRecorder, FakeCarrier, FakeGateway, SleepRecorder  # noqa: E402


@pytest_asyncio.fixture
async def test_engine(tmp_path):
    """
    File-backed SQLite database per test.

    NullPool gives every session its own connection, so concurrent sessions
    really contend for rows the way separate webhook deliveries do.
    """
    db_url = f"sqlite+aiosqlite:///{tmp_path / 'fulfillment.db'}"
    engine = create_async_engine(
        db_url, poolclass=NullPool, connect_args={"timeout": 30}
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(test_engine):
    return async_sessionmaker(
        bind=test_engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


@pytest_asyncio.fixture
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    session = session_factory()
    try:
        yield session
    finally:
        await session.close()


@pytest.fixture
def emails(monkeypatch) -> EmailRecorder:
    """Capture every email instead of talking to SMTP."""
    recorder = EmailRecorder()
    monkeypatch.setattr("libs.common.emails.orders.send_email", recorder)
    return recorder


@pytest.fixture
def sleeper() -> SleepRecorder:
    return SleepRecorder()


@pytest.fixture
def carrier() -> FakeCarrier:
    return FakeCarrier()


@pytest.fixture
def orchestrator(carrier, sleeper) -> ShippingOrchestrator:
    return ShippingOrchestrator(
        carrier_factory=lambda method: carrier,
        max_attempts=3,
        backoff_seconds=1.0,
        sleep=sleeper,
    )


@pytest.fixture
def gateway() -> FakeGateway:
    return FakeGateway()


@pytest_asyncio.fixture
async def client(
    session_factory, gateway, orchestrator, emails
) -> AsyncGenerator[AsyncClient, None]:
    """
    Yield an AsyncClient with the app and overridden collaborators.

    Each request gets its own session, like production.
    """
    from libs.db.session import get_async_db
    from services.fulfillment_service.dependencies import (
        get_notification_dispatcher,
        get_payment_gateway,
        get_shipping_orchestrator,
    )

    async def _override_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_async_db] = _override_db
    app.dependency_overrides[get_payment_gateway] = gateway.client
    app.dependency_overrides[get_shipping_orchestrator] = lambda: orchestrator
    app.dependency_overrides[get_notification_dispatcher] = NotificationDispatcher

    async with AsyncClient(
        transport=ASGITransport(app=app), base_url="http://test"
    ) as ac:
        yield ac

    app.dependency_overrides.clear()
