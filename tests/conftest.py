from __future__ import annotations

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.pool import StaticPool
from sqlmodel import Session, SQLModel

from app.config import Settings, get_settings
from app.core.deps import get_billing_provider, get_completion_provider, get_db
from app.core.security import AuthenticatedUser, create_access_token
from app.database import build_engine
from app.models import chat as _chat_models  # noqa: F401
from app.models import subscriber as _subscriber_models  # noqa: F401
from app.services.chat_service import ChatService, InFlightGuard
from app.services.persistence import PersistenceGateway
from app.services.quota import QuotaTracker
from app.services.subscription import SubscriptionResolver
from tests.helpers import FakeBilling, FakeCompletion


@pytest.fixture
def engine():
    engine = build_engine("sqlite://", poolclass=StaticPool)
    SQLModel.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session(engine):
    with Session(engine) as session:
        yield session


@pytest.fixture
def gateway(session) -> PersistenceGateway:
    return PersistenceGateway(session)


@pytest.fixture
def quota(gateway) -> QuotaTracker:
    return QuotaTracker(gateway)


@pytest.fixture
def user() -> AuthenticatedUser:
    return AuthenticatedUser(id="user-1", email="ada@example.com")


@pytest.fixture
def other_user() -> AuthenticatedUser:
    return AuthenticatedUser(id="user-2", email="grace@example.com")


@pytest.fixture
def completion() -> FakeCompletion:
    return FakeCompletion()


@pytest.fixture
def billing() -> FakeBilling:
    return FakeBilling()


@pytest.fixture
def resolver(gateway, billing, quota) -> SubscriptionResolver:
    return SubscriptionResolver(gateway, billing, quota)


@pytest.fixture
def chat_service(gateway, quota, completion, resolver) -> ChatService:
    return ChatService(
        gateway,
        quota,
        completion,
        resolver=resolver,
        system_prompt="You are a test assistant.",
        guard=InFlightGuard(),
    )


@pytest.fixture
def test_settings() -> Settings:
    return Settings(
        JWT_SECRET="test-secret-key-that-is-long-enough-for-hs256",
        SYSTEM_PROMPT="You are a test assistant.",
    )


@pytest.fixture
def auth_headers(user, test_settings) -> dict:
    token = create_access_token(user.id, user.email, test_settings)
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def client(session, completion, billing, test_settings):
    from app.main import app

    def override_db():
        yield session

    app.dependency_overrides[get_db] = override_db
    app.dependency_overrides[get_settings] = lambda: test_settings
    app.dependency_overrides[get_completion_provider] = lambda: completion
    app.dependency_overrides[get_billing_provider] = lambda: billing

    yield TestClient(app)

    app.dependency_overrides.clear()
