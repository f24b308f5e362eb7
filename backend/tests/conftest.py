import httpx
import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from app.core.config import Settings
from app.core.security import TokenCipher
from app.models import Base
from app.services.handoff import AuthorizationHandoffManager
from app.services.job_repository import JobRepository
from support import ADMIN_SECRET, CLIENT_SECRET, TASK_SECRET, TASK_SERVICE_ACCOUNT


@pytest.fixture
def session_factory():
    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        future=True,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    yield sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
    engine.dispose()


@pytest.fixture
def repository(session_factory):
    return JobRepository(session_factory)


@pytest.fixture
def test_settings():
    return Settings(
        _env_file=None,
        environment="test",
        public_base_url="http://testserver",
        automation_api_key="automation-key",
        shopify_client_id="client-123",
        shopify_client_secret=CLIENT_SECRET,
        secret_key="test-secret-key",
        admin_token_shared_secret=ADMIN_SECRET,
        task_token_shared_secret=TASK_SECRET,
        task_service_account_email=TASK_SERVICE_ACCOUNT,
        task_dispatch_mode="direct",
        quota_entity_types=["user"],
        default_site_limit=1,
    )


@pytest.fixture
def token_exchange_requests():
    return []


@pytest.fixture
def handoff(test_settings, token_exchange_requests):
    def handler(request: httpx.Request) -> httpx.Response:
        token_exchange_requests.append(request)
        return httpx.Response(200, json={"access_token": "shpat_live_token", "scope": "write_content"})

    return AuthorizationHandoffManager(
        client_id=test_settings.shopify_client_id,
        client_secret=test_settings.shopify_client_secret,
        public_base_url=test_settings.public_base_url,
        state_secret="state-secret",
        cipher=TokenCipher(test_settings.secret_key, test_settings.encryption_salt),
        http_client=httpx.Client(transport=httpx.MockTransport(handler)),
    )
