from typing import Dict, Set

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from config import settings
from database import Base, build_engine, get_db
from main import app
from routers import rate_limit
from routers.dependencies import get_key_validators, get_system_credentials
from services.byok import CredentialVault, SystemCredentials
from services.credits import CreditLedger
from services.pricing import PricingResolver, seed_credit_costs
from services.session_token import create_session_token


TEST_TRIAL_CREDITS = 1000
SYSTEM_CREDENTIALS = SystemCredentials(places="system-places-key", generation="system-generation-key")


@pytest.fixture(autouse=True)
def reset_local_rate_limit_counters():
    """Keep in-memory rate-limit state isolated between tests."""
    previous = getattr(app.state, "disable_rate_limits", False)
    app.state.disable_rate_limits = True
    rate_limit._local_counters.clear()
    yield
    rate_limit._local_counters.clear()
    app.state.disable_rate_limits = previous


@pytest_asyncio.fixture
async def session_maker(tmp_path):
    db_path = tmp_path / "ledger.db"
    engine = build_engine(f"sqlite:///{db_path}")
    maker = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    async with maker() as session:
        await seed_credit_costs(session, settings.DEFAULT_CREDIT_COSTS)

    yield maker
    await engine.dispose()


@pytest.fixture
def accepted_keys() -> Dict[str, Set[str]]:
    """Keys the fake provider validators accept. Tests mutate this to revoke keys."""
    return {
        "places": {"user-places-key"},
        "generation": {"user-generation-key"},
    }


@pytest.fixture
def fake_validators(accepted_keys):
    def _validator(provider: str):
        async def _check(api_key: str) -> bool:
            return api_key in accepted_keys[provider]

        return _check

    return {provider: _validator(provider) for provider in ("places", "generation")}


@pytest.fixture
def make_ledger():
    def _make(session: AsyncSession, trial_credits: int = TEST_TRIAL_CREDITS) -> CreditLedger:
        return CreditLedger(session, pricing=PricingResolver(session), trial_credits=trial_credits)

    return _make


@pytest.fixture
def make_vault(fake_validators):
    def _make(session: AsyncSession) -> CredentialVault:
        return CredentialVault(session, system_credentials=SYSTEM_CREDENTIALS, validators=fake_validators)

    return _make


@pytest.fixture
def auth_header():
    def _header(user_id: str) -> Dict[str, str]:
        return {"Authorization": f"Bearer {create_session_token(user_id)['token']}"}

    return _header


@pytest_asyncio.fixture
async def api_client(session_maker, fake_validators):
    async def override_get_db():
        async with session_maker() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_key_validators] = lambda: fake_validators
    app.dependency_overrides[get_system_credentials] = lambda: SYSTEM_CREDENTIALS
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client

    app.dependency_overrides.pop(get_db, None)
    app.dependency_overrides.pop(get_key_validators, None)
    app.dependency_overrides.pop(get_system_credentials, None)
