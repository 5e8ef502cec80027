import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from database import Base, get_db
from main import app
from models.profile import Profile
from routers import rate_limit
from services.policy import role_defaults
from services.session_token import create_session_token


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
async def api_session_maker(tmp_path):
    db_path = tmp_path / "traffic_exchange.db"
    engine = create_async_engine(f"sqlite+aiosqlite:///{db_path}")
    session_maker = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield session_maker
    await engine.dispose()


@pytest_asyncio.fixture
async def integration_client(api_session_maker):
    async def override_get_db():
        async with api_session_maker() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client

    app.dependency_overrides.pop(get_db, None)


@pytest.fixture
def auth_header():
    def build(user_id: str) -> dict:
        return {"Authorization": f"Bearer {create_session_token(user_id)['token']}"}

    return build


@pytest.fixture
def seed_profile(api_session_maker):
    async def seed(user_id: str, *, role: str = "free", credits: int = 0, username=None):
        async with api_session_maker() as session:
            session.add(
                Profile(
                    id=user_id,
                    email=f"{user_id}@example.com",
                    username=username,
                    credits=credits,
                    **role_defaults(role),
                )
            )
            await session.commit()

    return seed
