import json
from decimal import Decimal

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.orm import sessionmaker

from agroverse_market import commands
from agroverse_market.config import Settings
from agroverse_market.main import app
from agroverse_market.schema import init_schema


class RecordingRedis:
    """publish された内容を記録するだけの Redis 代役"""

    def __init__(self) -> None:
        self.published: list[tuple[str, dict]] = []

    async def publish(self, channel: str, message: str) -> int:
        self.published.append((channel, json.loads(message)))
        return 0


@pytest_asyncio.fixture
async def engine(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'ledger.db'}")
    await init_schema(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
def redis():
    return RecordingRedis()


@pytest.fixture
def make_product(session_factory, redis):
    async def make(starting_price="100", seller_id="S"):
        async with session_factory() as session:
            agg = await commands.list_product(
                session,
                redis,
                seller_id,
                "farmer",
                "Sita Farms",
                "Heirloom tomatoes",
                "Vine ripened heirloom tomatoes, 5kg crate",
                Decimal(starting_price),
                "https://images.example.com/tomatoes.jpg",
                category="Vegetables",
                unit="crate",
            )
        return agg.id

    return make


@pytest_asyncio.fixture
async def product_id(make_product):
    return await make_product()


@pytest_asyncio.fixture
async def client(session_factory, redis):
    app.state.settings = Settings(database_url="sqlite+aiosqlite://", bid_max_attempts=3)
    app.state.session_factory = session_factory
    app.state.redis = redis
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as c:
        yield c
