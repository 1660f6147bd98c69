"""
Pytest configuration and shared fixtures for CardSync tests.
"""
import os

# Settings are read on first import; keep tests off real services
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("CARDTRADER_API_TOKEN", "test-token")
os.environ.setdefault("AWS_SSM_ENABLED", "false")

from typing import AsyncGenerator, Dict
from unittest.mock import AsyncMock

import pytest
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from cardsync.core.database import create_engine_for_url, create_session_factory
from cardsync.models import catalog, inventory, orders  # noqa: F401  (register tables)
from cardsync.models.base import Base
from cardsync.models.catalog import Blueprint, Expansion, Game
from cardsync.services.cardtrader_client import CardTraderClient
from cardsync.services.circuit_breaker import reset_circuit_breaker
from cardsync.services.rate_limiter import reset_rate_limiter


@pytest.fixture(autouse=True)
def reset_singletons():
    reset_rate_limiter()
    reset_circuit_breaker()
    yield
    reset_rate_limiter()
    reset_circuit_breaker()


@pytest.fixture
async def db_engine(tmp_path) -> AsyncGenerator[AsyncEngine, None]:
    """File-backed SQLite so every session of a test sees the same data."""
    engine = create_engine_for_url(f"sqlite+aiosqlite:///{tmp_path / 'cardsync.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(db_engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return create_session_factory(db_engine)


@pytest.fixture
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


@pytest.fixture
async def catalog_rows(session_factory) -> Dict[str, object]:
    """One enabled game with one expansion and one blueprint."""
    async with session_factory() as session:
        game = Game(cardtrader_id=1, name="Magic: the Gathering", code="mtg", is_enabled=True)
        session.add(game)
        await session.flush()
        expansion = Expansion(cardtrader_id=10, game_id=game.id, name="Alpha", code="LEA")
        session.add(expansion)
        await session.flush()
        blueprint = Blueprint(
            cardtrader_id=100,
            expansion_id=expansion.id,
            game_id=game.id,
            name="Black Lotus",
            version="Regular",
            rarity="Rare",
        )
        session.add(blueprint)
        await session.commit()
        return {"game": game, "expansion": expansion, "blueprint": blueprint}


@pytest.fixture
def mock_cardtrader_client():
    """Mock CardTrader client."""
    client_mock = AsyncMock(spec=CardTraderClient)
    client_mock.get_games.return_value = []
    client_mock.get_expansions.return_value = []
    client_mock.get_blueprints.return_value = []
    client_mock.get_categories.return_value = []
    client_mock.get_products_export.return_value = []
    client_mock.get_orders.return_value = []
    return client_mock


@pytest.fixture
def mock_redis():
    """Mock Redis client."""
    redis_mock = AsyncMock()
    redis_mock.ping = AsyncMock(return_value=True)
    redis_mock.get = AsyncMock(return_value=None)
    redis_mock.set = AsyncMock(return_value=True)
    redis_mock.eval = AsyncMock(return_value=1)
    redis_mock.publish = AsyncMock(return_value=1)
    return redis_mock


def _money(cents: int, currency: str = "EUR") -> Dict[str, object]:
    return {"cents": cents, "currency": currency}


def _order_payload(order_id: int = 5001, state: str = "paid", blueprint_id: int = 100) -> Dict[str, object]:
    return {
        "id": order_id,
        "state": state,
        "created_at": "2025-11-20T10:15:00Z",
        "seller_total": _money(2550),
        "order_items": [
            {
                "id": 9001,
                "product_id": 7001,
                "blueprint_id": blueprint_id,
                "name": "Black Lotus",
                "expansion": {"name_en": "Alpha"},
                "quantity": 1,
                "seller_price": _money(2550),
                "properties": {"condition": "Near Mint"},
            }
        ],
    }


@pytest.fixture
def order_payload():
    """Factory for a CardTrader order body with one item."""
    return _order_payload
