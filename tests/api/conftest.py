"""
Fixtures for API tests: the FastAPI app with its dependencies overridden.
"""
from typing import AsyncGenerator

import pytest
from httpx import ASGITransport, AsyncClient

from cardsync.api.dependencies import (
    get_cardtrader_client,
    get_redis_client,
    get_session_factory,
)
from cardsync.core.database import get_db_session
from cardsync.main import app


@pytest.fixture
async def client(session_factory, mock_cardtrader_client) -> AsyncGenerator[AsyncClient, None]:
    async def override_db_session():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    async def override_redis():
        return None

    async def override_cardtrader_client():
        yield mock_cardtrader_client

    app.dependency_overrides[get_session_factory] = lambda: session_factory
    app.dependency_overrides[get_db_session] = override_db_session
    app.dependency_overrides[get_redis_client] = override_redis
    app.dependency_overrides[get_cardtrader_client] = override_cardtrader_client

    # Unhandled errors are answered by the generic handler, not re-raised
    transport = ASGITransport(app=app, raise_app_exceptions=False)
    async with AsyncClient(transport=transport, base_url="http://test") as http_client:
        yield http_client

    app.dependency_overrides.clear()
