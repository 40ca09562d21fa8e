# tests/api/conftest.py

from typing import AsyncGenerator
import pytest
from httpx import AsyncClient, ASGITransport

from orchestrator.db.session import get_db
from orchestrator.main import app

from tests.conftest import ACTOR

@pytest.fixture(scope="function")
async def client(session_factory, scheduler_mock, tenant_stores, notifier_mock) -> AsyncGenerator[AsyncClient, None]:
    """
    ASGITransport 不会触发 lifespan，所以这里直接把协作者挂到 app.state 上，
    并用测试库替换 get_db。
    """
    async def override_get_db():
        async with session_factory() as session:
            try:
                yield session
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = override_get_db
    app.state.scheduler = scheduler_mock
    app.state.tenant_stores = tenant_stores
    app.state.notifier = notifier_mock

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()

@pytest.fixture
def actor_headers() -> dict:
    return {"X-Actor": ACTOR}
