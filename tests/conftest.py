# tests/conftest.py

import os
# 控制平面在测试中使用内存 sqlite，必须在导入 orchestrator 之前设置
os.environ.setdefault("DATABASE_URL_OVERRIDE", "sqlite+aiosqlite://")

import pathlib
from typing import AsyncGenerator, Callable, Optional
import pytest
from unittest.mock import AsyncMock
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncSession
from sqlalchemy.pool import StaticPool

from orchestrator.core.context import AppContext
from orchestrator.db.base import Base
from orchestrator.db.tenant_db_session import TenantStoreResolver
from orchestrator.models import Tenant
from orchestrator.schemas.template.template_schemas import MasterTemplateVersionCreate, MasterTemplateFileCreate
from orchestrator.services.notification_service import NotifierRegistry
from orchestrator.services.scheduler import JobScheduler
from orchestrator.services.template.catalogue_service import TemplateCatalogueService

ACTOR = "alice@ops"

# ==============================================================================
# 1. 数据库 Fixtures
# ==============================================================================

@pytest.fixture(scope="function")
async def db_engine():
    """每个测试一个全新的内存控制平面库。StaticPool 让所有会话共享同一个连接。"""
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()

@pytest.fixture(scope="function")
def session_factory(db_engine):
    return async_sessionmaker(
        autocommit=False, autoflush=False, expire_on_commit=False, bind=db_engine, class_=AsyncSession
    )

@pytest.fixture(scope="function")
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session

@pytest.fixture(scope="function")
async def tenant_stores(tmp_path: pathlib.Path) -> AsyncGenerator[TenantStoreResolver, None]:
    """每个租户一个 sqlite 文件，首次打开时自动建表。"""
    resolver = TenantStoreResolver(
        url_template=f"sqlite+aiosqlite:///{tmp_path}/tenant_{{TENANT_ID}}.db",
        auto_create=True,
    )
    yield resolver
    await resolver.dispose()

@pytest.fixture
def unreachable_descriptor(tmp_path: pathlib.Path) -> str:
    # 目录不存在，sqlite 打不开这个文件
    return f"sqlite+aiosqlite:///{tmp_path}/missing/dir/tenant.db"

# ==============================================================================
# 2. Mock 外部协作者
# ==============================================================================

@pytest.fixture(scope="function")
def scheduler_mock() -> AsyncMock:
    scheduler = AsyncMock(spec=JobScheduler)
    scheduler.submit_now.side_effect = lambda function, job_id, queue_name=None: job_id
    scheduler.submit_at.side_effect = lambda function, job_id, when, queue_name=None: job_id
    scheduler.cancel.return_value = True
    return scheduler

@pytest.fixture(scope="function")
def notifier_mock() -> AsyncMock:
    notifier = AsyncMock(spec=NotifierRegistry)
    notifier.notify.return_value = []
    return notifier

@pytest.fixture(scope="function")
def context_factory(db_session, scheduler_mock, tenant_stores, notifier_mock) -> Callable[..., AppContext]:
    def _factory(actor: Optional[str] = ACTOR, db: Optional[AsyncSession] = None) -> AppContext:
        return AppContext(
            db=db or db_session,
            scheduler=scheduler_mock,
            tenant_stores=tenant_stores,
            notifier=notifier_mock,
            actor_identity=actor,
        )
    return _factory

@pytest.fixture
def app_context(context_factory) -> AppContext:
    return context_factory()

# ==============================================================================
# 3. 数据 Fixtures
# ==============================================================================

@pytest.fixture
def tenant_factory(db_session: AsyncSession) -> Callable:
    async def _create(tenant_id: str, **overrides) -> Tenant:
        values = dict(
            tenant_id=tenant_id,
            name=f"Tenant {tenant_id}",
            is_active=True,
            auto_deploy_enabled=True,
            auto_sync_enabled=True,
        )
        values.update(overrides)
        tenant = Tenant(**values)
        db_session.add(tenant)
        await db_session.commit()
        return tenant
    return _create

@pytest.fixture
def master_template_factory(app_context: AppContext) -> Callable:
    async def _publish(version: str, files: dict, breaking_changes: Optional[list] = None):
        data = MasterTemplateVersionCreate(
            version=version,
            release_notes=f"Template {version}",
            breaking_changes=breaking_changes or [],
            files=[MasterTemplateFileCreate(path=p, content=c) for p, c in files.items()],
        )
        return await TemplateCatalogueService(app_context).publish_version(data)
    return _publish
