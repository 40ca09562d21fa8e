# orchestrator/db/tenant_db_session.py

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict, Optional, Set

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, create_async_engine

from orchestrator.core.config import settings
from orchestrator.db.base import TenantBase
from orchestrator.models.tenant import Tenant
from orchestrator.services.exceptions import InfrastructureError
# 确保租户侧的表注册到 TenantBase.metadata 上
from orchestrator.models import tenant_store  # noqa: F401

logger = logging.getLogger(__name__)

class TenantStoreResolver:
    """
    把租户注册表中的一条记录解析成一个可用的租户库会话。

    每个租户库一个引擎，按连接 URL 缓存，进程生命周期内复用。
    打开会话时会先探活，连不上的租户库统一抛 InfrastructureError，
    由作业编排层把该租户记为失败。
    """

    def __init__(
        self,
        url_template: Optional[str] = None,
        auto_create: Optional[bool] = None,
        pool_size: Optional[int] = None,
    ):
        self.url_template = url_template or settings.TENANT_DATABASE_URL_TEMPLATE
        self.auto_create = settings.TENANT_STORE_AUTO_CREATE if auto_create is None else auto_create
        self.pool_size = pool_size or settings.TENANT_STORE_POOL_SIZE
        self._engines: Dict[str, AsyncEngine] = {}
        self._initialized: Set[str] = set()

    def resolve_url(self, tenant: Tenant) -> str:
        if tenant.connection_descriptor:
            return tenant.connection_descriptor
        return self.url_template.replace("{TENANT_ID}", tenant.tenant_id)

    def _get_engine(self, url: str) -> AsyncEngine:
        engine = self._engines.get(url)
        if engine is None:
            kwargs = {"pool_pre_ping": True}
            # sqlite 没有真正的连接池
            if not url.startswith("sqlite"):
                kwargs.update(pool_size=self.pool_size, pool_recycle=3600)
            engine = create_async_engine(url, **kwargs)
            self._engines[url] = engine
        return engine

    async def _ensure_schema(self, engine: AsyncEngine, url: str) -> None:
        if not self.auto_create or url in self._initialized:
            return
        async with engine.begin() as conn:
            await conn.run_sync(TenantBase.metadata.create_all)
        self._initialized.add(url)

    @asynccontextmanager
    async def open_store_for(self, tenant: Tenant) -> AsyncIterator[AsyncSession]:
        url = self.resolve_url(tenant)
        engine = self._get_engine(url)
        session = AsyncSession(bind=engine, expire_on_commit=False, autoflush=False)
        try:
            try:
                await self._ensure_schema(engine, url)
                # [关键] 先拿一次连接，租户库不可达时在这里失败
                await session.connection()
            except (SQLAlchemyError, OSError) as e:
                logger.warning("Tenant store of '%s' is unreachable: %s", tenant.tenant_id, e)
                raise InfrastructureError(
                    f"Tenant store of '{tenant.tenant_id}' is unreachable: {e}"
                ) from e
            yield session
        finally:
            await session.close()

    async def dispose(self) -> None:
        for engine in self._engines.values():
            await engine.dispose()
        self._engines.clear()
        self._initialized.clear()
