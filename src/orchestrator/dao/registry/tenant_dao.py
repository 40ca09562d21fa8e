# orchestrator/dao/registry/tenant_dao.py

from sqlalchemy.ext.asyncio import AsyncSession
from typing import Optional, List
from orchestrator.dao.base_dao import BaseDao
from orchestrator.models.tenant import Tenant

class TenantDao(BaseDao[Tenant]):
    def __init__(self, db_session: AsyncSession):
        super().__init__(Tenant, db_session)

    async def get_by_tenant_id(self, tenant_id: str) -> Optional[Tenant]:
        return await self.get_one(where={"tenant_id": tenant_id})

    async def get_deploy_targets(self) -> List[Tenant]:
        """全局部署的扇出集合: 启用且开启自动部署的租户，按 tenant_id 排序保证顺序确定。"""
        return await self.get_list(
            where={"is_active": True, "auto_deploy_enabled": True},
            order=[Tenant.tenant_id]
        )

    async def get_sync_targets(self) -> List[Tenant]:
        return await self.get_list(
            where={"is_active": True, "auto_sync_enabled": True},
            order=[Tenant.tenant_id]
        )

    async def get_active(self) -> List[Tenant]:
        return await self.get_list(where={"is_active": True}, order=[Tenant.tenant_id])
