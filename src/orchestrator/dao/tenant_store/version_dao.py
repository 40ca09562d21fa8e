# orchestrator/dao/tenant_store/version_dao.py

from sqlalchemy.ext.asyncio import AsyncSession
from typing import Optional, List
from orchestrator.dao.base_dao import BaseDao
from orchestrator.models.tenant_store import DeploymentVersion, DeploymentStatus

class DeploymentVersionDao(BaseDao[DeploymentVersion]):
    """版本记录存储。会话必须来自某一个租户自己的库。"""
    def __init__(self, db_session: AsyncSession):
        super().__init__(DeploymentVersion, db_session)

    async def get_current(self, tenant_id: str) -> Optional[DeploymentVersion]:
        # 当前版本 = 部署时间最新的 completed 记录，是否为回滚记录无关
        return await self.get_one(
            where={"tenant_id": tenant_id, "status": DeploymentStatus.COMPLETED},
            order=[DeploymentVersion.deployed_at.desc(), DeploymentVersion.id.desc()]
        )

    async def get_history(self, tenant_id: str, page: int = 1, limit: int = 20) -> List[DeploymentVersion]:
        return await self.get_list(
            where={"tenant_id": tenant_id},
            order=[DeploymentVersion.released_at.desc(), DeploymentVersion.id.desc()],
            page=page, limit=limit
        )
