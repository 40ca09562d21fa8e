# orchestrator/dao/tenant_store/artifact_dao.py

from sqlalchemy.ext.asyncio import AsyncSession
from typing import Optional, Dict
from orchestrator.dao.base_dao import BaseDao
from orchestrator.models.tenant_store import TemplateArtifact

class TemplateArtifactDao(BaseDao[TemplateArtifact]):
    def __init__(self, db_session: AsyncSession):
        super().__init__(TemplateArtifact, db_session)

    async def get_by_path(self, path: str) -> Optional[TemplateArtifact]:
        return await self.get_one(where={"path": path})

    async def get_all_by_path(self) -> Dict[str, TemplateArtifact]:
        artifacts = await self.get_list(order=[TemplateArtifact.path])
        return {a.path: a for a in artifacts}
