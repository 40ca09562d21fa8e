# orchestrator/dao/template/master_template_dao.py

from sqlalchemy.ext.asyncio import AsyncSession
from typing import Optional, List
from orchestrator.dao.base_dao import BaseDao
from orchestrator.models.template import MasterTemplateVersion

class MasterTemplateVersionDao(BaseDao[MasterTemplateVersion]):
    def __init__(self, db_session: AsyncSession):
        super().__init__(MasterTemplateVersion, db_session)

    async def get_by_version(self, version: str) -> Optional[MasterTemplateVersion]:
        return await self.get_one(where={"version": version})

    async def get_all_ordered(self) -> List[MasterTemplateVersion]:
        """按发布时间升序"""
        return await self.get_list(order=[MasterTemplateVersion.released_at, MasterTemplateVersion.id])
