# orchestrator/dao/tenant_store/setting_dao.py

from typing import Any
from sqlalchemy.ext.asyncio import AsyncSession
from orchestrator.dao.base_dao import BaseDao
from orchestrator.models.tenant_store import TenantSetting

class TenantSettingDao(BaseDao[TenantSetting]):
    def __init__(self, db_session: AsyncSession):
        super().__init__(TenantSetting, db_session)

    async def upsert(self, key: str, value: Any) -> TenantSetting:
        setting = await self.get_by_pk(key)
        if setting is None:
            return await self.add(TenantSetting(key=key, value=value))
        setting.value = value
        await self.db_session.flush()
        return setting
