# orchestrator/dao/tenant_store/sync_log_dao.py

from sqlalchemy.ext.asyncio import AsyncSession
from orchestrator.dao.base_dao import BaseDao
from orchestrator.models.tenant_store import TemplateSyncLog

class TemplateSyncLogDao(BaseDao[TemplateSyncLog]):
    def __init__(self, db_session: AsyncSession):
        super().__init__(TemplateSyncLog, db_session)
