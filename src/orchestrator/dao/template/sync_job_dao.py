# orchestrator/dao/template/sync_job_dao.py

from sqlalchemy.ext.asyncio import AsyncSession
from orchestrator.dao.base_dao import BaseDao
from orchestrator.models.template import TemplateSyncJob

class TemplateSyncJobDao(BaseDao[TemplateSyncJob]):
    def __init__(self, db_session: AsyncSession):
        super().__init__(TemplateSyncJob, db_session)
