# orchestrator/dao/deployment/job_dao.py

from sqlalchemy.ext.asyncio import AsyncSession
from orchestrator.dao.base_dao import BaseDao
from orchestrator.models.deployment import DeploymentJob

class DeploymentJobDao(BaseDao[DeploymentJob]):
    def __init__(self, db_session: AsyncSession):
        super().__init__(DeploymentJob, db_session)
