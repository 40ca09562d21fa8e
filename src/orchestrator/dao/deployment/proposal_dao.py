# orchestrator/dao/deployment/proposal_dao.py

from sqlalchemy.ext.asyncio import AsyncSession
from typing import List
from orchestrator.dao.base_dao import BaseDao
from orchestrator.models.deployment import DeploymentProposal
from orchestrator.models.job import ProposalStatus

class DeploymentProposalDao(BaseDao[DeploymentProposal]):
    def __init__(self, db_session: AsyncSession):
        super().__init__(DeploymentProposal, db_session)

    async def get_pending(self) -> List[DeploymentProposal]:
        return await self.get_list(
            where={"status": ProposalStatus.PENDING},
            order=[DeploymentProposal.proposed_at, DeploymentProposal.id]
        )
