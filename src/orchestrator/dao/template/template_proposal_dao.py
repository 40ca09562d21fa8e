# orchestrator/dao/template/template_proposal_dao.py

from sqlalchemy.ext.asyncio import AsyncSession
from typing import List
from orchestrator.dao.base_dao import BaseDao
from orchestrator.models.template import TemplateUpdateProposal
from orchestrator.models.job import ProposalStatus

class TemplateUpdateProposalDao(BaseDao[TemplateUpdateProposal]):
    def __init__(self, db_session: AsyncSession):
        super().__init__(TemplateUpdateProposal, db_session)

    async def get_pending(self) -> List[TemplateUpdateProposal]:
        return await self.get_list(
            where={"status": ProposalStatus.PENDING},
            order=[TemplateUpdateProposal.detected_at, TemplateUpdateProposal.id]
        )
