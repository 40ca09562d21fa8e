# orchestrator/services/proposal/proposal_service.py

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from orchestrator.core.context import AppContext
from orchestrator.dao.deployment.proposal_dao import DeploymentProposalDao
from orchestrator.dao.registry.tenant_dao import TenantDao
from orchestrator.dao.template.template_proposal_dao import TemplateUpdateProposalDao
from orchestrator.models.deployment import DeploymentProposal
from orchestrator.models.job import ProposalStatus, RiskLevel
from orchestrator.models.template import TemplateUpdateProposal
from orchestrator.schemas.deployment.deployment_schemas import DeploymentProposalRead
from orchestrator.schemas.deployment.migration_schemas import MigrationPayload
from orchestrator.schemas.template.template_schemas import (
    ConflictSeverity, TemplateUpdateProposalRead, ConflictResolutionMap
)
from orchestrator.services.exceptions import NotFoundError, StateError, ValidationError
from orchestrator.services.notification_service import PROPOSAL_CREATED, PROPOSAL_APPROVED, PROPOSAL_REJECTED
from orchestrator.services.orchestration.deployment_job_service import DeploymentJobService
from orchestrator.services.orchestration.template_sync_job_service import TemplateSyncJobService
from orchestrator.services.template.conflict_analyzer import ConflictAnalyzer
from orchestrator.utils.timeutils import utcnow

logger = logging.getLogger(__name__)

class ProposalService:
    """
    提案的评审流程: propose -> approve | reject，状态只迁移一次。
    提案本身从不接触租户库；批准时创建且只创建一个作业并交给调度器。
    """

    def __init__(self, context: AppContext):
        self.context = context
        self.db = context.db
        self.dao = DeploymentProposalDao(context.db)
        self.template_dao = TemplateUpdateProposalDao(context.db)
        self.tenant_dao = TenantDao(context.db)
        self.deployment_jobs = DeploymentJobService(context)
        self.sync_jobs = TemplateSyncJobService(context)

    # ==============================================================================
    # 部署提案
    # ==============================================================================

    async def _get_proposal(self, proposal_id: str) -> DeploymentProposal:
        proposal = await self.dao.get_by_uuid(proposal_id)
        if proposal is None:
            raise NotFoundError(f"Deployment proposal '{proposal_id}' not found.")
        return proposal

    async def get_proposal(self, proposal_id: str) -> DeploymentProposalRead:
        return DeploymentProposalRead.model_validate(await self._get_proposal(proposal_id))

    async def propose_deployment(
        self,
        version: str,
        release_notes: Optional[str],
        migration_payload: Any,
        proposed_by: str,
        tenant_id: Optional[str] = None,
        risk_level: RiskLevel = RiskLevel.MEDIUM,
        rollback_plan: Optional[Dict[str, Any]] = None,
        has_breaking_changes: bool = False
    ) -> str:
        if not version or not version.strip():
            raise ValidationError("Version label must not be empty.")
        payload = MigrationPayload.parse(migration_payload)
        if tenant_id is not None and await self.tenant_dao.get_by_tenant_id(tenant_id) is None:
            raise NotFoundError(f"Tenant '{tenant_id}' not found.")

        proposal = DeploymentProposal(
            version=version.strip(),
            release_notes=release_notes,
            migration_payload=payload.to_storage(),
            proposed_by=proposed_by,
            proposed_at=utcnow(),
            status=ProposalStatus.PENDING,
            target_tenant_id=tenant_id,
            risk_level=risk_level,
            rollback_plan=rollback_plan,
            has_breaking_changes=has_breaking_changes,
            affected_tenants=[],
        )
        await self.dao.add(proposal)
        await self.db.commit()
        logger.info("Deployment proposal %s for version %s created by %s", proposal.uuid, proposal.version, proposed_by)
        await self.context.notifier.notify(PROPOSAL_CREATED, {
            "kind": "deployment", "proposal_id": proposal.uuid, "version": proposal.version, "proposed_by": proposed_by
        })
        return proposal.uuid

    async def list_pending_proposals(self) -> List[DeploymentProposalRead]:
        proposals = await self.dao.get_pending()
        return [DeploymentProposalRead.model_validate(p) for p in proposals]

    async def _fan_out_set(self, tenant_id: Optional[str]) -> List[str]:
        if tenant_id is not None:
            tenant = await self.tenant_dao.get_by_tenant_id(tenant_id)
            if tenant is None:
                raise NotFoundError(f"Tenant '{tenant_id}' not found.")
            if not tenant.is_active:
                # 与全局目标一致，停用的租户不参与部署
                raise StateError(f"Tenant '{tenant_id}' is not active.")
            return [tenant.tenant_id]
        return [t.tenant_id for t in await self.tenant_dao.get_deploy_targets()]

    async def approve_proposal(
        self,
        proposal_id: str,
        approved_by: str,
        scheduled_time: Optional[datetime] = None,
        review_notes: Optional[str] = None
    ) -> str:
        """
        批准并调度。提案与作业在同一个事务里落库，之后才提交给调度器。
        对非 pending 的提案抛 StateError，不会创建第二个作业。
        """
        proposal = await self._get_proposal(proposal_id)
        if proposal.status != ProposalStatus.PENDING:
            raise StateError(f"Proposal '{proposal_id}' is {proposal.status.value}, only pending proposals can be approved.")

        tenant_ids = await self._fan_out_set(proposal.target_tenant_id)
        job = self.deployment_jobs.build_job(
            version=proposal.version,
            release_notes=proposal.release_notes,
            migration_payload=proposal.migration_payload,
            scheduled_by=approved_by,
            scheduled_time=scheduled_time,
            tenant_id=proposal.target_tenant_id,
            total_tenants=len(tenant_ids),
            proposal_id=proposal.uuid,
        )

        # [关键] 条件更新保证并发批准只有一个成功
        claimed = await self.dao.update_where(
            where={"id": proposal.id, "status": ProposalStatus.PENDING},
            values={
                "status": ProposalStatus.APPROVED,
                "reviewed_by": approved_by,
                "reviewed_at": utcnow(),
                "review_notes": review_notes,
                "scheduled_time": job.scheduled_at,
                "approved_job_id": job.uuid,
                "affected_tenants": tenant_ids,
            }
        )
        if not claimed:
            await self.db.rollback()
            raise StateError(f"Proposal '{proposal_id}' is no longer pending.")
        self.db.add(job)
        await self.db.commit()

        await self.deployment_jobs.submit(job)
        logger.info("Proposal %s approved by %s, job %s targets %s tenants",
                    proposal_id, approved_by, job.uuid, len(tenant_ids))
        await self.context.notifier.notify(PROPOSAL_APPROVED, {
            "kind": "deployment", "proposal_id": proposal_id, "job_id": job.uuid, "approved_by": approved_by
        })
        return job.uuid

    async def reject_proposal(self, proposal_id: str, rejected_by: str, reason: str) -> None:
        proposal = await self._get_proposal(proposal_id)
        if proposal.status != ProposalStatus.PENDING:
            raise StateError(f"Proposal '{proposal_id}' is {proposal.status.value}, only pending proposals can be rejected.")
        await self._reject(self.dao, proposal.id, proposal_id, rejected_by, reason)
        await self.context.notifier.notify(PROPOSAL_REJECTED, {
            "kind": "deployment", "proposal_id": proposal_id, "rejected_by": rejected_by, "reason": reason
        })

    async def _reject(self, dao, pk: int, proposal_id: str, rejected_by: str, reason: str) -> None:
        claimed = await dao.update_where(
            where={"id": pk, "status": ProposalStatus.PENDING},
            values={
                "status": ProposalStatus.REJECTED,
                "reviewed_by": rejected_by,
                "reviewed_at": utcnow(),
                "rejection_reason": reason,
            }
        )
        if not claimed:
            await self.db.rollback()
            raise StateError(f"Proposal '{proposal_id}' is no longer pending.")
        await self.db.commit()
        logger.info("Proposal %s rejected by %s: %s", proposal_id, rejected_by, reason)

    # ==============================================================================
    # 模板更新提案
    # ==============================================================================

    async def _get_template_proposal(self, proposal_id: str) -> TemplateUpdateProposal:
        proposal = await self.template_dao.get_by_uuid(proposal_id)
        if proposal is None:
            raise NotFoundError(f"Template update proposal '{proposal_id}' not found.")
        return proposal

    async def propose_template_update(self, master_version: str, detected_by: str) -> str:
        """为一个主模板版本生成更新提案，附带当前的预览结果。"""
        existing = await self.template_dao.get_one(
            where={"master_template_version": master_version, "status": ProposalStatus.PENDING}
        )
        if existing is not None:
            raise StateError(f"A pending proposal for template version {master_version} already exists: {existing.uuid}")

        preview = await ConflictAnalyzer(self.context).preview_update(master_version)
        worst = ConflictSeverity.LOW
        for report in preview.conflicts:
            if report.overall_risk_level.rank > worst.rank:
                worst = report.overall_risk_level

        proposal = TemplateUpdateProposal(
            master_template_version=preview.master_version,
            previous_version=preview.previous_version,
            detected_by=detected_by,
            detected_at=utcnow(),
            status=ProposalStatus.PENDING,
            changed_files=preview.changed_files,
            added_files=preview.added_files,
            deleted_files=preview.deleted_files,
            breaking_changes=preview.breaking_changes,
            requires_manual_review=preview.requires_manual_review,
            risk_level=RiskLevel(worst.value),
            affected_tenants=[],
        )
        await self.template_dao.add(proposal)
        await self.db.commit()
        logger.info("Template update proposal %s for version %s created by %s", proposal.uuid, master_version, detected_by)
        await self.context.notifier.notify(PROPOSAL_CREATED, {
            "kind": "template_sync", "proposal_id": proposal.uuid, "version": master_version, "proposed_by": detected_by
        })
        return proposal.uuid

    async def list_pending_template_updates(self) -> List[TemplateUpdateProposalRead]:
        proposals = await self.template_dao.get_pending()
        return [TemplateUpdateProposalRead.model_validate(p) for p in proposals]

    async def approve_template_update(
        self,
        proposal_id: str,
        approved_by: str,
        scheduled_time: Optional[datetime] = None,
        conflict_resolutions: Optional[ConflictResolutionMap] = None,
        review_notes: Optional[str] = None
    ) -> str:
        proposal = await self._get_template_proposal(proposal_id)
        if proposal.status != ProposalStatus.PENDING:
            raise StateError(f"Proposal '{proposal_id}' is {proposal.status.value}, only pending proposals can be approved.")

        tenant_ids = [t.tenant_id for t in await self.tenant_dao.get_sync_targets()]
        job = self.sync_jobs.build_job(
            master_version=proposal.master_template_version,
            scheduled_by=approved_by,
            scheduled_time=scheduled_time,
            total_tenants=len(tenant_ids),
            previous_version=proposal.previous_version,
            requires_manual_review=proposal.requires_manual_review,
            conflict_resolutions={k: dict(v) for k, v in conflict_resolutions.items()} if conflict_resolutions else None,
            proposal_id=proposal.uuid,
        )
        claimed = await self.template_dao.update_where(
            where={"id": proposal.id, "status": ProposalStatus.PENDING},
            values={
                "status": ProposalStatus.APPROVED,
                "reviewed_by": approved_by,
                "reviewed_at": utcnow(),
                "review_notes": review_notes,
                "scheduled_time": job.scheduled_at,
                "approved_job_id": job.uuid,
                "affected_tenants": tenant_ids,
            }
        )
        if not claimed:
            await self.db.rollback()
            raise StateError(f"Proposal '{proposal_id}' is no longer pending.")
        self.db.add(job)
        await self.db.commit()

        await self.sync_jobs.submit(job)
        logger.info("Template proposal %s approved by %s, sync job %s", proposal_id, approved_by, job.uuid)
        await self.context.notifier.notify(PROPOSAL_APPROVED, {
            "kind": "template_sync", "proposal_id": proposal_id, "job_id": job.uuid, "approved_by": approved_by
        })
        return job.uuid

    # 对外的同名操作
    approve_template_sync = approve_template_update

    async def reject_template_update(self, proposal_id: str, rejected_by: str, reason: str) -> None:
        proposal = await self._get_template_proposal(proposal_id)
        if proposal.status != ProposalStatus.PENDING:
            raise StateError(f"Proposal '{proposal_id}' is {proposal.status.value}, only pending proposals can be rejected.")
        await self._reject(self.template_dao, proposal.id, proposal_id, rejected_by, reason)
        await self.context.notifier.notify(PROPOSAL_REJECTED, {
            "kind": "template_sync", "proposal_id": proposal_id, "rejected_by": rejected_by, "reason": reason
        })
