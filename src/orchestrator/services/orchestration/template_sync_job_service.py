# orchestrator/services/orchestration/template_sync_job_service.py

import logging
from datetime import datetime
from typing import Dict, List, Optional

from orchestrator.core.config import settings
from orchestrator.dao.template.sync_job_dao import TemplateSyncJobDao
from orchestrator.dao.template.template_proposal_dao import TemplateUpdateProposalDao
from orchestrator.models.job import JobStatus
from orchestrator.models.template import TemplateSyncJob
from orchestrator.models.tenant import Tenant
from orchestrator.schemas.template.template_schemas import SyncJobStatusRead, TemplateSyncReport
from orchestrator.services.exceptions import NotFoundError
from orchestrator.services.orchestration.base import BaseJobOrchestrator
from orchestrator.services.template.conflict_analyzer import ConflictAnalyzer
from orchestrator.services.template.template_sync_service import TemplateSyncService
from orchestrator.utils.id_generator import generate_uuid
from orchestrator.utils.timeutils import utcnow, to_naive_utc

logger = logging.getLogger(__name__)

# conflict_resolutions 中作用于所有租户的键
ALL_TENANTS = "*"

class TemplateSyncJobService(BaseJobOrchestrator):
    """模板同步作业的编排，与 DeploymentJobService 对应。"""

    job_kind = "template_sync"
    task_name = "execute_template_sync_job_task"
    job_dao_class = TemplateSyncJobDao
    proposal_dao_class = TemplateUpdateProposalDao
    status_schema = SyncJobStatusRead
    report_schema = TemplateSyncReport

    @property
    def queue_name(self) -> Optional[str]:
        return settings.TEMPLATE_SYNC_QUEUE_NAME

    def build_job(
        self,
        master_version: str,
        scheduled_by: str,
        scheduled_time: Optional[datetime] = None,
        tenant_id: Optional[str] = None,
        total_tenants: int = 1,
        previous_version: Optional[str] = None,
        requires_manual_review: bool = False,
        conflict_resolutions: Optional[Dict[str, Dict[str, str]]] = None,
        proposal_id: Optional[str] = None,
    ) -> TemplateSyncJob:
        return TemplateSyncJob(
            uuid=generate_uuid(),
            tenant_id=tenant_id,
            master_template_version=master_version,
            previous_version=previous_version,
            requires_manual_review=requires_manual_review,
            conflict_resolutions=conflict_resolutions,
            status=JobStatus.SCHEDULED,
            scheduled_at=self._resolve_schedule_time(scheduled_time),
            scheduled_by=scheduled_by,
            total_tenants=total_tenants,
            completed_tenants=0,
            failed_tenants=[],
            proposal_id=proposal_id,
        )

    async def schedule_tenant_template_sync(
        self,
        tenant_id: str,
        master_version: str,
        scheduled_by: str,
        scheduled_time: Optional[datetime] = None,
        conflict_resolutions: Optional[Dict[str, str]] = None
    ) -> str:
        tenant = await self.tenant_dao.get_by_tenant_id(tenant_id)
        if tenant is None:
            raise NotFoundError(f"Tenant '{tenant_id}' not found.")
        await ConflictAnalyzer(self.context).get_master_version(master_version)
        job = self.build_job(
            master_version=master_version,
            scheduled_by=scheduled_by,
            scheduled_time=scheduled_time,
            tenant_id=tenant_id,
            previous_version=tenant.current_template_version,
            conflict_resolutions={tenant_id: dict(conflict_resolutions)} if conflict_resolutions else None,
        )
        return await self._create_and_submit(job)

    async def schedule_global_template_sync(
        self,
        master_version: str,
        scheduled_by: str,
        scheduled_time: Optional[datetime] = None,
        conflict_resolutions: Optional[Dict[str, Dict[str, str]]] = None
    ) -> str:
        """跳过提案评审，对所有启用自动同步的租户调度同步 (管理员操作)。"""
        preview = await ConflictAnalyzer(self.context).preview_update(master_version)
        targets = await self._global_targets()
        job = self.build_job(
            master_version=master_version,
            scheduled_by=scheduled_by,
            scheduled_time=scheduled_time,
            total_tenants=len(targets),
            previous_version=preview.previous_version,
            requires_manual_review=preview.requires_manual_review,
            conflict_resolutions={k: dict(v) for k, v in conflict_resolutions.items()} if conflict_resolutions else None,
        )
        return await self._create_and_submit(job)

    async def _global_targets(self) -> List[Tenant]:
        return await self.tenant_dao.get_sync_targets()

    def _resolutions_for(self, job: TemplateSyncJob, tenant_id: str) -> Dict[str, str]:
        resolutions = job.conflict_resolutions or {}
        return {**resolutions.get(ALL_TENANTS, {}), **resolutions.get(tenant_id, {})}

    async def _execute_for_tenant(self, job: TemplateSyncJob, tenant: Tenant) -> None:
        actor = job.executed_by or job.scheduled_by
        async with self.context.tenant_stores.open_store_for(tenant) as store:
            await TemplateSyncService(self.context, store, tenant).sync(
                job.master_template_version,
                performed_by=actor,
                resolutions=self._resolutions_for(job, tenant.tenant_id),
                sync_job_id=job.uuid,
            )

        await self.tenant_dao.update_where(
            where={"id": tenant.id},
            values={
                "current_template_version": job.master_template_version,
                "last_template_sync_at": utcnow(),
            }
        )

    # ==============================================================================
    # 对外名称
    # ==============================================================================

    async def sync_job_status(self, job_id: str) -> SyncJobStatusRead:
        return await self.job_status(job_id)

    async def cancel_sync(self, job_id: str, cancelled_by: str) -> bool:
        return await self.cancel(job_id, cancelled_by)

    async def sync_report(self, from_date: Optional[datetime] = None, to_date: Optional[datetime] = None) -> TemplateSyncReport:
        counts = await self._report_counts(from_date, to_date)
        counts["conflicts_detected"] = await self.dao.count(
            where={"requires_manual_review": True},
            start_time=to_naive_utc(from_date), end_time=to_naive_utc(to_date)
        )
        return TemplateSyncReport(**counts)
