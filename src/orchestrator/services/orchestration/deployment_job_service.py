# orchestrator/services/orchestration/deployment_job_service.py

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from orchestrator.core.config import settings
from orchestrator.dao.deployment.job_dao import DeploymentJobDao
from orchestrator.dao.deployment.proposal_dao import DeploymentProposalDao
from orchestrator.models.deployment import DeploymentJob
from orchestrator.models.job import JobStatus, JobType
from orchestrator.models.tenant import Tenant
from orchestrator.schemas.deployment.deployment_schemas import DeploymentJobStatusRead
from orchestrator.schemas.deployment.migration_schemas import MigrationPayload
from orchestrator.services.exceptions import ExecutionError, NotFoundError, ValidationError
from orchestrator.services.orchestration.base import BaseJobOrchestrator
from orchestrator.services.versioning.versioning_service import VersioningService
from orchestrator.utils.id_generator import generate_uuid
from orchestrator.utils.timeutils import utcnow

logger = logging.getLogger(__name__)

class DeploymentJobService(BaseJobOrchestrator):
    """部署作业与回滚作业的编排。单租户执行委托给 VersioningService。"""

    job_kind = "deployment"
    task_name = "execute_deployment_job_task"
    job_dao_class = DeploymentJobDao
    proposal_dao_class = DeploymentProposalDao
    status_schema = DeploymentJobStatusRead

    @property
    def queue_name(self) -> Optional[str]:
        return settings.DEPLOYMENT_QUEUE_NAME

    # ==============================================================================
    # 构建与调度
    # ==============================================================================

    def build_job(
        self,
        version: str,
        release_notes: Optional[str],
        migration_payload: Dict[str, Any],
        scheduled_by: str,
        scheduled_time: Optional[datetime] = None,
        tenant_id: Optional[str] = None,
        total_tenants: int = 1,
        job_type: JobType = JobType.DEPLOYMENT,
        job_metadata: Optional[Dict[str, Any]] = None,
        proposal_id: Optional[str] = None,
    ) -> DeploymentJob:
        """构建一个 scheduled 状态的作业 (未持久化)。uuid 预先生成，供提案记录和调度器使用。"""
        return DeploymentJob(
            uuid=generate_uuid(),
            job_type=job_type,
            tenant_id=tenant_id,
            version=version,
            release_notes=release_notes,
            migration_payload=migration_payload,
            status=JobStatus.SCHEDULED,
            scheduled_at=self._resolve_schedule_time(scheduled_time),
            scheduled_by=scheduled_by,
            total_tenants=total_tenants,
            completed_tenants=0,
            failed_tenants=[],
            job_metadata=job_metadata,
            proposal_id=proposal_id,
        )

    async def _require_tenant(self, tenant_id: str) -> Tenant:
        tenant = await self.tenant_dao.get_by_tenant_id(tenant_id)
        if tenant is None:
            raise NotFoundError(f"Tenant '{tenant_id}' not found.")
        return tenant

    async def schedule_tenant_deployment(
        self,
        tenant_id: str,
        version: str,
        release_notes: Optional[str],
        migration_payload: Dict[str, Any],
        scheduled_by: str,
        scheduled_time: Optional[datetime] = None
    ) -> str:
        """跳过提案评审，直接为单个租户调度部署 (管理员操作)。"""
        if not version or not version.strip():
            raise ValidationError("Version label must not be empty.")
        payload = MigrationPayload.parse(migration_payload)
        await self._require_tenant(tenant_id)
        job = self.build_job(
            version=version.strip(),
            release_notes=release_notes,
            migration_payload=payload.to_storage(),
            scheduled_by=scheduled_by,
            scheduled_time=scheduled_time,
            tenant_id=tenant_id,
        )
        return await self._create_and_submit(job)

    async def schedule_tenant_rollback(
        self,
        tenant_id: str,
        target_version_id: int,
        scheduled_by: str,
        scheduled_time: Optional[datetime] = None
    ) -> str:
        await self._require_tenant(tenant_id)
        job = self.build_job(
            version=f"rollback-{target_version_id}",
            release_notes=f"Rollback to version {target_version_id}",
            migration_payload=None,
            scheduled_by=scheduled_by,
            scheduled_time=scheduled_time,
            tenant_id=tenant_id,
            job_type=JobType.ROLLBACK,
            job_metadata={"target_version_id": target_version_id},
        )
        return await self._create_and_submit(job)

    # ==============================================================================
    # 执行
    # ==============================================================================

    async def _global_targets(self) -> List[Tenant]:
        return await self.tenant_dao.get_deploy_targets()

    async def _execute_for_tenant(self, job: DeploymentJob, tenant: Tenant) -> None:
        actor = job.executed_by or job.scheduled_by
        async with self.context.tenant_stores.open_store_for(tenant) as store:
            versioning = VersioningService(store, tenant.tenant_id)
            if job.job_type == JobType.ROLLBACK:
                target_id = (job.job_metadata or {}).get("target_version_id")
                if not await versioning.rollback(target_id, actor):
                    raise ExecutionError(versioning.last_error or f"Rollback to version {target_id} failed.")
            else:
                record = await versioning.create_version(
                    job.version, job.release_notes, job.migration_payload,
                    deployment_metadata={"job_id": job.uuid}
                )
                if not await versioning.deploy(record.id, actor):
                    raise ExecutionError(versioning.last_error or f"Deployment of {job.version} failed.")
            current = await versioning.current_version()

        # 冗余的展示字段，只在租户库提交成功之后写入
        await self.tenant_dao.update_where(
            where={"id": tenant.id},
            values={
                "current_version": current.version if current else None,
                "last_deployment_at": utcnow(),
            }
        )
        logger.info("Deployment job %s: tenant '%s' now at %s",
                    job.uuid, tenant.tenant_id, current.version if current else None)

    # ==============================================================================
    # 对外名称
    # ==============================================================================

    async def cancel_job(self, job_id: str, cancelled_by: str) -> bool:
        return await self.cancel(job_id, cancelled_by)

    async def deployment_report(self, from_date: Optional[datetime] = None, to_date: Optional[datetime] = None):
        return await self.report(from_date, to_date)
