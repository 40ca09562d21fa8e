# orchestrator/services/orchestration/base.py

import logging
from datetime import datetime
from typing import Any, ClassVar, Dict, List, Optional, Type

from orchestrator.core.config import settings
from orchestrator.core.context import AppContext
from orchestrator.dao.base_dao import BaseDao
from orchestrator.dao.registry.tenant_dao import TenantDao
from orchestrator.models.job import JobStatus, ProposalStatus
from orchestrator.models.tenant import Tenant
from orchestrator.schemas.deployment.deployment_schemas import JobStatusRead, DeploymentReport
from orchestrator.services.exceptions import InfrastructureError, NotFoundError, StateError
from orchestrator.services.notification_service import JOB_FINISHED
from orchestrator.utils.timeutils import utcnow, to_naive_utc

logger = logging.getLogger(__name__)

class BaseJobOrchestrator:
    """
    扇出作业的公共生命周期。子类提供作业模型、任务函数名、全局目标集合和单租户的执行逻辑。

    状态机: scheduled -> in_progress -> completed | partially_completed | failed；scheduled -> cancelled。
    每一次迁移都是带期望旧状态的条件更新，所以并发的 worker / 重复投递只有一个能成功。
    """

    job_kind: ClassVar[str] = "job"
    task_name: ClassVar[str] = ""
    job_dao_class: ClassVar[Type[BaseDao]]
    proposal_dao_class: ClassVar[Type[BaseDao]]
    status_schema: ClassVar[Type[JobStatusRead]] = JobStatusRead
    report_schema: ClassVar[Type[DeploymentReport]] = DeploymentReport

    def __init__(self, context: AppContext):
        self.context = context
        self.db = context.db
        self.dao = self.job_dao_class(context.db)
        self.tenant_dao = TenantDao(context.db)

    @property
    def queue_name(self) -> Optional[str]:
        return None

    # ==============================================================================
    # 提交与查询
    # ==============================================================================

    async def _get_job(self, job_id: str):
        job = await self.dao.get_by_uuid(job_id)
        if job is None:
            raise NotFoundError(f"{self.job_kind} job '{job_id}' not found.")
        return job

    async def job_status(self, job_id: str) -> JobStatusRead:
        job = await self._get_job(job_id)
        return self.status_schema.model_validate(job)

    def _resolve_schedule_time(self, scheduled_time: Optional[datetime]) -> datetime:
        now = utcnow()
        scheduled_time = to_naive_utc(scheduled_time)
        return scheduled_time if scheduled_time and scheduled_time > now else now

    async def submit(self, job) -> str:
        """
        把已提交事务的作业交给调度器。调度器不可达时作业置为 failed，异常继续向上抛。
        """
        try:
            if job.scheduled_at > utcnow():
                await self.context.scheduler.submit_at(self.task_name, job.uuid, job.scheduled_at, self.queue_name)
            else:
                await self.context.scheduler.submit_now(self.task_name, job.uuid, self.queue_name)
        except InfrastructureError as e:
            logger.error("Failed to submit %s job %s: %s", self.job_kind, job.uuid, e.message)
            await self._finish(job, JobStatus.FAILED, f"Scheduler submission failed: {e.message}",
                               expected=JobStatus.SCHEDULED)
            raise
        logger.info("Submitted %s job %s (scheduled at %s, %s tenants)",
                    self.job_kind, job.uuid, job.scheduled_at, job.total_tenants)
        return job.uuid

    async def _create_and_submit(self, job) -> str:
        await self.dao.add(job)
        await self.db.commit()
        return await self.submit(job)

    # ==============================================================================
    # 执行 (由 worker 调用)
    # ==============================================================================

    async def _global_targets(self) -> List[Tenant]:
        raise NotImplementedError

    async def _execute_for_tenant(self, job, tenant: Tenant) -> None:
        """对单个租户执行；任何异常都会被记为该租户失败。"""
        raise NotImplementedError

    async def _resolve_targets(self, job) -> List[str]:
        if job.is_global:
            return [t.tenant_id for t in await self._global_targets()]
        tenant = await self.tenant_dao.get_by_tenant_id(job.tenant_id)
        if tenant is None:
            raise NotFoundError(f"Tenant '{job.tenant_id}' not found.")
        if not tenant.is_active:
            raise StateError(f"Tenant '{job.tenant_id}' is not active.")
        return [tenant.tenant_id]

    async def execute_job(self, job_id: str, executed_by: str = "scheduler"):
        """
        调度器触发的入口，对重复投递幂等: 只有 scheduled 的作业会被认领执行，其余情况直接返回。
        租户集合在执行时解析，total_tenants 以此为准。
        """
        job = await self._get_job(job_id)
        claimed = await self.dao.update_where(
            where={"id": job.id, "status": JobStatus.SCHEDULED},
            values={"status": JobStatus.IN_PROGRESS, "started_at": utcnow(), "executed_by": executed_by}
        )
        if not claimed:
            logger.info("%s job %s is %s, skipping execution.", self.job_kind, job_id, job.status.value)
            return job
        await self.db.commit()
        logger.info("Executing %s job %s (%s)", self.job_kind, job.uuid, job.version)

        try:
            tenant_ids = await self._resolve_targets(job)
        except Exception as e:
            # 扇出开始前的失败 (如注册表不可用) 使整个作业失败
            logger.error("%s job %s failed before fan-out: %s", self.job_kind, job.uuid, e, exc_info=True)
            await self.db.rollback()
            await self.db.refresh(job)
            await self._finish(job, JobStatus.FAILED, f"Job failed before fan-out: {e}")
            return job

        try:
            job.total_tenants = len(tenant_ids)
            job.completed_tenants = 0
            job.failed_tenants = []
            await self.db.commit()

            stopped_by = await self._fan_out(job, tenant_ids)

            failed = list(job.failed_tenants or [])
            if stopped_by is not None:
                status = JobStatus.FAILED
                message = (f"Stopped by {stopped_by} after {job.completed_tenants + len(failed)} "
                           f"of {job.total_tenants} tenants")
            elif not failed:
                status, message = JobStatus.COMPLETED, None
            elif job.completed_tenants == 0:
                status, message = JobStatus.FAILED, f"All {len(failed)} tenants failed"
            else:
                status, message = JobStatus.PARTIALLY_COMPLETED, f"Failed tenants: {', '.join(failed)}"
            await self._finish(job, status, message)
        except Exception as e:
            # [关键] 作业自身出错 (如控制平面库异常) 时不能停留在 in_progress，重复投递也不会再认领它
            logger.error("%s job %s failed during fan-out: %s", self.job_kind, job_id, e, exc_info=True)
            await self.db.rollback()
            await self.db.refresh(job)
            await self._finish(job, JobStatus.FAILED, f"Job failed during fan-out: {e}")
        return job

    async def _fan_out(self, job, tenant_ids: List[str]) -> Optional[str]:
        """
        顺序遍历租户，每个租户之后提交一次进度。
        返回停止请求人 (收到停止请求时)，否则返回 None。
        """
        for tenant_id in tenant_ids:
            stopped_by = await self._stop_requested_by(job)
            if stopped_by is not None:
                logger.warning("%s job %s stopped by %s before tenant '%s'",
                               self.job_kind, job.uuid, stopped_by, tenant_id)
                return stopped_by

            try:
                tenant = await self.tenant_dao.get_by_tenant_id(tenant_id)
                if tenant is None:
                    raise NotFoundError(f"Tenant '{tenant_id}' not found.")
                await self._execute_for_tenant(job, tenant)
                succeeded = True
            except Exception as e:
                logger.error("%s job %s failed for tenant '%s': %s",
                             self.job_kind, job.uuid, tenant_id, e, exc_info=True)
                succeeded = False
                # 丢弃该租户在控制平面上未提交的写入，再从库里取回已提交的进度
                await self.db.rollback()
                await self.db.refresh(job)

            if succeeded:
                job.completed_tenants = job.completed_tenants + 1
            else:
                # [注意] JSON 列必须整体赋值
                job.failed_tenants = [*(job.failed_tenants or []), tenant_id]
            await self.db.commit()
        return None

    async def _stop_requested_by(self, job) -> Optional[str]:
        rows = await self.dao.pluck("stop_requested_by", where=[("id", "==", job.id), ("stop_requested_at", "is not", None)])
        return rows[0] if rows else None

    async def _finish(self, job, status: JobStatus, message: Optional[str], expected: JobStatus = JobStatus.IN_PROGRESS) -> None:
        values: Dict[str, Any] = {"status": status, "completed_at": utcnow()}
        if message is not None:
            values["error_message"] = message
        updated = await self.dao.update_where(where={"id": job.id, "status": expected}, values=values)
        await self.db.commit()
        await self.db.refresh(job)
        if not updated:
            logger.warning("%s job %s was no longer %s when finishing.", self.job_kind, job.uuid, expected.value)
            return
        logger.info("%s job %s finished: %s (%s/%s completed, failed=%s)", self.job_kind, job.uuid,
                    status.value, job.completed_tenants, job.total_tenants, job.failed_tenants)
        await self.context.notifier.notify(JOB_FINISHED, {
            "kind": self.job_kind,
            "job_id": job.uuid,
            "status": status.value,
            "total_tenants": job.total_tenants,
            "completed_tenants": job.completed_tenants,
            "failed_tenants": list(job.failed_tenants or []),
            "error_message": job.error_message,
        })

    # ==============================================================================
    # 取消与停止
    # ==============================================================================

    async def cancel(self, job_id: str, cancelled_by: str) -> bool:
        """只有 scheduled 的作业可以取消；已开始或已终止的作业返回 False。"""
        job = await self._get_job(job_id)
        updated = await self.dao.update_where(
            where={"id": job.id, "status": JobStatus.SCHEDULED},
            values={"status": JobStatus.CANCELLED, "cancelled_by": cancelled_by, "completed_at": utcnow()}
        )
        if not updated:
            return False
        await self.db.commit()
        logger.info("%s job %s cancelled by %s", self.job_kind, job_id, cancelled_by)

        try:
            await self.context.scheduler.cancel(job_id, self.queue_name)
        except InfrastructureError as e:
            # 作业已是 cancelled，即使队列条目仍被投递，执行入口也只会跳过
            logger.warning("Could not drop queued submission of job %s: %s", job_id, e.message)
        return True

    async def request_stop(self, job_id: str, requested_by: str) -> bool:
        """对进行中的作业发起协作式停止，在下一个租户开始前生效。"""
        job = await self._get_job(job_id)
        updated = await self.dao.update_where(
            where=[("id", "==", job.id), ("status", "==", JobStatus.IN_PROGRESS), ("stop_requested_at", "is", None)],
            values={"stop_requested_at": utcnow(), "stop_requested_by": requested_by}
        )
        if not updated:
            return False
        await self.db.commit()
        logger.info("Stop requested for %s job %s by %s", self.job_kind, job_id, requested_by)
        return True

    # ==============================================================================
    # 报表
    # ==============================================================================

    async def _report_counts(self, from_date: Optional[datetime], to_date: Optional[datetime]) -> Dict[str, Any]:
        start, end = to_naive_utc(from_date), to_naive_utc(to_date)

        async def count_status(status: Optional[JobStatus] = None) -> int:
            where = {"status": status} if status else None
            return await self.dao.count(where=where, start_time=start, end_time=end)

        model = self.dao.model
        recent = await self.dao.get_list(
            where=[("completed_at", "is not", None)],
            order=[model.completed_at.desc(), model.id.desc()],
            limit=settings.RECENT_JOBS_LIMIT,
            start_time=start, end_time=end
        )
        per_tenant = await self.dao.count_by("tenant_id", start_time=start, end_time=end)

        return dict(
            from_date=from_date,
            to_date=to_date,
            total_jobs=await count_status(),
            successful_jobs=await count_status(JobStatus.COMPLETED),
            partially_completed_jobs=await count_status(JobStatus.PARTIALLY_COMPLETED),
            failed_jobs=await count_status(JobStatus.FAILED),
            cancelled_jobs=await count_status(JobStatus.CANCELLED),
            pending_approvals=await self._pending_approvals(),
            recent_jobs=[self.status_schema.model_validate(j) for j in recent],
            tenant_job_counts={(tenant_id or "global"): cnt for tenant_id, cnt in per_tenant.items()},
        )

    async def _pending_approvals(self) -> int:
        return await self.proposal_dao_class(self.db).count(where={"status": ProposalStatus.PENDING})

    async def report(self, from_date: Optional[datetime] = None, to_date: Optional[datetime] = None) -> DeploymentReport:
        return self.report_schema(**await self._report_counts(from_date, to_date))
