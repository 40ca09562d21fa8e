# orchestrator/worker/tasks/orchestration.py

import logging
from orchestrator.worker.context import build_context_for_worker, WORKER_IDENTITY
from orchestrator.services.orchestration.deployment_job_service import DeploymentJobService
from orchestrator.services.orchestration.template_sync_job_service import TemplateSyncJobService

logger = logging.getLogger(__name__)

async def execute_deployment_job_task(ctx: dict, job_id: str):
    """
    ARQ 任务: 执行一个部署/回滚作业的扇出。
    单租户的失败在服务内部被隔离记录，这里只会看到作业级之外的意外错误。
    """
    try:
        db_session_factory = ctx['db_session_factory']
        # [关键] 每个任务都在自己的会话中运行，作业之间没有共享状态
        async with db_session_factory() as session:
            context = build_context_for_worker(ctx, session)
            job = await DeploymentJobService(context).execute_job(job_id, executed_by=WORKER_IDENTITY)
            return job.status.value
    except Exception:
        logger.exception("FATAL in task execute_deployment_job_task for job %s", job_id)
        raise  # 仍然重新抛出，让 ARQ 知道任务失败了

async def execute_template_sync_job_task(ctx: dict, job_id: str):
    """ARQ 任务: 执行一个模板同步作业的扇出。"""
    try:
        db_session_factory = ctx['db_session_factory']
        async with db_session_factory() as session:
            context = build_context_for_worker(ctx, session)
            job = await TemplateSyncJobService(context).execute_job(job_id, executed_by=WORKER_IDENTITY)
            return job.status.value
    except Exception:
        logger.exception("FATAL in task execute_template_sync_job_task for job %s", job_id)
        raise
