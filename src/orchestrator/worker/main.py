# orchestrator/worker/main.py

import logging
from arq import create_pool
from arq.connections import RedisSettings
from orchestrator.core.config import settings
from orchestrator.core.logging import setup_logging
from orchestrator.db.session import SessionLocal, engine
from orchestrator.db.tenant_db_session import TenantStoreResolver
from orchestrator.services.notification_service import NotifierRegistry
from orchestrator.services.scheduler import JobScheduler

logger = logging.getLogger(__name__)

TASK_FUNCTIONS = []

def get_redis_settings():
    """统一的 Redis 配置获取函数"""
    return RedisSettings(
        host=settings.REDIS_HOST,
        port=settings.REDIS_PORT,
        password=settings.REDIS_PASSWORD,
        database=settings.REDIS_DB
    )

async def startup(ctx):
    """Worker 进程启动时，创建依赖工厂。"""
    setup_logging()
    ctx['db_session_factory'] = SessionLocal
    ctx['tenant_stores'] = TenantStoreResolver()
    ctx['notifier'] = NotifierRegistry.from_settings()
    ctx['arq_pool'] = await create_pool(get_redis_settings())
    ctx['scheduler'] = JobScheduler(ctx['arq_pool'])
    logger.info("ARQ worker started up, database session factory is ready.")

async def shutdown(ctx):
    """Worker 进程关闭时，清理资源。"""
    await ctx['tenant_stores'].dispose()
    await ctx['notifier'].aclose()
    await ctx['arq_pool'].aclose()
    await engine.dispose()
    logger.info("ARQ worker shut down, database engines disposed.")

class WorkerSettings:
    """部署队列的 worker: arq orchestrator.worker.WorkerSettings"""
    functions = TASK_FUNCTIONS
    on_startup = startup
    on_shutdown = shutdown
    queue_name = settings.DEPLOYMENT_QUEUE_NAME
    max_jobs = settings.WORKER_MAX_JOBS
    job_timeout = settings.WORKER_JOB_TIMEOUT_SECONDS
    # 作业的执行入口自己保证幂等，失败时不让 arq 重试
    max_tries = 1
    redis_settings = get_redis_settings()

class TemplateSyncWorkerSettings(WorkerSettings):
    """模板同步队列的 worker: arq orchestrator.worker.TemplateSyncWorkerSettings"""
    queue_name = settings.TEMPLATE_SYNC_QUEUE_NAME
