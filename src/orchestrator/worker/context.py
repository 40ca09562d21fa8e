# orchestrator/worker/context.py

from sqlalchemy.ext.asyncio import AsyncSession
from orchestrator.core.context import AppContext

WORKER_IDENTITY = "arq-worker"

def build_context_for_worker(ctx: dict, db_session: AsyncSession) -> AppContext:
    """为后台任务组装 AppContext。会话由任务自己的 `async with` 管理。"""
    return AppContext(
        db=db_session,
        scheduler=ctx['scheduler'],
        tenant_stores=ctx['tenant_stores'],
        notifier=ctx['notifier'],
        actor_identity=WORKER_IDENTITY,
    )
