# orchestrator/core/context.py

from pydantic import BaseModel, ConfigDict
from typing import Optional
from sqlalchemy.ext.asyncio import AsyncSession

from orchestrator.db.tenant_db_session import TenantStoreResolver
from orchestrator.services.scheduler import JobScheduler
from orchestrator.services.notification_service import NotifierRegistry

class AppContext(BaseModel):
    """
    Defines the complete, typed context for service layer operations.
    The API builds one per request, the worker builds one per job execution.
    """
    model_config = ConfigDict(arbitrary_types_allowed=True)

    # 控制平面数据库会话
    db: AsyncSession

    # 外部协作者
    scheduler: JobScheduler
    tenant_stores: TenantStoreResolver
    notifier: NotifierRegistry

    # 认证由外部完成，这里只是一个不透明的身份字符串
    actor_identity: Optional[str] = None

    @property
    def actor(self) -> str:
        if not self.actor_identity:
            raise PermissionError("An acting identity is required for this operation.")
        return self.actor_identity
