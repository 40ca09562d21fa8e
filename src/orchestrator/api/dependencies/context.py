# orchestrator/api/dependencies/context.py

from fastapi import Depends, Header, HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncSession
from typing import Optional
from orchestrator.core.context import AppContext
from orchestrator.db.session import get_db

# --- 步骤1: 基础上下文 ---
async def get_base_context(
    request: Request,
    db: AsyncSession = Depends(get_db),
    x_actor: Optional[str] = Header(None, description="Acting identity, resolved by the upstream auth gateway"),
) -> AppContext:
    """
    只负责组装全局共享的依赖。认证在上游完成，这里只接收一个不透明的身份字符串。
    """
    return AppContext(
        db=db,
        scheduler=request.app.state.scheduler,
        tenant_stores=request.app.state.tenant_stores,
        notifier=request.app.state.notifier,
        actor_identity=x_actor.strip() if x_actor and x_actor.strip() else None,
    )

# --- 步骤2: 需要操作者身份的上下文 ---
async def require_actor_context(
    context: AppContext = Depends(get_base_context),
) -> AppContext:
    if not context.actor_identity:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="X-Actor header is required.")
    return context

# 只读路由
PublicContextDep = Depends(get_base_context)
# 会修改状态的路由
ActorContextDep = Depends(require_actor_context)
