# orchestrator/main.py

import logging
from contextlib import asynccontextmanager
from arq import create_pool
from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
from orchestrator.core.config import settings
from orchestrator.core.logging import setup_logging
from orchestrator.api.router import router
from orchestrator.db.session import engine
from orchestrator.db.tenant_db_session import TenantStoreResolver
from orchestrator.services.exceptions import (
    ServiceException, NotFoundError, StateError, PolicyError, ValidationError
)
from orchestrator.services.notification_service import NotifierRegistry
from orchestrator.services.scheduler import JobScheduler
from orchestrator.worker.main import get_redis_settings

logger = logging.getLogger(__name__)

@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logging()
    # 创建一个 ARQ 客户端连接池，用于向队列发送作业
    logger.info("Connecting to Redis...")
    app.state.arq_pool = await create_pool(get_redis_settings())
    app.state.scheduler = JobScheduler(app.state.arq_pool)
    app.state.tenant_stores = TenantStoreResolver()
    app.state.notifier = NotifierRegistry.from_settings()

    yield

    # --- 清理 ---
    logger.info("Closing connections...")
    await app.state.notifier.aclose()
    await app.state.tenant_stores.dispose()
    await app.state.arq_pool.aclose()
    await engine.dispose()

app = FastAPI(title="Release Orchestrator", lifespan=lifespan)

app.include_router(router)

# 服务层异常 -> HTTP 状态码
EXCEPTION_STATUS = (
    (NotFoundError, status.HTTP_404_NOT_FOUND),
    (StateError, status.HTTP_409_CONFLICT),
    (PolicyError, status.HTTP_423_LOCKED),
    (ValidationError, status.HTTP_422_UNPROCESSABLE_ENTITY),
)

def _envelope(status_code: int, msg, headers=None) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"status": status_code, "msg": msg, "data": None},
        headers=headers,
    )

@app.exception_handler(ServiceException)
async def service_exception_handler(request: Request, exc: ServiceException):
    # 处理所有来自服务层的、可预期的业务逻辑错误
    status_code = next(
        (code for exc_type, code in EXCEPTION_STATUS if isinstance(exc, exc_type)),
        status.HTTP_400_BAD_REQUEST
    )
    logger.info("%s on %s %s: %s", type(exc).__name__, request.method, request.url.path, exc.message)
    return _envelope(status_code, exc.message)

@app.exception_handler(PermissionError)
async def permission_exception_handler(request: Request, exc: PermissionError):
    return _envelope(status.HTTP_401_UNAUTHORIZED, str(exc))

@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    # 重写 FastAPI 默认的 HTTPException 处理器，以匹配我们的响应格式
    return _envelope(exc.status_code, exc.detail, headers=exc.headers)

@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception):
    # 这个处理器只处理真正未预料到的服务器内部错误
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return _envelope(500, "Internal Server Error")
