# orchestrator/core/logging.py

import logging
from orchestrator.core.config import settings

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"

def setup_logging(level: str | None = None) -> None:
    """API 进程和 Worker 进程启动时调用一次。"""
    logging.basicConfig(level=level or settings.LOG_LEVEL, format=LOG_FORMAT)
    # arq 自身的作业日志保持在 INFO，避免被 DEBUG 淹没
    logging.getLogger("arq").setLevel(logging.INFO)
