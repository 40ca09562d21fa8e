# orchestrator/services/scheduler.py

import logging
from datetime import datetime
from typing import Optional

from arq.connections import ArqRedis
from arq.constants import job_key_prefix
from redis.exceptions import RedisError

from orchestrator.services.exceptions import InfrastructureError
from orchestrator.utils.timeutils import to_aware_utc

logger = logging.getLogger(__name__)

class JobScheduler:
    """
    外部作业调度器 (arq) 的薄封装。

    作业的 uuid 直接作为 arq 的 _job_id，所以同一个作业重复提交不会产生第二个队列条目；
    arq 本身是至少一次投递，执行入口必须自己保证幂等。
    """

    def __init__(self, arq_pool: ArqRedis, default_queue_name: Optional[str] = None):
        self.arq_pool = arq_pool
        self.default_queue_name = default_queue_name

    def _queue(self, queue_name: Optional[str]) -> Optional[str]:
        return queue_name or self.default_queue_name

    async def submit_now(self, function: str, job_id: str, queue_name: Optional[str] = None) -> str:
        try:
            job = await self.arq_pool.enqueue_job(
                function, job_id, _job_id=job_id, _queue_name=self._queue(queue_name)
            )
        except (RedisError, OSError) as e:
            raise InfrastructureError(f"Failed to submit job {job_id}: {e}") from e
        if job is None:
            logger.info("Job %s is already queued, submission ignored.", job_id)
        return job_id

    async def submit_at(self, function: str, job_id: str, when: datetime, queue_name: Optional[str] = None) -> str:
        try:
            job = await self.arq_pool.enqueue_job(
                function, job_id,
                _job_id=job_id,
                _queue_name=self._queue(queue_name),
                _defer_until=to_aware_utc(when),
            )
        except (RedisError, OSError) as e:
            raise InfrastructureError(f"Failed to schedule job {job_id}: {e}") from e
        if job is None:
            logger.info("Job %s is already queued, deferred submission ignored.", job_id)
        return job_id

    async def cancel(self, job_id: str, queue_name: Optional[str] = None) -> bool:
        """从队列中移除尚未开始的提交。尽力而为: 返回是否真的移除了队列条目。"""
        queue = self._queue(queue_name) or "arq:queue"
        try:
            removed = await self.arq_pool.zrem(queue, job_id)
            await self.arq_pool.delete(job_key_prefix + job_id)
        except (RedisError, OSError) as e:
            raise InfrastructureError(f"Failed to cancel job {job_id}: {e}") from e
        return bool(removed)
