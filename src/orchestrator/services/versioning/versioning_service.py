# orchestrator/services/versioning/versioning_service.py

import logging
from typing import Any, Dict, List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from orchestrator.dao.tenant_store.version_dao import DeploymentVersionDao
from orchestrator.models.tenant_store import DeploymentVersion, DeploymentStatus
from orchestrator.schemas.deployment.deployment_schemas import VersionDiff
from orchestrator.schemas.deployment.migration_schemas import MigrationPayload
from orchestrator.services.exceptions import ExecutionError, NotFoundError, StateError, ValidationError
from orchestrator.services.versioning.migration_executor import MigrationExecutor
from orchestrator.utils.timeutils import utcnow

logger = logging.getLogger(__name__)

class VersioningService:
    """
    单个租户的版本引擎。

    会话必须来自该租户自己的库 (TenantStoreResolver.open_store_for)，
    所有查询同时按 tenant_id 过滤。

    状态迁移都是"期望旧状态"的条件更新:
    pending -> in_progress -> completed | failed，completed -> rolled_back。
    """

    def __init__(self, db: AsyncSession, tenant_id: str):
        self.db = db
        self.tenant_id = tenant_id
        self.dao = DeploymentVersionDao(db)
        self.executor = MigrationExecutor(db)
        # 最近一次 deploy/rollback 失败的原因
        self.last_error: Optional[str] = None

    # ==============================================================================
    # 查询
    # ==============================================================================

    async def get_version(self, version_id: int) -> DeploymentVersion:
        record = await self.dao.get_one(where={"id": version_id, "tenant_id": self.tenant_id})
        if record is None:
            raise NotFoundError(f"Version {version_id} not found for tenant '{self.tenant_id}'.")
        return record

    async def current_version(self) -> Optional[DeploymentVersion]:
        """最新部署的 completed 记录，回滚记录同样算数。"""
        return await self.dao.get_current(self.tenant_id)

    async def version_history(self, page: int = 1, page_size: int = 20) -> List[DeploymentVersion]:
        return await self.dao.get_history(self.tenant_id, page=page, limit=page_size)

    # ==============================================================================
    # 创建与部署
    # ==============================================================================

    async def create_version(
        self,
        version: str,
        release_notes: Optional[str],
        migration_payload: Any,
        deployment_metadata: Optional[Dict[str, Any]] = None
    ) -> DeploymentVersion:
        if not version or not version.strip():
            raise ValidationError("Version label must not be empty.")
        payload = MigrationPayload.parse(migration_payload)
        record = DeploymentVersion(
            tenant_id=self.tenant_id,
            version=version.strip(),
            release_notes=release_notes,
            migration_payload=payload.to_storage(),
            status=DeploymentStatus.PENDING,
            released_at=utcnow(),
            deployment_metadata=deployment_metadata,
        )
        await self.dao.add(record)
        await self.db.commit()
        return record

    async def deploy(self, version_id: int, deployed_by: str) -> bool:
        """
        执行一个 pending 版本的迁移载荷。
        任意步骤失败: 步骤效果随事务回滚，记录置为 failed 并写明失败的步骤类型，返回 False。
        """
        record = await self.get_version(version_id)
        if record.status != DeploymentStatus.PENDING:
            raise StateError(f"Version {record.id} is {record.status.value}, only pending versions can be deployed.")

        claimed = await self.dao.update_where(
            where={"id": record.id, "status": DeploymentStatus.PENDING},
            values={"status": DeploymentStatus.IN_PROGRESS, "deployed_by": deployed_by}
        )
        if not claimed:
            raise StateError(f"Version {record.id} is no longer pending.")
        await self.db.commit()

        payload = MigrationPayload.parse(record.migration_payload)
        try:
            await self.executor.apply(payload)
            record.status = DeploymentStatus.COMPLETED
            record.deployed_at = utcnow()
            record.error_message = None
            await self.db.commit()
        except (ExecutionError, SQLAlchemyError) as e:
            logger.warning("Deployment of version %s on tenant '%s' failed: %s", record.version, self.tenant_id, e)
            await self._mark_failed(record, getattr(e, "message", str(e)))
            return False

        logger.info("Tenant '%s' deployed version %s (id=%s)", self.tenant_id, record.version, record.id)
        return True

    # ==============================================================================
    # 回滚
    # ==============================================================================

    def _rollback_block_reason(
        self,
        target: DeploymentVersion,
        current: Optional[DeploymentVersion]
    ) -> Optional[str]:
        if target.status != DeploymentStatus.COMPLETED:
            return f"Version {target.id} is {target.status.value}, only completed versions can be rolled back to."
        if current is None:
            return f"Tenant '{self.tenant_id}' has no current version."
        if current.id == target.id:
            return f"Version {target.id} is already the current version."
        if not MigrationPayload.parse(target.migration_payload).rollback_supported:
            return f"Version {target.id} does not support rollback."
        return None

    async def can_rollback_to(self, version_id: int) -> bool:
        target = await self.get_version(version_id)
        current = await self.current_version()
        return self._rollback_block_reason(target, current) is None

    async def rollback(self, target_version_id: int, actor: str) -> bool:
        """
        回滚到一个更早的 completed 版本。
        前置条件不满足时抛 StateError 且不创建任何记录。
        成功: 新建 is_rollback 记录并置为 completed，原当前版本置为 rolled_back。
        失败: 新记录置为 failed，原当前版本保持不变。
        """
        target = await self.get_version(target_version_id)
        current = await self.current_version()
        reason = self._rollback_block_reason(target, current)
        if reason:
            raise StateError(reason)

        payload = MigrationPayload.parse(target.migration_payload)
        record = DeploymentVersion(
            tenant_id=self.tenant_id,
            version=target.version,
            release_notes=f"Rollback to version {target.version}",
            migration_payload=target.migration_payload,
            status=DeploymentStatus.IN_PROGRESS,
            released_at=utcnow(),
            deployed_by=actor,
            is_rollback=True,
            rollback_from_id=current.id,
            deployment_metadata={"target_version_id": target.id, "replaced_version": current.version},
        )
        await self.dao.add(record)
        await self.db.commit()

        try:
            await self.executor.run_rollback_scripts(payload.rollback_scripts)
            superseded = await self.dao.update_where(
                where={"id": current.id, "status": DeploymentStatus.COMPLETED},
                values={"status": DeploymentStatus.ROLLED_BACK}
            )
            if not superseded:
                raise ExecutionError(f"Version {current.id} changed while rolling back.", step_kind="rollback_script")
            record.status = DeploymentStatus.COMPLETED
            record.deployed_at = utcnow()
            await self.db.commit()
        except (ExecutionError, SQLAlchemyError) as e:
            logger.warning("Rollback of tenant '%s' to version %s failed: %s", self.tenant_id, target.version, e)
            await self._mark_failed(record, getattr(e, "message", str(e)))
            return False

        logger.info(
            "Tenant '%s' rolled back from %s (id=%s) to %s (new id=%s)",
            self.tenant_id, current.version, current.id, target.version, record.id
        )
        return True

    async def _mark_failed(self, record: DeploymentVersion, message: str) -> None:
        # rollback 会让会话内所有实例过期，先取出主键
        record_id = record.id
        await self.db.rollback()
        await self.dao.update_where(
            where={"id": record_id, "status": DeploymentStatus.IN_PROGRESS},
            values={"status": DeploymentStatus.FAILED, "error_message": message}
        )
        await self.db.commit()
        await self.db.refresh(record)
        self.last_error = message

    # ==============================================================================
    # 比较
    # ==============================================================================

    async def diff(self, from_version_id: int, to_version_id: int) -> VersionDiff:
        """按键比较两个版本的载荷: diff(a, b).added == diff(b, a).removed。"""
        source = MigrationPayload.parse((await self.get_version(from_version_id)).migration_payload).entries()
        target = MigrationPayload.parse((await self.get_version(to_version_id)).migration_payload).entries()
        return VersionDiff(
            added={k: v for k, v in target.items() if k not in source},
            removed={k: v for k, v in source.items() if k not in target},
            changed={
                k: {"from": source[k], "to": target[k]}
                for k in source
                if k in target and source[k] != target[k]
            },
        )
