# orchestrator/services/versioning/migration_executor.py

import hashlib
import logging
from typing import List

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from orchestrator.dao.tenant_store.artifact_dao import TemplateArtifactDao
from orchestrator.dao.tenant_store.setting_dao import TenantSettingDao
from orchestrator.models.tenant_store import TemplateArtifact
from orchestrator.schemas.deployment.migration_schemas import (
    MigrationPayload, SchemaScriptStep, ArtifactSyncStep, ConfigUpdateStep
)
from orchestrator.services.exceptions import ExecutionError

logger = logging.getLogger(__name__)

def checksum_of(content: str) -> str:
    return hashlib.sha256(content.encode("utf-8")).hexdigest()

class MigrationExecutor:
    """
    在一个租户库会话上按顺序执行迁移步骤。
    不提交事务: 成功与否由调用方 (VersioningService) 决定 commit 还是 rollback。
    """

    def __init__(self, db: AsyncSession):
        self.db = db
        self.artifact_dao = TemplateArtifactDao(db)
        self.setting_dao = TenantSettingDao(db)

    async def apply(self, payload: MigrationPayload) -> None:
        for index, step in enumerate(payload.steps, start=1):
            try:
                await self._apply_step(step)
            except (SQLAlchemyError, ValueError) as e:
                raise ExecutionError(
                    f"Migration step {index} ({step.kind}) failed: {e}", step_kind=step.kind
                ) from e
            logger.debug("Applied migration step %s (%s)", index, step.kind)

    async def run_rollback_scripts(self, scripts: List[str]) -> None:
        # [关键] 与正向迁移相反的顺序执行
        for index, sql in enumerate(reversed(scripts), start=1):
            try:
                await self.db.execute(text(sql))
            except SQLAlchemyError as e:
                raise ExecutionError(
                    f"Rollback script {index} failed: {e}", step_kind="rollback_script"
                ) from e

    async def _apply_step(self, step) -> None:
        if isinstance(step, SchemaScriptStep):
            await self.db.execute(text(step.sql))
        elif isinstance(step, ArtifactSyncStep):
            await self._sync_artifact(step)
        elif isinstance(step, ConfigUpdateStep):
            await self.setting_dao.upsert(step.key, step.value)
        else:
            raise ValueError(f"Unsupported migration step: {step!r}")

    async def _sync_artifact(self, step: ArtifactSyncStep) -> None:
        artifact = await self.artifact_dao.get_by_path(step.path)
        if step.content is None:
            if artifact is not None:
                await self.db.delete(artifact)
                await self.db.flush()
            return
        checksum = checksum_of(step.content)
        if artifact is None:
            # 部署下发的文件视为主模板内容，不算租户定制
            await self.artifact_dao.add(TemplateArtifact(
                path=step.path, content=step.content, checksum=checksum, base_checksum=checksum
            ))
        else:
            artifact.content = step.content
            artifact.checksum = checksum
            artifact.base_checksum = checksum
            await self.db.flush()
