# orchestrator/services/template/template_sync_service.py

import logging
from typing import Dict, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from orchestrator.core.context import AppContext
from orchestrator.dao.tenant_store.artifact_dao import TemplateArtifactDao
from orchestrator.dao.tenant_store.sync_log_dao import TemplateSyncLogDao
from orchestrator.models.tenant import Tenant
from orchestrator.models.tenant_store import TemplateArtifact, TemplateSyncLog, SyncStatus
from orchestrator.schemas.template.template_schemas import TemplateSyncResult
from orchestrator.services.exceptions import ExecutionError, PolicyError, ValidationError
from orchestrator.services.template.conflict_analyzer import ConflictAnalyzer
from orchestrator.utils.timeutils import utcnow

logger = logging.getLogger(__name__)

USE_MASTER = "use_master"
USE_LOCAL = "use_local"
SKIP = "skip"
RESOLUTIONS = (USE_MASTER, USE_LOCAL, SKIP)

class TemplateSyncService:
    """
    把一个主模板版本应用到单个租户的模板文件上。与 VersioningService.deploy 对应，
    只是作用对象是模板文件而不是库结构。

    存在 High/Critical 冲突时，每个涉及的文件都必须在 resolutions 中给出策略，否则抛 PolicyError。
    没有给出策略的低风险冲突按 use_master 处理。
    """

    def __init__(self, context: AppContext, store: AsyncSession, tenant: Tenant):
        self.store = store
        self.tenant = tenant
        self.analyzer = ConflictAnalyzer(context)
        self.artifact_dao = TemplateArtifactDao(store)
        self.log_dao = TemplateSyncLogDao(store)

    async def sync(
        self,
        master_version: str,
        performed_by: str,
        resolutions: Optional[Dict[str, str]] = None,
        sync_job_id: Optional[str] = None
    ) -> TemplateSyncResult:
        resolutions = dict(resolutions or {})
        invalid = {p: r for p, r in resolutions.items() if r not in RESOLUTIONS}
        if invalid:
            raise ValidationError(f"Unknown conflict resolutions: {invalid}")

        master = await self.analyzer.get_master_version(master_version)
        report = await self.analyzer.analyze_in_store(self.tenant, master, self.store)
        log = TemplateSyncLog(
            tenant_id=self.tenant.tenant_id,
            sync_job_id=sync_job_id,
            from_version=self.tenant.current_template_version,
            to_version=master.version,
            status=SyncStatus.IN_PROGRESS,
            conflict_resolutions=resolutions or None,
            performed_by=performed_by,
            started_at=utcnow(),
        )

        if report.requires_manual_intervention:
            unresolved = [p for p in report.blocking_files() if p not in resolutions]
            if unresolved:
                log.status = SyncStatus.MANUAL_REVIEW_REQUIRED
                log.error_message = f"Unresolved conflicts: {', '.join(unresolved)}"
                log.completed_at = utcnow()
                await self.log_dao.add(log)
                await self.store.commit()
                raise PolicyError(
                    f"Template sync of tenant '{self.tenant.tenant_id}' to {master.version} "
                    f"requires manual review, unresolved conflicts: {', '.join(unresolved)}"
                )

        change_set, _ = await self.analyzer.change_set_for(self.tenant, master)
        result = TemplateSyncResult(
            tenant_id=self.tenant.tenant_id,
            from_version=self.tenant.current_template_version,
            to_version=master.version,
        )
        try:
            artifacts = await self.artifact_dao.get_all_by_path()
            upstream = set(change_set.added) | set(change_set.changed)
            for file in sorted(master.files, key=lambda f: f.path):
                if file.path not in upstream:
                    # 上游未变更的文件不动内容，只前移基线，本地定制保持定制状态
                    self._advance_baseline(artifacts.get(file.path), file.checksum, master.version)
                    continue
                self._apply_file(artifacts.get(file.path), file.path, file.content, file.checksum,
                                 master.version, resolutions.get(file.path), result)
            for path in change_set.deleted:
                await self._apply_deletion(artifacts.get(path), path, resolutions.get(path), result)
            await self.store.flush()

            log.status = SyncStatus.COMPLETED
            log.files_updated = result.files_updated
            log.files_added = result.files_added
            log.files_deleted = result.files_deleted
            log.completed_at = utcnow()
            await self.log_dao.add(log)
            await self.store.commit()
        except SQLAlchemyError as e:
            await self.store.rollback()
            await self._record_failure(log, str(e))
            raise ExecutionError(
                f"Template sync of tenant '{self.tenant.tenant_id}' to {master.version} failed: {e}",
                step_kind="artifact_sync"
            ) from e

        logger.info(
            "Tenant '%s' synced templates to %s: %s updated, %s added, %s deleted, %s kept",
            self.tenant.tenant_id, master.version, len(result.files_updated),
            len(result.files_added), len(result.files_deleted), len(result.files_kept)
        )
        return result

    @staticmethod
    def _advance_baseline(artifact: Optional[TemplateArtifact], checksum: str, version: str) -> None:
        if artifact is None:
            return
        artifact.base_checksum = checksum
        artifact.base_version = version

    def _apply_file(
        self,
        artifact: Optional[TemplateArtifact],
        path: str,
        content: str,
        checksum: str,
        version: str,
        resolution: Optional[str],
        result: TemplateSyncResult
    ) -> None:
        if artifact is None:
            self.store.add(TemplateArtifact(
                path=path, content=content, checksum=checksum, base_checksum=checksum, base_version=version
            ))
            result.files_added.append(path)
            return

        if artifact.checksum == checksum:
            # 内容已一致，只前移基线
            artifact.base_checksum = checksum
            artifact.base_version = version
            return

        if artifact.is_customized:
            resolution = resolution or USE_MASTER
            if resolution == SKIP:
                result.files_kept.append(path)
                return
            if resolution == USE_LOCAL:
                # 保留本地内容，基线前移后文件仍然是定制状态
                artifact.base_checksum = checksum
                artifact.base_version = version
                result.files_kept.append(path)
                return

        artifact.content = content
        artifact.checksum = checksum
        artifact.base_checksum = checksum
        artifact.base_version = version
        result.files_updated.append(path)

    async def _apply_deletion(
        self,
        artifact: Optional[TemplateArtifact],
        path: str,
        resolution: Optional[str],
        result: TemplateSyncResult
    ) -> None:
        if artifact is None:
            return
        if artifact.is_customized and (resolution or USE_MASTER) != USE_MASTER:
            if resolution == USE_LOCAL:
                # 变为本地独有的文件
                artifact.base_checksum = None
                artifact.base_version = None
            result.files_kept.append(path)
            return
        await self.store.delete(artifact)
        result.files_deleted.append(path)

    async def _record_failure(self, log: TemplateSyncLog, message: str) -> None:
        failed = TemplateSyncLog(
            tenant_id=log.tenant_id,
            sync_job_id=log.sync_job_id,
            from_version=log.from_version,
            to_version=log.to_version,
            status=SyncStatus.FAILED,
            conflict_resolutions=log.conflict_resolutions,
            performed_by=log.performed_by,
            started_at=log.started_at,
            completed_at=utcnow(),
            error_message=message,
        )
        await self.log_dao.add(failed)
        await self.store.commit()
