# orchestrator/services/template/conflict_analyzer.py

import logging
from typing import Dict, List, Optional, Tuple

from sqlalchemy.ext.asyncio import AsyncSession

from orchestrator.core.context import AppContext
from orchestrator.dao.registry.tenant_dao import TenantDao
from orchestrator.dao.template.master_template_dao import MasterTemplateVersionDao
from orchestrator.dao.tenant_store.artifact_dao import TemplateArtifactDao
from orchestrator.models.template import MasterTemplateVersion
from orchestrator.models.tenant import Tenant
from orchestrator.models.tenant_store import TemplateArtifact
from orchestrator.schemas.template.template_schemas import (
    ConflictSeverity, ConflictWarning, ConflictAnalysisReport, TemplatePreview, TemplateUpdatesRead
)
from orchestrator.services.exceptions import InfrastructureError, NotFoundError

logger = logging.getLogger(__name__)

STYLE_EXTENSIONS = (".css", ".scss", ".less")

class ChangeSet:
    """两个主模板版本之间的文件差异。"""
    def __init__(self, base: Dict[str, str], target: Dict[str, str]):
        self.changed: List[str] = sorted(p for p in target if p in base and base[p] != target[p])
        self.added: List[str] = sorted(p for p in target if p not in base)
        self.deleted: List[str] = sorted(p for p in base if p not in target)

    @property
    def is_empty(self) -> bool:
        return not (self.changed or self.added or self.deleted)

def _is_style_only(path: str) -> bool:
    return path.lower().endswith(STYLE_EXTENSIONS)

class ConflictAnalyzer:
    """
    比较租户本地定制过的模板文件与主模板的变更集合，给出冲突与严重级别。

    变更集合取自租户当前模板版本到目标版本之间的差异；从未同步过的租户以空清单为基线。
    """

    def __init__(self, context: AppContext):
        self.context = context
        self.db = context.db
        self.tenant_dao = TenantDao(context.db)
        self.catalogue_dao = MasterTemplateVersionDao(context.db)

    # ==============================================================================
    # 主模板目录
    # ==============================================================================

    async def get_master_version(self, version: str) -> MasterTemplateVersion:
        master = await self.catalogue_dao.get_by_version(version)
        if master is None:
            raise NotFoundError(f"Master template version '{version}' not found.")
        return master

    async def detect_available_versions(self) -> List[str]:
        return [v.version for v in await self.catalogue_dao.get_all_ordered()]

    async def detect_template_updates(self) -> TemplateUpdatesRead:
        """以所有启用租户中最旧的模板版本为基线，列出之后发布的版本。"""
        ordered = await self.detect_available_versions()
        if not ordered:
            return TemplateUpdatesRead()

        positions = {version: index for index, version in enumerate(ordered)}
        tenants = await self.tenant_dao.get_active()
        # 未同步过或版本已不在目录中的租户视为最旧
        tenant_positions = [positions.get(t.current_template_version, -1) for t in tenants]
        baseline = min(tenant_positions) if tenant_positions else len(ordered) - 1

        available = ordered[baseline + 1:]
        return TemplateUpdatesRead(
            current_version=ordered[baseline] if baseline >= 0 else None,
            latest_version=ordered[-1],
            available_versions=available,
            update_available=bool(available),
        )

    async def _previous_of(self, master: MasterTemplateVersion) -> Optional[MasterTemplateVersion]:
        ordered = await self.catalogue_dao.get_all_ordered()
        for index, candidate in enumerate(ordered):
            if candidate.id == master.id:
                return ordered[index - 1] if index > 0 else None
        return None

    async def preview_update(self, master_version: str) -> TemplatePreview:
        master = await self.get_master_version(master_version)
        previous = await self._previous_of(master)
        change_set = ChangeSet(previous.manifest() if previous else {}, master.manifest())

        conflicts: List[ConflictAnalysisReport] = []
        for tenant in await self.tenant_dao.get_sync_targets():
            try:
                conflicts.append(await self.analyze_tenant(tenant, master))
            except InfrastructureError as e:
                # 预览不因单个租户库不可达而失败
                logger.warning("Skipping conflict preview for tenant '%s': %s", tenant.tenant_id, e.message)

        return TemplatePreview(
            master_version=master.version,
            previous_version=previous.version if previous else None,
            changed_files=change_set.changed,
            added_files=change_set.added,
            deleted_files=change_set.deleted,
            breaking_changes=list(master.breaking_changes or []),
            conflicts=conflicts,
            requires_manual_review=any(c.requires_manual_intervention for c in conflicts),
        )

    # ==============================================================================
    # 冲突分析
    # ==============================================================================

    async def analyze_conflicts(self, tenant_id: str, master_version: str) -> ConflictAnalysisReport:
        tenant = await self.tenant_dao.get_by_tenant_id(tenant_id)
        if tenant is None:
            raise NotFoundError(f"Tenant '{tenant_id}' not found.")
        master = await self.get_master_version(master_version)
        return await self.analyze_tenant(tenant, master)

    async def analyze_tenant(self, tenant: Tenant, master: MasterTemplateVersion) -> ConflictAnalysisReport:
        async with self.context.tenant_stores.open_store_for(tenant) as store:
            return await self.analyze_in_store(tenant, master, store)

    async def change_set_for(self, tenant: Tenant, master: MasterTemplateVersion) -> Tuple[ChangeSet, Optional[MasterTemplateVersion]]:
        base = None
        if tenant.current_template_version:
            base = await self.catalogue_dao.get_by_version(tenant.current_template_version)
        return ChangeSet(base.manifest() if base else {}, master.manifest()), base

    async def analyze_in_store(
        self,
        tenant: Tenant,
        master: MasterTemplateVersion,
        store: AsyncSession
    ) -> ConflictAnalysisReport:
        change_set, _ = await self.change_set_for(tenant, master)
        artifacts = await TemplateArtifactDao(store).get_all_by_path()
        warnings = self._build_warnings(change_set, master, artifacts)
        return self._build_report(tenant, master, warnings)

    def _build_warnings(
        self,
        change_set: ChangeSet,
        master: MasterTemplateVersion,
        artifacts: Dict[str, TemplateArtifact]
    ) -> List[ConflictWarning]:
        breaking = set(master.breaking_changes or [])
        target_manifest = master.manifest()
        warnings: List[ConflictWarning] = []

        for path in change_set.deleted:
            artifact = artifacts.get(path)
            if artifact is not None and artifact.is_customized:
                warnings.append(ConflictWarning(
                    conflict_type="customized_file_deleted",
                    description=f"'{path}' was customized locally and is removed by the master template.",
                    severity=ConflictSeverity.CRITICAL,
                    affected_files=[path],
                ))

        for path in change_set.changed:
            artifact = artifacts.get(path)
            if artifact is None or not artifact.is_customized:
                continue
            if path in breaking:
                severity, conflict_type = ConflictSeverity.HIGH, "breaking_change"
                description = f"'{path}' was customized locally and has a breaking change upstream."
            elif _is_style_only(path):
                severity, conflict_type = ConflictSeverity.LOW, "style_change"
                description = f"Stylesheet '{path}' was customized locally and changed upstream."
            else:
                severity, conflict_type = ConflictSeverity.MEDIUM, "content_change"
                description = f"'{path}' was customized locally and changed upstream."
            warnings.append(ConflictWarning(
                conflict_type=conflict_type, description=description, severity=severity, affected_files=[path]
            ))

        for path in change_set.added:
            artifact = artifacts.get(path)
            if artifact is not None and artifact.checksum != target_manifest[path]:
                warnings.append(ConflictWarning(
                    conflict_type="file_collision",
                    description=f"New master file '{path}' collides with a local file.",
                    severity=ConflictSeverity.HIGH,
                    affected_files=[path],
                ))

        return warnings

    def _build_report(
        self,
        tenant: Tenant,
        master: MasterTemplateVersion,
        warnings: List[ConflictWarning]
    ) -> ConflictAnalysisReport:
        overall = ConflictSeverity.LOW
        for warning in warnings:
            if warning.severity.rank > overall.rank:
                overall = warning.severity
        requires_manual = overall.rank >= ConflictSeverity.HIGH.rank

        report = ConflictAnalysisReport(
            tenant_id=tenant.tenant_id,
            current_version=tenant.current_template_version,
            target_version=master.version,
            warnings=warnings,
            overall_risk_level=overall,
            requires_manual_intervention=requires_manual,
        )
        if requires_manual:
            report.recommended_actions = [
                "Review custom template modifications",
                "Backup current templates before sync",
                "Provide a conflict resolution for: " + ", ".join(report.blocking_files()),
            ]
        else:
            report.recommended_actions = ["Safe to proceed with automatic sync"]
        return report
