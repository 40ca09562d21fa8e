# orchestrator/services/registry/tenant_service.py

import logging
from typing import List, Optional

from orchestrator.core.context import AppContext
from orchestrator.dao.registry.tenant_dao import TenantDao
from orchestrator.models.tenant import Tenant
from orchestrator.models.tenant_store import TemplateSyncLog
from orchestrator.dao.tenant_store.sync_log_dao import TemplateSyncLogDao
from orchestrator.schemas.template.template_schemas import TemplateSyncLogRead
from orchestrator.schemas.deployment.deployment_schemas import DeploymentVersionRead, VersionDiff
from orchestrator.schemas.tenant.tenant_schemas import TenantCreate, TenantUpdate, TenantRead
from orchestrator.services.exceptions import NotFoundError, ValidationError
from orchestrator.services.versioning.versioning_service import VersioningService

logger = logging.getLogger(__name__)

class TenantService:
    """
    租户注册表的维护，以及对单个租户版本历史的只读查询。
    租户不会被删除，只会被停用。
    """

    def __init__(self, context: AppContext):
        self.context = context
        self.db = context.db
        self.dao = TenantDao(context.db)

    async def _get_tenant(self, tenant_id: str) -> Tenant:
        tenant = await self.dao.get_by_tenant_id(tenant_id)
        if tenant is None:
            raise NotFoundError(f"Tenant '{tenant_id}' not found.")
        return tenant

    async def get_tenant(self, tenant_id: str) -> TenantRead:
        return TenantRead.model_validate(await self._get_tenant(tenant_id))

    async def list_tenants(self, include_inactive: bool = False) -> List[TenantRead]:
        if include_inactive:
            tenants = await self.dao.get_list(order=[Tenant.tenant_id])
        else:
            tenants = await self.dao.get_active()
        return [TenantRead.model_validate(t) for t in tenants]

    async def register_tenant(self, data: TenantCreate) -> TenantRead:
        if await self.dao.get_by_tenant_id(data.tenant_id) is not None:
            raise ValidationError(f"Tenant '{data.tenant_id}' is already registered.")
        tenant = Tenant(**data.model_dump(), is_active=True)
        await self.dao.add(tenant)
        await self.db.commit()
        logger.info("Registered tenant '%s'", tenant.tenant_id)
        return TenantRead.model_validate(tenant)

    async def update_tenant(self, tenant_id: str, data: TenantUpdate) -> TenantRead:
        tenant = await self._get_tenant(tenant_id)
        for field, value in data.model_dump(exclude_unset=True).items():
            setattr(tenant, field, value)
        await self.db.commit()
        return TenantRead.model_validate(tenant)

    async def set_active(self, tenant_id: str, is_active: bool) -> TenantRead:
        tenant = await self._get_tenant(tenant_id)
        tenant.is_active = is_active
        await self.db.commit()
        logger.info("Tenant '%s' %s", tenant_id, "activated" if is_active else "deactivated")
        return TenantRead.model_validate(tenant)

    async def deactivate_tenant(self, tenant_id: str) -> TenantRead:
        return await self.set_active(tenant_id, False)

    # ==============================================================================
    # 版本查询 (读租户自己的库)
    # ==============================================================================

    async def version_history(self, tenant_id: str, page: int = 1, page_size: int = 20) -> List[DeploymentVersionRead]:
        tenant = await self._get_tenant(tenant_id)
        async with self.context.tenant_stores.open_store_for(tenant) as store:
            records = await VersioningService(store, tenant_id).version_history(page, page_size)
            return [DeploymentVersionRead.model_validate(r) for r in records]

    async def current_version(self, tenant_id: str) -> Optional[DeploymentVersionRead]:
        tenant = await self._get_tenant(tenant_id)
        async with self.context.tenant_stores.open_store_for(tenant) as store:
            record = await VersioningService(store, tenant_id).current_version()
            return DeploymentVersionRead.model_validate(record) if record else None

    async def can_rollback(self, tenant_id: str, version_id: int) -> bool:
        tenant = await self._get_tenant(tenant_id)
        async with self.context.tenant_stores.open_store_for(tenant) as store:
            return await VersioningService(store, tenant_id).can_rollback_to(version_id)

    async def compare_versions(self, tenant_id: str, from_version_id: int, to_version_id: int) -> VersionDiff:
        tenant = await self._get_tenant(tenant_id)
        async with self.context.tenant_stores.open_store_for(tenant) as store:
            return await VersioningService(store, tenant_id).diff(from_version_id, to_version_id)

    async def template_sync_history(self, tenant_id: str, limit: int = 20) -> List[TemplateSyncLogRead]:
        tenant = await self._get_tenant(tenant_id)
        async with self.context.tenant_stores.open_store_for(tenant) as store:
            logs = await TemplateSyncLogDao(store).get_list(
                where={"tenant_id": tenant_id},
                order=[TemplateSyncLog.started_at.desc(), TemplateSyncLog.id.desc()],
                limit=limit
            )
            return [TemplateSyncLogRead.model_validate(log) for log in logs]
