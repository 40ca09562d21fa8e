# orchestrator/api/v1/tenants.py

from fastapi import APIRouter, Query
from typing import List, Optional
from orchestrator.core.context import AppContext
from orchestrator.api.dependencies.context import ActorContextDep, PublicContextDep
from orchestrator.schemas.common import JsonResponse
from orchestrator.schemas.deployment.deployment_schemas import DeploymentVersionRead, VersionDiff
from orchestrator.schemas.template.template_schemas import TemplateSyncLogRead
from orchestrator.schemas.tenant.tenant_schemas import TenantCreate, TenantUpdate, TenantRead
from orchestrator.services.registry.tenant_service import TenantService

router = APIRouter() # /tenants

@router.post("", response_model=JsonResponse[TenantRead], summary="Register a tenant")
async def register_tenant(data: TenantCreate, context: AppContext = ActorContextDep):
    return JsonResponse(data=await TenantService(context).register_tenant(data))

@router.get("", response_model=JsonResponse[List[TenantRead]])
async def list_tenants(include_inactive: bool = Query(False), context: AppContext = PublicContextDep):
    return JsonResponse(data=await TenantService(context).list_tenants(include_inactive))

@router.get("/{tenant_id}", response_model=JsonResponse[TenantRead])
async def get_tenant(tenant_id: str, context: AppContext = PublicContextDep):
    return JsonResponse(data=await TenantService(context).get_tenant(tenant_id))

@router.patch("/{tenant_id}", response_model=JsonResponse[TenantRead])
async def update_tenant(tenant_id: str, data: TenantUpdate, context: AppContext = ActorContextDep):
    return JsonResponse(data=await TenantService(context).update_tenant(tenant_id, data))

@router.post("/{tenant_id}/deactivate", response_model=JsonResponse[TenantRead])
async def deactivate_tenant(tenant_id: str, context: AppContext = ActorContextDep):
    return JsonResponse(data=await TenantService(context).deactivate_tenant(tenant_id))

@router.post("/{tenant_id}/activate", response_model=JsonResponse[TenantRead])
async def activate_tenant(tenant_id: str, context: AppContext = ActorContextDep):
    return JsonResponse(data=await TenantService(context).set_active(tenant_id, True))

# --- 版本查询 ---

@router.get("/{tenant_id}/versions", response_model=JsonResponse[List[DeploymentVersionRead]], summary="Version history of a tenant")
async def version_history(
    tenant_id: str,
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=200),
    context: AppContext = PublicContextDep
):
    return JsonResponse(data=await TenantService(context).version_history(tenant_id, page, page_size))

@router.get("/{tenant_id}/versions/current", response_model=JsonResponse[Optional[DeploymentVersionRead]])
async def current_version(tenant_id: str, context: AppContext = PublicContextDep):
    return JsonResponse(data=await TenantService(context).current_version(tenant_id))

@router.get("/{tenant_id}/versions/compare", response_model=JsonResponse[VersionDiff])
async def compare_versions(
    tenant_id: str,
    from_id: int = Query(...),
    to_id: int = Query(...),
    context: AppContext = PublicContextDep
):
    return JsonResponse(data=await TenantService(context).compare_versions(tenant_id, from_id, to_id))

@router.get("/{tenant_id}/versions/{version_id}/can-rollback", response_model=JsonResponse[bool])
async def can_rollback(tenant_id: str, version_id: int, context: AppContext = PublicContextDep):
    return JsonResponse(data=await TenantService(context).can_rollback(tenant_id, version_id))

@router.get("/{tenant_id}/template-sync-logs", response_model=JsonResponse[List[TemplateSyncLogRead]])
async def template_sync_history(tenant_id: str, limit: int = Query(20, ge=1, le=200), context: AppContext = PublicContextDep):
    return JsonResponse(data=await TenantService(context).template_sync_history(tenant_id, limit))
