# orchestrator/api/v1/template_sync.py

from datetime import datetime
from fastapi import APIRouter, Query
from typing import List, Optional
from orchestrator.core.context import AppContext
from orchestrator.api.dependencies.context import ActorContextDep, PublicContextDep
from orchestrator.schemas.common import JsonResponse, MsgResponse
from orchestrator.schemas.deployment.deployment_schemas import ProposalReject
from orchestrator.schemas.template.template_schemas import (
    MasterTemplateVersionCreate, MasterTemplateVersionRead, TemplateUpdatesRead, TemplatePreview,
    TemplateUpdateProposalCreate, TemplateUpdateProposalRead, TemplateSyncApprove,
    TenantTemplateSyncCreate, GlobalTemplateSyncCreate, ConflictAnalysisReport, SyncJobStatusRead, TemplateSyncReport
)
from orchestrator.services.proposal.proposal_service import ProposalService
from orchestrator.services.orchestration.template_sync_job_service import TemplateSyncJobService
from orchestrator.services.template.catalogue_service import TemplateCatalogueService
from orchestrator.services.template.conflict_analyzer import ConflictAnalyzer

router = APIRouter() # /template-sync

# ==============================================================================
# 主模板目录
# ==============================================================================

@router.get("/versions", response_model=JsonResponse[List[MasterTemplateVersionRead]], summary="List available master template versions")
async def list_available_template_versions(context: AppContext = PublicContextDep):
    return JsonResponse(data=await TemplateCatalogueService(context).list_versions())

@router.post("/versions", response_model=JsonResponse[MasterTemplateVersionRead], summary="Publish a master template version")
async def publish_template_version(data: MasterTemplateVersionCreate, context: AppContext = ActorContextDep):
    master = await TemplateCatalogueService(context).publish_version(data)
    return JsonResponse(data=MasterTemplateVersionRead.model_validate(master))

@router.get("/updates", response_model=JsonResponse[TemplateUpdatesRead], summary="Detect template updates")
async def detect_template_updates(context: AppContext = PublicContextDep):
    return JsonResponse(data=await ConflictAnalyzer(context).detect_template_updates())

@router.get("/versions/{master_version}/preview", response_model=JsonResponse[TemplatePreview], summary="Preview a template update")
async def preview_template_update(master_version: str, context: AppContext = PublicContextDep):
    return JsonResponse(data=await ConflictAnalyzer(context).preview_update(master_version))

@router.get("/tenants/{tenant_id}/conflicts", response_model=JsonResponse[ConflictAnalysisReport], summary="Analyze conflicts for one tenant")
async def analyze_conflicts(tenant_id: str, master_version: str = Query(...), context: AppContext = PublicContextDep):
    return JsonResponse(data=await ConflictAnalyzer(context).analyze_conflicts(tenant_id, master_version))

# ==============================================================================
# 模板更新提案
# ==============================================================================

@router.post("/proposals", response_model=JsonResponse[str], summary="Propose a template update")
async def propose_template_update(data: TemplateUpdateProposalCreate, context: AppContext = ActorContextDep):
    return JsonResponse(data=await ProposalService(context).propose_template_update(data.master_version, context.actor))

@router.get("/proposals/pending", response_model=JsonResponse[List[TemplateUpdateProposalRead]])
async def list_pending_template_updates(context: AppContext = PublicContextDep):
    return JsonResponse(data=await ProposalService(context).list_pending_template_updates())

@router.post("/proposals/{proposal_id}/approve", response_model=JsonResponse[SyncJobStatusRead], summary="Approve a template sync")
async def approve_template_sync(proposal_id: str, data: TemplateSyncApprove, context: AppContext = ActorContextDep):
    job_id = await ProposalService(context).approve_template_sync(
        proposal_id, context.actor,
        scheduled_time=data.scheduled_time,
        conflict_resolutions=data.conflict_resolutions,
        review_notes=data.review_notes,
    )
    return JsonResponse(data=await TemplateSyncJobService(context).sync_job_status(job_id))

@router.post("/proposals/{proposal_id}/reject", response_model=MsgResponse)
async def reject_template_update(proposal_id: str, data: ProposalReject, context: AppContext = ActorContextDep):
    await ProposalService(context).reject_template_update(proposal_id, context.actor, data.reason)
    return MsgResponse(msg="Proposal rejected")

# ==============================================================================
# 作业
# ==============================================================================

@router.post("/tenants/{tenant_id}/sync", response_model=JsonResponse[SyncJobStatusRead], summary="Schedule a template sync for one tenant")
async def schedule_tenant_template_sync(tenant_id: str, data: TenantTemplateSyncCreate, context: AppContext = ActorContextDep):
    service = TemplateSyncJobService(context)
    job_id = await service.schedule_tenant_template_sync(
        tenant_id, data.master_version, scheduled_by=context.actor,
        scheduled_time=data.scheduled_time, conflict_resolutions=data.conflict_resolutions
    )
    return JsonResponse(data=await service.sync_job_status(job_id))

@router.post("/sync", response_model=JsonResponse[SyncJobStatusRead], summary="Schedule a template sync for all auto-sync tenants")
async def schedule_global_template_sync(data: GlobalTemplateSyncCreate, context: AppContext = ActorContextDep):
    service = TemplateSyncJobService(context)
    job_id = await service.schedule_global_template_sync(
        data.master_version, scheduled_by=context.actor,
        scheduled_time=data.scheduled_time, conflict_resolutions=data.conflict_resolutions
    )
    return JsonResponse(data=await service.sync_job_status(job_id))

@router.get("/jobs/{job_id}", response_model=JsonResponse[SyncJobStatusRead])
async def sync_job_status(job_id: str, context: AppContext = PublicContextDep):
    return JsonResponse(data=await TemplateSyncJobService(context).sync_job_status(job_id))

@router.post("/jobs/{job_id}/cancel", response_model=JsonResponse[bool])
async def cancel_sync(job_id: str, context: AppContext = ActorContextDep):
    return JsonResponse(data=await TemplateSyncJobService(context).cancel_sync(job_id, context.actor))

@router.post("/jobs/{job_id}/stop", response_model=JsonResponse[bool])
async def request_sync_stop(job_id: str, context: AppContext = ActorContextDep):
    return JsonResponse(data=await TemplateSyncJobService(context).request_stop(job_id, context.actor))

@router.get("/report", response_model=JsonResponse[TemplateSyncReport], summary="Template sync report")
async def sync_report(
    from_date: Optional[datetime] = Query(None),
    to_date: Optional[datetime] = Query(None),
    context: AppContext = PublicContextDep
):
    return JsonResponse(data=await TemplateSyncJobService(context).sync_report(from_date, to_date))
