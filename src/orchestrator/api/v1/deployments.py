# orchestrator/api/v1/deployments.py

from datetime import datetime
from fastapi import APIRouter, Query
from typing import List, Optional
from orchestrator.core.context import AppContext
from orchestrator.api.dependencies.context import ActorContextDep, PublicContextDep
from orchestrator.schemas.common import JsonResponse, MsgResponse
from orchestrator.schemas.deployment.deployment_schemas import (
    DeploymentProposalCreate, DeploymentProposalRead, ProposalApprove, ProposalReject,
    TenantDeploymentCreate, TenantRollbackCreate, DeploymentJobStatusRead, DeploymentReport
)
from orchestrator.services.proposal.proposal_service import ProposalService
from orchestrator.services.orchestration.deployment_job_service import DeploymentJobService

router = APIRouter() # /deployments

# ==============================================================================
# 提案
# ==============================================================================

@router.post("/proposals", response_model=JsonResponse[DeploymentProposalRead], summary="Propose a deployment")
async def propose_deployment(data: DeploymentProposalCreate, context: AppContext = ActorContextDep):
    service = ProposalService(context)
    proposal_id = await service.propose_deployment(
        version=data.version,
        release_notes=data.release_notes,
        migration_payload=data.migration_payload,
        proposed_by=context.actor,
        tenant_id=data.tenant_id,
        risk_level=data.risk_level,
        rollback_plan=data.rollback_plan,
        has_breaking_changes=data.has_breaking_changes,
    )
    return JsonResponse(data=await service.get_proposal(proposal_id))

@router.get("/proposals/pending", response_model=JsonResponse[List[DeploymentProposalRead]], summary="List pending proposals")
async def list_pending_proposals(context: AppContext = PublicContextDep):
    return JsonResponse(data=await ProposalService(context).list_pending_proposals())

@router.get("/proposals/{proposal_id}", response_model=JsonResponse[DeploymentProposalRead])
async def get_proposal(proposal_id: str, context: AppContext = PublicContextDep):
    return JsonResponse(data=await ProposalService(context).get_proposal(proposal_id))

@router.post("/proposals/{proposal_id}/approve", response_model=JsonResponse[DeploymentJobStatusRead], summary="Approve and schedule a proposal")
async def approve_proposal(proposal_id: str, data: ProposalApprove, context: AppContext = ActorContextDep):
    job_id = await ProposalService(context).approve_proposal(
        proposal_id, context.actor, scheduled_time=data.scheduled_time, review_notes=data.review_notes
    )
    return JsonResponse(data=await DeploymentJobService(context).job_status(job_id))

@router.post("/proposals/{proposal_id}/reject", response_model=MsgResponse, summary="Reject a proposal")
async def reject_proposal(proposal_id: str, data: ProposalReject, context: AppContext = ActorContextDep):
    await ProposalService(context).reject_proposal(proposal_id, context.actor, data.reason)
    return MsgResponse(msg="Proposal rejected")

# ==============================================================================
# 单租户作业 (管理员直接调度)
# ==============================================================================

@router.post("/tenants/{tenant_id}/deployments", response_model=JsonResponse[DeploymentJobStatusRead], summary="Schedule a deployment for one tenant")
async def schedule_tenant_deployment(tenant_id: str, data: TenantDeploymentCreate, context: AppContext = ActorContextDep):
    service = DeploymentJobService(context)
    job_id = await service.schedule_tenant_deployment(
        tenant_id, data.version, data.release_notes, data.migration_payload,
        scheduled_by=context.actor, scheduled_time=data.scheduled_time
    )
    return JsonResponse(data=await service.job_status(job_id))

@router.post("/tenants/{tenant_id}/rollbacks", response_model=JsonResponse[DeploymentJobStatusRead], summary="Schedule a rollback for one tenant")
async def schedule_tenant_rollback(tenant_id: str, data: TenantRollbackCreate, context: AppContext = ActorContextDep):
    service = DeploymentJobService(context)
    job_id = await service.schedule_tenant_rollback(
        tenant_id, data.target_version_id, scheduled_by=context.actor, scheduled_time=data.scheduled_time
    )
    return JsonResponse(data=await service.job_status(job_id))

# ==============================================================================
# 作业
# ==============================================================================

@router.get("/jobs/{job_id}", response_model=JsonResponse[DeploymentJobStatusRead], summary="Get deployment job status")
async def job_status(job_id: str, context: AppContext = PublicContextDep):
    return JsonResponse(data=await DeploymentJobService(context).job_status(job_id))

@router.post("/jobs/{job_id}/cancel", response_model=JsonResponse[bool], summary="Cancel a scheduled job")
async def cancel_job(job_id: str, context: AppContext = ActorContextDep):
    return JsonResponse(data=await DeploymentJobService(context).cancel_job(job_id, context.actor))

@router.post("/jobs/{job_id}/stop", response_model=JsonResponse[bool], summary="Request a running job to stop between tenants")
async def request_stop(job_id: str, context: AppContext = ActorContextDep):
    return JsonResponse(data=await DeploymentJobService(context).request_stop(job_id, context.actor))

@router.get("/report", response_model=JsonResponse[DeploymentReport], summary="Deployment report")
async def deployment_report(
    from_date: Optional[datetime] = Query(None),
    to_date: Optional[datetime] = Query(None),
    context: AppContext = PublicContextDep
):
    return JsonResponse(data=await DeploymentJobService(context).deployment_report(from_date, to_date))
