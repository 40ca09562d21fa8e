# orchestrator/schemas/deployment/deployment_schemas.py

from datetime import datetime
from typing import Any, Dict, List, Optional
from pydantic import BaseModel, ConfigDict, Field
from orchestrator.models.job import JobStatus, JobType, ProposalStatus, RiskLevel
from orchestrator.models.tenant_store import DeploymentStatus

# ==============================================================================
# 1. Input Schemas (API输入验证模型)
# ==============================================================================

class DeploymentProposalCreate(BaseModel):
    version: str = Field(..., description="版本标签，不能为空")
    release_notes: Optional[str] = None
    migration_payload: Dict[str, Any] = Field(default_factory=dict)
    tenant_id: Optional[str] = Field(None, description="只作用于单个租户时填写")
    risk_level: RiskLevel = RiskLevel.MEDIUM
    rollback_plan: Optional[Dict[str, Any]] = None
    has_breaking_changes: bool = False

class ProposalApprove(BaseModel):
    scheduled_time: Optional[datetime] = Field(None, description="为空或已过去则立即执行")
    review_notes: Optional[str] = None

class ProposalReject(BaseModel):
    reason: str = Field(..., min_length=1)

class TenantDeploymentCreate(BaseModel):
    version: str
    release_notes: Optional[str] = None
    migration_payload: Dict[str, Any] = Field(default_factory=dict)
    scheduled_time: Optional[datetime] = None

class TenantRollbackCreate(BaseModel):
    target_version_id: int
    scheduled_time: Optional[datetime] = None

# ==============================================================================
# 2. Output Schemas (API输出模型)
# ==============================================================================

class DeploymentProposalRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    uuid: str
    version: str
    release_notes: Optional[str] = None
    migration_payload: Dict[str, Any]
    status: ProposalStatus
    proposed_by: str
    proposed_at: datetime
    target_tenant_id: Optional[str] = None
    risk_level: RiskLevel
    rollback_plan: Optional[Dict[str, Any]] = None
    has_breaking_changes: bool = False
    reviewed_by: Optional[str] = None
    reviewed_at: Optional[datetime] = None
    review_notes: Optional[str] = None
    rejection_reason: Optional[str] = None
    affected_tenants: List[str] = Field(default_factory=list)
    scheduled_time: Optional[datetime] = None
    approved_job_id: Optional[str] = None

class JobStatusRead(BaseModel):
    """部署作业和模板同步作业共用的状态视图。"""
    model_config = ConfigDict(from_attributes=True)

    uuid: str
    tenant_id: Optional[str] = None
    version: str
    status: JobStatus
    scheduled_at: datetime
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    scheduled_by: str
    executed_by: Optional[str] = None
    cancelled_by: Optional[str] = None
    total_tenants: int
    completed_tenants: int
    failed_tenants: List[str] = Field(default_factory=list)
    job_metadata: Optional[Dict[str, Any]] = None
    error_message: Optional[str] = None
    stop_requested_at: Optional[datetime] = None

class DeploymentJobStatusRead(JobStatusRead):
    job_type: JobType

class DeploymentReport(BaseModel):
    from_date: Optional[datetime] = None
    to_date: Optional[datetime] = None
    total_jobs: int = 0
    successful_jobs: int = 0
    partially_completed_jobs: int = 0
    failed_jobs: int = 0
    cancelled_jobs: int = 0
    pending_approvals: int = 0
    recent_jobs: List[JobStatusRead] = Field(default_factory=list)
    tenant_job_counts: Dict[str, int] = Field(default_factory=dict)

class DeploymentVersionRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    uuid: str
    tenant_id: str
    version: str
    release_notes: Optional[str] = None
    status: DeploymentStatus
    released_at: datetime
    deployed_at: Optional[datetime] = None
    deployed_by: Optional[str] = None
    error_message: Optional[str] = None
    is_rollback: bool
    rollback_from_id: Optional[int] = None

class VersionDiff(BaseModel):
    added: Dict[str, Any] = Field(default_factory=dict)
    removed: Dict[str, Any] = Field(default_factory=dict)
    # key -> {"from": 旧值, "to": 新值}
    changed: Dict[str, Dict[str, Any]] = Field(default_factory=dict)
