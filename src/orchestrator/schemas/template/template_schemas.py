# orchestrator/schemas/template/template_schemas.py

import enum
from datetime import datetime
from typing import Dict, List, Literal, Optional
from pydantic import BaseModel, ConfigDict, Field
from orchestrator.models.job import ProposalStatus, RiskLevel
from orchestrator.models.tenant_store import SyncStatus
from orchestrator.schemas.deployment.deployment_schemas import JobStatusRead, DeploymentReport

class ConflictSeverity(enum.Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        return _SEVERITY_RANK[self]

_SEVERITY_RANK = {
    ConflictSeverity.LOW: 0,
    ConflictSeverity.MEDIUM: 1,
    ConflictSeverity.HIGH: 2,
    ConflictSeverity.CRITICAL: 3,
}

ConflictResolution = Literal["use_master", "use_local", "skip"]

class ConflictWarning(BaseModel):
    conflict_type: str
    description: str
    severity: ConflictSeverity
    affected_files: List[str] = Field(default_factory=list)

class ConflictAnalysisReport(BaseModel):
    tenant_id: str
    current_version: Optional[str] = None
    target_version: str
    warnings: List[ConflictWarning] = Field(default_factory=list)
    overall_risk_level: ConflictSeverity = ConflictSeverity.LOW
    requires_manual_intervention: bool = False
    recommended_actions: List[str] = Field(default_factory=list)

    def blocking_files(self) -> List[str]:
        """High/Critical 冲突涉及的文件，同步前必须逐一给出解决策略。"""
        files: List[str] = []
        for warning in self.warnings:
            if warning.severity.rank >= ConflictSeverity.HIGH.rank:
                files.extend(f for f in warning.affected_files if f not in files)
        return files

class MasterTemplateFileCreate(BaseModel):
    path: str = Field(..., min_length=1)
    content: str

class MasterTemplateVersionCreate(BaseModel):
    version: str = Field(..., min_length=1)
    release_notes: Optional[str] = None
    breaking_changes: List[str] = Field(default_factory=list)
    files: List[MasterTemplateFileCreate] = Field(default_factory=list)
    released_at: Optional[datetime] = None

class MasterTemplateVersionRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    version: str
    release_notes: Optional[str] = None
    breaking_changes: List[str] = Field(default_factory=list)
    released_at: datetime

class TemplateUpdatesRead(BaseModel):
    current_version: Optional[str] = None
    latest_version: Optional[str] = None
    available_versions: List[str] = Field(default_factory=list)
    update_available: bool = False

class TemplatePreview(BaseModel):
    master_version: str
    previous_version: Optional[str] = None
    changed_files: List[str] = Field(default_factory=list)
    added_files: List[str] = Field(default_factory=list)
    deleted_files: List[str] = Field(default_factory=list)
    breaking_changes: List[str] = Field(default_factory=list)
    conflicts: List[ConflictAnalysisReport] = Field(default_factory=list)
    requires_manual_review: bool = False

class TemplateUpdateProposalCreate(BaseModel):
    master_version: str = Field(..., min_length=1)

class TemplateUpdateProposalRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    uuid: str
    master_template_version: str
    previous_version: Optional[str] = None
    status: ProposalStatus
    detected_by: str
    detected_at: datetime
    changed_files: List[str] = Field(default_factory=list)
    added_files: List[str] = Field(default_factory=list)
    deleted_files: List[str] = Field(default_factory=list)
    breaking_changes: List[str] = Field(default_factory=list)
    requires_manual_review: bool = False
    risk_level: RiskLevel
    reviewed_by: Optional[str] = None
    reviewed_at: Optional[datetime] = None
    rejection_reason: Optional[str] = None
    affected_tenants: List[str] = Field(default_factory=list)
    scheduled_time: Optional[datetime] = None
    approved_job_id: Optional[str] = None

# tenant_id -> {path -> 策略}; 键 "*" 作用于所有租户
ConflictResolutionMap = Dict[str, Dict[str, ConflictResolution]]

class TemplateSyncApprove(BaseModel):
    scheduled_time: Optional[datetime] = None
    review_notes: Optional[str] = None
    conflict_resolutions: Optional[ConflictResolutionMap] = None

class TenantTemplateSyncCreate(BaseModel):
    master_version: str = Field(..., min_length=1)
    scheduled_time: Optional[datetime] = None
    # 单租户同步时只需要 path -> 策略
    conflict_resolutions: Optional[Dict[str, ConflictResolution]] = None

class GlobalTemplateSyncCreate(BaseModel):
    master_version: str = Field(..., min_length=1)
    scheduled_time: Optional[datetime] = None
    conflict_resolutions: Optional[ConflictResolutionMap] = None

class SyncJobStatusRead(JobStatusRead):
    master_template_version: str
    previous_version: Optional[str] = None
    requires_manual_review: bool = False
    conflict_resolutions: Optional[ConflictResolutionMap] = None

class TemplateSyncReport(DeploymentReport):
    conflicts_detected: int = 0

class TemplateSyncResult(BaseModel):
    tenant_id: str
    from_version: Optional[str] = None
    to_version: str
    files_updated: List[str] = Field(default_factory=list)
    files_added: List[str] = Field(default_factory=list)
    files_deleted: List[str] = Field(default_factory=list)
    files_kept: List[str] = Field(default_factory=list)

class TemplateSyncLogRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    uuid: str
    tenant_id: str
    sync_job_id: Optional[str] = None
    from_version: Optional[str] = None
    to_version: str
    status: SyncStatus
    files_updated: List[str] = Field(default_factory=list)
    files_added: List[str] = Field(default_factory=list)
    files_deleted: List[str] = Field(default_factory=list)
    conflict_resolutions: Optional[Dict[str, ConflictResolution]] = None
    error_message: Optional[str] = None
    performed_by: Optional[str] = None
    started_at: datetime
    completed_at: Optional[datetime] = None
