# orchestrator/models/__init__.py

from .tenant import Tenant
from .job import (
    ProposalStatus,
    RiskLevel,
    JobType,
    JobStatus,
    TERMINAL_JOB_STATUSES
)
from .deployment import (
    DeploymentProposal,
    DeploymentJob
)
from .template import (
    MasterTemplateVersion,
    MasterTemplateFile,
    TemplateUpdateProposal,
    TemplateSyncJob
)
from .tenant_store import (
    DeploymentStatus,
    SyncStatus,
    DeploymentVersion,
    TemplateArtifact,
    TemplateSyncLog,
    TenantSetting
)
