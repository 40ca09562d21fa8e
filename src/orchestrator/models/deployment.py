# orchestrator/models/deployment.py

from sqlalchemy import Column, String, Text, JSON, Boolean, Enum, DateTime
from orchestrator.db.base import Base
from orchestrator.models.job import FanoutJobMixin, ProposalReviewMixin, JobType
from orchestrator.utils.timeutils import utcnow

class DeploymentProposal(ProposalReviewMixin, Base):
    """部署提案 - 可评审、尚未执行的版本变更请求。"""
    __tablename__ = 'rel_deployment_proposals'

    version = Column(String(50), nullable=False, comment="版本标签")
    release_notes = Column(Text, nullable=True)
    migration_payload = Column(JSON, nullable=False, comment="序列化后的 MigrationPayload")
    proposed_by = Column(String(255), nullable=False)
    proposed_at = Column(DateTime, nullable=False, default=utcnow, index=True)

    # [可选] 单租户范围；为空则批准时扇出到所有启用自动部署的租户
    target_tenant_id = Column(String(100), nullable=True)
    rollback_plan = Column(JSON, nullable=True)
    has_breaking_changes = Column(Boolean, nullable=False, default=False)

    def __repr__(self):
        return f"<DeploymentProposal(uuid='{self.uuid}', version='{self.version}', status='{self.status}')>"

class DeploymentJob(FanoutJobMixin, Base):
    """部署作业 - 一次批准对应一个作业；回滚作业复用同一张表。"""
    __tablename__ = 'rel_deployment_jobs'

    job_type = Column(Enum(JobType), nullable=False, default=JobType.DEPLOYMENT)
    version = Column(String(100), nullable=False, comment="版本标签；回滚作业为 rollback-<目标版本ID>")
    release_notes = Column(Text, nullable=True)
    migration_payload = Column(JSON, nullable=True)
    proposal_id = Column(String(36), nullable=True, index=True, comment="来源提案uuid，管理员直接调度时为空")

    def __repr__(self):
        return f"<DeploymentJob(uuid='{self.uuid}', type='{self.job_type}', status='{self.status}')>"
