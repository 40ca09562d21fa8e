# orchestrator/models/tenant_store.py
# 这些表存在于每个租户自己的库里，挂在 TenantBase 上

import enum
from sqlalchemy import (
    Column, Integer, String, Text, JSON, Boolean, Enum, ForeignKey, DateTime, func
)
from orchestrator.db.base import TenantBase
from orchestrator.utils.id_generator import generate_uuid
from orchestrator.utils.timeutils import utcnow

class DeploymentStatus(enum.Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"
    ROLLED_BACK = "rolled_back"  # 被一次回滚取代

class SyncStatus(enum.Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"
    MANUAL_REVIEW_REQUIRED = "manual_review_required"

class DeploymentVersion(TenantBase):
    """
    租户的部署版本记录。历史只追加不删除:
    回滚会把被取代的版本标记为 rolled_back，并追加一条 is_rollback=True 的新记录。
    """
    __tablename__ = 'tenant_deployment_versions'

    id = Column(Integer, primary_key=True)
    uuid = Column(String(36), nullable=False, unique=True, index=True, default=generate_uuid)
    tenant_id = Column(String(100), nullable=False, index=True)
    version = Column(String(50), nullable=False, index=True)
    release_notes = Column(Text, nullable=True)
    migration_payload = Column(JSON, nullable=False)
    status = Column(Enum(DeploymentStatus), nullable=False, default=DeploymentStatus.PENDING, index=True)

    released_at = Column(DateTime, nullable=False, default=utcnow)
    deployed_at = Column(DateTime, nullable=True, index=True)
    deployed_by = Column(String(255), nullable=True)
    error_message = Column(Text, nullable=True)

    # --- 回滚链 ---
    is_rollback = Column(Boolean, nullable=False, default=False)
    rollback_from_id = Column(Integer, ForeignKey('tenant_deployment_versions.id'), nullable=True, comment="被该回滚取代的版本ID")
    deployment_metadata = Column(JSON, nullable=True)

    def __repr__(self):
        return f"<DeploymentVersion(id={self.id}, version='{self.version}', status='{self.status}')>"

class TemplateArtifact(TenantBase):
    """租户本地的模板文件。checksum 与 base_checksum 不同即视为租户定制过。"""
    __tablename__ = 'tenant_template_artifacts'

    id = Column(Integer, primary_key=True)
    path = Column(String(512), nullable=False, unique=True)
    content = Column(Text, nullable=False)
    checksum = Column(String(64), nullable=False)
    # 最近一次从主模板同步时的校验和；为空表示本地独有的文件
    base_checksum = Column(String(64), nullable=True)
    base_version = Column(String(50), nullable=True)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    @property
    def is_customized(self) -> bool:
        return self.checksum != self.base_checksum

class TemplateSyncLog(TenantBase):
    __tablename__ = 'tenant_template_sync_logs'

    id = Column(Integer, primary_key=True)
    uuid = Column(String(36), nullable=False, unique=True, index=True, default=generate_uuid)
    tenant_id = Column(String(100), nullable=False, index=True)
    sync_job_id = Column(String(36), nullable=True, index=True)
    from_version = Column(String(50), nullable=True)
    to_version = Column(String(50), nullable=False)
    status = Column(Enum(SyncStatus), nullable=False, default=SyncStatus.PENDING)
    files_updated = Column(JSON, nullable=False, default=list)
    files_added = Column(JSON, nullable=False, default=list)
    files_deleted = Column(JSON, nullable=False, default=list)
    conflict_resolutions = Column(JSON, nullable=True)
    error_message = Column(Text, nullable=True)
    performed_by = Column(String(255), nullable=True)
    started_at = Column(DateTime, nullable=False, default=utcnow)
    completed_at = Column(DateTime, nullable=True)

class TenantSetting(TenantBase):
    """config_update 步骤写入的租户配置项。"""
    __tablename__ = 'tenant_settings'

    key = Column(String(255), primary_key=True)
    value = Column(JSON, nullable=True)
    updated_at = Column(DateTime, nullable=False, default=utcnow, server_default=func.now(), onupdate=utcnow)
