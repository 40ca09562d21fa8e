# orchestrator/models/template.py

from sqlalchemy import (
    Column, Integer, String, Text, JSON, Boolean, ForeignKey, DateTime, func, UniqueConstraint
)
from sqlalchemy.orm import relationship
from orchestrator.db.base import Base
from orchestrator.models.job import FanoutJobMixin, ProposalReviewMixin
from orchestrator.utils.id_generator import generate_uuid
from orchestrator.utils.timeutils import utcnow

class MasterTemplateVersion(Base):
    """主模板目录 - 每个发布的主模板版本是一组完整的文件快照。"""
    __tablename__ = 'rel_master_template_versions'

    id = Column(Integer, primary_key=True)
    uuid = Column(String(36), nullable=False, unique=True, index=True, default=generate_uuid)
    version = Column(String(50), nullable=False, unique=True, index=True, comment="主模板版本标签")
    release_notes = Column(Text, nullable=True)
    # [关键] 会破坏租户定制的文件路径列表
    breaking_changes = Column(JSON, nullable=False, default=list)
    released_at = Column(DateTime, nullable=False, default=utcnow, index=True)
    created_at = Column(DateTime, nullable=False, default=utcnow, server_default=func.now())

    files = relationship("MasterTemplateFile", back_populates="template_version", cascade="all, delete-orphan", lazy="selectin")

    def manifest(self) -> dict:
        """path -> checksum"""
        return {f.path: f.checksum for f in self.files}

class MasterTemplateFile(Base):
    __tablename__ = 'rel_master_template_files'
    __table_args__ = (UniqueConstraint('version_id', 'path'),)

    id = Column(Integer, primary_key=True)
    version_id = Column(Integer, ForeignKey('rel_master_template_versions.id', ondelete='CASCADE'), nullable=False, index=True)
    path = Column(String(512), nullable=False)
    content = Column(Text, nullable=False)
    checksum = Column(String(64), nullable=False, comment="内容的 sha256")

    template_version = relationship("MasterTemplateVersion", back_populates="files")

class TemplateUpdateProposal(ProposalReviewMixin, Base):
    """模板更新提案 - 检测到新的主模板版本时生成，附带预览结果。"""
    __tablename__ = 'rel_template_update_proposals'

    master_template_version = Column(String(50), nullable=False)
    previous_version = Column(String(50), nullable=True)
    detected_by = Column(String(255), nullable=False)
    detected_at = Column(DateTime, nullable=False, default=utcnow, index=True)

    # --- 预览快照 ---
    changed_files = Column(JSON, nullable=False, default=list)
    added_files = Column(JSON, nullable=False, default=list)
    deleted_files = Column(JSON, nullable=False, default=list)
    breaking_changes = Column(JSON, nullable=False, default=list)
    requires_manual_review = Column(Boolean, nullable=False, default=False)

    def __repr__(self):
        return f"<TemplateUpdateProposal(uuid='{self.uuid}', version='{self.master_template_version}', status='{self.status}')>"

class TemplateSyncJob(FanoutJobMixin, Base):
    """模板同步作业 - 将一个主模板版本同步到一个或全部租户。"""
    __tablename__ = 'rel_template_sync_jobs'

    master_template_version = Column(String(50), nullable=False)
    previous_version = Column(String(50), nullable=True)
    requires_manual_review = Column(Boolean, nullable=False, default=False)
    # {"<tenant_id>": {"<path>": "use_master|use_local|skip"}} 或 {"*": {...}} 作用于所有租户
    conflict_resolutions = Column(JSON, nullable=True)
    proposal_id = Column(String(36), nullable=True, index=True)

    @property
    def version(self) -> str:
        return self.master_template_version

    def __repr__(self):
        return f"<TemplateSyncJob(uuid='{self.uuid}', version='{self.master_template_version}', status='{self.status}')>"
