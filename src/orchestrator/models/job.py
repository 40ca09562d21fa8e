# orchestrator/models/job.py

import enum
from sqlalchemy import Column, Integer, String, Text, JSON, Enum, DateTime, func
from orchestrator.utils.id_generator import generate_uuid
from orchestrator.utils.timeutils import utcnow

class ProposalStatus(enum.Enum): PENDING = "pending"; APPROVED = "approved"; REJECTED = "rejected"

class RiskLevel(enum.Enum): LOW = "low"; MEDIUM = "medium"; HIGH = "high"; CRITICAL = "critical"

class JobType(enum.Enum): DEPLOYMENT = "deployment"; ROLLBACK = "rollback"

class JobStatus(enum.Enum):
    SCHEDULED = "scheduled"                      # 已提交给调度器，等待触发
    IN_PROGRESS = "in_progress"                  # 已被某个 worker 认领，正在扇出
    COMPLETED = "completed"                      # 所有租户成功
    PARTIALLY_COMPLETED = "partially_completed"  # 部分租户失败
    FAILED = "failed"                            # 作业级失败或全部租户失败
    CANCELLED = "cancelled"                      # 触发前被取消

TERMINAL_JOB_STATUSES = (
    JobStatus.COMPLETED, JobStatus.PARTIALLY_COMPLETED, JobStatus.FAILED, JobStatus.CANCELLED
)

class FanoutJobMixin:
    """
    部署作业与模板同步作业共享的列。
    不变量: completed_tenants + len(failed_tenants) <= total_tenants。
    """
    # [必要]
    id = Column(Integer, primary_key=True)
    # [关键] 同时作为 arq 的 job id，用于调度关联和幂等
    uuid = Column(String(36), nullable=False, unique=True, index=True, default=generate_uuid, comment="作业的全局唯一标识符")

    tenant_id = Column(String(100), nullable=True, index=True, comment="单租户作业的目标租户；为空表示全局扇出作业")
    status = Column(Enum(JobStatus), nullable=False, default=JobStatus.SCHEDULED, index=True)

    scheduled_at = Column(DateTime, nullable=False, default=utcnow, comment="计划执行时间")
    started_at = Column(DateTime, nullable=True)
    completed_at = Column(DateTime, nullable=True, index=True)
    scheduled_by = Column(String(255), nullable=False, comment="提交作业的操作者身份")
    executed_by = Column(String(255), nullable=True, comment="认领作业的执行者身份")
    cancelled_by = Column(String(255), nullable=True)

    # --- 进度 ---
    total_tenants = Column(Integer, nullable=False, default=0)
    completed_tenants = Column(Integer, nullable=False, default=0)
    # [注意] JSON 列不追踪原地修改，更新时必须整体赋值新列表
    failed_tenants = Column(JSON, nullable=False, default=list)

    job_metadata = Column(JSON, nullable=True, comment="自由格式的元数据，如回滚目标版本ID")
    error_message = Column(Text, nullable=True)

    # --- 协作式停止 ---
    stop_requested_at = Column(DateTime, nullable=True, comment="对进行中作业的停止请求时间，在租户之间检查")
    stop_requested_by = Column(String(255), nullable=True)

    created_at = Column(DateTime, nullable=False, default=utcnow, server_default=func.now(), index=True)
    updated_at = Column(DateTime, nullable=False, default=utcnow, server_default=func.now(), onupdate=utcnow)

    @property
    def is_global(self) -> bool:
        return self.tenant_id is None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_JOB_STATUSES

class ProposalReviewMixin:
    """提案共享的评审列。状态只能从 pending 迁移一次。"""
    id = Column(Integer, primary_key=True)
    uuid = Column(String(36), nullable=False, unique=True, index=True, default=generate_uuid)
    status = Column(Enum(ProposalStatus), nullable=False, default=ProposalStatus.PENDING, index=True)

    reviewed_by = Column(String(255), nullable=True)
    reviewed_at = Column(DateTime, nullable=True)
    review_notes = Column(Text, nullable=True)
    rejection_reason = Column(Text, nullable=True)

    risk_level = Column(Enum(RiskLevel), nullable=False, default=RiskLevel.MEDIUM)
    affected_tenants = Column(JSON, nullable=False, default=list, comment="批准时解析出的租户列表")
    scheduled_time = Column(DateTime, nullable=True)
    approved_job_id = Column(String(36), nullable=True, comment="批准后创建的作业uuid")

    created_at = Column(DateTime, nullable=False, default=utcnow, server_default=func.now())
