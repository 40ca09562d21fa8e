# orchestrator/models/tenant.py

from sqlalchemy import Column, Integer, String, Text, JSON, Boolean, DateTime, func
from orchestrator.db.base import Base
from orchestrator.utils.id_generator import generate_uuid
from orchestrator.utils.timeutils import utcnow

class Tenant(Base):
    """
    租户注册表 - 编排器对所有租户的共享索引。
    租户只会被停用，不会被删除；只有编排器在单租户部署/同步成功后写入版本字段。
    """
    __tablename__ = 'rel_tenants'

    # [必要]
    id = Column(Integer, primary_key=True, comment="租户记录主键ID")
    uuid = Column(String(36), nullable=False, unique=True, index=True, default=generate_uuid, comment="全局唯一标识符")
    tenant_id = Column(String(100), nullable=False, unique=True, index=True, comment="租户业务标识，贯穿所有作业与日志")
    name = Column(String(255), nullable=False, comment="租户名称")

    # --- 生命周期与自动化开关 ---
    is_active = Column(Boolean, nullable=False, default=True, comment="是否启用。停用的租户不参与任何全局作业")
    auto_deploy_enabled = Column(Boolean, nullable=False, default=True, comment="是否参与全局部署作业")
    auto_sync_enabled = Column(Boolean, nullable=False, default=True, comment="是否参与全局模板同步作业")

    # --- 版本状态 (冗余的展示字段，权威数据在租户自己的库里) ---
    current_version = Column(String(50), nullable=True, comment="最近一次成功部署/回滚后的版本标签")
    current_template_version = Column(String(50), nullable=True, comment="最近一次成功同步的主模板版本")
    last_deployment_at = Column(DateTime, nullable=True, comment="最近一次成功部署时间")
    last_template_sync_at = Column(DateTime, nullable=True, comment="最近一次成功模板同步时间")

    # [关键] 不透明的连接描述，由 TenantStoreResolver 解析；为空时使用配置中的 URL 模板
    connection_descriptor = Column(Text, nullable=True, comment="租户库连接描述")
    maintenance_window = Column(String(100), nullable=True, comment="维护窗口 (自由文本，如 'Sun 02:00-04:00 UTC')")
    tenant_metadata = Column(JSON, nullable=True, comment="附加信息")

    created_at = Column(DateTime, nullable=False, default=utcnow, server_default=func.now())
    updated_at = Column(DateTime, nullable=False, default=utcnow, server_default=func.now(), onupdate=utcnow)

    def __repr__(self):
        return f"<Tenant(tenant_id='{self.tenant_id}', active={self.is_active})>"
