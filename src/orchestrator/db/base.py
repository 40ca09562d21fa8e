# orchestrator/db/base.py

from sqlalchemy import MetaData
from sqlalchemy.orm import declarative_base

# 为所有约束自动生成名称，alembic 的 autogenerate 和 drop_all 都依赖它
naming_convention = {
    "ix": "ix_%(column_0_label)s",
    "uq": "uq_%(table_name)s_%(column_0_name)s",
    "ck": "ck_%(table_name)s_%(constraint_name)s",
    "fk": "fk_%(table_name)s_%(column_0_name)s_%(referred_table_name)s",
    "pk": "pk_%(table_name)s"
}

# 控制平面: 租户注册表、提案、作业、主模板目录
metadata_obj = MetaData(naming_convention=naming_convention)
Base = declarative_base(metadata=metadata_obj)

# 租户数据平面: 每个租户自己的库里的表 (版本记录、模板产物、同步日志)
# 与控制平面的 metadata 严格分开，二者永远不会出现在同一个库里
tenant_metadata_obj = MetaData(naming_convention=naming_convention)
TenantBase = declarative_base(metadata=tenant_metadata_obj)
