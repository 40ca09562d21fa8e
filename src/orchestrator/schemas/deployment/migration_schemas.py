# orchestrator/schemas/deployment/migration_schemas.py

from typing import Any, Annotated, Dict, List, Literal, Optional, Union
from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError
from orchestrator.services.exceptions import ValidationError

# ==============================================================================
# 迁移步骤 - 以 kind 区分的标签联合
# ==============================================================================

class SchemaScriptStep(BaseModel):
    """在租户库上执行的一段 SQL (结构变更或数据迁移)。"""
    kind: Literal["schema_script"] = "schema_script"
    name: Optional[str] = Field(None, description="可选的步骤名称，用于 diff 和日志")
    sql: str = Field(..., min_length=1)

class ArtifactSyncStep(BaseModel):
    """写入或删除一个租户模板文件。content 为 None 表示删除。"""
    kind: Literal["artifact_sync"] = "artifact_sync"
    path: str = Field(..., min_length=1)
    content: Optional[str] = None

class ConfigUpdateStep(BaseModel):
    kind: Literal["config_update"] = "config_update"
    key: str = Field(..., min_length=1)
    value: Any = None

MigrationStep = Annotated[
    Union[SchemaScriptStep, ArtifactSyncStep, ConfigUpdateStep],
    Field(discriminator="kind")
]

class MigrationPayload(BaseModel):
    """
    一次部署要在租户库上执行的内容。
    steps 按顺序执行，任意一步失败整个部署失败；rollback_scripts 在回滚时逆序执行。
    未知的顶层字段原样保留，参与 diff。
    """
    model_config = ConfigDict(extra="allow")

    steps: List[MigrationStep] = Field(default_factory=list)
    rollback_scripts: List[str] = Field(default_factory=list)
    rollback_supported: bool = False

    @classmethod
    def parse(cls, raw: Any) -> "MigrationPayload":
        if isinstance(raw, MigrationPayload):
            return raw
        if raw is None:
            raw = {}
        try:
            return cls.model_validate(raw)
        except PydanticValidationError as e:
            raise ValidationError(f"Invalid migration payload: {e.errors(include_url=False)}") from e

    def to_storage(self) -> Dict[str, Any]:
        return self.model_dump(mode="json")

    def entries(self) -> Dict[str, Any]:
        """
        把载荷展开成扁平的 key -> value，供版本 diff 使用。
        步骤按其作用对象命名 (config_update:<key>、artifact_sync:<path>、schema_script:<name>)。
        """
        flat: Dict[str, Any] = {}
        for index, step in enumerate(self.steps):
            if isinstance(step, SchemaScriptStep):
                flat[f"schema_script:{step.name or f'#{index}'}"] = step.sql
            elif isinstance(step, ArtifactSyncStep):
                flat[f"artifact_sync:{step.path}"] = step.content
            else:
                flat[f"config_update:{step.key}"] = step.value
        flat["rollback_supported"] = self.rollback_supported
        if self.rollback_scripts:
            flat["rollback_scripts"] = list(self.rollback_scripts)
        for key, value in (self.model_extra or {}).items():
            flat[key] = value
        return flat
