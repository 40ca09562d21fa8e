# orchestrator/schemas/tenant/tenant_schemas.py

from datetime import datetime
from typing import Any, Dict, Optional
from pydantic import BaseModel, ConfigDict, Field

class TenantCreate(BaseModel):
    tenant_id: str = Field(..., min_length=1, max_length=100)
    name: str = Field(..., min_length=1, max_length=255)
    connection_descriptor: Optional[str] = None
    auto_deploy_enabled: bool = True
    auto_sync_enabled: bool = True
    maintenance_window: Optional[str] = None
    tenant_metadata: Optional[Dict[str, Any]] = None

class TenantUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=255)
    connection_descriptor: Optional[str] = None
    auto_deploy_enabled: Optional[bool] = None
    auto_sync_enabled: Optional[bool] = None
    maintenance_window: Optional[str] = None
    tenant_metadata: Optional[Dict[str, Any]] = None

class TenantRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    tenant_id: str
    name: str
    is_active: bool
    auto_deploy_enabled: bool
    auto_sync_enabled: bool
    current_version: Optional[str] = None
    current_template_version: Optional[str] = None
    last_deployment_at: Optional[datetime] = None
    last_template_sync_at: Optional[datetime] = None
    maintenance_window: Optional[str] = None
    tenant_metadata: Optional[Dict[str, Any]] = None
