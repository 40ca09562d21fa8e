# orchestrator/api/router.py

from fastapi import APIRouter
from orchestrator.api.v1 import tenants
from orchestrator.api.v1 import deployments
from orchestrator.api.v1 import template_sync

# The main router for API v1
router = APIRouter(prefix="/api/v1")

router.include_router(
    tenants.router,
    prefix="/tenants",
    tags=["Registry - Tenants"]
)
router.include_router(
    deployments.router,
    prefix="/deployments",
    tags=["Orchestration - Deployments"]
)
router.include_router(
    template_sync.router,
    prefix="/template-sync",
    tags=["Orchestration - Template Sync"]
)
