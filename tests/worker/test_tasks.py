# tests/worker/test_tasks.py

import pytest
from unittest.mock import AsyncMock

from orchestrator.models.job import JobStatus
from orchestrator.services.orchestration.deployment_job_service import DeploymentJobService
from orchestrator.services.orchestration.template_sync_job_service import TemplateSyncJobService
from orchestrator.worker import TASK_FUNCTIONS
from orchestrator.worker.context import WORKER_IDENTITY
from orchestrator.worker.tasks.orchestration import execute_deployment_job_task, execute_template_sync_job_task

from tests.conftest import ACTOR

pytestmark = pytest.mark.asyncio

PAYLOAD = {"steps": [{"kind": "config_update", "key": "region", "value": "eu-west"}]}

@pytest.fixture
def worker_ctx(session_factory, scheduler_mock, tenant_stores, notifier_mock) -> dict:
    return {
        "db_session_factory": session_factory,
        "scheduler": scheduler_mock,
        "tenant_stores": tenant_stores,
        "notifier": notifier_mock,
    }

def test_tasks_are_registered():
    assert execute_deployment_job_task in TASK_FUNCTIONS
    assert execute_template_sync_job_task in TASK_FUNCTIONS

async def test_deployment_task_runs_job_in_own_session(worker_ctx, app_context, tenant_factory, session_factory):
    await tenant_factory("acme")
    job_id = await DeploymentJobService(app_context).schedule_tenant_deployment(
        "acme", "1.0.0", None, PAYLOAD, scheduled_by=ACTOR
    )

    assert await execute_deployment_job_task(worker_ctx, job_id) == JobStatus.COMPLETED.value

    async with session_factory() as session:
        status = await DeploymentJobService(app_context.model_copy(update={"db": session})).job_status(job_id)
    assert status.status == JobStatus.COMPLETED
    assert status.executed_by == WORKER_IDENTITY
    # 重复投递
    assert await execute_deployment_job_task(worker_ctx, job_id) == JobStatus.COMPLETED.value

async def test_template_sync_task(worker_ctx, app_context, tenant_factory, master_template_factory):
    await tenant_factory("acme")
    await master_template_factory("1.0.0", {"templates/index.html": "<h1>hi</h1>"})
    job_id = await TemplateSyncJobService(app_context).schedule_tenant_template_sync("acme", "1.0.0", scheduled_by=ACTOR)

    assert await execute_template_sync_job_task(worker_ctx, job_id) == JobStatus.COMPLETED.value

async def test_unexpected_error_is_reraised(worker_ctx, mocker):
    mocker.patch.object(DeploymentJobService, "execute_job", AsyncMock(side_effect=RuntimeError("boom")))
    with pytest.raises(RuntimeError):
        await execute_deployment_job_task(worker_ctx, "job-x")
