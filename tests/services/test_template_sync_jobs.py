# tests/services/test_template_sync_jobs.py

import pytest
from unittest.mock import AsyncMock

from orchestrator.dao.tenant_store.artifact_dao import TemplateArtifactDao
from orchestrator.models.job import JobStatus, ProposalStatus, RiskLevel
from orchestrator.models.tenant_store import SyncStatus
from orchestrator.services.exceptions import NotFoundError, PolicyError, StateError, ValidationError
from orchestrator.services.orchestration.template_sync_job_service import TemplateSyncJobService
from orchestrator.services.proposal.proposal_service import ProposalService
from orchestrator.services.registry.tenant_service import TenantService
from orchestrator.services.template.conflict_analyzer import ConflictAnalyzer
from orchestrator.services.template.template_sync_service import TemplateSyncService

from tests.conftest import ACTOR
from tests.services.test_conflict_analyzer import V1_FILES, V2_FILES, seed_artifacts

pytestmark = pytest.mark.asyncio

@pytest.fixture
async def catalogue(master_template_factory):
    v1 = await master_template_factory("1.0.0", V1_FILES)
    v2 = await master_template_factory("2.0.0", V2_FILES, breaking_changes=["templates/index.html"])
    return v1, v2

@pytest.fixture
def service(app_context) -> TemplateSyncJobService:
    return TemplateSyncJobService(app_context)

async def artifacts_of(tenant_stores, tenant):
    async with tenant_stores.open_store_for(tenant) as store:
        return {path: a.content for path, a in (await TemplateArtifactDao(store).get_all_by_path()).items()}

# ==============================================================================
# 单租户同步
# ==============================================================================

class TestTemplateSyncService:

    async def test_first_sync_installs_all_files(self, app_context, catalogue, tenant_factory, tenant_stores):
        acme = await tenant_factory("acme")
        async with tenant_stores.open_store_for(acme) as store:
            result = await TemplateSyncService(app_context, store, acme).sync("1.0.0", performed_by=ACTOR)

        assert sorted(result.files_added) == sorted(V1_FILES)
        assert await artifacts_of(tenant_stores, acme) == V1_FILES

    async def test_unknown_resolution_value(self, app_context, catalogue, tenant_factory, tenant_stores):
        acme = await tenant_factory("acme")
        async with tenant_stores.open_store_for(acme) as store:
            with pytest.raises(ValidationError):
                await TemplateSyncService(app_context, store, acme).sync(
                    "1.0.0", performed_by=ACTOR, resolutions={"templates/index.html": "merge"}
                )

    async def test_unresolved_conflict_is_refused(self, app_context, catalogue, tenant_factory, tenant_stores):
        acme = await tenant_factory("acme", current_template_version="1.0.0")
        await seed_artifacts(tenant_stores, acme, V1_FILES, "1.0.0",
                             customized={"templates/index.html": "<h1>ours</h1>"})

        async with tenant_stores.open_store_for(acme) as store:
            with pytest.raises(PolicyError):
                await TemplateSyncService(app_context, store, acme).sync("2.0.0", performed_by=ACTOR)

        # 什么都没有改动，只留下一条需要人工评审的日志
        assert (await artifacts_of(tenant_stores, acme))["templates/index.html"] == "<h1>ours</h1>"
        logs = await TenantService(app_context).template_sync_history("acme")
        assert [log.status for log in logs] == [SyncStatus.MANUAL_REVIEW_REQUIRED]
        assert "templates/index.html" in logs[0].error_message

    async def test_resolutions_are_applied(self, app_context, catalogue, tenant_factory, tenant_stores):
        acme = await tenant_factory("acme", current_template_version="1.0.0")
        await seed_artifacts(tenant_stores, acme, V1_FILES, "1.0.0", customized={
            "templates/index.html": "<h1>ours</h1>",
            "templates/legacy.html": "<p>still ours</p>",
            "static/site.css": "body { color: red; }",
        })

        async with tenant_stores.open_store_for(acme) as store:
            result = await TemplateSyncService(app_context, store, acme).sync(
                "2.0.0", performed_by=ACTOR,
                resolutions={"templates/index.html": "use_local", "templates/legacy.html": "use_local"},
            )

        files = await artifacts_of(tenant_stores, acme)
        assert files["templates/index.html"] == "<h1>ours</h1>"
        assert files["templates/legacy.html"] == "<p>still ours</p>"
        # 低风险冲突没有给出策略时按 use_master 处理
        assert files["static/site.css"] == V2_FILES["static/site.css"]
        assert files["templates/about.html"] == V2_FILES["templates/about.html"]
        assert result.files_updated == ["static/site.css"]
        assert result.files_added == ["templates/about.html"]
        assert sorted(result.files_kept) == ["templates/index.html", "templates/legacy.html"]
        assert result.files_deleted == []

    async def test_customization_of_unchanged_file_survives(
        self, app_context, master_template_factory, tenant_factory, tenant_stores
    ):
        base_files = {"templates/index.html": "<h1>v1</h1>", "templates/footer.html": "<footer>master</footer>"}
        await master_template_factory("1.0.0", base_files)
        await master_template_factory("1.1.0", {**base_files, "templates/index.html": "<h1>v1.1</h1>"})
        acme = await tenant_factory("acme", current_template_version="1.0.0")
        await seed_artifacts(tenant_stores, acme, base_files, "1.0.0",
                             customized={"templates/footer.html": "<footer>ours</footer>"})

        analyzer = ConflictAnalyzer(app_context)
        async with tenant_stores.open_store_for(acme) as store:
            report = await analyzer.analyze_in_store(acme, await analyzer.get_master_version("1.1.0"), store)
            result = await TemplateSyncService(app_context, store, acme).sync("1.1.0", performed_by=ACTOR)

        assert report.warnings == []
        assert result.files_updated == ["templates/index.html"]
        async with tenant_stores.open_store_for(acme) as store:
            footer = await TemplateArtifactDao(store).get_by_path("templates/footer.html")
            assert footer.content == "<footer>ours</footer>"
            assert footer.base_version == "1.1.0"
            assert footer.is_customized

    async def test_uncustomized_deleted_file_is_removed(self, app_context, catalogue, tenant_factory, tenant_stores):
        acme = await tenant_factory("acme", current_template_version="1.0.0")
        await seed_artifacts(tenant_stores, acme, V1_FILES, "1.0.0")

        async with tenant_stores.open_store_for(acme) as store:
            result = await TemplateSyncService(app_context, store, acme).sync("2.0.0", performed_by=ACTOR)

        assert result.files_deleted == ["templates/legacy.html"]
        assert await artifacts_of(tenant_stores, acme) == V2_FILES

# ==============================================================================
# 同步作业
# ==============================================================================

class TestTemplateSyncJobs:

    async def test_tenant_sync_job(self, service: TemplateSyncJobService, catalogue, tenant_factory, tenant_stores, db_session):
        acme = await tenant_factory("acme")
        job_id = await service.schedule_tenant_template_sync("acme", "1.0.0", scheduled_by=ACTOR)

        job = await service.execute_job(job_id)

        assert job.status == JobStatus.COMPLETED
        await db_session.refresh(acme)
        assert acme.current_template_version == "1.0.0"
        assert acme.last_template_sync_at is not None
        assert await artifacts_of(tenant_stores, acme) == V1_FILES

    async def test_schedule_validates(self, service: TemplateSyncJobService, catalogue, tenant_factory):
        await tenant_factory("acme")
        with pytest.raises(NotFoundError):
            await service.schedule_tenant_template_sync("nobody", "1.0.0", scheduled_by=ACTOR)
        with pytest.raises(NotFoundError):
            await service.schedule_tenant_template_sync("acme", "9.9.9", scheduled_by=ACTOR)

    async def test_policy_refusal_fails_tenant(self, service: TemplateSyncJobService, catalogue, tenant_factory, tenant_stores, db_session):
        acme = await tenant_factory("acme", current_template_version="1.0.0")
        await seed_artifacts(tenant_stores, acme, V1_FILES, "1.0.0",
                             customized={"templates/index.html": "<h1>ours</h1>"})

        job = await service.execute_job(await service.schedule_tenant_template_sync("acme", "2.0.0", scheduled_by=ACTOR))

        assert job.status == JobStatus.FAILED
        assert job.failed_tenants == ["acme"]
        await db_session.refresh(acme)
        assert acme.current_template_version == "1.0.0"

        job = await service.execute_job(await service.schedule_tenant_template_sync(
            "acme", "2.0.0", scheduled_by=ACTOR, conflict_resolutions={"templates/index.html": "use_master"}
        ))
        assert job.status == JobStatus.COMPLETED
        assert (await artifacts_of(tenant_stores, acme))["templates/index.html"] == V2_FILES["templates/index.html"]

    async def test_global_sync_targets_auto_sync_tenants(
        self, service: TemplateSyncJobService, catalogue, tenant_factory, tenant_stores, db_session,
        scheduler_mock: AsyncMock
    ):
        acme = await tenant_factory("acme")
        await tenant_factory("globex", auto_sync_enabled=False)

        job_id = await service.schedule_global_template_sync("1.0.0", scheduled_by=ACTOR)

        assert scheduler_mock.submit_now.await_args.args[:2] == ("execute_template_sync_job_task", job_id)
        status = await service.sync_job_status(job_id)
        assert status.tenant_id is None
        assert status.total_tenants == 1

        job = await service.execute_job(job_id)

        assert job.status == JobStatus.COMPLETED
        assert job.completed_tenants == 1
        await db_session.refresh(acme)
        assert acme.current_template_version == "1.0.0"
        assert await artifacts_of(tenant_stores, acme) == V1_FILES

    async def test_sync_report_counts_conflicts(self, service: TemplateSyncJobService, catalogue, tenant_factory, tenant_stores):
        acme = await tenant_factory("acme", current_template_version="1.0.0")
        await seed_artifacts(tenant_stores, acme, V1_FILES, "1.0.0")
        await service.execute_job(await service.schedule_tenant_template_sync("acme", "2.0.0", scheduled_by=ACTOR))

        report = await service.sync_report()

        assert report.total_jobs == 1
        assert report.successful_jobs == 1
        assert report.conflicts_detected == 0
        assert report.tenant_job_counts == {"acme": 1}

# ==============================================================================
# 模板更新提案
# ==============================================================================

class TestTemplateProposals:

    async def test_propose_and_approve_global_sync(
        self, app_context, service: TemplateSyncJobService, catalogue, tenant_factory, tenant_stores,
        db_session, scheduler_mock: AsyncMock
    ):
        acme = await tenant_factory("acme", current_template_version="1.0.0")
        await seed_artifacts(tenant_stores, acme, V1_FILES, "1.0.0",
                             customized={"templates/index.html": "<h1>ours</h1>"})
        globex = await tenant_factory("globex", current_template_version="1.0.0")
        await seed_artifacts(tenant_stores, globex, V1_FILES, "1.0.0")
        proposals = ProposalService(app_context)

        proposal_id = await proposals.propose_template_update("2.0.0", detected_by="template-watcher")
        with pytest.raises(StateError):
            await proposals.propose_template_update("2.0.0", detected_by="template-watcher")

        pending = await proposals.list_pending_template_updates()
        assert [p.uuid for p in pending] == [proposal_id]
        assert pending[0].requires_manual_review is True
        assert pending[0].risk_level == RiskLevel.HIGH
        assert pending[0].deleted_files == ["templates/legacy.html"]

        job_id = await proposals.approve_template_sync(
            proposal_id, "bob@ops", conflict_resolutions={"*": {"templates/index.html": "use_local"}}
        )
        assert scheduler_mock.submit_now.await_args.args[:2] == ("execute_template_sync_job_task", job_id)
        status = await service.sync_job_status(job_id)
        assert status.total_tenants == 2
        assert status.requires_manual_review is True

        job = await service.execute_job(job_id)

        assert job.status == JobStatus.COMPLETED
        assert (await artifacts_of(tenant_stores, acme))["templates/index.html"] == "<h1>ours</h1>"
        assert await artifacts_of(tenant_stores, globex) == V2_FILES
        for tenant in (acme, globex):
            await db_session.refresh(tenant)
            assert tenant.current_template_version == "2.0.0"

        report = await service.sync_report()
        assert report.conflicts_detected == 1
        assert report.pending_approvals == 0

    async def test_reject_template_update(self, app_context, catalogue):
        proposals = ProposalService(app_context)
        proposal_id = await proposals.propose_template_update("2.0.0", detected_by="template-watcher")
        await proposals.reject_template_update(proposal_id, "bob@ops", "wait for the redesign")

        assert await proposals.list_pending_template_updates() == []
        with pytest.raises(StateError):
            await proposals.approve_template_sync(proposal_id, "bob@ops")
        assert (await ProposalService(app_context).template_dao.get_by_uuid(proposal_id)).status == ProposalStatus.REJECTED
