# tests/services/test_proposal_service.py

import pytest
from datetime import timedelta
from unittest.mock import AsyncMock

from orchestrator.dao.deployment.job_dao import DeploymentJobDao
from orchestrator.models.job import JobStatus, ProposalStatus, RiskLevel
from orchestrator.services.exceptions import InfrastructureError, NotFoundError, StateError, ValidationError
from orchestrator.services.notification_service import PROPOSAL_APPROVED, PROPOSAL_CREATED, PROPOSAL_REJECTED
from orchestrator.services.proposal.proposal_service import ProposalService
from orchestrator.utils.timeutils import utcnow

from tests.conftest import ACTOR

pytestmark = pytest.mark.asyncio

PAYLOAD = {"steps": [{"kind": "config_update", "key": "feature_flags", "value": ["beta"]}], "rollback_supported": True}

@pytest.fixture
def service(app_context) -> ProposalService:
    return ProposalService(app_context)

@pytest.fixture
async def fleet(tenant_factory):
    """三个参与部署的租户，一个关闭了自动部署，一个已停用。"""
    return [
        await tenant_factory("acme"),
        await tenant_factory("globex"),
        await tenant_factory("initech"),
        await tenant_factory("hooli", auto_deploy_enabled=False),
        await tenant_factory("umbrella", is_active=False),
    ]

class TestProposeDeployment:

    async def test_propose_creates_pending_proposal(self, service: ProposalService, notifier_mock: AsyncMock):
        proposal_id = await service.propose_deployment("2.0.0", "Big release", PAYLOAD, ACTOR, risk_level=RiskLevel.HIGH)

        proposal = await service.get_proposal(proposal_id)
        assert proposal.status == ProposalStatus.PENDING
        assert proposal.proposed_by == ACTOR
        assert proposal.risk_level == RiskLevel.HIGH
        assert proposal.approved_job_id is None
        assert [p.uuid for p in await service.list_pending_proposals()] == [proposal_id]
        notifier_mock.notify.assert_awaited_once()
        assert notifier_mock.notify.await_args.args[0] == PROPOSAL_CREATED

    async def test_propose_validates_input(self, service: ProposalService):
        with pytest.raises(ValidationError):
            await service.propose_deployment("", None, PAYLOAD, ACTOR)
        with pytest.raises(ValidationError):
            await service.propose_deployment("2.0.0", None, {"steps": [{"kind": "schema_script"}]}, ACTOR)
        with pytest.raises(NotFoundError):
            await service.propose_deployment("2.0.0", None, PAYLOAD, ACTOR, tenant_id="nobody")
        assert await service.list_pending_proposals() == []

class TestApproveProposal:

    async def test_approve_creates_one_job_for_deploy_targets(
        self, service: ProposalService, fleet, db_session, scheduler_mock: AsyncMock, notifier_mock: AsyncMock
    ):
        proposal_id = await service.propose_deployment("2.0.0", None, PAYLOAD, ACTOR)
        job_id = await service.approve_proposal(proposal_id, "bob@ops", review_notes="lgtm")

        proposal = await service.get_proposal(proposal_id)
        assert proposal.status == ProposalStatus.APPROVED
        assert proposal.reviewed_by == "bob@ops"
        assert proposal.approved_job_id == job_id
        assert proposal.affected_tenants == ["acme", "globex", "initech"]

        job = await DeploymentJobDao(db_session).get_by_uuid(job_id)
        assert job.status == JobStatus.SCHEDULED
        assert job.tenant_id is None
        assert job.total_tenants == 3
        assert job.proposal_id == proposal_id
        assert job.scheduled_by == "bob@ops"

        scheduler_mock.submit_now.assert_awaited_once()
        assert scheduler_mock.submit_now.await_args.args[:2] == ("execute_deployment_job_task", job_id)
        assert notifier_mock.notify.await_args.args[0] == PROPOSAL_APPROVED

    async def test_approve_twice_is_rejected(self, service: ProposalService, fleet, db_session):
        proposal_id = await service.propose_deployment("2.0.0", None, PAYLOAD, ACTOR)
        await service.approve_proposal(proposal_id, "bob@ops")

        with pytest.raises(StateError):
            await service.approve_proposal(proposal_id, "carol@ops")
        assert await DeploymentJobDao(db_session).count() == 1

    async def test_future_schedule_is_deferred(self, service: ProposalService, fleet, scheduler_mock: AsyncMock):
        when = utcnow() + timedelta(hours=2)
        proposal_id = await service.propose_deployment("2.0.0", None, PAYLOAD, ACTOR)
        job_id = await service.approve_proposal(proposal_id, "bob@ops", scheduled_time=when)

        scheduler_mock.submit_now.assert_not_awaited()
        scheduler_mock.submit_at.assert_awaited_once()
        function, submitted_id, submitted_when = scheduler_mock.submit_at.await_args.args[:3]
        assert (function, submitted_id, submitted_when) == ("execute_deployment_job_task", job_id, when)

    async def test_tenant_scoped_proposal_targets_one_tenant(self, service: ProposalService, fleet, db_session):
        proposal_id = await service.propose_deployment("2.0.1", None, PAYLOAD, ACTOR, tenant_id="hooli")
        job_id = await service.approve_proposal(proposal_id, "bob@ops")

        job = await DeploymentJobDao(db_session).get_by_uuid(job_id)
        assert job.tenant_id == "hooli"
        assert job.total_tenants == 1

    async def test_inactive_target_is_refused_at_approval(
        self, service: ProposalService, fleet, db_session, scheduler_mock: AsyncMock
    ):
        proposal_id = await service.propose_deployment("2.0.1", None, PAYLOAD, ACTOR, tenant_id="umbrella")

        with pytest.raises(StateError):
            await service.approve_proposal(proposal_id, "bob@ops")

        assert (await service.get_proposal(proposal_id)).status == ProposalStatus.PENDING
        assert await DeploymentJobDao(db_session).count() == 0
        scheduler_mock.submit_now.assert_not_awaited()

    async def test_scheduler_outage_fails_job(self, service: ProposalService, fleet, db_session, scheduler_mock: AsyncMock):
        scheduler_mock.submit_now.side_effect = InfrastructureError("redis down")
        proposal_id = await service.propose_deployment("2.0.0", None, PAYLOAD, ACTOR)

        with pytest.raises(InfrastructureError):
            await service.approve_proposal(proposal_id, "bob@ops")

        proposal = await service.get_proposal(proposal_id)
        assert proposal.status == ProposalStatus.APPROVED
        job = await DeploymentJobDao(db_session).get_by_uuid(proposal.approved_job_id)
        assert job.status == JobStatus.FAILED
        assert "redis down" in job.error_message

class TestRejectProposal:

    async def test_reject_records_reason(self, service: ProposalService, notifier_mock: AsyncMock, db_session):
        proposal_id = await service.propose_deployment("2.0.0", None, PAYLOAD, ACTOR)
        await service.reject_proposal(proposal_id, "bob@ops", "missing rollback plan")

        proposal = await service.get_proposal(proposal_id)
        assert proposal.status == ProposalStatus.REJECTED
        assert proposal.rejection_reason == "missing rollback plan"
        assert notifier_mock.notify.await_args.args[0] == PROPOSAL_REJECTED
        assert await DeploymentJobDao(db_session).count() == 0

    async def test_review_is_final(self, service: ProposalService, fleet):
        rejected = await service.propose_deployment("2.0.0", None, PAYLOAD, ACTOR)
        await service.reject_proposal(rejected, "bob@ops", "no")
        with pytest.raises(StateError):
            await service.approve_proposal(rejected, "bob@ops")
        with pytest.raises(StateError):
            await service.reject_proposal(rejected, "bob@ops", "still no")

        approved = await service.propose_deployment("2.1.0", None, PAYLOAD, ACTOR)
        await service.approve_proposal(approved, "bob@ops")
        with pytest.raises(StateError):
            await service.reject_proposal(approved, "bob@ops", "too late")

    async def test_unknown_proposal(self, service: ProposalService):
        with pytest.raises(NotFoundError):
            await service.approve_proposal("does-not-exist", "bob@ops")
