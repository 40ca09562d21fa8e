# tests/services/test_versioning_service.py

import pytest
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from orchestrator.dao.tenant_store.setting_dao import TenantSettingDao
from orchestrator.dao.tenant_store.artifact_dao import TemplateArtifactDao
from orchestrator.models.tenant_store import DeploymentStatus
from orchestrator.services.exceptions import StateError, ValidationError, NotFoundError
from orchestrator.services.versioning.versioning_service import VersioningService

pytestmark = pytest.mark.asyncio

DEPLOYER = "deployer@ops"

def payload(*steps, rollback_scripts=None, rollback_supported=True, **extra):
    return {
        "steps": list(steps),
        "rollback_scripts": rollback_scripts or [],
        "rollback_supported": rollback_supported,
        **extra,
    }

def config(key, value):
    return {"kind": "config_update", "key": key, "value": value}

# ==============================================================================
# Fixtures
# ==============================================================================

@pytest.fixture
async def acme(tenant_factory):
    return await tenant_factory("acme")

@pytest.fixture
async def store(tenant_stores, acme):
    async with tenant_stores.open_store_for(acme) as session:
        yield session

@pytest.fixture
def versioning(store: AsyncSession) -> VersioningService:
    return VersioningService(store, "acme")

async def deployed(versioning: VersioningService, version: str, raw_payload: dict):
    record = await versioning.create_version(version, f"Release {version}", raw_payload)
    assert await versioning.deploy(record.id, DEPLOYER) is True
    return record

# ==============================================================================
# 创建与部署
# ==============================================================================

class TestDeploy:

    async def test_create_version_is_pending(self, versioning: VersioningService):
        record = await versioning.create_version("1.0.0", "first", payload(config("theme", "dark")))
        assert record.status == DeploymentStatus.PENDING
        assert record.tenant_id == "acme"
        assert record.is_rollback is False
        assert await versioning.current_version() is None

    async def test_create_version_rejects_empty_label(self, versioning: VersioningService):
        with pytest.raises(ValidationError):
            await versioning.create_version("  ", None, payload())

    async def test_create_version_rejects_unknown_step_kind(self, versioning: VersioningService):
        with pytest.raises(ValidationError):
            await versioning.create_version("1.0.0", None, {"steps": [{"kind": "launch_rockets"}]})

    async def test_deploy_applies_all_steps(self, versioning: VersioningService, store: AsyncSession):
        raw = payload(
            {"kind": "schema_script", "name": "widgets", "sql": "CREATE TABLE widgets (id INTEGER PRIMARY KEY, name TEXT)"},
            {"kind": "artifact_sync", "path": "templates/home.html", "content": "<h1>Home</h1>"},
            config("max_widgets", 10),
        )
        record = await deployed(versioning, "1.0.0", raw)

        assert record.status == DeploymentStatus.COMPLETED
        assert record.deployed_by == DEPLOYER
        assert record.deployed_at is not None
        assert (await versioning.current_version()).id == record.id

        setting = await TenantSettingDao(store).get_by_pk("max_widgets")
        assert setting.value == 10
        artifact = await TemplateArtifactDao(store).get_by_path("templates/home.html")
        assert artifact.content == "<h1>Home</h1>"
        assert artifact.is_customized is False
        await store.execute(text("INSERT INTO widgets (name) VALUES ('gear')"))

    async def test_failed_step_rolls_back_and_marks_failed(self, versioning: VersioningService, store: AsyncSession):
        raw = payload(
            config("feature_x", True),
            {"kind": "schema_script", "name": "bad", "sql": "INSERT INTO table_that_does_not_exist VALUES (1)"},
        )
        record = await versioning.create_version("1.0.1", None, raw)

        assert await versioning.deploy(record.id, DEPLOYER) is False

        assert record.status == DeploymentStatus.FAILED
        assert "schema_script" in record.error_message
        assert versioning.last_error == record.error_message
        # 第一步的效果随事务一起回滚
        assert await TenantSettingDao(store).get_by_pk("feature_x") is None
        assert await versioning.current_version() is None

    async def test_deploy_only_from_pending(self, versioning: VersioningService):
        record = await deployed(versioning, "1.0.0", payload(config("a", 1)))
        with pytest.raises(StateError):
            await versioning.deploy(record.id, DEPLOYER)

    async def test_current_version_is_latest_completed(self, versioning: VersioningService):
        await deployed(versioning, "1.0.0", payload(config("a", 1)))
        second_id = (await deployed(versioning, "1.1.0", payload(config("a", 2)))).id
        failed = await versioning.create_version("1.2.0", None, payload(
            {"kind": "schema_script", "sql": "DROP TABLE nothing_here"}
        ))
        assert await versioning.deploy(failed.id, DEPLOYER) is False

        current = await versioning.current_version()
        assert current.id == second_id
        history = await versioning.version_history()
        assert [r.version for r in history] == ["1.2.0", "1.1.0", "1.0.0"]

    async def test_versions_are_tenant_scoped(self, versioning: VersioningService, store: AsyncSession):
        record = await deployed(versioning, "1.0.0", payload(config("a", 1)))
        other = VersioningService(store, "globex")
        with pytest.raises(NotFoundError):
            await other.get_version(record.id)
        assert await other.current_version() is None

# ==============================================================================
# 回滚
# ==============================================================================

class TestRollback:

    async def test_rollback_to_previous_version(self, versioning: VersioningService, store: AsyncSession):
        v1 = await deployed(versioning, "1.0.0", payload(
            config("a", 1),
            rollback_scripts=[
                "INSERT INTO tenant_settings (key, value, updated_at) VALUES ('restored', '1', CURRENT_TIMESTAMP)",
            ],
        ))
        v2 = await deployed(versioning, "2.0.0", payload(config("a", 2)))

        assert await versioning.rollback(v1.id, DEPLOYER) is True

        await store.refresh(v2)
        assert v2.status == DeploymentStatus.ROLLED_BACK
        current = await versioning.current_version()
        assert current.is_rollback is True
        assert current.version == "1.0.0"
        assert current.rollback_from_id == v2.id
        assert current.deployment_metadata["target_version_id"] == v1.id
        assert await TenantSettingDao(store).get_by_pk("restored") is not None

    async def test_rollback_preconditions_create_no_record(self, versioning: VersioningService):
        v1 = await deployed(versioning, "1.0.0", payload(config("a", 1), rollback_supported=False))
        v2 = await deployed(versioning, "2.0.0", payload(config("a", 2)))

        # 目标不支持回滚
        with pytest.raises(StateError):
            await versioning.rollback(v1.id, DEPLOYER)
        # 目标就是当前版本
        with pytest.raises(StateError):
            await versioning.rollback(v2.id, DEPLOYER)

        assert await versioning.can_rollback_to(v1.id) is False
        assert len(await versioning.version_history()) == 2

    async def test_rollback_to_non_completed_is_rejected(self, versioning: VersioningService):
        pending = await versioning.create_version("0.9.0", None, payload())
        await deployed(versioning, "1.0.0", payload(config("a", 1)))
        with pytest.raises(StateError):
            await versioning.rollback(pending.id, DEPLOYER)

    async def test_failed_rollback_keeps_current(self, versioning: VersioningService):
        v1 = await deployed(versioning, "1.0.0", payload(
            config("a", 1), rollback_scripts=["UPDATE no_such_table SET x = 1"]
        ))
        v2_id = (await deployed(versioning, "2.0.0", payload(config("a", 2)))).id

        assert await versioning.can_rollback_to(v1.id) is True
        assert await versioning.rollback(v1.id, DEPLOYER) is False

        assert "rollback_script" in versioning.last_error
        current = await versioning.current_version()
        assert current.id == v2_id
        history = await versioning.version_history()
        failed = [r for r in history if r.is_rollback]
        assert len(failed) == 1
        assert failed[0].status == DeploymentStatus.FAILED

# ==============================================================================
# 比较
# ==============================================================================

class TestDiff:

    async def test_diff_is_symmetric(self, versioning: VersioningService):
        a = await versioning.create_version("1.0.0", None, payload(
            config("theme", "light"),
            config("beta", True),
            rollback_supported=False,
        ))
        b = await versioning.create_version("1.1.0", None, payload(
            config("theme", "dark"),
            {"kind": "artifact_sync", "path": "templates/footer.html", "content": "<footer/>"},
            rollback_supported=False,
            owner="platform-team",
        ))

        forward = await versioning.diff(a.id, b.id)
        backward = await versioning.diff(b.id, a.id)

        assert forward.added == {"artifact_sync:templates/footer.html": "<footer/>", "owner": "platform-team"}
        assert forward.removed == {"config_update:beta": True}
        assert forward.changed == {"config_update:theme": {"from": "light", "to": "dark"}}
        assert forward.added == backward.removed
        assert forward.removed == backward.added

    async def test_diff_of_identical_payloads_is_empty(self, versioning: VersioningService):
        raw = payload(config("theme", "light"))
        a = await versioning.create_version("1.0.0", None, raw)
        b = await versioning.create_version("1.0.1", None, raw)
        diff = await versioning.diff(a.id, b.id)
        assert diff.added == {} and diff.removed == {} and diff.changed == {}
