# tests/services/test_storage_service.py

import pathlib
import pytest
import httpx
from sqlalchemy.ext.asyncio import async_sessionmaker

from storagehub.core.context import AppContext
from storagehub.schemas.storage_schemas import StorageCreate, StorageRead, ProvisioningState
from storagehub.services.account_importer import AccountImporter
from storagehub.services.exceptions import RecordNotFound, StorageNotFound, ModelNotFound
from storagehub.services.storage_service import StorageService
from storagehub.system.tenant.hub import TenantHub

pytestmark = pytest.mark.asyncio

# ==============================================================================
# 1. Fixtures
# ==============================================================================

@pytest.fixture
def service_factory(session_factory: async_sessionmaker, tenant_hub: TenantHub):
    """每次调用在一个独立的、会提交的事务中运行服务方法 (模拟一次请求)。"""
    async def _run(method: str, *args, importer: AccountImporter = None, **kwargs):
        async with session_factory() as session:
            async with session.begin():
                service = StorageService(AppContext(db=session, hub=tenant_hub), importer=importer)
                return await getattr(service, method)(*args, **kwargs)
    return _run

@pytest.fixture
async def storage(service_factory, sqlite_storage_factory) -> StorageRead:
    result = await service_factory("create_storage", StorageCreate.model_validate(sqlite_storage_factory()))
    assert result.provisioning.state == ProvisioningState.DONE
    return result.storage

@pytest.fixture
async def account(service_factory, storage: StorageRead) -> dict:
    return await service_factory("create_or_update_account", storage.id, {"profileKey": "pk-1", "firstName": "Ada"})

# ==============================================================================
# 2. Storage 描述符
# ==============================================================================

class TestStorages:

    async def test_create_storage_reports_every_table(self, service_factory, sqlite_storage_factory):
        result = await service_factory("create_storage", StorageCreate.model_validate(sqlite_storage_factory()))

        assert result.provisioning.failed_tables == []
        assert set(result.provisioning.tables) == {"orders", "acme_account", "acme_task"}
        assert result.provisioning.tenant_key == result.storage.engine_type.value + ":" + result.storage.db_name

    async def test_unreachable_database_keeps_the_descriptor(self, service_factory, tmp_path: pathlib.Path):
        data = StorageCreate(
            engine_type="sqlite",
            db_name=str(tmp_path / "no-such-dir" / "tenant.db"),
            db_prefix_table="acme",
        )
        result = await service_factory("create_storage", data)

        assert result.provisioning.state == ProvisioningState.CONNECTION_FAILED
        assert result.provisioning.tables == {}
        stored = await service_factory("get_storage", result.storage.id)
        assert stored.db_name == data.db_name

    async def test_get_and_list(self, service_factory, storage: StorageRead):
        assert (await service_factory("get_storage", storage.id)).id == storage.id
        assert [s.id for s in await service_factory("list_storages")] == [storage.id]
        with pytest.raises(StorageNotFound):
            await service_factory("get_storage", "missing")

# ==============================================================================
# 3. Accounts & Tasks
# ==============================================================================

class TestAccounts:

    async def test_create_then_replace_account(self, service_factory, storage: StorageRead, account: dict):
        assert account["status"] == "active"

        replaced = await service_factory(
            "create_or_update_account", storage.id, {"id": account["id"], "profileKey": "pk-1", "lastName": "Lovelace"}
        )
        assert replaced["id"] == account["id"]
        assert replaced["lastName"] == "Lovelace"
        # 整条替换：未提供的字段不再保留
        assert replaced["firstName"] is None

    async def test_update_of_missing_account_raises(self, service_factory, storage: StorageRead):
        with pytest.raises(RecordNotFound):
            await service_factory("create_or_update_account", storage.id, {"id": 999, "profileKey": "x"})

    async def test_get_and_delete_account(self, service_factory, storage: StorageRead, account: dict):
        assert (await service_factory("get_one_account", storage.id, str(account["id"])))["firstName"] == "Ada"
        assert len(await service_factory("get_all_accounts", storage.id)) == 1
        assert await service_factory("delete_one_account", storage.id, str(account["id"])) == 1
        with pytest.raises(RecordNotFound):
            await service_factory("get_one_account", storage.id, str(account["id"]))

    async def test_import_accounts_from_csv(self, service_factory, storage: StorageRead):
        csv_body = "profileKey,firstName,data\npk-9,Grace,\"{\"\"vip\"\": true}\"\npk-10,Alan,\n"
        transport = httpx.MockTransport(lambda request: httpx.Response(200, text=csv_body))
        importer = AccountImporter(http_client=httpx.AsyncClient(transport=transport))

        imported = await service_factory("import_accounts", storage.id, "http://files.test/accounts.csv", importer=importer)

        assert imported == 2
        accounts = await service_factory("get_all_accounts", storage.id)
        assert [a["profileKey"] for a in accounts] == ["pk-9", "pk-10"]
        assert accounts[0]["data"] == {"vip": True}

class TestTasks:

    async def test_task_messages_are_shallow_merged(self, service_factory, storage: StorageRead, account: dict):
        created = await service_factory(
            "create_or_update_task", storage.id, str(account["id"]), {"title": "t", "taskMessages": {"a": 0, "b": 2}}
        )
        assert created["profileKey"] == "pk-1"

        updated = await service_factory(
            "create_or_update_task", storage.id, str(account["id"]), {"id": created["id"], "taskMessages": {"a": 1}}
        )
        assert updated["taskMessages"] == {"a": 1, "b": 2}
        assert updated["title"] == "t"

    async def test_tasks_are_scoped_to_the_account_profile_key(self, service_factory, storage: StorageRead, account: dict):
        other = await service_factory("create_or_update_account", storage.id, {"profileKey": "pk-2"})
        await service_factory("create_or_update_task", storage.id, str(account["id"]), {"title": "mine"})
        await service_factory("create_or_update_task", storage.id, str(other["id"]), {"title": "theirs"})

        mine = await service_factory("get_all_tasks", storage.id, str(account["id"]))
        assert [t["title"] for t in mine] == ["mine"]

        assert await service_factory("delete_all_tasks", storage.id, str(account["id"])) == 1
        assert [t["title"] for t in await service_factory("get_all_tasks", storage.id, str(other["id"]))] == ["theirs"]

    async def test_task_of_another_account_cannot_be_updated(self, service_factory, storage: StorageRead, account: dict):
        other = await service_factory("create_or_update_account", storage.id, {"profileKey": "pk-2"})
        theirs = await service_factory("create_or_update_task", storage.id, str(other["id"]), {"title": "theirs"})

        with pytest.raises(RecordNotFound):
            await service_factory("create_or_update_task", storage.id, str(account["id"]), {"id": theirs["id"], "title": "x"})

    async def test_unknown_account_raises(self, service_factory, storage: StorageRead):
        with pytest.raises(RecordNotFound):
            await service_factory("get_all_tasks", storage.id, "12345")

# ==============================================================================
# 4. 通用数据表
# ==============================================================================

class TestGenericData:

    async def test_replace_or_create_and_delete(self, service_factory, storage: StorageRead):
        created = await service_factory("create_or_update_data", storage.id, "orders", {"total": 10, "note": "n"})
        replaced = await service_factory("create_or_update_data", storage.id, "orders", {"id": created["id"], "total": 20})
        assert replaced["note"] is None and replaced["total"] == 20

        assert (await service_factory("get_one_data", storage.id, "orders", str(created["id"])))["total"] == 20
        assert len(await service_factory("get_all_data", storage.id, "orders")) == 1
        assert await service_factory("delete_one_data", storage.id, "orders", str(created["id"])) == 1
        assert await service_factory("delete_all_data", storage.id, "orders") == 0

    async def test_unknown_table_raises_model_not_found(self, service_factory, storage: StorageRead):
        with pytest.raises(ModelNotFound):
            await service_factory("get_all_data", storage.id, "nope")
