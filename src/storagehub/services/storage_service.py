# src/storagehub/services/storage_service.py

import logging
from typing import Any, Dict, List, Optional

from storagehub.core.config import settings
from storagehub.core.context import AppContext
from storagehub.dao.storage_dao import StorageDao
from storagehub.engine.tenant import Record, TableHandle
from storagehub.models.storage import Storage
from storagehub.schemas.storage_schemas import (
    StorageCreate, StorageRead, StorageDescriptor, StorageCreateResponse, ProvisioningReport, ProvisioningState
)
from storagehub.services.account_importer import AccountImporter
from storagehub.services.exceptions import ServiceException, ConnectionFailed, StorageNotFound, RecordNotFound
from storagehub.system.tenant.constants import ACCOUNT_TABLE, TASK_TABLE, PROFILE_KEY_FIELD

logger = logging.getLogger(__name__)

class StorageService:
    """
    Storage descriptors (control plane) and every data operation scoped to one of them.
    Data operations always go through the model registry's three-stage resolution.
    """
    def __init__(self, context: AppContext, importer: Optional[AccountImporter] = None):
        self.context = context
        self.db = context.db
        self.hub = context.hub
        self.dao = StorageDao(context.db)
        self.importer = importer or AccountImporter()

    # ==============================================================================
    # 1. Storage descriptors
    # ==============================================================================

    async def create_storage(self, storage_data: StorageCreate) -> StorageCreateResponse:
        """持久化描述符，然后开始供应。连接失败时描述符保留，报告中带回失败状态。"""
        values = storage_data.model_dump(mode="json")
        values["engine_type"] = storage_data.engine_type
        storage = Storage(**values)
        storage = await self.dao.add(storage)
        descriptor = StorageDescriptor.model_validate(storage)
        logger.info(f"[StorageService] Storage '{storage.id}' created for datasource '{descriptor.tenant_key}'.")

        try:
            run = await self.hub.provisioner.provision(descriptor)
        except ConnectionFailed as e:
            report = ProvisioningReport(
                storage_id=descriptor.id,
                tenant_key=descriptor.tenant_key,
                state=ProvisioningState.CONNECTION_FAILED,
                error=e.message,
            )
            return StorageCreateResponse(storage=StorageRead.model_validate(storage), provisioning=report)

        report = await run.wait() if settings.PROVISION_AWAIT else run.report
        if report.failed_tables:
            logger.warning(f"[StorageService] Storage '{storage.id}' provisioned with failed tables: {report.failed_tables}")
        return StorageCreateResponse(storage=StorageRead.model_validate(storage), provisioning=report.model_copy(deep=True))

    async def get_storage(self, storage_id: str) -> StorageRead:
        storage = await self.dao.get_by_pk(storage_id)
        if not storage:
            raise StorageNotFound(f"Storage '{storage_id}' not found.")
        return StorageRead.model_validate(storage)

    async def list_storages(self, page: int = 0, limit: int = 0) -> List[StorageRead]:
        storages = await self.dao.list_recent(page=page, limit=limit)
        return [StorageRead.model_validate(s) for s in storages]

    def get_provisioning(self, storage_id: str) -> Optional[ProvisioningReport]:
        run = self.hub.provisioner.get_run(storage_id)
        return run.report if run else None

    # ==============================================================================
    # 2. Accounts
    # ==============================================================================

    async def _accounts(self, storage_id: str) -> TableHandle:
        return await self.hub.models.resolve(storage_id, ACCOUNT_TABLE)

    async def _require_account(self, storage_id: str, account_id: Any) -> Record:
        account = await (await self._accounts(storage_id)).find_by_id(account_id)
        if account is None:
            raise RecordNotFound(f"Account '{account_id}' not found in storage '{storage_id}'.")
        return account

    async def get_one_account(self, storage_id: str, account_id: str) -> Record:
        return await self._require_account(storage_id, account_id)

    async def get_all_accounts(self, storage_id: str) -> List[Record]:
        return await (await self._accounts(storage_id)).find()

    async def create_or_update_account(self, storage_id: str, body: Dict[str, Any]) -> Record:
        accounts = await self._accounts(storage_id)
        if body.get("id") is not None:
            if await accounts.find_by_id(body["id"]) is None:
                raise RecordNotFound(f"Account '{body['id']}' not found in storage '{storage_id}'.")
            # 整条替换，而不是合并
            return await accounts.replace_or_create(body)
        return await accounts.create(body)

    async def delete_one_account(self, storage_id: str, account_id: str) -> int:
        return await (await self._accounts(storage_id)).destroy_by_id(account_id)

    async def import_accounts(self, storage_id: str, url: str) -> int:
        accounts = await self._accounts(storage_id)
        records = await self.importer.fetch_accounts(url)
        if not records:
            return 0
        created = await accounts.create(records)
        logger.info(f"[StorageService] Imported {len(created)} accounts into storage '{storage_id}'.")
        return len(created)

    # ==============================================================================
    # 3. Tasks (owned by an account through its profileKey)
    # ==============================================================================

    async def _tasks_of(self, storage_id: str, account_id: str):
        tasks = await self.hub.models.resolve(storage_id, TASK_TABLE)
        account = await self._require_account(storage_id, account_id)
        return tasks, account.get(PROFILE_KEY_FIELD)

    async def create_or_update_task(self, storage_id: str, account_id: str, body: Dict[str, Any]) -> Record:
        tasks, profile_key = await self._tasks_of(storage_id, account_id)
        body = dict(body)

        if body.get("id") is None:
            return await tasks.create({**body, PROFILE_KEY_FIELD: profile_key})

        existing = await tasks.find_by_id(body["id"])
        if existing is None:
            raise RecordNotFound(f"Task '{body['id']}' not found in storage '{storage_id}'.")
        # taskMessages 浅合并，新值覆盖旧值
        body["taskMessages"] = {**(existing.get("taskMessages") or {}), **(body.get("taskMessages") or {})}
        body[PROFILE_KEY_FIELD] = profile_key

        updated = await tasks.update({"id": body["id"], PROFILE_KEY_FIELD: profile_key}, body)
        if updated is None:
            raise RecordNotFound(f"Task '{body['id']}' does not belong to account '{account_id}'.")
        return updated

    async def get_all_tasks(self, storage_id: str, account_id: str) -> List[Record]:
        tasks, profile_key = await self._tasks_of(storage_id, account_id)
        return await tasks.find({PROFILE_KEY_FIELD: profile_key})

    async def delete_all_tasks(self, storage_id: str, account_id: str) -> int:
        tasks, profile_key = await self._tasks_of(storage_id, account_id)
        return await tasks.destroy_all({PROFILE_KEY_FIELD: profile_key})

    # ==============================================================================
    # 4. Generic tables
    # ==============================================================================

    async def get_one_data(self, storage_id: str, table_name: str, record_id: str) -> Record:
        handle = await self.hub.models.resolve(storage_id, table_name)
        record = await handle.find_by_id(record_id)
        if record is None:
            raise RecordNotFound(f"Record '{record_id}' not found in '{table_name}'.")
        return record

    async def get_all_data(self, storage_id: str, table_name: str) -> List[Record]:
        handle = await self.hub.models.resolve(storage_id, table_name)
        return await handle.find()

    async def create_or_update_data(self, storage_id: str, table_name: str, body: Dict[str, Any]) -> Record:
        if not isinstance(body, dict):
            raise ServiceException("Request body must be a JSON object.")
        handle = await self.hub.models.resolve(storage_id, table_name)
        return await handle.replace_or_create(body)

    async def delete_one_data(self, storage_id: str, table_name: str, record_id: str) -> int:
        handle = await self.hub.models.resolve(storage_id, table_name)
        return await handle.destroy_by_id(record_id)

    async def delete_all_data(self, storage_id: str, table_name: str) -> int:
        handle = await self.hub.models.resolve(storage_id, table_name)
        return await handle.destroy_all()
