# src/storagehub/system/tenant/registry.py

import asyncio
import logging
from typing import Awaitable, Callable, Dict, NamedTuple, Optional

from storagehub.engine.tenant import TenantConnectionRegistry, TenantConnectionConfig, TableHandle
from storagehub.schemas.storage_schemas import StorageDescriptor, TableSchema
from storagehub.services.exceptions import (
    ServiceException, StorageNotFound, DatasourceNotFound, ModelNotFound
)
from .metadata import RegistryMetadataStore, Document, model_key

logger = logging.getLogger(__name__)

StorageLoader = Callable[[str], Awaitable[Optional[StorageDescriptor]]]

class ModelEntry(NamedTuple):
    storage_id: Optional[str]
    logical_name: str
    tenant_key: str
    physical_name: str
    handle: TableHandle

class ModelRegistry:
    """
    (storage, logical table name) -> TableHandle.

    Entries live per TenantKey and physical table name, exactly as they were
    materialized. `resolve` is the only way data operations reach a handle:
    storage -> datasource -> model, each miss raising its own error.
    """
    def __init__(
        self,
        connections: TenantConnectionRegistry,
        metadata: RegistryMetadataStore,
        storage_loader: StorageLoader,
    ):
        self.connections = connections
        self.metadata = metadata
        self._storage_loader = storage_loader
        self._entries: Dict[str, Dict[str, ModelEntry]] = {}

    async def register(
        self,
        storage_id: Optional[str],
        logical_name: str,
        tenant_key: str,
        physical_name: str,
        handle: TableHandle,
        persist: bool = True,
    ) -> ModelEntry:
        """
        Persists the model document (by default), then records the materialized table.
        A table whose document could not be saved is never resolvable.
        """
        entry = ModelEntry(storage_id, logical_name, tenant_key, physical_name, handle)
        if persist:
            await self.metadata.save_model(model_key(tenant_key, physical_name), {
                "dataSource": tenant_key,
                "public": True,
                "name": physical_name,
                "logicalName": logical_name,
                "storageId": storage_id,
                "properties": handle.schema.model_dump(mode="json")["structure"],
            })
        self._entries.setdefault(tenant_key, {})[physical_name] = entry
        logger.info(f"[ModelRegistry] Registered '{physical_name}' on datasource '{tenant_key}'.")
        return entry

    def lookup(self, tenant_key: str, physical_name: str) -> Optional[ModelEntry]:
        return self._entries.get(tenant_key, {}).get(physical_name)

    async def resolve_entry(self, storage_id: str, logical_name: str) -> ModelEntry:
        # 1. storage
        storage = await self._storage_loader(storage_id)
        if storage is None:
            raise StorageNotFound(f"Storage '{storage_id}' not found.")

        # 2. datasource
        connection = self.connections.get(storage.tenant_key)
        if connection is None or not connection.is_available:
            raise DatasourceNotFound(f"Datasource '{storage.tenant_key}' is not found.")

        # 3. model; account / task 改写为租户前缀的物理表名
        physical_name = storage.physical_name(logical_name)
        entry = self.lookup(storage.tenant_key, physical_name)
        if entry is None:
            raise ModelNotFound(f"Model '{physical_name}' not found on datasource '{storage.tenant_key}'.")
        return entry

    async def resolve(self, storage_id: str, logical_name: str) -> TableHandle:
        entry = await self.resolve_entry(storage_id, logical_name)
        return entry.handle

    # --- Restart ---

    async def _restore_datasource(self, tenant_key: str, document: Document) -> None:
        try:
            await self.connections.get_or_create(TenantConnectionConfig.from_document(document))
        except ServiceException as e:
            logger.error(f"[ModelRegistry] Datasource '{tenant_key}' could not be restored: {e.message}")

    async def restore(self) -> int:
        """
        Rebuilds the registry from durable metadata without materializing anything:
        every datasource is dialled, every model whose datasource is live is bound.
        Returns the number of restored models.
        """
        datasources = await self.metadata.load_datasources()
        await asyncio.gather(*(
            self._restore_datasource(tenant_key, document) for tenant_key, document in datasources.items()
        ))

        restored = 0
        for key, document in (await self.metadata.load_models()).items():
            tenant_key = document["dataSource"]
            connection = self.connections.get(tenant_key)
            if connection is None or not connection.is_available:
                logger.warning(f"[ModelRegistry] Skipping model '{key}': datasource '{tenant_key}' is unavailable.")
                continue
            schema = TableSchema(name=document["name"], structure=document.get("properties") or {})
            handle = connection.engine.bind(connection, schema)
            await self.register(
                document.get("storageId"),
                document.get("logicalName", document["name"]),
                tenant_key,
                document["name"],
                handle,
                persist=False,
            )
            restored += 1

        logger.info(f"[ModelRegistry] Restored {restored} models from {len(datasources)} datasources.")
        return restored
