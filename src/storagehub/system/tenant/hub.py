# src/storagehub/system/tenant/hub.py

import logging
from typing import Optional
from sqlalchemy.ext.asyncio import async_sessionmaker

from storagehub.core.config import Settings
from storagehub.dao.storage_dao import StorageDao
from storagehub.engine.tenant import TenantConnectionRegistry
from storagehub.schemas.storage_schemas import StorageDescriptor
from storagehub.services.redis_service import RedisService
from .metadata import RegistryMetadataStore, JsonFileMetadataStore, RedisMetadataStore
from .provisioner import TenantProvisioner
from .registry import ModelRegistry, StorageLoader

logger = logging.getLogger(__name__)

def make_storage_loader(session_factory: async_sessionmaker) -> StorageLoader:
    """Loads storage descriptors from the control plane in a short-lived session."""
    async def load(storage_id: str) -> Optional[StorageDescriptor]:
        async with session_factory() as session:
            storage = await StorageDao(session).get_by_pk(storage_id)
            return StorageDescriptor.model_validate(storage) if storage else None
    return load

def build_metadata_store(settings: Settings) -> RegistryMetadataStore:
    if settings.METADATA_BACKEND == "redis":
        return RedisMetadataStore(RedisService(), prefix=settings.REDIS_METADATA_PREFIX)
    return JsonFileMetadataStore(settings.METADATA_DIR)

class TenantHub:
    """
    The tenant registries of one process, built once at startup:
    connection registry, model registry, provisioner and their metadata store.
    """
    def __init__(
        self,
        metadata: RegistryMetadataStore,
        storage_loader: StorageLoader,
        connections: Optional[TenantConnectionRegistry] = None,
        connect_timeout: float = 10.0,
    ):
        self.metadata = metadata
        self.connections = connections or TenantConnectionRegistry(connect_timeout=connect_timeout)
        self.models = ModelRegistry(self.connections, metadata, storage_loader)
        self.provisioner = TenantProvisioner(self.connections, self.models, metadata)

    @classmethod
    def from_settings(cls, settings: Settings, session_factory: async_sessionmaker) -> "TenantHub":
        return cls(
            metadata=build_metadata_store(settings),
            storage_loader=make_storage_loader(session_factory),
            connect_timeout=settings.TENANT_CONNECT_TIMEOUT,
        )

    async def startup(self) -> int:
        """[生命周期] 从持久化元数据重建注册表。"""
        return await self.models.restore()

    async def shutdown(self) -> None:
        await self.connections.shutdown()
        await self.metadata.close()
