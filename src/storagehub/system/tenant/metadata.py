# src/storagehub/system/tenant/metadata.py

import os
import json
import asyncio
import logging
import tempfile
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Dict

from storagehub.services.redis_service import RedisService

logger = logging.getLogger(__name__)

Document = Dict[str, Any]

def model_key(tenant_key: str, physical_name: str) -> str:
    """Model documents are keyed by the physical table name qualified with its TenantKey."""
    return f"{tenant_key}/{physical_name}"

class RegistryMetadataStore(ABC):
    """
    Durable metadata behind the tenant registries:
    - datasource documents, keyed by TenantKey;
    - model documents, keyed by `model_key()`: `<TenantKey>/<physical table name>`.
      A bare physical name is not unique, since two tenants may each own a table
      with the same name; every document also carries `name` and `dataSource`.
    Both maps are append/overwrite only.
    """

    @abstractmethod
    async def save_datasource(self, tenant_key: str, document: Document) -> None:
        raise NotImplementedError

    @abstractmethod
    async def save_model(self, key: str, document: Document) -> None:
        raise NotImplementedError

    @abstractmethod
    async def load_datasources(self) -> Dict[str, Document]:
        raise NotImplementedError

    @abstractmethod
    async def load_models(self) -> Dict[str, Document]:
        raise NotImplementedError

    async def close(self) -> None:
        pass

class JsonFileMetadataStore(RegistryMetadataStore):
    """
    Keeps each map in one JSON file (datasources.json / model-config.json).
    Every update merges a single key under a per-file lock and replaces the file
    through a temp file + os.replace, so readers never see a half-written file.
    """
    DATASOURCES_FILE = "datasources.json"
    MODELS_FILE = "model-config.json"

    def __init__(self, directory: str | Path):
        self.directory = Path(directory)
        self._locks = {
            self.DATASOURCES_FILE: asyncio.Lock(),
            self.MODELS_FILE: asyncio.Lock(),
        }

    def _read(self, filename: str) -> Dict[str, Document]:
        path = self.directory / filename
        if not path.exists():
            return {}
        with open(path, 'r', encoding='utf-8') as f:
            return json.load(f)

    def _write_atomic(self, filename: str, content: Dict[str, Document]) -> None:
        self.directory.mkdir(parents=True, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(dir=self.directory, prefix=f".{filename}.", suffix=".tmp")
        try:
            with os.fdopen(fd, 'w', encoding='utf-8') as f:
                json.dump(content, f, indent="\t", ensure_ascii=False)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_path, self.directory / filename)
        except BaseException:
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise

    def _merge_sync(self, filename: str, key: str, document: Document) -> None:
        content = self._read(filename)
        content[key] = document
        self._write_atomic(filename, content)

    async def _merge(self, filename: str, key: str, document: Document) -> None:
        async with self._locks[filename]:
            await asyncio.to_thread(self._merge_sync, filename, key, document)

    async def _load(self, filename: str) -> Dict[str, Document]:
        async with self._locks[filename]:
            return await asyncio.to_thread(self._read, filename)

    async def save_datasource(self, tenant_key: str, document: Document) -> None:
        await self._merge(self.DATASOURCES_FILE, tenant_key, document)

    async def save_model(self, key: str, document: Document) -> None:
        await self._merge(self.MODELS_FILE, key, document)

    async def load_datasources(self) -> Dict[str, Document]:
        return await self._load(self.DATASOURCES_FILE)

    async def load_models(self) -> Dict[str, Document]:
        return await self._load(self.MODELS_FILE)

class RedisMetadataStore(RegistryMetadataStore):
    """Keeps each map in one Redis hash; every document is a single HSET field."""

    def __init__(self, redis_service: RedisService, prefix: str = "storagehub:metadata"):
        self.redis = redis_service
        self.datasources_key = f"{prefix}:datasources"
        self.models_key = f"{prefix}:models"

    async def save_datasource(self, tenant_key: str, document: Document) -> None:
        await self.redis.hset_json(self.datasources_key, tenant_key, document)

    async def save_model(self, key: str, document: Document) -> None:
        await self.redis.hset_json(self.models_key, key, document)

    async def load_datasources(self) -> Dict[str, Document]:
        return await self.redis.hgetall_json(self.datasources_key)

    async def load_models(self) -> Dict[str, Document]:
        return await self.redis.hgetall_json(self.models_key)

    async def close(self) -> None:
        await self.redis.close()
