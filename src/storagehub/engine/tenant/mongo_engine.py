# src/storagehub/engine/tenant/mongo_engine.py

import re
import copy
import logging
from typing import Any, Dict, List, Optional, Union

from pymongo import AsyncMongoClient
from pymongo.errors import CollectionInvalid, PyMongoError

from storagehub.schemas.storage_schemas import TableSchema
from storagehub.services.exceptions import MaterializationFailed
from storagehub.utils.id_generator import generate_uuid
from .base import (
    BaseTenantEngine, TableHandle, TenantConnection, TenantConnectionConfig,
    Record, Filter, normalize_filter, register_tenant_engine
)

logger = logging.getLogger(__name__)

MONGO_OPERATORS = {
    "!=": "$ne",
    ">": "$gt",
    "<": "$lt",
    ">=": "$gte",
    "<=": "$lte",
    "in": "$in",
    "not in": "$nin",
}

def like_to_regex(pattern: str) -> str:
    """Translates an SQL LIKE pattern (% and _) into an anchored regular expression."""
    parts = []
    for ch in pattern:
        if ch == "%":
            parts.append(".*")
        elif ch == "_":
            parts.append(".")
        else:
            parts.append(re.escape(ch))
    return "^" + "".join(parts) + "$"

class MongoCollectionHandle(TableHandle):
    """
    TableHandle over one MongoDB collection.
    Records carry a string `id` mirrored into `_id`; `_id` never leaves this class.
    """

    def __init__(self, collection, schema: TableSchema):
        super().__init__(schema)
        self.collection = collection
        self._valid_fields = {"id", *schema.structure.keys()}

    def _to_query(self, filters: Filter) -> Dict[str, Any]:
        query: Dict[str, Any] = {}
        for key, op, value in normalize_filter(filters, self._valid_fields):
            field = "_id" if key == "id" else key
            if key == "id":
                value = [str(v) for v in value] if op in ("in", "not in") else str(value)
            if op == "=":
                condition = {"$eq": value}
            elif op == "like":
                condition = {"$regex": like_to_regex(str(value))}
            else:
                condition = {MONGO_OPERATORS[op]: value}
            query.setdefault(field, {}).update(condition)
        return query

    def _with_defaults(self, record: Record) -> Record:
        document = {
            name: copy.deepcopy(spec.default) for name, spec in self.schema.structure.items()
            if spec.default is not None
        }
        document.update(record)
        return document

    @staticmethod
    def _from_document(document: Dict[str, Any]) -> Record:
        record = dict(document)
        record_id = record.pop("_id", None)
        record.setdefault("id", record_id)
        return record

    def _new_document(self, record: Record) -> Dict[str, Any]:
        record = dict(record)
        record_id = str(record.pop("id", None) or generate_uuid())
        return {"_id": record_id, "id": record_id, **self._with_defaults(record)}

    async def find(self, filters: Filter = None, limit: Optional[int] = None) -> List[Record]:
        cursor = self.collection.find(self._to_query(filters))
        if limit:
            cursor = cursor.limit(limit)
        documents = await cursor.to_list(length=None)
        return [self._from_document(doc) for doc in documents]

    async def create(self, data: Union[Record, List[Record]]) -> Union[Record, List[Record]]:
        documents = [self._new_document(record) for record in ([data] if isinstance(data, dict) else data)]
        if documents:
            await self.collection.insert_many(documents)
        created = [self._from_document(doc) for doc in documents]
        return created[0] if isinstance(data, dict) else created

    async def update(self, filters: Filter, values: Record) -> Optional[Record]:
        query = self._to_query(filters)
        first = await self.collection.find_one(query)
        if first is None:
            return None
        values = {k: v for k, v in values.items() if k not in ("id", "_id")}
        if values:
            await self.collection.update_many(query, {"$set": values})
        updated = await self.collection.find_one({"_id": first["_id"]})
        return self._from_document(updated)

    async def replace_or_create(self, data: Record) -> Record:
        if data.get("id") is None:
            return await self.create(data)
        document = self._new_document(data)
        await self.collection.replace_one({"_id": document["_id"]}, document, upsert=True)
        return self._from_document(document)

    async def destroy_by_id(self, record_id: Any) -> int:
        result = await self.collection.delete_one({"_id": str(record_id)})
        return result.deleted_count

    async def destroy_all(self, filters: Filter = None) -> int:
        result = await self.collection.delete_many(self._to_query(filters))
        return result.deleted_count

@register_tenant_engine
class MongoTenantEngine(BaseTenantEngine):
    """Document tenants on MongoDB through pymongo's asyncio client."""
    name = "mongodb"
    engine_types = ("mongodb",)

    async def connect(self, config: TenantConnectionConfig, timeout: float) -> AsyncMongoClient:
        client = AsyncMongoClient(
            host=config.host or "localhost",
            port=config.port or 27017,
            username=config.username or None,
            password=config.password or None,
            serverSelectionTimeoutMS=int(timeout * 1000),
        )
        try:
            await client.admin.command("ping")
        except BaseException:
            await client.close()
            raise
        return client

    async def close(self, client: AsyncMongoClient) -> None:
        await client.close()

    def _database(self, connection: TenantConnection):
        return connection.require_client()[connection.config.database]

    @staticmethod
    def _validator(schema: TableSchema) -> Optional[Dict[str, Any]]:
        required = [name for name, spec in schema.structure.items() if spec.required]
        if not required:
            return None
        return {"$jsonSchema": {"bsonType": "object", "required": required}}

    async def materialize(self, connection: TenantConnection, schema: TableSchema) -> MongoCollectionHandle:
        database = self._database(connection)
        try:
            existing = await database.list_collection_names(filter={"name": schema.name})
            if schema.name in existing:
                logger.info(f"[MongoEngine] Collection '{schema.name}' already exists in '{connection.key}'.")
            else:
                validator = self._validator(schema)
                options = {"validator": validator} if validator else {}
                await database.create_collection(schema.name, **options)
                logger.info(f"[MongoEngine] Collection '{schema.name}' created in '{connection.key}'.")
        except CollectionInvalid:
            # 并发创建：集合已由另一个调用者创建
            pass
        except PyMongoError as e:
            raise MaterializationFailed(f"Failed to create collection '{schema.name}' in '{connection.key}': {e}")
        return MongoCollectionHandle(database[schema.name], schema)

    def bind(self, connection: TenantConnection, schema: TableSchema) -> MongoCollectionHandle:
        return MongoCollectionHandle(self._database(connection)[schema.name], schema)
