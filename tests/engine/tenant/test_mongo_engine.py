# tests/engine/tenant/test_mongo_engine.py

import pytest
from unittest.mock import AsyncMock, MagicMock
from pymongo.errors import OperationFailure

from storagehub.engine.tenant import TenantConnection, TenantConnectionConfig
from storagehub.engine.tenant.mongo_engine import MongoTenantEngine, MongoCollectionHandle, like_to_regex
from storagehub.schemas.storage_schemas import TableSchema
from storagehub.services.exceptions import MaterializationFailed, ConnectionUnavailable, InvalidFilter

pytestmark = pytest.mark.asyncio

TASKS = TableSchema(name="acme_task", structure={
    "profileKey": {"type": "string", "required": True},
    "title": "string",
    "taskMessages": {"type": "object", "default": {}},
})

# ==============================================================================
# 1. Mock Fixtures
# ==============================================================================

@pytest.fixture
def collection() -> MagicMock:
    collection = MagicMock()
    cursor = MagicMock()
    cursor.limit.return_value = cursor
    cursor.to_list = AsyncMock(return_value=[])
    collection.find.return_value = cursor
    collection.insert_many = AsyncMock()
    collection.find_one = AsyncMock()
    collection.update_many = AsyncMock()
    collection.replace_one = AsyncMock()
    collection.delete_one = AsyncMock(return_value=MagicMock(deleted_count=1))
    collection.delete_many = AsyncMock(return_value=MagicMock(deleted_count=3))
    return collection

@pytest.fixture
def database(collection: MagicMock) -> MagicMock:
    database = MagicMock()
    database.list_collection_names = AsyncMock(return_value=[])
    database.create_collection = AsyncMock()
    database.__getitem__.return_value = collection
    return database

@pytest.fixture
def connection(database: MagicMock) -> TenantConnection:
    client = MagicMock()
    client.__getitem__.return_value = database
    config = TenantConnectionConfig(engine_type="mongodb", database="acme", host="mongo", port=27017)
    return TenantConnection(config, MongoTenantEngine(), client=client)

# ==============================================================================
# 2. 物化
# ==============================================================================

class TestMongoMaterialize:

    async def test_creates_missing_collection_with_required_validator(self, connection, database):
        handle = await connection.engine.materialize(connection, TASKS)

        assert isinstance(handle, MongoCollectionHandle)
        database.create_collection.assert_awaited_once_with(
            "acme_task",
            validator={"$jsonSchema": {"bsonType": "object", "required": ["profileKey"]}},
        )

    async def test_existing_collection_is_left_untouched(self, connection, database):
        database.list_collection_names.return_value = ["acme_task"]
        await connection.engine.materialize(connection, TASKS)
        database.create_collection.assert_not_awaited()

    async def test_server_rejection_raises_materialization_failed(self, connection, database):
        database.create_collection.side_effect = OperationFailure("not authorized")
        with pytest.raises(MaterializationFailed):
            await connection.engine.materialize(connection, TASKS)

    async def test_errored_connection_cannot_materialize(self):
        config = TenantConnectionConfig(engine_type="mongodb", database="acme")
        errored = TenantConnection(config, MongoTenantEngine(), error=OSError("down"))
        with pytest.raises(ConnectionUnavailable):
            await errored.engine.materialize(errored, TASKS)

# ==============================================================================
# 3. 数据操作
# ==============================================================================

class TestMongoCollectionHandle:

    async def test_like_to_regex(self):
        assert like_to_regex("a%b_") == "^a.*b.$"
        assert like_to_regex("1.5%") == r"^1\.5.*$"

    async def test_filters_translate_to_mongo_query(self, collection):
        handle = MongoCollectionHandle(collection, TASKS)
        await handle.find([["id", "=", 7], ["title", "like", "a%"], ["profileKey", "in", ["p1", "p2"]]])

        collection.find.assert_called_once_with({
            "_id": {"$eq": "7"},
            "title": {"$regex": "^a.*$"},
            "profileKey": {"$in": ["p1", "p2"]},
        })

    async def test_unknown_field_raises(self, collection):
        handle = MongoCollectionHandle(collection, TASKS)
        with pytest.raises(InvalidFilter):
            await handle.find({"owner": "x"})

    async def test_find_exposes_id_and_hides_underscore_id(self, collection):
        collection.find.return_value.to_list.return_value = [{"_id": "abc", "id": "abc", "title": "t"}]
        handle = MongoCollectionHandle(collection, TASKS)
        assert await handle.find() == [{"id": "abc", "title": "t"}]

    async def test_create_assigns_string_ids_and_defaults(self, collection):
        handle = MongoCollectionHandle(collection, TASKS)
        first, second = await handle.create([{"profileKey": "p1"}, {"profileKey": "p2"}])

        documents = collection.insert_many.await_args.args[0]
        assert [d["_id"] for d in documents] == [first["id"], second["id"]]
        assert first["taskMessages"] == {} and first["taskMessages"] is not second["taskMessages"]

    async def test_update_returns_first_updated_document(self, collection):
        collection.find_one.side_effect = [
            {"_id": "t1", "id": "t1", "title": "old"},
            {"_id": "t1", "id": "t1", "title": "new"},
        ]
        handle = MongoCollectionHandle(collection, TASKS)

        updated = await handle.update({"id": "t1", "profileKey": "p1"}, {"id": "t1", "title": "new"})

        assert updated == {"id": "t1", "title": "new"}
        collection.update_many.assert_awaited_once_with(
            {"_id": {"$eq": "t1"}, "profileKey": {"$eq": "p1"}}, {"$set": {"title": "new"}}
        )

    async def test_update_without_match_returns_none(self, collection):
        collection.find_one.return_value = None
        handle = MongoCollectionHandle(collection, TASKS)
        assert await handle.update({"id": "missing"}, {"title": "x"}) is None
        collection.update_many.assert_not_awaited()

    async def test_replace_or_create_upserts_by_id(self, collection):
        handle = MongoCollectionHandle(collection, TASKS)
        record = await handle.replace_or_create({"id": 42, "profileKey": "p1"})

        assert record["id"] == "42"
        collection.replace_one.assert_awaited_once()
        query, document = collection.replace_one.await_args.args
        assert query == {"_id": "42"}
        assert document["taskMessages"] == {}
        assert collection.replace_one.await_args.kwargs == {"upsert": True}

    async def test_destroy(self, collection):
        handle = MongoCollectionHandle(collection, TASKS)
        assert await handle.destroy_by_id(5) == 1
        collection.delete_one.assert_awaited_once_with({"_id": "5"})
        assert await handle.destroy_all({"profileKey": "p1"}) == 3
        collection.delete_many.assert_awaited_once_with({"profileKey": {"$eq": "p1"}})
