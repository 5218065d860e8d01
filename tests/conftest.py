# tests/conftest.py

import os
import tempfile

# 控制平面在导入时创建 engine，必须在导入 storagehub 之前指向测试库
_TEST_ROOT = tempfile.mkdtemp(prefix="storagehub-tests-")
os.environ.setdefault("DB_URL", f"sqlite+aiosqlite:///{_TEST_ROOT}/control-plane.db")
os.environ.setdefault("METADATA_DIR", f"{_TEST_ROOT}/metadata")
os.environ.setdefault("TENANT_CONNECT_TIMEOUT", "5")

import pathlib
from typing import Any, AsyncGenerator, Callable, Dict
import pytest
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.pool import NullPool

from storagehub.main import app
from storagehub.db.base import Base
from storagehub.db.session import get_db
from storagehub.system.tenant.hub import TenantHub, make_storage_loader
from storagehub.system.tenant.metadata import JsonFileMetadataStore

# ==============================================================================
# 1. 控制平面数据库 Fixtures
# ==============================================================================

@pytest.fixture(scope="function")
async def session_factory(tmp_path: pathlib.Path) -> AsyncGenerator[async_sessionmaker, None]:
    """每个测试一个全新的 SQLite 控制平面库。"""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'control.db'}", poolclass=NullPool)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield async_sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=engine, class_=AsyncSession)
    await engine.dispose()

@pytest.fixture(scope="function")
async def db_session(session_factory: async_sessionmaker) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        async with session.begin():
            yield session

# ==============================================================================
# 2. 租户注册表 Fixtures
# ==============================================================================

@pytest.fixture(scope="function")
def metadata_dir(tmp_path: pathlib.Path) -> pathlib.Path:
    return tmp_path / "metadata"

@pytest.fixture(scope="function")
async def tenant_hub(session_factory: async_sessionmaker, metadata_dir: pathlib.Path) -> AsyncGenerator[TenantHub, None]:
    hub = TenantHub(
        metadata=JsonFileMetadataStore(metadata_dir),
        storage_loader=make_storage_loader(session_factory),
        connect_timeout=5.0,
    )
    yield hub
    await hub.shutdown()

@pytest.fixture(scope="function")
def sqlite_storage_factory(tmp_path: pathlib.Path) -> Callable[..., Dict[str, Any]]:
    """生成一个指向 tmp_path 下 SQLite 租户库的 storage 创建请求体。"""
    def _factory(db_file: str = "tenant.db", prefix: str = "acme", tables: list = None) -> Dict[str, Any]:
        return {
            "engineType": "sqlite",
            "dbName": str(tmp_path / db_file),
            "dbPrefixTable": prefix,
            "dbStructure": tables if tables is not None else [
                {"name": "orders", "structure": {"total": {"type": "number", "required": True}, "note": "string"}},
            ],
        }
    return _factory

# ==============================================================================
# 3. API Client Fixture
# ==============================================================================

@pytest.fixture(scope="function")
async def client(session_factory: async_sessionmaker, tenant_hub: TenantHub) -> AsyncGenerator[AsyncClient, None]:
    """
    只覆盖最底层的依赖项 (get_db) 和应用启动时设置的 app.state，
    ASGITransport 不会触发 lifespan。
    """
    async def override_get_db() -> AsyncGenerator[AsyncSession, None]:
        async with session_factory() as session:
            async with session.begin():
                yield session

    app.dependency_overrides[get_db] = override_get_db
    app.state.tenant_hub = tenant_hub

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as c:
        yield c

    app.dependency_overrides.clear()
    app.state.tenant_hub = None
