# src/storagehub/engine/tenant/main.py
import asyncio
import logging
from typing import Dict, List, Optional

from storagehub.services.exceptions import ConnectionFailed, ConfigurationError
from .base import BaseTenantEngine, TenantConnection, TenantConnectionConfig, ALL_TENANT_ENGINES

# 导入具体实现以触发注册
from .sql_engine import SqlTenantEngine
from .mongo_engine import MongoTenantEngine

logger = logging.getLogger(__name__)

class TenantConnectionRegistry:
    """
    [核心管理器]
    按 TenantKey (engine_type:database) 管理所有租户数据库连接。
    - 在应用启动时构造一次，通过 AppContext 传递。
    - 懒加载并缓存连接；同一 key 的并发调用只会拨号一次。
    - 拨号失败时缓存一个 errored 连接，不自动重试，需重启进程。
    """
    def __init__(self, connect_timeout: float = 10.0, engines: Optional[Dict[str, BaseTenantEngine]] = None):
        self._connect_timeout = connect_timeout
        self._engines: Dict[str, BaseTenantEngine] = dict(engines or {})
        self._connections: Dict[str, TenantConnection] = {}
        self._locks: Dict[str, asyncio.Lock] = {}

    def get_engine(self, engine_type: str) -> BaseTenantEngine:
        """Returns the (cached) engine implementation serving an engine type."""
        if engine_type not in self._engines:
            engine_cls = ALL_TENANT_ENGINES.get(engine_type)
            if not engine_cls:
                available = list(ALL_TENANT_ENGINES.keys())
                raise ConfigurationError(f"Engine type '{engine_type}' is not supported. Available: {available}.")
            self._engines[engine_type] = engine_cls()
        return self._engines[engine_type]

    def get(self, tenant_key: str) -> Optional[TenantConnection]:
        return self._connections.get(tenant_key)

    def connections(self) -> List[TenantConnection]:
        return list(self._connections.values())

    async def get_or_create(self, config: TenantConnectionConfig) -> TenantConnection:
        """
        [懒加载核心] 返回 key 对应的缓存连接，首次调用时拨号。
        如果该 key 的连接处于 errored 状态，抛出 ConnectionFailed。
        """
        key = config.tenant_key
        lock = self._locks.setdefault(key, asyncio.Lock())

        # 协程安全地检查和创建连接：先到者拨号，其余调用者等待同一把锁后读取缓存
        async with lock:
            connection = self._connections.get(key)
            if connection is None:
                connection = await self._dial(config)
                self._connections[key] = connection

        if not connection.is_available:
            raise ConnectionFailed(f"Could not connect to datasource '{key}': {connection.error}") from connection.error
        return connection

    async def _dial(self, config: TenantConnectionConfig) -> TenantConnection:
        engine = self.get_engine(config.engine_type)
        logger.info(f"[ConnectionRegistry] Connection for '{config.tenant_key}' not found in cache. Dialing {config.host}:{config.port}...")
        try:
            client = await engine.connect(config, self._connect_timeout)
        except Exception as e:
            logger.error(f"[ConnectionRegistry] Failed to connect to '{config.tenant_key}': {e!r}")
            return TenantConnection(config, engine, error=e)
        logger.info(f"[ConnectionRegistry] Successfully created and cached connection for '{config.tenant_key}'.")
        return TenantConnection(config, engine, client=client)

    async def shutdown(self):
        """[生命周期] 安全关闭所有已建立的连接。"""
        logger.info("[ConnectionRegistry] Shutting down, closing all tenant connections...")
        for key, connection in self._connections.items():
            if not connection.is_available:
                continue
            try:
                await connection.engine.close(connection.client)
                logger.info(f"[ConnectionRegistry] Connection '{key}' closed.")
            except Exception as e:
                logger.error(f"[ConnectionRegistry] Error closing connection '{key}': {e}")
        self._connections.clear()
