# src/storagehub/services/redis_service.py

import json
from typing import Any, Dict
import redis.asyncio as aioredis
from storagehub.core.config import settings

class RedisService:
    """
    一个封装了 aioredis 客户端的通用服务，提供了应用层面的常用方法。
    """
    def __init__(self, client: aioredis.Redis = None):
        self.client = client if client else aioredis.from_url(
            settings.REDIS_URL,
            encoding="utf-8",
            decode_responses=True
        )

    async def close(self):
        await self.client.aclose()

    async def hset_json(self, key: str, field: str, data: Any) -> None:
        """
        将 Python 对象序列化为 JSON 并写入哈希的单个字段。
        HSET 对单个字段是原子的，不需要读-改-写。
        """
        await self.client.hset(key, field, json.dumps(data, ensure_ascii=False))

    async def hgetall_json(self, key: str) -> Dict[str, Any]:
        """
        读取整个哈希，并将每个字段的 JSON 值反序列化。

        :param key: Redis 键。
        :return: 字段名到 Python 对象的映射，键不存在时为空字典。
        """
        raw = await self.client.hgetall(key)
        return {field: json.loads(value) for field, value in raw.items()}
