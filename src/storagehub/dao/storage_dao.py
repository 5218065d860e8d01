# src/storagehub/dao/storage_dao.py

from typing import List
from sqlalchemy.ext.asyncio import AsyncSession
from storagehub.dao.base_dao import BaseDao
from storagehub.models.storage import Storage

class StorageDao(BaseDao[Storage]):
    def __init__(self, db_session: AsyncSession):
        super().__init__(Storage, db_session)

    async def list_recent(self, page: int = 0, limit: int = 0) -> List[Storage]:
        return await self.get_list(order=[Storage.created_at.desc(), Storage.id], page=page, limit=limit)
