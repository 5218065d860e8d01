from typing import Type, TypeVar, Generic, Any, Optional, List
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import inspect, select
from sqlalchemy.sql.selectable import Select
from storagehub.db.base import Base

# 使用 TypeVar 和 Generic 实现类型安全的 DAO
ModelType = TypeVar("ModelType", bound=Base)

class BaseDao(Generic[ModelType]):
    def __init__(self, model_class: Type[ModelType], db_session: AsyncSession):
        self.model: Type[ModelType] = model_class
        self.db_session: AsyncSession = db_session
        primary_keys = inspect(model_class).primary_key
        if not primary_keys:
            raise ValueError(f"Model {model_class.__name__} does not have a primary key.")
        self.pk: str = primary_keys[0].name

    # ==============================================================================
    # 1. 实体/对象方法 (Object Methods)
    #    - 输入和输出都应该是 ORM 对象实例
    # ==============================================================================

    async def get_list(
        self,
        where: Optional[dict | list] = None,
        order: Optional[list] = None,
        page: int = 0,
        limit: int = 0
    ) -> list[ModelType]:
        stmt = self._quick_query(where=where, order=order, page=page, limit=limit)
        executed = await self.db_session.execute(stmt)
        return list(executed.scalars().all())

    async def get_one(
        self,
        where: Optional[dict | list] = None,
        order: Optional[list] = None
    ) -> Optional[ModelType]:
        stmt = self._quick_query(where=where, order=order)
        executed = await self.db_session.execute(stmt)
        return executed.scalars().first()

    async def get_by_pk(self, pk_value: Any) -> Optional[ModelType]:
        return await self.get_one(where={self.pk: pk_value})

    async def add(self, instance: ModelType, auto_flush: bool = True) -> ModelType:
        self.db_session.add(instance)
        if auto_flush:
            await self.db_session.flush()
            await self.db_session.refresh(instance)
        return instance

    # ==============================================================================
    # 2. 查询构建辅助方法 (Query Building Helpers)
    # ==============================================================================

    def _quick_query(
        self,
        stmt: Optional[Select] = None,
        where: Optional[dict | list] = None,
        order: Optional[list] = None,
        page: int = 0,
        limit: int = 0
    ) -> Select:
        """
        一个线性的、清晰的查询构建方法。
        """
        if stmt is None:
            stmt = select(self.model)

        if where is not None:
            stmt = self._where(stmt, where)

        if order is not None:
            stmt = stmt.order_by(*order)

        if page > 0 and limit > 0:
            stmt = self._paginate(stmt=stmt, page=page, limit=limit)

        return stmt

    def _where(self, stmt: Select, where: dict | list) -> Select:
        if isinstance(where, dict):
            stmt = stmt.filter_by(**where)
        elif isinstance(where, (list, tuple)):
            stmt = stmt.filter(*where)
        return stmt

    def _paginate(self, stmt: Select, page: int = 0, limit: int = 0) -> Select:
        page = int(page)
        limit = int(limit)
        if page > 0 and limit > 0:
            stmt = stmt.limit(limit).offset((page - 1) * limit)
        return stmt
