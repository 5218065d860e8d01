# src/storagehub/engine/tenant/sql_engine.py

import asyncio
import logging
from contextlib import contextmanager
from datetime import datetime
from typing import Any, Dict, List, Optional, Union

from sqlalchemy import (
    Table, Column, MetaData, String, Text, BigInteger, Integer, Numeric, Boolean,
    DateTime, JSON, text, select, insert, update, delete, inspect
)
from sqlalchemy.engine import URL
from sqlalchemy.exc import SQLAlchemyError, StatementError
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine
from sqlalchemy.types import TypeEngine

from storagehub.schemas.storage_schemas import FieldType, FieldSpec, TableSchema
from storagehub.services.exceptions import InvalidFilter, MaterializationFailed, ServiceException
from .base import (
    BaseTenantEngine, TableHandle, TenantConnection, TenantConnectionConfig,
    Record, Filter, normalize_filter, register_tenant_engine
)

logger = logging.getLogger(__name__)

SQL_DRIVERS = {
    "postgresql": "postgresql+asyncpg",
    "mysql": "mysql+aiomysql",
    "sqlite": "sqlite+aiosqlite",
}

# 用于 CREATE DATABASE 的维护库 (None 表示不指定库)
MAINTENANCE_DATABASES = {
    "postgresql": "postgres",
    "mysql": None,
}

def map_type(field_type: FieldType) -> TypeEngine:
    """将字段类型安全地映射到SQLAlchemy类型 *实例*。"""
    return {
        FieldType.STRING: String(1024),
        FieldType.TEXT: Text(),
        FieldType.NUMBER: Numeric(asdecimal=False),
        FieldType.INTEGER: BigInteger(),
        FieldType.BOOLEAN: Boolean(),
        FieldType.DATE: DateTime(timezone=True),
        FieldType.OBJECT: JSON(),
        FieldType.ARRAY: JSON(),
        FieldType.ANY: JSON(),
    }[field_type]

def build_table(schema: TableSchema) -> Table:
    """Dynamically builds a SQLAlchemy Table object from a table schema."""
    columns = [
        Column("id", BigInteger().with_variant(Integer(), "sqlite"), primary_key=True, autoincrement=True)
    ]
    for field_name, spec in schema.structure.items():
        columns.append(Column(
            field_name,
            map_type(spec.type),
            nullable=not spec.required,
            default=spec.default,
        ))
    return Table(schema.name, MetaData(), *columns)

def coerce_id(value: Any) -> Optional[int]:
    """关系型表的主键是整数；无法转换时返回 None。"""
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    if isinstance(value, str) and value.strip().lstrip("-").isdigit():
        return int(value)
    return None

def coerce_value(field_type: FieldType, value: Any) -> Any:
    """Converts a JSON value to what the column of `field_type` accepts. Raises ValueError otherwise."""
    if value is None:
        return None
    if field_type in (FieldType.STRING, FieldType.TEXT):
        if isinstance(value, (dict, list)):
            raise ValueError("expected a string")
        if isinstance(value, bool):
            return "true" if value else "false"
        return str(value)
    if field_type == FieldType.INTEGER:
        if isinstance(value, float) and value.is_integer():
            return int(value)
        if isinstance(value, bool) or not isinstance(value, (int, str)):
            raise ValueError("expected an integer")
        return int(value)
    if field_type == FieldType.NUMBER:
        if isinstance(value, bool):
            raise ValueError("expected a number")
        if isinstance(value, (int, float)):
            return value
        if isinstance(value, str):
            return float(value)
        raise ValueError("expected a number")
    if field_type == FieldType.BOOLEAN:
        if isinstance(value, bool):
            return value
        if isinstance(value, int) and value in (0, 1):
            return bool(value)
        if isinstance(value, str) and value.strip().lower() in ("true", "false"):
            return value.strip().lower() == "true"
        raise ValueError("expected a boolean")
    if field_type == FieldType.DATE:
        if isinstance(value, datetime):
            return value
        if isinstance(value, str):
            return datetime.fromisoformat(value)
        raise ValueError("expected an ISO 8601 date")
    if field_type == FieldType.OBJECT and not isinstance(value, dict):
        raise ValueError("expected an object")
    if field_type == FieldType.ARRAY and not isinstance(value, list):
        raise ValueError("expected an array")
    return value

class SqlTableHandle(TableHandle):
    """TableHandle over one relational table, backed by a shared AsyncEngine."""

    def __init__(self, engine: AsyncEngine, table: Table, schema: TableSchema):
        super().__init__(schema)
        self.engine = engine
        self.table = table
        self._valid_columns = {c.name for c in table.columns}

    @contextmanager
    def _driver_errors(self, action: str):
        # 驱动拒绝的语句 (约束、类型、溢出) 一律作为 400 返回
        try:
            yield
        except StatementError as e:
            raise ServiceException(f"{action} rejected by table '{self.name}': {e.orig or e}") from e

    def _coerce(self, key: str, value: Any) -> Any:
        if key == "id":
            record_id = coerce_id(value)
            if record_id is None:
                raise ValueError("expected an integer id")
            return record_id
        spec: Optional[FieldSpec] = self.schema.structure.get(key)
        if spec is None:
            return value
        return coerce_value(spec.type, value)

    def _clean(self, record: Record) -> Dict[str, Any]:
        """Keeps only known columns and coerces their values."""
        dropped = [key for key in record if key not in self._valid_columns]
        if dropped:
            logger.debug(f"[SqlTable:{self.name}] Dropping unknown fields {dropped}")
        values = {}
        for key, value in record.items():
            if key not in self._valid_columns:
                continue
            try:
                values[key] = self._coerce(key, value)
            except (TypeError, ValueError) as e:
                raise ServiceException(f"Invalid value for '{key}': {value!r} ({e})")
        return values

    def _filter_value(self, key: str, op: str, value: Any) -> Any:
        try:
            if op == "like":
                if isinstance(value, (dict, list)):
                    raise ValueError("expected a pattern string")
                return str(value)
            if op in ("in", "not in"):
                return [self._coerce(key, v) for v in value]
            return self._coerce(key, value)
        except (TypeError, ValueError) as e:
            raise InvalidFilter(f"Invalid filter value for '{key}': {value!r} ({e})")

    def _build_where_clause(self, filters: Filter) -> List:
        """[核心] 安全地从JSON构建SQLAlchemy WHERE子句。"""
        clauses = []
        for key, op, value in normalize_filter(filters, self._valid_columns):
            column = self.table.c[key]
            value = self._filter_value(key, op, value)
            op_map = {
                "=": lambda: column == value,
                "!=": lambda: column != value,
                ">": lambda: column > value,
                "<": lambda: column < value,
                ">=": lambda: column >= value,
                "<=": lambda: column <= value,
                "like": lambda: column.like(value),
                "in": lambda: column.in_(value),
                "not in": lambda: column.not_in(value),
            }
            clauses.append(op_map[op]())
        return clauses

    async def _fetch_by_id(self, conn, record_id: Any) -> Record:
        result = await conn.execute(select(self.table).where(self.table.c.id == record_id))
        return dict(result.mappings().one())

    async def find(self, filters: Filter = None, limit: Optional[int] = None) -> List[Record]:
        stmt = select(self.table).where(*self._build_where_clause(filters)).order_by(self.table.c.id)
        if limit:
            stmt = stmt.limit(limit)
        with self._driver_errors("Query"):
            async with self.engine.connect() as conn:
                result = await conn.execute(stmt)
                return [dict(row) for row in result.mappings()]

    async def find_by_id(self, record_id: Any) -> Optional[Record]:
        if coerce_id(record_id) is None:
            return None
        return await super().find_by_id(record_id)

    async def _insert(self, conn, record: Record) -> Record:
        values = self._clean(record)
        stmt = insert(self.table).values(**values) if values else insert(self.table)
        result = await conn.execute(stmt)
        return await self._fetch_by_id(conn, result.inserted_primary_key[0])

    async def create(self, data: Union[Record, List[Record]]) -> Union[Record, List[Record]]:
        records = [data] if isinstance(data, dict) else list(data)
        with self._driver_errors("Record"):
            async with self.engine.begin() as conn:
                created = [await self._insert(conn, record) for record in records]
        return created[0] if isinstance(data, dict) else created

    async def update(self, filters: Filter, values: Record) -> Optional[Record]:
        where_clauses = self._build_where_clause(filters)
        values = {k: v for k, v in self._clean(values).items() if k != "id"}
        with self._driver_errors("Update"):
            async with self.engine.begin() as conn:
                result = await conn.execute(select(self.table.c.id).where(*where_clauses).order_by(self.table.c.id))
                ids = list(result.scalars().all())
                if not ids:
                    return None
                if values:
                    await conn.execute(update(self.table).where(self.table.c.id.in_(ids)).values(**values))
                return await self._fetch_by_id(conn, ids[0])

    async def replace_or_create(self, data: Record) -> Record:
        values = self._clean(data)
        record_id = values.get("id")
        with self._driver_errors("Record"):
            async with self.engine.begin() as conn:
                if record_id is not None:
                    found = await conn.execute(select(self.table.c.id).where(self.table.c.id == record_id))
                    if found.first() is not None:
                        # 整行替换：未提供的字段回到其默认值
                        full = {name: spec.default for name, spec in self.schema.structure.items()}
                        full.update({k: v for k, v in values.items() if k != "id"})
                        if full:
                            await conn.execute(update(self.table).where(self.table.c.id == record_id).values(**full))
                        return await self._fetch_by_id(conn, record_id)
                return await self._insert(conn, values)

    async def destroy_by_id(self, record_id: Any) -> int:
        record_id = coerce_id(record_id)
        if record_id is None:
            return 0
        with self._driver_errors("Delete"):
            async with self.engine.begin() as conn:
                result = await conn.execute(delete(self.table).where(self.table.c.id == record_id))
                return result.rowcount

    async def destroy_all(self, filters: Filter = None) -> int:
        stmt = delete(self.table).where(*self._build_where_clause(filters))
        with self._driver_errors("Delete"):
            async with self.engine.begin() as conn:
                result = await conn.execute(stmt)
                return result.rowcount

@register_tenant_engine
class SqlTenantEngine(BaseTenantEngine):
    """Relational tenants: PostgreSQL, MySQL and SQLite through SQLAlchemy's async engines."""
    name = "sql"
    engine_types = ("postgresql", "mysql", "sqlite")

    def __init__(self):
        # SQLite 同一时刻只允许一个写者，DDL 按库串行执行
        self._sqlite_ddl_locks: Dict[str, asyncio.Lock] = {}

    def _build_url(self, config: TenantConnectionConfig, database: Optional[str]) -> URL:
        return URL.create(
            SQL_DRIVERS[config.engine_type],
            username=config.username or None,
            password=config.password or None,
            host=config.host or None,
            port=config.port,
            database=database,
        )

    async def _ensure_database(self, config: TenantConnectionConfig) -> None:
        """createDatabase: 在服务器上创建目标库（如果不存在）。"""
        maintenance = create_async_engine(
            self._build_url(config, MAINTENANCE_DATABASES[config.engine_type]),
            isolation_level="AUTOCOMMIT",
        )
        try:
            async with maintenance.connect() as conn:
                quoted = conn.dialect.identifier_preparer.quote(config.database)
                if config.engine_type == "postgresql":
                    result = await conn.execute(
                        text("SELECT 1 FROM pg_database WHERE datname = :name"), {"name": config.database}
                    )
                    if result.first() is None:
                        logger.info(f"[SqlEngine] Creating database {quoted} for '{config.tenant_key}'")
                        await conn.execute(text(f"CREATE DATABASE {quoted}"))
                else:
                    await conn.execute(text(f"CREATE DATABASE IF NOT EXISTS {quoted}"))
        finally:
            await maintenance.dispose()

    async def _ping(self, engine: AsyncEngine) -> None:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))

    async def connect(self, config: TenantConnectionConfig, timeout: float) -> AsyncEngine:
        if config.engine_type != "sqlite":
            try:
                await asyncio.wait_for(self._ensure_database(config), timeout=timeout)
            except Exception as e:
                # 没有建库权限时库可能已存在，是否可用以下面的拨号为准
                logger.warning(f"[SqlEngine] Could not ensure database for '{config.tenant_key}': {e}")

        engine = create_async_engine(
            self._build_url(config, config.database),
            pool_pre_ping=True,
            pool_recycle=3600,
        )
        try:
            await asyncio.wait_for(self._ping(engine), timeout=timeout)
        except BaseException:
            await engine.dispose()
            raise
        return engine

    async def close(self, client: AsyncEngine) -> None:
        await client.dispose()

    async def materialize(self, connection: TenantConnection, schema: TableSchema) -> SqlTableHandle:
        engine: AsyncEngine = connection.require_client()
        table = build_table(schema)
        try:
            if connection.config.engine_type == "sqlite":
                async with self._sqlite_ddl_locks.setdefault(connection.key, asyncio.Lock()):
                    await self._create(engine, table)
            else:
                await self._create(engine, table)
        except SQLAlchemyError as e:
            # 并发物化同一张表时，后到者的 CREATE 可能失败，但表已经存在
            if await self._table_exists(engine, schema.name):
                logger.info(f"[SqlEngine] Table '{schema.name}' appeared concurrently, reusing it.")
            else:
                raise MaterializationFailed(f"Failed to create table '{schema.name}' in '{connection.key}': {e}")
        return SqlTableHandle(engine, table, schema)

    @staticmethod
    async def _create(engine: AsyncEngine, table: Table) -> None:
        async with engine.begin() as conn:
            await conn.run_sync(table.create, checkfirst=True)

    async def _table_exists(self, engine: AsyncEngine, table_name: str) -> bool:
        try:
            async with engine.connect() as conn:
                return await conn.run_sync(lambda sync_conn: inspect(sync_conn).has_table(table_name))
        except SQLAlchemyError:
            return False

    def bind(self, connection: TenantConnection, schema: TableSchema) -> SqlTableHandle:
        return SqlTableHandle(connection.require_client(), build_table(schema), schema)
