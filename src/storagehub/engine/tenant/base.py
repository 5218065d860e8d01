# src/storagehub/engine/tenant/base.py
from abc import ABC, abstractmethod
from typing import Any, Dict, List, NamedTuple, Optional, Set, Tuple, Type, TypeVar, Union

from storagehub.schemas.storage_schemas import TableSchema
from storagehub.services.exceptions import ConnectionUnavailable, InvalidFilter

Record = Dict[str, Any]
# {field: value} 等值匹配，或 [[field, op, value], ...] 条件列表
Filter = Optional[Union[Dict[str, Any], List[List[Any]]]]

FILTER_OPERATORS = ("=", "!=", ">", "<", ">=", "<=", "like", "in", "not in")

def normalize_filter(filters: Filter, valid_fields: Set[str]) -> List[Tuple[str, str, Any]]:
    """
    Flattens both filter forms into (field, op, value) triples.
    Unknown fields and operators raise InvalidFilter instead of being skipped.
    """
    if not filters:
        return []

    if isinstance(filters, dict):
        conditions = [(key, "=", value) for key, value in filters.items()]
    elif isinstance(filters, list):
        conditions = []
        for cond in filters:
            if not isinstance(cond, (list, tuple)) or len(cond) != 3:
                raise InvalidFilter(f"Filter condition must be [field, op, value], got {cond!r}.")
            key, op, value = cond
            conditions.append((key, str(op).strip().lower(), value))
    else:
        raise InvalidFilter("Filter must be an object or a list of [field, op, value] conditions.")

    for key, op, value in conditions:
        if key not in valid_fields:
            raise InvalidFilter(f"Unknown field '{key}' in filter.")
        if op not in FILTER_OPERATORS:
            raise InvalidFilter(f"Unsupported filter operator '{op}'.")
        if op in ("in", "not in") and not isinstance(value, (list, tuple)):
            raise InvalidFilter(f"Operator '{op}' on '{key}' requires a list value.")
    return conditions

class TenantConnectionConfig(NamedTuple):
    """
    一个标准的、可序列化的模型，用于定义任何租户数据库的连接配置。
    """
    engine_type: str
    database: str
    host: Optional[str] = None
    port: Optional[int] = None
    username: Optional[str] = None
    password: Optional[str] = None

    @property
    def tenant_key(self) -> str:
        return f"{self.engine_type}:{self.database}"

    def to_document(self) -> Dict[str, Any]:
        """The datasource document persisted in registry metadata."""
        return {
            "name": self.tenant_key,
            "connector": self.engine_type,
            "host": self.host,
            "port": self.port,
            "database": self.database,
            "username": self.username,
            "password": self.password,
            "createDatabase": True,
        }

    @classmethod
    def from_document(cls, document: Dict[str, Any]) -> "TenantConnectionConfig":
        return cls(
            engine_type=document["connector"],
            database=document["database"],
            host=document.get("host"),
            port=document.get("port"),
            username=document.get("username"),
            password=document.get("password"),
        )

class TableHandle(ABC):
    """
    A queryable handle over one materialized table or collection.
    All methods work with plain dict records; `id` is the primary key everywhere.
    """
    def __init__(self, schema: TableSchema):
        self.schema = schema

    @property
    def name(self) -> str:
        return self.schema.name

    @abstractmethod
    async def find(self, filters: Filter = None, limit: Optional[int] = None) -> List[Record]:
        raise NotImplementedError

    async def find_by_id(self, record_id: Any) -> Optional[Record]:
        rows = await self.find({"id": record_id}, limit=1)
        return rows[0] if rows else None

    @abstractmethod
    async def create(self, data: Union[Record, List[Record]]) -> Union[Record, List[Record]]:
        raise NotImplementedError

    @abstractmethod
    async def update(self, filters: Filter, values: Record) -> Optional[Record]:
        """Applies `values` to every match and returns the first updated record, or None."""
        raise NotImplementedError

    @abstractmethod
    async def replace_or_create(self, data: Record) -> Record:
        raise NotImplementedError

    @abstractmethod
    async def destroy_by_id(self, record_id: Any) -> int:
        raise NotImplementedError

    @abstractmethod
    async def destroy_all(self, filters: Filter = None) -> int:
        raise NotImplementedError

class TenantConnection:
    """
    一个租户数据库的连接。拨号失败时 client 为 None、error 记录失败原因，
    此后通过它进行的任何操作都会抛出 ConnectionUnavailable。
    """
    def __init__(self, config: TenantConnectionConfig, engine: "BaseTenantEngine",
                 client: Any = None, error: Optional[Exception] = None):
        self.config = config
        self.engine = engine
        self.client = client
        self.error = error

    @property
    def key(self) -> str:
        return self.config.tenant_key

    @property
    def is_available(self) -> bool:
        return self.error is None and self.client is not None

    def require_client(self) -> Any:
        if not self.is_available:
            raise ConnectionUnavailable(f"Datasource '{self.key}' is unavailable: {self.error}")
        return self.client

    def __repr__(self) -> str:
        state = "ok" if self.is_available else "errored"
        return f"<TenantConnection {self.key} ({state})>"

class BaseTenantEngine(ABC):
    """
    租户引擎抽象基类：负责拨号、物化表结构并产出 TableHandle。
    每个引擎族（关系型 / 文档型）一个实现，通过 `engine_types` 声明它服务的引擎类型。
    """
    name: str = "base"
    engine_types: tuple = ()

    @abstractmethod
    async def connect(self, config: TenantConnectionConfig, timeout: float) -> Any:
        """Dials the database and returns a verified client. Raises on failure."""
        raise NotImplementedError

    @abstractmethod
    async def close(self, client: Any) -> None:
        raise NotImplementedError

    @abstractmethod
    async def materialize(self, connection: TenantConnection, schema: TableSchema) -> TableHandle:
        """Creates the physical table if absent (idempotent) and returns a bound handle."""
        raise NotImplementedError

    @abstractmethod
    def bind(self, connection: TenantConnection, schema: TableSchema) -> TableHandle:
        """Returns a handle over an already materialized table, without any DDL."""
        raise NotImplementedError

# 定义注册表
ALL_TENANT_ENGINES: Dict[str, Type[BaseTenantEngine]] = {}

T = TypeVar('T', bound=BaseTenantEngine)

def register_tenant_engine(cls: Type[T]) -> Type[T]:
    """
    装饰器：注册租户引擎实现类，按其声明的每个引擎类型建立索引。
    """
    if not cls.engine_types:
        raise ValueError(f"Tenant engine class {cls.__name__} must define 'engine_types'.")

    for engine_type in cls.engine_types:
        if engine_type in ALL_TENANT_ENGINES:
            raise ValueError(f"Tenant engine for type '{engine_type}' already registered.")
        ALL_TENANT_ENGINES[engine_type] = cls
    return cls
