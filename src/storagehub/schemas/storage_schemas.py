# src/storagehub/schemas/storage_schemas.py

import enum
from pydantic import BaseModel, Field, ConfigDict, HttpUrl, field_validator, model_validator
from pydantic.alias_generators import to_camel
from typing import Optional, List, Any, Dict
from storagehub.models.storage import EngineType

IDENTIFIER_PATTERN = r'^[a-zA-Z_][a-zA-Z0-9_]*$'
SYSTEM_TABLES = ("account", "task")

class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

# --- Field / Table Schemas ---

class FieldType(str, enum.Enum):
    STRING = "string"
    TEXT = "text"
    NUMBER = "number"
    INTEGER = "integer"
    BOOLEAN = "boolean"
    DATE = "date"
    OBJECT = "object"
    ARRAY = "array"
    ANY = "any"

class FieldSpec(BaseModel):
    type: FieldType = FieldType.ANY
    required: bool = False
    default: Optional[Any] = None

    @model_validator(mode='before')
    @classmethod
    def expand_shorthand(cls, data: Any) -> Any:
        # "title": "string" 等价于 "title": {"type": "string"}
        if isinstance(data, str):
            return {"type": data.lower()}
        if isinstance(data, dict) and isinstance(data.get("type"), str):
            return {**data, "type": data["type"].lower()}
        return data

class TableSchema(BaseModel):
    name: str = Field(..., max_length=63, pattern=IDENTIFIER_PATTERN)
    structure: Dict[str, FieldSpec] = Field(default_factory=dict)

    @field_validator('structure')
    @classmethod
    def check_field_names(cls, v: Dict[str, FieldSpec]):
        for field_name in v:
            if field_name.lower() in ("id", "_id"):
                raise ValueError(f"Field name '{field_name}' is reserved by the system.")
            if not field_name or not (field_name[0].isalpha() or field_name[0] == "_") \
                    or not all(ch.isalnum() or ch == "_" for ch in field_name):
                raise ValueError(f"Invalid field name '{field_name}'.")
        return v

# --- Storage Schemas ---

class StorageBase(CamelModel):
    engine_type: EngineType
    db_name: str = Field(..., min_length=1, max_length=255)
    db_ip: Optional[str] = None
    db_port: Optional[int] = Field(None, ge=1, le=65535)
    db_user_name: Optional[str] = None
    db_prefix_table: str = Field(..., max_length=50, pattern=IDENTIFIER_PATTERN)
    db_structure: List[TableSchema] = Field(default_factory=list)

class StorageCreate(StorageBase):
    db_password: Optional[str] = None

    @model_validator(mode='after')
    def check_table_names(self):
        seen = set()
        reserved = {f"{self.db_prefix_table}_{name}".lower() for name in SYSTEM_TABLES}
        for table in self.db_structure:
            lowered = table.name.lower()
            if lowered in seen:
                raise ValueError(f"Duplicate table name '{table.name}' found.")
            if lowered in reserved:
                raise ValueError(f"Table name '{table.name}' is reserved for a system table.")
            seen.add(lowered)
        return self

class StorageRead(StorageBase):
    id: str
    model_config = ConfigDict(from_attributes=True, alias_generator=to_camel, populate_by_name=True)

class StorageDescriptor(StorageCreate):
    """Internal, immutable view of a storage row, including its credentials."""
    id: str
    model_config = ConfigDict(from_attributes=True, frozen=True, alias_generator=to_camel, populate_by_name=True)

    @property
    def tenant_key(self) -> str:
        return f"{self.engine_type.value}:{self.db_name}"

    def physical_name(self, logical_name: str) -> str:
        if logical_name in SYSTEM_TABLES:
            return f"{self.db_prefix_table}_{logical_name}"
        return logical_name

# --- Provisioning ---

class ProvisioningState(str, enum.Enum):
    CONNECTING = "connecting"
    MATERIALIZING_USER_TABLES = "materializing_user_tables"
    MATERIALIZING_SYSTEM_TABLES = "materializing_system_tables"
    DONE = "done"
    CONNECTION_FAILED = "connection_failed"

class TableOutcome(CamelModel):
    ok: Optional[bool] = None  # None 表示仍在进行中
    error: Optional[str] = None

class ProvisioningReport(CamelModel):
    storage_id: str
    tenant_key: str
    state: ProvisioningState
    error: Optional[str] = None
    tables: Dict[str, TableOutcome] = Field(default_factory=dict)

    @property
    def failed_tables(self) -> List[str]:
        return [name for name, outcome in self.tables.items() if outcome.ok is False]

class StorageCreateResponse(CamelModel):
    storage: StorageRead
    provisioning: ProvisioningReport

# --- Import ---

class AccountImportRequest(BaseModel):
    url: HttpUrl

class AccountImportResponse(BaseModel):
    imported: int
