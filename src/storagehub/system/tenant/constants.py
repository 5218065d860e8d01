# src/storagehub/system/tenant/constants.py

"""
[System Table Constants]
每个租户固定拥有的系统表，以及按引擎族存放的静态表结构定义。
"""

import json
from functools import lru_cache
from pathlib import Path

from storagehub.schemas.storage_schemas import SYSTEM_TABLES, TableSchema

ACCOUNT_TABLE = "account"
TASK_TABLE = "task"

# 账户与任务之间的关联字段
PROFILE_KEY_FIELD = "profileKey"

SYSTEM_SCHEMA_DIR = Path(__file__).parent / "schemas"

@lru_cache(maxsize=None)
def load_system_schema(engine_family: str, name: str) -> TableSchema:
    """Loads schemas/<engine_family>/<name>.json as a TableSchema."""
    if name not in SYSTEM_TABLES:
        raise ValueError(f"'{name}' is not a system table.")
    schema_file = SYSTEM_SCHEMA_DIR / engine_family / f"{name}.json"
    with open(schema_file, 'r', encoding='utf-8') as f:
        return TableSchema.model_validate(json.load(f))

def prefixed_schema(engine_family: str, name: str, prefix: str) -> TableSchema:
    """The system schema renamed to its tenant-specific physical name."""
    schema = load_system_schema(engine_family, name)
    return schema.model_copy(update={"name": f"{prefix}_{name}"})
