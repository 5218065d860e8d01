# src/storagehub/engine/tenant/__init__.py

from .base import (
    TenantConnectionConfig,
    TenantConnection,
    TableHandle,
    BaseTenantEngine,
    Record,
    Filter,
)
from .main import TenantConnectionRegistry
