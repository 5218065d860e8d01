# src/storagehub/core/context.py

from pydantic import BaseModel, ConfigDict
from sqlalchemy.ext.asyncio import AsyncSession

from storagehub.system.tenant.hub import TenantHub

class AppContext(BaseModel):
    """
    Defines the complete, typed context for service layer operations.
    This acts as a "contract" for what dependencies are available and is
    the single source of truth for service dependencies.
    """
    model_config = ConfigDict(arbitrary_types_allowed=True)

    # 核心数据库会话 (控制平面)
    db: AsyncSession

    # 进程级租户注册表：连接、模型、供应器
    hub: TenantHub
