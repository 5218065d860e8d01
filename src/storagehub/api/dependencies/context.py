# src/storagehub/api/dependencies/context.py

from fastapi import Depends, HTTPException, status, Request
from sqlalchemy.ext.asyncio import AsyncSession
from storagehub.core.context import AppContext
from storagehub.db.session import get_db

async def get_base_context(
    request: Request,
    db: AsyncSession = Depends(get_db)
) -> AppContext:
    """
    [纯粹构建器]
    构建包含控制平面会话与全局租户注册表的 AppContext。
    """
    hub = getattr(request.app.state, "tenant_hub", None)
    if hub is None:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Tenant registries are not initialized.")
    return AppContext(db=db, hub=hub)

ContextDep = Depends(get_base_context)
