# src/storagehub/db/base.py

from sqlalchemy import MetaData
from sqlalchemy.orm import declarative_base

# 控制平面所有约束的命名约定，保证 create_all / drop_all 在各方言下的名称稳定
naming_convention = {
    "ix": "ix_%(column_0_label)s",
    "uq": "uq_%(table_name)s_%(column_0_name)s",
    "ck": "ck_%(table_name)s_%(constraint_name)s",
    "pk": "pk_%(table_name)s"
}

metadata_obj = MetaData(naming_convention=naming_convention)

Base = declarative_base(metadata=metadata_obj)

async def init_models(engine) -> None:
    """Creates the control plane tables if they are missing."""
    # 导入模型以确保它们注册在 metadata 上
    from storagehub import models  # noqa: F401
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
