# src/storagehub/models/storage.py

import enum
from sqlalchemy import Column, Integer, String, JSON, Enum, DateTime, func
from storagehub.db.base import Base
from storagehub.utils.id_generator import generate_uuid

class EngineType(str, enum.Enum):
    POSTGRESQL = "postgresql"
    MYSQL = "mysql"
    SQLITE = "sqlite"
    MONGODB = "mongodb"

class Storage(Base):
    """
    Storage 描述记录：一个租户数据库的引擎类型、连接参数和表结构定义。
    创建后不可修改，表结构的物化由 TenantProvisioner 负责。
    """
    __tablename__ = 'storages'

    id = Column(String(32), primary_key=True, default=generate_uuid)
    engine_type = Column(Enum(EngineType, values_callable=lambda e: [m.value for m in e], native_enum=False), nullable=False)
    db_name = Column(String(255), nullable=False)
    db_ip = Column(String(255), nullable=True)
    db_port = Column(Integer, nullable=True)
    db_user_name = Column(String(255), nullable=True)
    db_password = Column(String(255), nullable=True)
    db_prefix_table = Column(String(63), nullable=False, comment="系统表 (account / task) 的物理表名前缀")
    # 结构示例: [{"name": "orders", "structure": {"total": {"type": "number", "required": true}}}]
    db_structure = Column(JSON, nullable=False, default=list)

    created_at = Column(DateTime, nullable=False, server_default=func.now())
