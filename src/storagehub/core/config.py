# src/storagehub/core/config.py
from dotenv import load_dotenv
load_dotenv(".env")
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field, computed_field
from typing import Optional, Literal

class Settings(BaseSettings):
    # model_config 会自动加载 .env 文件
    model_config = SettingsConfigDict(env_file='.env', env_file_encoding='utf-8', extra='ignore')

    # 应用配置 (会自动转换类型)
    APP_ENV: str = "production"
    APP_HOST: str = "127.0.0.1"
    APP_PORT: int = 8000
    LOG_LEVEL: str = "INFO"

    # --- Control plane database (storage descriptors) ---
    DB_DRIVER: str = "postgresql+asyncpg"
    DB_HOST: str = "localhost"
    DB_PORT: int = 5432
    DB_USER: str = "postgres"
    DB_PASSWORD: str = ""
    DB_NAME: str = "storagehub"
    # 完整连接串，设置后覆盖上面的分项配置 (e.g. sqlite+aiosqlite:///./storagehub.db)
    DB_URL: Optional[str] = None

    @computed_field
    @property
    def DATABASE_URL(self) -> str:
        if self.DB_URL:
            return self.DB_URL
        return f"{self.DB_DRIVER}://{self.DB_USER}:{self.DB_PASSWORD}@{self.DB_HOST}:{self.DB_PORT}/{self.DB_NAME}"

    # Redis
    REDIS_HOST: str = "localhost"
    REDIS_PORT: int = 6379
    REDIS_PASSWORD: Optional[str] = None
    REDIS_DB: int = 0

    @computed_field
    @property
    def REDIS_URL(self) -> str:
        password = f":{self.REDIS_PASSWORD}@" if self.REDIS_PASSWORD else ""
        return f"redis://{password}{self.REDIS_HOST}:{self.REDIS_PORT}/{self.REDIS_DB}"

    # --- Tenant registry metadata ---
    METADATA_BACKEND: Literal["file", "redis"] = "file"
    METADATA_DIR: str = Field("./metadata", description="Directory holding datasources.json and model-config.json")
    REDIS_METADATA_PREFIX: str = "storagehub:metadata"

    # --- Tenant data plane ---
    TENANT_CONNECT_TIMEOUT: float = 10.0
    # 为 False 时，创建 storage 的请求在表结构物化完成前即返回
    PROVISION_AWAIT: bool = True

    # --- Bulk account import ---
    IMPORT_TIMEOUT: float = 30.0
    IMPORT_MAX_BYTES: int = 52428800

settings = Settings()
