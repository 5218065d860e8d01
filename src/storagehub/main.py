# src/storagehub/main.py

import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse
from starlette.middleware.cors import CORSMiddleware
from starlette.exceptions import HTTPException as StarletteHTTPException
from storagehub.db.session import SessionLocal, engine
from storagehub.db.base import init_models
from storagehub.core.config import settings
from storagehub.api.router import router
from storagehub.services.exceptions import ServiceException
from storagehub.system.tenant.hub import TenantHub

logger = logging.getLogger(__name__)

def configure_logging() -> None:
    logging.basicConfig(
        level=settings.LOG_LEVEL.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

@asynccontextmanager
async def lifespan(app: FastAPI):
    configure_logging()

    # --- 控制平面数据库 ---
    await init_models(engine)

    # --- 租户注册表生命周期 ---
    # 1. 构建连接注册表、模型注册表与元数据存储
    hub = TenantHub.from_settings(settings, SessionLocal)
    # 2. 从持久化元数据恢复，不重新物化任何表
    restored = await hub.startup()
    logger.info(f"[Lifespan] Tenant registries ready, {restored} models restored.")
    app.state.tenant_hub = hub

    yield

    # --- 清理 ---
    logger.info("[Lifespan] Closing tenant connections...")
    await hub.shutdown()
    await engine.dispose()

app = FastAPI(
    title="storagehub",
    lifespan=lifespan
)

#设置允许访问的域名
origins = ["*"]

app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"])

app.include_router(router)

@app.exception_handler(ServiceException)
async def service_exception_handler(request: Request, exc: ServiceException):
    # 处理所有来自服务层的、可预期的业务逻辑错误
    if exc.status_code >= 500:
        logger.error(f"[{exc.kind}] {request.method} {request.url.path}: {exc.message}")
    else:
        logger.info(f"[{exc.kind}] {request.method} {request.url.path}: {exc.message}")
    return JSONResponse(
        status_code=exc.status_code,
        content={"status": exc.status_code, "msg": exc.message, "kind": exc.kind, "data": None},
    )

@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={
            "status": status.HTTP_422_UNPROCESSABLE_ENTITY,
            "msg": "Validation error",
            "kind": "ValidationError",
            "data": jsonable_encoder(exc.errors()),
        },
    )

@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    # 重写 FastAPI 默认的 HTTPException 处理器，以匹配我们的响应格式
    return JSONResponse(
        status_code=exc.status_code,
        content={"status": exc.status_code, "msg": exc.detail, "kind": None, "data": None},
        headers=exc.headers,
    )

@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception):
    # 这个处理器只处理真正未预料到的服务器内部错误
    logger.exception(f"Unhandled error on {request.method} {request.url.path}")
    return JSONResponse(
        status_code=500,
        content={"status": 500, "msg": "Internal Server Error", "kind": None, "data": None},
    )
