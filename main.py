"""
FastAPI应用主入口
"""
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from api.middleware import LoggingMiddleware, RequestIDMiddleware
from api.routes import admin as admin_routes
from api.routes import authorizations as authorization_routes
from api.routes import cancellations as cancellation_routes
from api.routes import delivery_codes as delivery_code_routes
from core.config import settings
from core.exceptions import register_exception_handlers
from core.logging_config import configure_logging, get_logger
from core.response import success_response
from infrastructure.cache import init_redis_cache, shutdown_redis_cache
from infrastructure.container import build_payment_services
from infrastructure.database import create_tables, engine

# 初始化日志：在入口处显式配置
configure_logging()
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """应用生命周期管理"""
    # 启动时创建数据库表（仅开发环境）。生产环境由部署流程建表
    if settings.DEBUG:
        await create_tables()
        logger.info("database_initialized", message="Database tables created (development)")

    cache = None
    if settings.redis.url:
        try:
            cache = await init_redis_cache()
        except Exception as exc:
            # 配置缓存不可用时直接读库
            logger.error("redis_cache_init_failed", error=str(exc))

    try:
        app.state.payment_services = build_payment_services(cache=cache)
        logger.info("payment_services_ready", provider=app.state.payment_services.gateway.provider)
    except (RuntimeError, ValueError) as exc:
        # 网关未配置时接口返回 503，健康检查仍可用
        logger.error("payment_services_init_failed", error=str(exc))

    yield

    services = getattr(app.state, "payment_services", None)
    if services is not None:
        await services.aclose()
    if cache is not None:
        await shutdown_redis_cache()
        logger.info("redis_cache_shutdown", message="Redis cache shutdown")
    await engine.dispose()
    logger.info("application_shutdown", message="Application shutdown")


app = FastAPI(
    title=settings.PROJECT_NAME,
    version=settings.VERSION,
    debug=settings.DEBUG,
    lifespan=lifespan,
    description="P2P 寄件平台的预授权支付引擎：预授权、延迟扣款、取消退款与对账",
)

# 添加中间件（注意顺序：从下往上执行）
# 1. Request ID中间件（最先执行，为后续中间件提供request_id）
app.add_middleware(RequestIDMiddleware)

# 2. 日志中间件（依赖request_id）
app.add_middleware(LoggingMiddleware)

# 3. CORS中间件
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# 注册全局异常处理器
register_exception_handlers(app)


# 注册路由
app.include_router(authorization_routes.router, prefix="/api/v1")
app.include_router(cancellation_routes.router, prefix="/api/v1")
app.include_router(delivery_code_routes.router, prefix="/api/v1")
app.include_router(admin_routes.router, prefix="/api/v1")


# 根路径
@app.get("/", tags=["Root"])
async def root():
    """API根路径"""
    return success_response(
        data={
            "name": settings.PROJECT_NAME,
            "version": settings.VERSION,
            "docs": "/docs",
            "redoc": "/redoc"
        },
    )


# 健康检查
@app.get("/health", tags=["Health"])
async def health_check():
    """健康检查端点"""
    ready = getattr(app.state, "payment_services", None) is not None
    return success_response(data={"status": "healthy", "payment_services": "ready" if ready else "unavailable"})


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.DEBUG,
        log_level="debug" if settings.DEBUG else "info"
    )
