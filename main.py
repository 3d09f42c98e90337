"""
FastAPI应用主入口
"""
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text

from api.middleware import LoggingMiddleware, RequestIDMiddleware
from api.routes import payments, subscriptions, withdrawals
from core.config import settings
from core.exceptions import register_exception_handlers
from core.logging_config import configure_logging, get_logger
from core.response import error_response, success_response
from infrastructure.database import create_tables, engine
from infrastructure.external.payments import close_payment_providers
from shared.codes import BusinessCode


configure_logging()
logger = get_logger(__name__)

API_PREFIX = "/api/v1"


@asynccontextmanager
async def lifespan(app: FastAPI):
    """应用生命周期：开发环境自动建表；关闭时释放提供商客户端与连接池"""
    if settings.DEBUG:
        await create_tables()
        logger.info("database_initialized", environment=settings.ENVIRONMENT)
    else:
        logger.info("database_migrations_required", hint="alembic upgrade head")

    yield

    await close_payment_providers()
    await engine.dispose()
    logger.info("application_shutdown")


def create_app() -> FastAPI:
    app = FastAPI(
        title=settings.PROJECT_NAME,
        version=settings.VERSION,
        debug=settings.DEBUG,
        lifespan=lifespan,
        description="市场支付核心：交易账本、提供商适配、订阅计费与卖家提现",
    )

    # 中间件按添加的逆序执行：RequestID 最先，日志依赖其绑定的 request_id
    app.add_middleware(RequestIDMiddleware)
    app.add_middleware(LoggingMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    register_exception_handlers(app)

    for module in (payments, subscriptions, withdrawals):
        app.include_router(module.router, prefix=API_PREFIX)

    @app.get("/health", tags=["Health"])
    async def health_check():
        """存活检查"""
        return success_response(data={"status": "healthy"})

    @app.get("/health/ready", tags=["Health"])
    async def readiness_check():
        """就绪检查：账本数据库可用"""
        try:
            async with engine.connect() as conn:
                await conn.execute(text("SELECT 1"))
        except Exception as exc:
            logger.error("readiness_check_failed", error=str(exc))
            response = error_response(
                code=BusinessCode.SERVICE_UNAVAILABLE,
                message="Database unavailable",
                error_type="ServiceUnavailable",
            )
            return JSONResponse(status_code=503, content=response.model_dump(mode="json"))
        return success_response(data={"status": "ready", "database": "ok"})

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.DEBUG,
        log_level="debug" if settings.DEBUG else "info",
    )
