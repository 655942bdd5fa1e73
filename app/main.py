from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import text

from app.chat.routes import admin_chat, chat, socket
from app.chat.runtime import get_runtime
from app.core import redis as redis_module
from app.core.config import settings
from app.core.exceptions import register_exception_handlers
from app.core.log_config import RequestLoggingMiddleware, setup_logging
from app.db.session import SessionLocal

setup_logging()
logger = structlog.get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    if settings.REDIS_URL:
        logger.info("connecting_to_redis")
        await redis_module.connect_redis(settings.REDIS_URL)

    runtime = get_runtime()
    await runtime.start()

    yield

    await runtime.stop()
    if redis_module.redis_client:
        logger.info("closing_redis")
        await redis_module.close_redis()
        logger.info("redis_closed")


app = FastAPI(
    title=settings.PROJECT_NAME,
    debug=settings.DEBUG,
    lifespan=lifespan,
    description="Support chat between platform users and the EduFund team",
    version="1.0.0",
)

register_exception_handlers(app, debug=settings.DEBUG)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.add_middleware(RequestLoggingMiddleware)

app.include_router(chat.router, prefix=f"{settings.API_PREFIX}/chat", tags=["chat"])
app.include_router(admin_chat.router, prefix=f"{settings.API_PREFIX}/chat", tags=["chat-admin"])
app.include_router(socket.router, prefix=f"{settings.API_PREFIX}/chat", tags=["chat-realtime"])


@app.get("/")
async def root() -> dict[str, str]:
    return {"message": settings.PROJECT_NAME, "version": "1.0.0", "status": "running"}


@app.get("/health")
async def health_check() -> dict[str, str]:
    redis_status = "disabled"
    db_status = "unknown"

    if settings.REDIS_URL:
        try:
            if redis_module.redis_client:
                await redis_module.redis_client.ping()
                redis_status = "healthy"
            else:
                redis_status = "unhealthy"
        except Exception:
            redis_status = "unhealthy"

    if settings.CHAT_STORE == "memory":
        db_status = "disabled"
    else:
        try:
            db = SessionLocal()
            try:
                db.execute(text("SELECT 1"))
                db_status = "healthy"
            finally:
                db.close()
        except Exception:
            db_status = "unhealthy"

    all_healthy = redis_status != "unhealthy" and db_status != "unhealthy"
    overall = "healthy" if all_healthy else "degraded"

    return {"status": overall, "redis": redis_status, "database": db_status}
