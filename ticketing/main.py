# ticketing/main.py
from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from ticketing.api.routers.health import router as health_router
from ticketing.api.routers.metrics import router as metrics_router
from ticketing.api.routers.orders import router as orders_router
from ticketing.api.routers.payments import router as payments_router
from ticketing.api.routers.tickets import router as tickets_router
from ticketing.core.config import get_settings
from ticketing.core.logging import setup_logging
from ticketing.core.scheduler import init_scheduler, shutdown_scheduler
from ticketing.db.base import init_models
from ticketing.db.session import close_engine
from ticketing.http_problem_handlers import register_exception_handlers
from ticketing.obs.metrics import PrometheusMiddleware
from ticketing.services.engine import get_ticketing_engine

logger = logging.getLogger("ticketing")


@asynccontextmanager
async def lifespan(_app: FastAPI):
    settings = get_settings()
    setup_logging(settings.LOG_LEVEL)
    init_models()
    # 配置错误（例如 xendit 缺密钥）在启动时就暴露
    engine = get_ticketing_engine()
    logger.info("ticketing started env=%s payment_mode=%s", settings.ENV, engine.config.payment_mode)
    init_scheduler()
    try:
        yield
    finally:
        shutdown_scheduler()
        await close_engine()


app = FastAPI(title="Ticketing", version="1.0.0", lifespan=lifespan)

app.add_middleware(PrometheusMiddleware)
register_exception_handlers(app)

app.include_router(orders_router)
app.include_router(payments_router)
app.include_router(tickets_router)
app.include_router(metrics_router)
app.include_router(health_router)
