from contextlib import asynccontextmanager
from datetime import datetime
from typing import Callable, Optional

from fastapi import FastAPI
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from metrics.custom_instrumentator import instrumentator
from singlepiece.api import cur_version, version_prefix
from singlepiece.api.routers import admin_routers, public_routers
from singlepiece.background_workers.expiry_sweeper import ExpirySweeper
from singlepiece.common.custom_exceptions import register_all_exceptions
from singlepiece.common.logging_setup import get_logger, setup_logging, stop_logging
from singlepiece.common.utils import now
from singlepiece.config.admin_config import admin_config
from singlepiece.config.settings import config_settings
from singlepiece.middlewares.auth_middleware import AuthenticationMiddleware
from singlepiece.middlewares.request_id_middleware import RequestIdMiddleware
from singlepiece.notifications.services import Notifier

logger = get_logger("singlepiece.app")


@asynccontextmanager
async def app_lifespan(app: FastAPI):
    setup_logging()

    sweeper: Optional[ExpirySweeper] = None
    if app.state.start_sweeper:
        sweeper = ExpirySweeper(app.state.session_factory, clock=app.state.clock)
        sweeper.start()
    app.state.sweeper = sweeper

    try:
        yield
    finally:
        # new requests are no longer accepted at this point
        if sweeper is not None:
            await sweeper.shutdown()
        # safe to dispose DB engine after the sweeper exits
        if app.state.engine is not None:
            await app.state.engine.dispose()
        logger.info("app.shutdown")
        stop_logging()


def create_app(session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
               engine: Optional[AsyncEngine] = None, *,
               start_sweeper: Optional[bool] = None,
               clock: Callable[[], datetime] = now,
               notifier: Optional[Notifier] = None) -> FastAPI:
    if session_factory is None:
        from singlepiece.db.connection import async_engine, async_session
        session_factory, engine = async_session, async_engine

    app = FastAPI(
        title="Singlepiece",
        version=cur_version,
        lifespan=app_lifespan)

    app.state.session_factory = session_factory
    app.state.engine = engine
    app.state.clock = clock
    app.state.notifier = notifier
    app.state.start_sweeper = config_settings.SWEEPER_ENABLED if start_sweeper is None else start_sweeper

    app.include_router(public_routers)

    if admin_config.ENABLE_ADMIN:
        app.include_router(admin_routers)      # mounts /api/v1/admin

    app.add_middleware(AuthenticationMiddleware, paths=[f"{version_prefix}/health",
                                                        f"{version_prefix}/products",
                                                        f"{version_prefix}/admin",   # require_admin checks these
                                                        "/metrics", "/docs", "/redoc", "/openapi.json"])
    app.add_middleware(RequestIdMiddleware)
    register_all_exceptions(app)

    if config_settings.METRICS_ENABLED:
        instrumentator.instrument(app).expose(app, endpoint="/metrics")

    return app


app = create_app()
