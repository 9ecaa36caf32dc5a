import logging
import os
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from .db import init_db, make_engine, make_session_factory
from .errors import SlotEngineError
from .notifier import build_notifier

from .routers.health import router as health_router
from .routers.slots import router as slots_router
from .routers.requests import router as requests_router
from .routers.vehicles import router as vehicles_router
from .routers.admin import router as admin_router

logger = logging.getLogger(__name__)

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")


def configure_logging(level: str = LOG_LEVEL) -> None:
    logging.basicConfig(
        level=level.upper(),
        format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
    )
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)


def create_app(database_url: str | None = None, notifier=None) -> FastAPI:
    """
    Build the API. The store and notifier are opened on startup, live for
    the whole process and are handed to every request through `app.state`.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        configure_logging()
        engine = make_engine(database_url)
        init_db(engine)
        app.state.engine = engine
        app.state.session_factory = make_session_factory(engine)
        app.state.notifier.start()
        try:
            yield
        finally:
            app.state.notifier.stop()
            engine.dispose()

    app = FastAPI(title="Parking Slot Allocation API", lifespan=lifespan)
    app.state.notifier = notifier or build_notifier()

    @app.exception_handler(SlotEngineError)
    async def _engine_error(request: Request, exc: SlotEngineError):
        if exc.status_code >= 500:
            logger.error("[API] %s %s -> %s: %s", request.method, request.url.path, exc.code, exc.message)
        return JSONResponse(status_code=exc.status_code, content={"detail": exc.code, "message": exc.message})

    # All routers mounted here
    app.include_router(health_router, prefix="/api")
    app.include_router(slots_router, prefix="/api")
    app.include_router(requests_router, prefix="/api")
    app.include_router(vehicles_router, prefix="/api")
    app.include_router(admin_router, prefix="/api")
    return app


app = create_app()
