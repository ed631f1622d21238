import asyncio
import contextlib
import logging
import logging.config

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from murmur.realtime.managers import shutdown_realtime, startup_realtime

from app.api.metrics import router as metrics_router
from app.api.routes import router as api_router
from app.api.ws import router as ws_router
from app.config import get_settings
from app.core.errors import ChatError, install_exception_handlers
from app.database import get_db_session
from app.services.notifications import purge_expired


LOGGING_CONFIG = {
    "version": 1,
    "disable_existing_loggers": False,
    "formatters": {
        "standard": {
            "format": "%(asctime)s %(levelname)s [%(name)s] %(message)s",
        }
    },
    "handlers": {
        "default": {
            "class": "logging.StreamHandler",
            "formatter": "standard",
        }
    },
    "root": {
        "handlers": ["default"],
        "level": "INFO",
    },
    "loggers": {
        "murmur.realtime.managers": {
            "handlers": ["default"],
            "level": "INFO",
            "propagate": False,
        }
    },
}


logging.config.dictConfig(LOGGING_CONFIG)

logger = logging.getLogger(__name__)

settings = get_settings()

app = FastAPI(title=settings.app_name, debug=settings.debug)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[str(origin) for origin in settings.cors_origins],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    allow_origin_regex=settings.cors_allow_origin_regex,
)

install_exception_handlers(app)

_purge_task: asyncio.Task | None = None


async def _purge_notifications_periodically(interval: float) -> None:
    while True:
        await asyncio.sleep(interval)
        try:
            with get_db_session() as db:
                purge_expired(db)
        except ChatError:
            logger.warning("Notification purge failed; retrying in %.0f seconds", interval)


@app.get("/health", tags=["system"])
def health_check() -> dict[str, str]:
    """Simple health check endpoint."""
    return {"status": "ok", "environment": settings.environment}


@app.on_event("startup")
async def _startup() -> None:
    global _purge_task
    await startup_realtime()
    interval = settings.chat_notification_purge_interval_seconds
    if interval > 0:
        _purge_task = asyncio.create_task(_purge_notifications_periodically(interval))


@app.on_event("shutdown")
async def _shutdown() -> None:
    global _purge_task
    if _purge_task is not None:
        _purge_task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await _purge_task
        _purge_task = None
    await shutdown_realtime()


app.include_router(api_router, prefix="/api")
app.include_router(ws_router)
app.include_router(metrics_router)
