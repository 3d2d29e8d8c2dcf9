import asyncio
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from slowapi.errors import RateLimitExceeded

from core.config import get_settings
from core.db import AsyncSessionLocal
from core.logging import setup_logging
from exceptions import register_exception_handlers
from middleware.rate_limit import limiter, custom_rate_limit_exceeded
from routers import health, maintenance, metrics, reservations, spares
from services.collaborators import DocumentService, NotificationDispatcher
from services.outbox import OutboxWorker, build_side_effect_handlers

setup_logging()

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = get_settings()
    if not settings.override_password_hash:
        logger.warning("OVERRIDE_PASSWORD_HASH is not set; every override request will be denied.")

    worker = OutboxWorker(
        AsyncSessionLocal,
        build_side_effect_handlers(DocumentService(), NotificationDispatcher()),
        batch_size=settings.outbox_batch_size,
        poll_interval=settings.outbox_poll_interval_seconds,
        retry_attempts=settings.outbox_retry_attempts,
    )
    stop_event = asyncio.Event()
    worker_task = asyncio.create_task(worker.run(stop_event))
    app.state.outbox_worker = worker

    try:
        yield
    finally:
        # teardown on shutdown
        stop_event.set()
        await worker_task
        app.state.outbox_worker = None


app = FastAPI(title="Rental Fleet Lifecycle API", lifespan=lifespan)

app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, custom_rate_limit_exceeded)
register_exception_handlers(app)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],   # Allows POST, GET, OPTIONS, etc
    allow_headers=["*"],
)

app.include_router(health.router)
app.include_router(metrics.router)
app.include_router(reservations.router)
app.include_router(maintenance.router)
app.include_router(spares.router)


@app.get("/", tags=["root"])
def hello():
    return {"message": "Rental fleet lifecycle engine"}
