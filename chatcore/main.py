import asyncio
import logging
import os
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from pathlib import Path

from fastapi import FastAPI
from fastapi.staticfiles import StaticFiles

from chatcore.api.routes import conversations, messages, presence, realtime
from chatcore.auth_config import auth_backend, fastapi_users
from chatcore.core.config import settings
from chatcore.db import async_session_maker, check_database_health
from chatcore.middleware.presence import PresenceMiddleware, run_presence_sweeper
from chatcore.realtime import change_feed, install_change_capture, presence_throttle
from chatcore.schemas.user import UserCreate, UserRead, UserUpdate
from chatcore.services.migration_service import run_migrations

logging.basicConfig(level=settings.LOG_LEVEL)
logger = logging.getLogger(__name__)

# Committed row changes feed the realtime read models
install_change_capture(change_feed)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager for startup and shutdown events."""
    logger.info("Starting application...")
    try:
        await run_migrations()
        skip_table_check = os.getenv("SKIP_TABLE_CHECK") == "true"
        await check_database_health(skip_table_check=skip_table_check)
        logger.info("Database health check passed - application ready")
    except Exception as e:
        logger.error(f"Database health check failed: {e}")
        logger.error("Application startup aborted due to database issues")
        raise

    if settings.ATTACHMENT_BACKEND == "local":
        Path(settings.ATTACHMENT_LOCAL_DIR).mkdir(parents=True, exist_ok=True)

    sweeper = asyncio.create_task(run_presence_sweeper(async_session_maker))

    yield

    logger.info("Application shutting down...")
    sweeper.cancel()
    try:
        await sweeper
    except asyncio.CancelledError:
        pass
    await presence_throttle.flush_all()


app = FastAPI(title="chatcore", lifespan=lifespan)

app.add_middleware(PresenceMiddleware)

app.include_router(
    fastapi_users.get_auth_router(auth_backend), prefix="/auth/jwt", tags=["auth"]
)
app.include_router(
    fastapi_users.get_register_router(UserRead, UserCreate),
    prefix="/auth",
    tags=["auth"],
)
app.include_router(
    fastapi_users.get_users_router(UserRead, UserUpdate),
    prefix="/users",
    tags=["users"],
)
app.include_router(conversations.conversations_router_instance)
app.include_router(messages.messages_router_instance)
app.include_router(presence.presence_router_instance)
app.include_router(realtime.realtime_router_instance)

if settings.ATTACHMENT_BACKEND == "local":
    app.mount(
        settings.ATTACHMENT_PUBLIC_BASE_URL,
        StaticFiles(directory=settings.ATTACHMENT_LOCAL_DIR, check_dir=False),
        name="attachments",
    )


@app.get("/health")
async def health_check():
    """Health check endpoint for Docker and load balancers."""
    return {"status": "healthy", "timestamp": datetime.now(timezone.utc).isoformat()}
