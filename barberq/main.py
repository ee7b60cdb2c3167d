from contextlib import asynccontextmanager
import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from barberq.config import get_settings
from barberq.dependencies.services import get_notification_client_cached
from barberq.health import router as health_router
from barberq.tools.bookings import router as bookings_router
from barberq.tools.timeline import router as timeline_router


def configure_logging() -> None:
    """Ensure application logs use the INFO level by default."""
    root_logger = logging.getLogger()
    if not root_logger.handlers:
        logging.basicConfig(
            level=logging.INFO,
            format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
        )
    else:
        root_logger.setLevel(logging.INFO)


configure_logging()

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Log the settings snapshot on startup and close the notification client on shutdown."""
    settings = get_settings()
    settings_snapshot = settings.model_dump(
        by_alias=True,
        exclude={"notification_service_token"},
    )
    logger.info("Application settings on startup: %s", settings_snapshot)

    client = get_notification_client_cached()
    logger.info("Application startup complete.")

    try:
        yield
    finally:
        logger.info("Closing notification client connection.")
        await client.close()
        logger.info("Application shutdown complete.")


settings = get_settings()
app = FastAPI(
    title=settings.app_name,
    lifespan=lifespan,
    redirect_slashes=False,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[str(origin).rstrip("/") for origin in settings.cors_origins],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(bookings_router, prefix="/tools/bookings")
app.include_router(timeline_router, prefix="/tools/timeline")
app.include_router(health_router)
