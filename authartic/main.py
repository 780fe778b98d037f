import asyncio
import contextlib
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

# IMPORTANT:
# This imports ALL models so SQLAlchemy registers tables + FKs correctly
import authartic.models  # noqa: F401

from authartic.core.config import settings
from authartic.core.db import SessionLocal, engine
from authartic.tasks.expiry_sweeper import run_expiry_sweeper

# Routers
from authartic.routers.admin import router as admin_router
from authartic.routers.certificate_info import router as certificate_info_router
from authartic.routers.certificates import router as certificates_router
from authartic.routers.subscriptions import router as subscriptions_router

logging.basicConfig(level=settings.LOG_LEVEL)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    sweeper = None
    if settings.EXPIRY_SWEEP_ENABLED:
        sweeper = asyncio.create_task(
            run_expiry_sweeper(SessionLocal, hour=settings.EXPIRY_SWEEP_HOUR_UTC)
        )

    yield

    if sweeper is not None:
        sweeper.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await sweeper
    await engine.dispose()
    logger.info("Shutdown complete")


app = FastAPI(title="Authartic", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[settings.FRONTEND_URL],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Certificates
app.include_router(certificate_info_router)
app.include_router(certificates_router)

# Subscriptions
app.include_router(subscriptions_router)

# Admin
app.include_router(admin_router)


@app.get("/health")
async def health():
    return {"status": "ok"}
