import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from freshintake.config import settings
from freshintake.middleware.exceptions import register_exception_handlers
from freshintake.routers import health, receiving
from freshintake.utils.cache import close_redis

logger = logging.getLogger("freshintake")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Release the shared Redis pool on shutdown."""
    logger.info(f"FreshIntake starting ({settings.environment}, drafts in {settings.draft_backend})")
    try:
        yield
    finally:
        await close_redis()
        logger.info("FreshIntake stopped")


app = FastAPI(
    title="FreshIntake",
    description="Produce receiving: order intake, drop-off, measurement, grading and returns",
    version="0.1.0",
    lifespan=lifespan,
)

# ── Exception Handlers ───────────────────────────────────────
register_exception_handlers(app)

# ── Middleware ───────────────────────────────────────────────
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allowed_origins.split(","),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# ── Routers ──────────────────────────────────────────────────
app.include_router(health.router)
app.include_router(receiving.router, prefix="/api/receiving", tags=["receiving"])
