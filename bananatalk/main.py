"""FastAPI application entry point."""

from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from bananatalk.config import Settings, get_settings
from bananatalk.database import AsyncSessionLocal, engine, init_db
from bananatalk.dependencies import get_object_storage
from bananatalk.middleware import logging_middleware, register_exception_handlers
from bananatalk.routers import health, limits, media, ops
from bananatalk.scheduler import JobScheduler
from bananatalk.tasks import build_default_jobs
from bananatalk.utils.clock import system_clock
from bananatalk.utils.logger import configure_logging, get_logger

settings = get_settings()

# Configure logging early
configure_logging(log_level=settings.log_level, debug=settings.debug)
log = get_logger(__name__)


def build_scheduler(settings: Settings) -> JobScheduler:
    """Scheduler with the default maintenance jobs wired to live dependencies."""
    jobs = build_default_jobs(settings, AsyncSessionLocal, system_clock, get_object_storage())
    return JobScheduler(system_clock, jobs, timezone=settings.scheduler_timezone)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events."""
    log.info("starting application", debug=settings.debug, log_level=settings.log_level)
    await init_db()
    log.info("database initialized")

    app.state.scheduler = build_scheduler(settings)
    if settings.scheduler_enabled:
        app.state.scheduler.start()
    else:
        log.info("scheduler disabled")

    yield

    log.info("shutting down application")
    await app.state.scheduler.stop()
    await engine.dispose()
    log.info("database connections closed")


app = FastAPI(
    title="BananaTalk API",
    description="BananaTalk quota, entitlement and maintenance job service",
    version="1.0.0",
    lifespan=lifespan,
)

# Register exception handlers first
register_exception_handlers(app)

# CORS middleware (must be first in middleware stack)
_cors_origins = [o.strip() for o in settings.cors_origins.split(",") if o.strip()]
app.add_middleware(
    CORSMiddleware,
    allow_origins=_cors_origins or ["*"],
    allow_credentials=bool(_cors_origins),
    allow_methods=["*"],
    allow_headers=["*"],
)

# Request logging middleware
app.middleware("http")(logging_middleware)

# Register routers
app.include_router(health.router, prefix="/api/v1", tags=["Health"])
app.include_router(limits.router, prefix="/api/v1", tags=["Limits"])
app.include_router(ops.router, prefix="/api/v1", tags=["Ops"])
app.include_router(media.router, prefix="/api/v1", tags=["Media"])


@app.get("/")
async def root():
    """Root endpoint with API information."""
    return {
        "name": "BananaTalk API",
        "version": "1.0.0",
        "endpoints": {
            "health": "/api/v1/health",
            "limits": "/api/v1/limits",
            "video": "/api/v1/{stories|moments}/{id}/video",
            "ops": "/api/v1/ops/jobs",
        },
        "docs": "/docs",
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "bananatalk.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.debug,
        log_level=settings.log_level.lower(),
    )
