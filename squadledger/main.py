"""SquadLedger FastAPI application."""

import asyncio
from contextlib import asynccontextmanager

from fastapi import FastAPI

from squadledger import __version__
from squadledger.config import get_settings
from squadledger.database import close_db, init_db
from squadledger.logging_config import configure_logging, get_logger
from squadledger.middleware import RequestContextMiddleware
from squadledger.routes.access import router as access_router
from squadledger.routes.pledges import router as pledges_router
from squadledger.routes.profiles import router as profiles_router
from squadledger.routes.projects import router as projects_router
from squadledger.routes.ratings import router as ratings_router
from squadledger.routes.tasks import router as tasks_router
from squadledger.routes.votes import router as votes_router
from squadledger.services.scheduler_service import scheduler_loop

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan: logging, database and sweep scheduler."""
    settings = get_settings()
    configure_logging(level=settings.log_level, json_format=settings.log_format == "json")

    logger.info("starting_database_init")
    await init_db()

    stop_event = asyncio.Event()
    scheduler_task = None
    if settings.scheduler_enabled:
        scheduler_task = asyncio.create_task(scheduler_loop(stop_event))

    logger.info("application_started")
    yield

    # Shutdown
    logger.info("shutting_down")
    stop_event.set()
    if scheduler_task is not None:
        await scheduler_task
    await close_db()
    logger.info("shutdown_complete")


app = FastAPI(
    title="SquadLedger",
    description="Project, task and pledge ledger for squad-funded work",
    version=__version__,
    lifespan=lifespan,
)

app.add_middleware(RequestContextMiddleware)

app.include_router(access_router)
app.include_router(profiles_router)
app.include_router(projects_router)
app.include_router(tasks_router)
app.include_router(pledges_router)
app.include_router(ratings_router)
app.include_router(votes_router)


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "ok", "service": "squadledger"}
