# main.py

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from config import get_settings
from logging_config import setup_logging

# Routers
from routers.branch import router as branch_router
from routers.health import router as health_router
from routers.preflight import router as preflight_router
from routers.sns import router as sns_router

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Load settings up front so a bad config fails the start, not the first delivery.
    settings = get_settings()
    setup_logging(settings.debug, settings.log_db_path)
    logger.info("Starting the AutoBrancher service...")
    yield


app = FastAPI(
    title="AutoBrancher",
    description="Creates a branch in the target repository for every published construct version",
    version="1.0.0",
    lifespan=lifespan,
)

app.include_router(health_router)
app.include_router(sns_router)
app.include_router(branch_router)
app.include_router(preflight_router)
