# routers/health.py

import logging
import shutil

from fastapi import APIRouter, Depends

from dependencies import get_app_settings
from models.settings import BrancherSettings

router = APIRouter()
logger = logging.getLogger(__name__)


@router.get("/health", summary="Health Check Endpoint")
def health_check(settings: BrancherSettings = Depends(get_app_settings)):
    logger.debug("Health check endpoint was called.")
    git_available = shutil.which(settings.git_binary) is not None
    return {"status": "OK" if git_available else "DEGRADED", "git_available": git_available}
