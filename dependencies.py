# dependencies.py

import logging
from typing import Optional

from fastapi import Depends, Header, HTTPException, status

from brancher import BranchingHandler, create_handler
from config import get_settings
from models.settings import BrancherSettings
from utils import api_key_matches

logger = logging.getLogger(__name__)

_handler: Optional[BranchingHandler] = None


def get_app_settings() -> BrancherSettings:
    return get_settings()


def get_branching_handler(settings: BrancherSettings = Depends(get_app_settings)) -> BranchingHandler:
    global _handler
    if _handler is None:
        _handler = create_handler(settings)
    return _handler


def get_api_key(
        api_key: str = Header(..., alias="X-API-Key"),
        settings: BrancherSettings = Depends(get_app_settings),
):
    if not api_key_matches(api_key, settings.api_key):
        logger.warning("Invalid API Key for a manual endpoint.")
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid API Key")
    return api_key
