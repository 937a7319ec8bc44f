import logging
import os

from fastapi import APIRouter, Depends

from brancher import BranchingHandler
from dependencies import get_api_key, get_app_settings, get_branching_handler
from errors import CredentialUnavailable
from models.settings import BrancherSettings
from utils import CommandError, run_command

router = APIRouter()
logger = logging.getLogger(__name__)


@router.get("/preflight", summary="Check git and the deploy key")
def preflight(
        api_key: str = Depends(get_api_key),
        settings: BrancherSettings = Depends(get_app_settings),
        handler: BranchingHandler = Depends(get_branching_handler),
):
    """
    Verify that this environment can do its job without touching the remote:
    the git client runs and the deploy key secret can be read and parsed.

    Returns something like:
    {
      "repository": "git@github.com:mbonig/rds-tools.git",
      "git": {"success": true, "version": "git version 2.43.0", "error": null},
      "deploy_key": {"success": true, "fingerprint": "SHA256:...", "error": null}
    }
    """
    logger.info("Preflight endpoint was called.")
    results = {"repository": settings.repository}

    git_entry = {"success": False, "version": None, "error": None}
    try:
        out, _ = run_command([settings.git_binary, "--version"], cwd=os.getcwd(), timeout=10)
        git_entry.update(success=True, version=out)
    except (CommandError, OSError) as e:
        logger.exception("git check failed")
        git_entry["error"] = str(e)
    results["git"] = git_entry

    key_entry = {"success": False, "key_type": None, "fingerprint": None, "error": None}
    try:
        key = handler.credentials.fetch()
        key_entry.update(success=True, key_type=key.key_type, fingerprint=key.fingerprint)
    except CredentialUnavailable as e:
        logger.warning(f"Deploy key check failed: {e}")
        key_entry["error"] = str(e)
    results["deploy_key"] = key_entry

    return results
