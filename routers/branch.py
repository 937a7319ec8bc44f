# branch.py is a FastAPI router that handles manual branch requests.

import logging

from fastapi import APIRouter, Depends, status
from fastapi.responses import JSONResponse

from brancher import BranchingHandler
from dependencies import get_api_key, get_branching_handler
from models.branch_request import BranchRequest
from models.outcome import OutcomeStatus

router = APIRouter()
logger = logging.getLogger(__name__)


@router.post("/branch", summary="Manual Branch Endpoint")
def manual_branch(
        branch_request: BranchRequest,
        api_key: str = Depends(get_api_key),
        handler: BranchingHandler = Depends(get_branching_handler),
):
    logger.info(f"Manual branch requested for {branch_request.package_name}@{branch_request.version}")
    outcome = handler.handle(branch_request.to_payload())
    content = outcome.model_dump(mode="json")

    if outcome.status == OutcomeStatus.SUCCESS:
        return JSONResponse(status_code=status.HTTP_201_CREATED, content=content)
    if outcome.status == OutcomeStatus.ALREADY_SATISFIED:
        return JSONResponse(status_code=status.HTTP_200_OK, content=content)
    if not outcome.retryable:
        return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content=content)
    return JSONResponse(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, content=content)
