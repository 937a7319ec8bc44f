import asyncio
import json
import logging

import requests
from fastapi import APIRouter, Depends, Header, HTTPException, Request, status
from fastapi.responses import JSONResponse

from brancher import BranchingHandler
from dependencies import get_app_settings, get_branching_handler
from models.outcome import OutcomeStatus
from models.settings import BrancherSettings
from sns_signature import is_sns_url, verify_sns_signature
from utils import Deadline

router = APIRouter()
logger = logging.getLogger(__name__)


def confirm_subscription(subscribe_url: str):
    """
    Visit the SubscribeURL of a SubscriptionConfirmation. Only SNS endpoints are
    contacted, so a forged confirmation cannot make us fetch arbitrary URLs.
    """
    if not is_sns_url(subscribe_url):
        raise ValueError(f"Refusing to confirm subscription via '{subscribe_url}'")
    response = requests.get(subscribe_url, timeout=10)
    response.raise_for_status()


@router.post("/sns", summary="SNS HTTPS Subscription Endpoint")
async def receive_sns(
        request: Request,
        x_amz_sns_message_type: str = Header(None),
        settings: BrancherSettings = Depends(get_app_settings),
        handler: BranchingHandler = Depends(get_branching_handler),
):
    body_bytes = await request.body()

    # SNS posts JSON with Content-Type text/plain, so parse the body ourselves.
    try:
        payload = json.loads(body_bytes)
    except ValueError as e:
        logger.error(f"Could not decode SNS body: {e}")
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid JSON payload")
    if not isinstance(payload, dict):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid SNS message")

    loop = asyncio.get_running_loop()

    # 1. Verify the message came from SNS. The certificate fetch blocks, so run it off the loop.
    if settings.verify_sns_signatures:
        if not await loop.run_in_executor(None, verify_sns_signature, payload):
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Invalid signature")

    # 2. Only accept the configured topics.
    message_type = payload.get("Type") or x_amz_sns_message_type
    topic_arn = payload.get("TopicArn")
    if settings.topic_arns and topic_arn not in settings.topic_arns:
        logger.warning(f"Rejected SNS message from unexpected topic '{topic_arn}'.")
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Topic not accepted")

    if message_type == "SubscriptionConfirmation":
        logger.info(f"Confirming subscription to {topic_arn}.")
        try:
            await loop.run_in_executor(None, confirm_subscription, payload.get("SubscribeURL"))
        except (ValueError, requests.RequestException) as e:
            logger.error(f"Subscription confirmation failed: {e}")
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Subscription confirmation failed")
        return {"message": "Subscription confirmed."}

    if message_type == "UnsubscribeConfirmation":
        logger.warning(f"Unsubscribed from {topic_arn}.")
        return {"message": "Unsubscribe acknowledged."}

    if message_type != "Notification":
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=f"Unsupported message type '{message_type}'")

    # 3. Handle it within SNS's delivery timeout, so a slow run fails as Timeout
    # instead of overlapping with the redelivery.
    deadline = Deadline(settings.sns_timeout_seconds)
    outcome = await loop.run_in_executor(None, handler.handle, payload, deadline)
    content = outcome.model_dump(mode="json")
    if outcome.status == OutcomeStatus.FAILED and outcome.retryable:
        # Non-2xx makes SNS redeliver according to the subscription's retry policy.
        return JSONResponse(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, content=content)
    return content
