# lambda_function.py
#
# Entry point when the brancher runs as a function subscribed to the publish topic.

import logging
from typing import Any, Dict, List

from brancher import BranchingHandler, create_handler
from config import get_settings
from errors import RedeliveryRequested
from logging_config import setup_logging
from models.outcome import Outcome, OutcomeStatus
from utils import deadline_for_context

logger = logging.getLogger(__name__)

_handler = None


def get_handler() -> BranchingHandler:
    """One wired handler per execution environment. It holds no per-invocation state."""
    global _handler
    if _handler is None:
        _handler = create_handler(get_settings())
    return _handler


def records_from_event(event: Any) -> List[Any]:
    if isinstance(event, dict) and isinstance(event.get("Records"), list):
        return event["Records"]
    return [event]


def summarize(outcomes: List[Outcome]) -> Dict[str, Any]:
    counts = {status.value: 0 for status in OutcomeStatus}
    for outcome in outcomes:
        counts[outcome.status.value] += 1
    return {
        "processed": len(outcomes),
        "counts": counts,
        "outcomes": [
            outcome.model_dump(mode="json", include={"status", "reason", "branch", "message_id", "detail"})
            for outcome in outcomes
        ],
    }


def lambda_handler(event, context):
    settings = get_settings()
    setup_logging(settings.debug, settings.log_db_path, console=False)

    handler = get_handler()
    deadline = deadline_for_context(context, settings.timeout_seconds, settings.timeout_margin_seconds)
    records = records_from_event(event)
    logger.info(f"Received {len(records)} record(s)")

    outcomes = handler.handle_batch(records, deadline)
    summary = summarize(outcomes)

    retryable = [o for o in outcomes if o.status == OutcomeStatus.FAILED and o.retryable]
    if retryable:
        reasons = ", ".join(sorted({o.reason for o in retryable}))
        # Redelivery replays every record; the ones that succeeded will report AlreadySatisfied.
        raise RedeliveryRequested(f"{len(retryable)} of {len(outcomes)} record(s) failed: {reasons}")

    return summary
