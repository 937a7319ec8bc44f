# events.py
#
# Turns whatever the transport delivered into an InboundNotification.

import json
import logging
from typing import Any

from pydantic import ValidationError

from errors import InvalidEvent
from models.publish_event import InboundNotification, PublishEvent
from models.sns_message import SnsMessage

logger = logging.getLogger(__name__)


def _loads(text: str, what: str) -> Any:
    try:
        return json.loads(text)
    except ValueError as e:
        raise InvalidEvent(f"{what} is not valid JSON: {e}") from e


def _sns_envelope(raw: dict):
    if isinstance(raw.get("Sns"), dict):
        # Lambda event record from an SNS subscription.
        return raw["Sns"]
    if "Type" in raw and "Message" in raw:
        # HTTPS subscription delivery.
        return raw
    return None


def parse_notification(raw: Any) -> InboundNotification:
    """
    Accepts a Lambda SNS record, an SNS HTTP delivery body, a JSON string/bytes of
    either, or the bare publish payload.
    """
    if isinstance(raw, (bytes, bytearray)):
        try:
            raw = raw.decode("utf-8")
        except UnicodeDecodeError as e:
            raise InvalidEvent(f"Notification is not UTF-8: {e}") from e
    if isinstance(raw, str):
        raw = _loads(raw, "Notification")
    if not isinstance(raw, dict):
        raise InvalidEvent(f"Notification must be a JSON object, got {type(raw).__name__}")

    message_id = None
    topic_arn = None
    payload = raw

    envelope = _sns_envelope(raw)
    if envelope is not None:
        try:
            sns = SnsMessage.model_validate(envelope)
        except ValidationError as e:
            raise InvalidEvent(f"Malformed SNS envelope: {e}") from e
        if sns.type != "Notification":
            raise InvalidEvent(f"Unsupported SNS message type '{sns.type}'")
        message_id = sns.message_id
        topic_arn = sns.topic_arn
        payload = _loads(sns.message, f"SNS message {message_id}")
        if not isinstance(payload, dict):
            raise InvalidEvent(f"SNS message {message_id} does not carry a JSON object")

    try:
        event = PublishEvent.model_validate(payload)
    except ValidationError as e:
        raise InvalidEvent(f"Malformed publish event: {e}") from e

    return InboundNotification(event=event, message_id=message_id, topic_arn=topic_arn)
