# sns_signature.py
#
# Verifies that a message posted to the HTTPS subscription endpoint was signed by SNS.

import base64
import logging
import re
from functools import lru_cache
from urllib.parse import urlparse

import requests
from cryptography import x509
from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import padding

logger = logging.getLogger(__name__)

SNS_HOST_PATTERN = re.compile(r"^sns\.[a-z0-9-]+\.amazonaws\.com(\.cn)?$")

# Fields covered by the signature, in the order SNS signs them.
NOTIFICATION_FIELDS = ("Message", "MessageId", "Subject", "Timestamp", "TopicArn", "Type")
CONFIRMATION_FIELDS = ("Message", "MessageId", "SubscribeURL", "Timestamp", "Token", "TopicArn", "Type")
CONFIRMATION_TYPES = ("SubscriptionConfirmation", "UnsubscribeConfirmation")

SIGNATURE_HASHES = {"1": hashes.SHA1, "2": hashes.SHA256}


def is_sns_url(url: str) -> bool:
    parsed = urlparse(url or "")
    return parsed.scheme == "https" and bool(SNS_HOST_PATTERN.match(parsed.hostname or ""))


@lru_cache(maxsize=16)
def fetch_certificate(cert_url: str) -> x509.Certificate:
    """Download the signing certificate. Only SNS hosts are contacted."""
    if not is_sns_url(cert_url):
        raise ValueError(f"Signing certificate URL '{cert_url}' is not an SNS endpoint")
    response = requests.get(cert_url, timeout=5)
    response.raise_for_status()
    return x509.load_pem_x509_certificate(response.content)


def canonical_string(message: dict) -> bytes:
    """
    The string SNS signs: "<Field>\\n<value>\\n" for each signed field that is present.
    Subject is only part of it when the notification has one.
    """
    message_type = message.get("Type")
    if message_type == "Notification":
        fields = NOTIFICATION_FIELDS
    elif message_type in CONFIRMATION_TYPES:
        fields = CONFIRMATION_FIELDS
    else:
        raise ValueError(f"Cannot verify SNS message of type '{message_type}'")

    parts = []
    for field in fields:
        value = message.get(field)
        if value is None:
            if field == "Subject":
                continue
            raise ValueError(f"SNS message is missing signed field '{field}'")
        parts.append(f"{field}\n{value}\n")
    return "".join(parts).encode("utf-8")


def verify_sns_signature(message: dict) -> bool:
    hash_class = SIGNATURE_HASHES.get(str(message.get("SignatureVersion")))
    if hash_class is None:
        logger.warning(f"Unsupported SNS SignatureVersion: {message.get('SignatureVersion')}")
        return False

    try:
        signature = base64.b64decode(message.get("Signature") or "", validate=True)
        data = canonical_string(message)
        certificate = fetch_certificate(message.get("SigningCertURL") or "")
    except (ValueError, requests.RequestException) as e:
        logger.warning(f"SNS signature check failed: {e}")
        return False
    if not signature:
        logger.warning("SNS message carries no signature.")
        return False

    try:
        certificate.public_key().verify(signature, data, padding.PKCS1v15(), hash_class())
    except (InvalidSignature, TypeError) as e:
        logger.warning(f"Invalid SNS signature for message {message.get('MessageId')}: {e.__class__.__name__}")
        return False
    return True
