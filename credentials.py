# credentials.py

import base64
import hashlib
import io
import json
import logging
import os
import shutil
import tempfile
from contextlib import contextmanager
from typing import Iterator, Optional

import boto3
import paramiko
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError
from pydantic import SecretStr

from errors import CredentialUnavailable
from models.deploy_key import DeployKey

logger = logging.getLogger(__name__)

KEY_DIR_PREFIX = "auto-brancher-key-"
KEY_FILE_NAME = "deploy_key"
# JSON members a structured secret may keep the key under.
SECRET_KEY_FIELDS = ("privateKey", "private_key", "key")
KEY_CLASSES = (paramiko.Ed25519Key, paramiko.ECDSAKey, paramiko.RSAKey)
# Keep secret reads well inside the invocation budget.
CLIENT_CONFIG = Config(connect_timeout=5, read_timeout=5, retries={"max_attempts": 2})


class SecretsManagerSource:
    """Reads the deploy key secret from AWS Secrets Manager. One network read per call."""

    def __init__(self, secret_id: str, region_name: Optional[str] = None, client=None):
        self.secret_id = secret_id
        self.region_name = region_name
        self._client = client

    def _get_client(self):
        if self._client is None:
            self._client = boto3.client("secretsmanager", region_name=self.region_name, config=CLIENT_CONFIG)
        return self._client

    def read(self) -> str:
        response = self._get_client().get_secret_value(SecretId=self.secret_id)
        if response.get("SecretString"):
            return response["SecretString"]
        binary = response.get("SecretBinary")
        if binary:
            return binary.decode("utf-8") if isinstance(binary, bytes) else str(binary)
        raise CredentialUnavailable(f"Secret '{self.secret_id}' has no value")


def extract_private_key(secret_value: str) -> str:
    """The secret holds either the key itself or a JSON object carrying it."""
    value = secret_value.strip()
    if value.startswith("{"):
        try:
            document = json.loads(value)
        except ValueError as e:
            raise CredentialUnavailable("Secret looks like JSON but could not be parsed") from e
        if not isinstance(document, dict):
            raise CredentialUnavailable("Secret JSON must be an object")
        for field in SECRET_KEY_FIELDS:
            if isinstance(document.get(field), str):
                value = document[field].strip()
                break
        else:
            raise CredentialUnavailable(
                f"Secret JSON has none of the fields {', '.join(SECRET_KEY_FIELDS)}"
            )
    # ssh refuses key files without a trailing newline.
    return value.replace("\r\n", "\n") + "\n"


def load_private_key(material: str) -> paramiko.PKey:
    for key_class in KEY_CLASSES:
        try:
            return key_class.from_private_key(io.StringIO(material))
        except paramiko.PasswordRequiredException as e:
            raise CredentialUnavailable("Deploy key is passphrase protected") from e
        except (paramiko.SSHException, ValueError):
            continue
    raise CredentialUnavailable("Secret does not contain a valid SSH private key")


def fingerprint(pkey: paramiko.PKey) -> str:
    digest = hashlib.sha256(pkey.asbytes()).digest()
    return "SHA256:" + base64.b64encode(digest).decode("ascii").rstrip("=")


class CredentialProvider:
    """
    Fetches the deploy key for one invocation and renders it as a short-lived,
    owner-only key file for ssh.

    `source` is anything with a read() -> str method; nothing is cached between calls
    because the secret may be rotated at any time.
    """

    def __init__(self, source, workspace_root: Optional[str] = None):
        self.source = source
        self.workspace_root = workspace_root

    def fetch(self) -> DeployKey:
        try:
            secret_value = self.source.read()
        except ClientError as e:
            code = e.response.get("Error", {}).get("Code", "ClientError")
            raise CredentialUnavailable(f"Could not read deploy key secret: {code}") from e
        except (BotoCoreError, OSError) as e:
            raise CredentialUnavailable(f"Secret store unreachable: {e.__class__.__name__}") from e

        if not secret_value:
            raise CredentialUnavailable("Deploy key secret is empty")

        material = extract_private_key(secret_value)
        pkey = load_private_key(material)
        key = DeployKey(material=SecretStr(material), key_type=pkey.get_name(), fingerprint=fingerprint(pkey))
        logger.info(f"Fetched deploy key ({key.key_type}, {key.fingerprint})")
        return key

    @contextmanager
    def key_file(self, key: DeployKey) -> Iterator[str]:
        """Yield the path of a 0600 file holding the key. The file is removed on exit, whatever happens."""
        if self.workspace_root:
            os.makedirs(self.workspace_root, exist_ok=True)
        directory = tempfile.mkdtemp(prefix=KEY_DIR_PREFIX, dir=self.workspace_root)
        path = os.path.join(directory, KEY_FILE_NAME)
        try:
            fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_EXCL, 0o600)
            with os.fdopen(fd, "w") as f:
                f.write(key.material.get_secret_value())
            yield path
        finally:
            shutil.rmtree(directory, ignore_errors=True)
            if os.path.exists(directory):
                logger.error(f"Could not remove deploy key directory {directory}")
            else:
                logger.debug("Deploy key file removed")
