import re
import tempfile
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

HOST_KEY_POLICIES = ("yes", "no", "accept-new")
BRANCH_PREFIX_PATTERN = re.compile(r"^[A-Za-z0-9._/-]*$")


class EmailSettings(BaseModel):
    smtp_server: Optional[str] = None
    smtp_port: int = 587
    use_tls: bool = True
    username: Optional[str] = None
    password: Optional[str] = None
    sender_email: Optional[str] = None
    recipients: List[str] = []


class NotificationSettings(BaseModel):
    slack_webhook_url: str = ""
    email: Optional[EmailSettings] = None


class RepositoryTarget(BaseModel):
    """The remote that branches are pushed to. Fixed at deployment time."""

    model_config = ConfigDict(frozen=True)

    url: str
    base_branch: Optional[str] = None


class BrancherSettings(BaseModel):
    """
    Deployment configuration for the brancher.

    Built once from config.yaml plus environment overrides (see config.py) and passed
    explicitly to the handler, so tests can construct their own.
    """

    repository: str
    base_branch: Optional[str] = None
    secret_id: str = "auto-brancher/deploy-key"
    aws_region: Optional[str] = None
    branch_prefix: str = ""

    timeout_seconds: float = Field(default=30, gt=0)
    timeout_margin_seconds: float = Field(default=2, ge=0)

    workspace_root: str = Field(default_factory=tempfile.gettempdir)
    stale_workspace_seconds: float = Field(default=900, gt=0)

    git_binary: str = "git"
    ssh_binary: str = "ssh"
    strict_host_key_checking: str = "accept-new"

    topic_arns: List[str] = []
    verify_sns_signatures: bool = True
    # SNS gives up on an HTTPS delivery after about 15 s.
    sns_timeout_seconds: float = Field(default=12, gt=0)
    api_key: str = ""
    debug: bool = False
    log_db_path: str = ""

    notifications: NotificationSettings = Field(default_factory=NotificationSettings)

    @field_validator("repository")
    @classmethod
    def _repository_required(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("repository must be set to the SSH URL of the target repository")
        return value

    @field_validator("base_branch", "aws_region")
    @classmethod
    def _empty_is_unset(cls, value: Optional[str]) -> Optional[str]:
        if value is not None and not value.strip():
            return None
        return value

    @field_validator("strict_host_key_checking")
    @classmethod
    def _known_policy(cls, value: str) -> str:
        value = value.strip().lower()
        if value not in HOST_KEY_POLICIES:
            raise ValueError(f"strict_host_key_checking must be one of {', '.join(HOST_KEY_POLICIES)}")
        return value

    @field_validator("branch_prefix")
    @classmethod
    def _valid_prefix(cls, value: str) -> str:
        if not BRANCH_PREFIX_PATTERN.match(value) or ".." in value or value.startswith("/") or "//" in value:
            raise ValueError(f"branch_prefix '{value}' is not usable in a git ref name")
        return value

    @field_validator("topic_arns", mode="before")
    @classmethod
    def _split_topics(cls, value):
        if isinstance(value, str):
            return [topic.strip() for topic in value.split(",") if topic.strip()]
        return value

    @property
    def target(self) -> RepositoryTarget:
        return RepositoryTarget(url=self.repository, base_branch=self.base_branch)
