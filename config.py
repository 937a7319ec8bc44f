# config.py

import os
import logging
from functools import lru_cache
from typing import Mapping, Optional

import yaml
from pydantic import ValidationError

from models.settings import BrancherSettings

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = "config.yaml"

# Settings that may be supplied (or overridden) through the environment, e.g. by the
# function definition or CI/CD. Maps setting name -> environment variable.
ENV_OVERRIDES = {
    "repository": "REPOSITORY",
    "base_branch": "BASE_BRANCH",
    "secret_id": "SECRET_ID",
    "aws_region": "AWS_REGION",
    "branch_prefix": "BRANCH_PREFIX",
    "timeout_seconds": "TIMEOUT_SECONDS",
    "workspace_root": "WORKSPACE_ROOT",
    "git_binary": "GIT_BINARY",
    "strict_host_key_checking": "STRICT_HOST_KEY_CHECKING",
    "topic_arns": "TOPIC_ARNS",
    "verify_sns_signatures": "VERIFY_SNS_SIGNATURES",
    "sns_timeout_seconds": "SNS_TIMEOUT_SECONDS",
    "api_key": "BRANCHER_API_KEY",
    "debug": "DEBUG",
    "log_db_path": "LOG_DB_PATH",
}

EMAIL_ENV_OVERRIDES = {
    "username": "EMAIL_USERNAME",
    "password": "EMAIL_PASSWORD",
    "smtp_server": "SMTP_SERVER",
    "smtp_port": "SMTP_PORT",
    "use_tls": "EMAIL_USE_TLS",
}


def load_config(path: Optional[str] = None) -> dict:
    """
    Load configuration from the YAML file at `path`, the CONFIG_PATH environment variable or the default path.

    A missing file is not an error: a function deployment usually configures everything
    through the environment.

    Returns:
        dict: Parsed configuration dictionary.
    """
    config_path = path or os.getenv("CONFIG_PATH", DEFAULT_CONFIG_PATH)

    if not os.path.exists(config_path):
        logger.info(f"Configuration file '{config_path}' not found. Using environment and defaults.")
        return {}

    try:
        with open(config_path, 'r') as f:
            config = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        logger.error(f"Error parsing YAML file '{config_path}': {e}")
        raise

    if not isinstance(config, dict):
        raise ValueError(f"Configuration file '{config_path}' must contain a mapping at the top level.")
    logger.info(f"Configuration loaded successfully from '{config_path}'.")
    return config


def apply_env_overrides(config: dict, environ: Optional[Mapping[str, str]] = None) -> dict:
    env = os.environ if environ is None else environ
    merged = dict(config)

    for key, env_name in ENV_OVERRIDES.items():
        value = env.get(env_name)
        if value:
            merged[key] = value

    notifications = dict(merged.get("notifications") or {})
    email = dict(notifications.get("email") or {})
    if email or any(env.get(name) for name in EMAIL_ENV_OVERRIDES.values()):
        for key, env_name in EMAIL_ENV_OVERRIDES.items():
            value = env.get(env_name)
            if value:
                email[key] = value
        notifications["email"] = email
    if notifications:
        merged["notifications"] = notifications

    return merged


def build_settings(config: dict) -> BrancherSettings:
    try:
        return BrancherSettings(**config)
    except ValidationError as e:
        logger.error(f"Invalid configuration: {e}")
        raise


def log_settings_summary(settings: BrancherSettings):
    # Never log secrets: api_key and email password stay out of this.
    logger.info(f"Target repository: {settings.repository}")
    logger.info(f"Base branch: {settings.base_branch or '(remote default)'}")
    logger.info(f"Deploy key secret: {settings.secret_id}")
    logger.info(f"Invocation timeout: {settings.timeout_seconds}s")
    if not settings.verify_sns_signatures:
        logger.warning("SNS signature verification is disabled. POST /sns accepts unsigned messages.")
    if settings.topic_arns:
        logger.info(f"Accepted topics: {', '.join(settings.topic_arns)}")
    if not settings.api_key:
        logger.warning("No API key configured. Manual endpoints will reject every request.")


@lru_cache(maxsize=1)
def get_settings() -> BrancherSettings:
    """Settings for this process, loaded on first use."""
    settings = build_settings(apply_env_overrides(load_config()))
    log_settings_summary(settings)
    return settings
