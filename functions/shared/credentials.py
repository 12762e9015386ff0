"""Integration API keys from Secrets Manager, with an environment fallback."""

import json
import logging
import os
import time
from typing import Optional

from shared.aws_clients import get_secretsmanager

logger = logging.getLogger(__name__)

# secret id -> (value, fetched_at)
_secret_cache: dict[str, tuple[str, float]] = {}
SECRET_CACHE_TTL = 300  # 5 minutes


def get_api_key(secret_arn_env: str, fallback_env: str) -> Optional[str]:
    """
    Resolve an integration API key.

    Reads the secret named by the `secret_arn_env` environment variable from
    Secrets Manager (cached with TTL). The secret may be a plain string or a
    JSON object with a "key" field. Falls back to the plain `fallback_env`
    variable when no secret is configured or it cannot be read.

    Returns:
        The API key, or None if neither source is configured
    """
    secret_arn = os.environ.get(secret_arn_env)
    if secret_arn:
        cached = _secret_cache.get(secret_arn)
        if cached and (time.time() - cached[1]) < SECRET_CACHE_TTL:
            return cached[0]

        try:
            response = get_secretsmanager().get_secret_value(SecretId=secret_arn)
            secret_value = response.get("SecretString", "")
            try:
                secret_json = json.loads(secret_value)
                api_key = secret_json.get("key") or secret_value
            except (json.JSONDecodeError, AttributeError):
                api_key = secret_value

            _secret_cache[secret_arn] = (api_key, time.time())
            return api_key
        except Exception as e:
            logger.error(f"Failed to retrieve secret from {secret_arn_env}: {e}")

    return os.environ.get(fallback_env) or None


def clear_secret_cache() -> None:
    """Drop cached secrets. Used in tests for clean state."""
    _secret_cache.clear()
