import json
from typing import Any

import boto3
from botocore.exceptions import ClientError

from verification_mailer.errors import ConfigurationError
from verification_mailer.utils.logger import get_logger

logger = get_logger("secrets")


def get_secret_string(secret_name: str, region_name: str) -> str:
    """
    Fetch the raw SecretString for ``secret_name`` from AWS Secrets Manager.

    Raises ConfigurationError if the name is empty, the call fails, or the
    secret has no string payload (binary secrets are not supported).
    """
    if not secret_name:
        raise ConfigurationError("Secret name is required")

    logger.info(
        "Fetching secret from Secrets Manager",
        extra={"secret_name": secret_name, "region": region_name},
    )

    client = boto3.client("secretsmanager", region_name=region_name)

    try:
        resp = client.get_secret_value(SecretId=secret_name)
    except ClientError as e:
        logger.error(
            "secrets.fetch_failed",
            extra={"secret_name": secret_name, "error": str(e)},
        )
        raise ConfigurationError(f"Failed to retrieve secret '{secret_name}': {e}") from e

    secret_str = resp.get("SecretString")
    if not secret_str:
        msg = f"Secret '{secret_name}' has no SecretString payload"
        logger.error(msg)
        raise ConfigurationError(msg)

    return secret_str


def get_secret_json(secret_name: str, region_name: str) -> dict:
    """
    Fetch a secret whose SecretString is a JSON object, e.g.:

        {
          "host": "...",
          "database": "...",
          "username": "...",
          "password": "..."
        }
    """
    secret_str = get_secret_string(secret_name, region_name)

    try:
        data = json.loads(secret_str)
    except json.JSONDecodeError as e:
        logger.error(
            "SecretString is not valid JSON",
            extra={"secret_name": secret_name, "error": str(e)},
        )
        raise ConfigurationError(f"Secret '{secret_name}' is not valid JSON: {e}") from e

    if not isinstance(data, dict):
        raise ConfigurationError(f"Secret '{secret_name}' must be a JSON object")

    return data


def get_secret_field(secret_name: str, region_name: str, *keys: str) -> Any:
    """
    Fetch a secret that is either a bare string or a JSON object holding the
    value under one of ``keys`` (first match wins).
    """
    secret_str = get_secret_string(secret_name, region_name)

    try:
        data = json.loads(secret_str)
    except json.JSONDecodeError:
        # Plain-text secret
        return secret_str

    if isinstance(data, dict):
        for key in keys:
            if data.get(key):
                return data[key]
        raise ConfigurationError(
            f"Secret '{secret_name}' has none of the expected keys: {', '.join(keys)}"
        )

    return secret_str
