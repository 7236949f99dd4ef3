"""Secrets Manager helpers with caching.

The mailer API key can live in Secrets Manager instead of a plain
environment variable; the secret is a JSON object with an ``api_key``
field. Clients are created in the region named by the secret ARN, so a
relay can read a key kept in another region.
"""

from __future__ import annotations

import base64
import json
from typing import Any
from typing import Optional

import boto3

API_KEY_FIELD = "api_key"

_CLIENT_CACHE: dict[Optional[str], Any] = {}
_SECRET_CACHE: dict[str, dict[str, Any]] = {}


def region_from_arn(secret_arn: str) -> Optional[str]:
    """Return the region of ``arn:aws:secretsmanager:<region>:...``, if any."""
    parts = secret_arn.split(":")
    if len(parts) > 3 and parts[0] == "arn" and parts[3]:
        return parts[3]
    return None


def get_secretsmanager_client(region_name: Optional[str] = None) -> Any:
    """Return a cached Secrets Manager client for ``region_name``."""
    if region_name in _CLIENT_CACHE:
        return _CLIENT_CACHE[region_name]
    client = boto3.client(  # type: ignore[call-overload]
        "secretsmanager",
        region_name=region_name,
    )
    _CLIENT_CACHE[region_name] = client
    return client


def get_secret_json(secret_arn: str) -> dict[str, Any]:
    """Fetch a secret from AWS Secrets Manager and parse JSON."""
    if secret_arn in _SECRET_CACHE:
        return _SECRET_CACHE[secret_arn]

    client = get_secretsmanager_client(region_from_arn(secret_arn))
    response = client.get_secret_value(SecretId=secret_arn)
    secret_str = response.get("SecretString")
    if not secret_str and response.get("SecretBinary"):
        secret_str = base64.b64decode(response["SecretBinary"]).decode("utf-8")
    if not secret_str:
        raise RuntimeError("Secret value is empty")

    secret_payload = json.loads(secret_str)
    _SECRET_CACHE[secret_arn] = secret_payload
    return secret_payload


def get_api_key(secret_arn: str) -> str:
    """Return the mailer API key stored in the given secret, or ''."""
    value = get_secret_json(secret_arn).get(API_KEY_FIELD)
    return str(value).strip() if value else ""


def clear_secret_cache() -> None:
    """Clear cached secrets and clients (useful in tests)."""
    _SECRET_CACHE.clear()
    _CLIENT_CACHE.clear()
