"""Relay configuration.

Settings are resolved once per invocation into an immutable
``RelayConfig`` that is handed to every component explicitly. Nothing
below the Lambda entrypoint reads the process environment.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Any
from typing import Mapping
from typing import Optional

from mailer_relay.exceptions import ConfigurationError

BASE_URL_VAR = "MAILER_BASE_URL"
FORM_ID_VAR = "MAILER_FORM_ID"
API_KEY_VAR = "MAILER_FORM_API_KEY"
API_KEY_SECRET_VAR = "MAILER_FORM_API_KEY_SECRET_ARN"
DEBUG_VAR = "MAILER_DEBUG"
TIMEOUT_VAR = "MAILER_TIMEOUT_SECONDS"
MAX_BODY_VAR = "MAILER_MAX_BODY_BYTES"
MAX_FILE_VAR = "MAILER_MAX_FILE_BYTES"

DEFAULT_TIMEOUT_SECONDS = 10
MAX_TIMEOUT_SECONDS = 30
# API Gateway and Netlify both cap synchronous payloads around 6 MB.
DEFAULT_MAX_BODY_BYTES = 6 * 1024 * 1024
DEFAULT_MAX_FILE_BYTES = 5 * 1024 * 1024


@dataclass(frozen=True)
class RelayConfig:
    """Static, read-only settings for one relay deployment."""

    base_url: str
    form_id: str
    api_key: str
    debug: bool = False
    timeout_seconds: int = DEFAULT_TIMEOUT_SECONDS
    max_body_bytes: int = DEFAULT_MAX_BODY_BYTES
    max_file_bytes: int = DEFAULT_MAX_FILE_BYTES

    def __post_init__(self) -> None:
        missing = [
            var
            for var, value in (
                (BASE_URL_VAR, self.base_url),
                (FORM_ID_VAR, self.form_id),
                (API_KEY_VAR, self.api_key),
            )
            if not value or not str(value).strip()
        ]
        if missing:
            raise ConfigurationError(missing)

    def endpoint(self, path: str) -> str:
        """Return the absolute mailer URL for an API path."""
        return f"{self.base_url.rstrip('/')}/{path.lstrip('/')}"

    def __repr__(self) -> str:
        return (
            f"RelayConfig(base_url={self.base_url!r}, form_id={self.form_id!r}, "
            f"api_key='***', debug={self.debug})"
        )


def load_config(
    environ: Optional[Mapping[str, str]] = None,
    **overrides: Any,
) -> RelayConfig:
    """Build a ``RelayConfig`` from explicit values and the environment.

    Explicit keyword overrides win over environment values. When no API
    key is given directly, ``MAILER_FORM_API_KEY_SECRET_ARN`` is looked
    up in Secrets Manager.

    Raises:
        ConfigurationError: If base URL, form id or API key is missing,
            or a numeric setting is not an integer.
    """
    env = os.environ if environ is None else environ

    def pick(key: str, var: str) -> str:
        value = overrides.get(key)
        if value is None:
            value = env.get(var, "")
        return str(value).strip()

    base_url = pick("base_url", BASE_URL_VAR).rstrip("/")
    form_id = pick("form_id", FORM_ID_VAR)
    api_key = pick("api_key", API_KEY_VAR)

    secret_arn = env.get(API_KEY_SECRET_VAR, "").strip()
    if not api_key and secret_arn:
        from mailer_relay.services.secrets import get_api_key

        api_key = get_api_key(secret_arn)

    debug = overrides.get("debug")
    if debug is None:
        debug = (
            env.get(DEBUG_VAR, "").strip().lower() == "true"
            or env.get("ENVIRONMENT", "").strip().lower() == "development"
        )

    timeout = min(
        _int_setting(overrides.get("timeout_seconds"), env, TIMEOUT_VAR, DEFAULT_TIMEOUT_SECONDS),
        MAX_TIMEOUT_SECONDS,
    )

    return RelayConfig(
        base_url=base_url,
        form_id=form_id,
        api_key=api_key,
        debug=bool(debug),
        timeout_seconds=timeout,
        max_body_bytes=_int_setting(
            overrides.get("max_body_bytes"), env, MAX_BODY_VAR, DEFAULT_MAX_BODY_BYTES
        ),
        max_file_bytes=_int_setting(
            overrides.get("max_file_bytes"), env, MAX_FILE_VAR, DEFAULT_MAX_FILE_BYTES
        ),
    )


def _int_setting(
    explicit: Any,
    env: Mapping[str, str],
    var: str,
    default: int,
) -> int:
    raw = explicit if explicit is not None else env.get(var, "")
    if raw == "" or raw is None:
        return default
    try:
        value = int(raw)
    except (TypeError, ValueError) as exc:
        raise ConfigurationError(var, _invalid(var)) from exc
    if value <= 0:
        raise ConfigurationError(var, _invalid(var))
    return value


def _invalid(var: str) -> str:
    return f"Invalid configuration: {var} must be a positive integer"
