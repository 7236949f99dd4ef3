"""Shared response utilities for the relay Lambda."""

from __future__ import annotations

import json
from typing import Any
from typing import Mapping
from typing import Optional

from pydantic import BaseModel

from mailer_relay.exceptions import AppError


def get_header(
    headers: Optional[Mapping[str, Any]],
    name: str,
    default: str = "",
) -> str:
    """Return a header value, matching the name case-insensitively."""
    if not headers:
        return default
    wanted = name.lower()
    for key, value in headers.items():
        if key.lower() == wanted and value is not None:
            return str(value)
    return default


def get_security_headers() -> dict[str, str]:
    """Get security headers for all responses.

    SECURITY: These headers protect against common web vulnerabilities:
    - X-Content-Type-Options: Prevents MIME type sniffing
    - X-Frame-Options: Prevents clickjacking
    - Cache-Control: Prevents caching of submission results
    """
    return {
        "X-Content-Type-Options": "nosniff",
        "X-Frame-Options": "DENY",
        "Cache-Control": "no-store, no-cache, must-revalidate",
        "Pragma": "no-cache",
    }


def get_cors_headers() -> dict[str, str]:
    """Get CORS headers for the response.

    The relay is posted to from arbitrary static sites, so any origin
    is allowed.
    """
    return {
        "Access-Control-Allow-Origin": "*",
        "Access-Control-Allow-Headers": "Content-Type",
        "Access-Control-Allow-Methods": "POST,OPTIONS",
    }


def json_response(
    status_code: int,
    body: Any,
    headers: Optional[dict[str, str]] = None,
) -> dict[str, Any]:
    """Create a JSON response for the host runtime.

    Args:
        status_code: HTTP status code.
        body: Response body (dict or Pydantic model).
        headers: Optional additional headers to include.

    Returns:
        Response dictionary with ``statusCode``, ``headers`` and ``body``.
    """
    response_headers = {
        "Content-Type": "application/json",
    }
    response_headers.update(get_security_headers())
    response_headers.update(get_cors_headers())

    if headers:
        response_headers.update(headers)

    payload = _serialize_body(body)

    return {
        "statusCode": status_code,
        "headers": response_headers,
        "body": json.dumps(payload, default=str),
    }


def _serialize_body(body: Any) -> Any:
    """Serialize response body to a JSON-compatible value."""
    if isinstance(body, BaseModel):
        return body.model_dump(exclude_none=True)

    return body


def error_response(error: AppError) -> dict[str, Any]:
    """Create a response from a relay error."""
    return json_response(error.status_code, error.to_dict())
