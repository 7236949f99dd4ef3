"""HTTP client for the downstream mailer API.

Two endpoints are used:

``POST {base}/form-submissions``
    JSON body ``{"formId": ..., "formData": {...}}``.

``POST {base}/form-submissions-upload``
    Re-encoded ``multipart/form-data`` body, ``formId`` part first.

Every mailer answer is normalized into a ``NormalizedResult`` that the
router can return unchanged to the caller.
"""

from __future__ import annotations

import json
import urllib.error
import urllib.request
from dataclasses import dataclass
from typing import Any
from typing import Mapping

from mailer_relay.config import RelayConfig
from mailer_relay.exceptions import AppError
from mailer_relay.exceptions import UpstreamApplicationError
from mailer_relay.exceptions import UpstreamConnectionError
from mailer_relay.exceptions import UpstreamProtocolError
from mailer_relay.services.multipart_encoder import EncodedMultipart
from mailer_relay.utils.logging import get_logger
from mailer_relay.utils.logging import preview_text

logger = get_logger(__name__)

JSON_PATH = "/form-submissions"
UPLOAD_PATH = "/form-submissions-upload"


@dataclass(frozen=True)
class UpstreamResponse:
    """Raw mailer answer before normalization."""

    status: int
    content_type: str
    body: bytes


@dataclass(frozen=True)
class NormalizedResult:
    """Status and JSON payload handed back to the original caller."""

    status_code: int
    success: bool
    payload: Any

    @classmethod
    def from_error(cls, error: AppError) -> "NormalizedResult":
        return cls(status_code=error.status_code, success=False, payload=error.to_dict())


class MailerClient:
    """Posts submissions to the mailer API and normalizes the answer."""

    def __init__(self, config: RelayConfig) -> None:
        self.config = config

    def submit_json(self, form_data: Mapping[str, Any]) -> NormalizedResult:
        payload = {"formId": self.config.form_id, "formData": dict(form_data)}
        body = json.dumps(payload).encode("utf-8")
        return self._forward(JSON_PATH, body, "application/json")

    def submit_multipart(self, encoded: EncodedMultipart) -> NormalizedResult:
        return self._forward(UPLOAD_PATH, encoded.body, encoded.content_type)

    def _forward(self, path: str, body: bytes, content_type: str) -> NormalizedResult:
        url = self.config.endpoint(path)
        if self.config.debug:
            logger.debug("Sending to mailer", extra={"url": url, "bytes": len(body)})
        upstream = self._post(url, body, content_type)
        if self.config.debug:
            logger.debug(
                "Mailer responded",
                extra={"status": upstream.status, "content_type": upstream.content_type},
            )
        return normalize_response(upstream, url=url)

    def _post(self, url: str, body: bytes, content_type: str) -> UpstreamResponse:
        request = urllib.request.Request(
            url,
            data=body,
            headers={
                "Authorization": f"Bearer {self.config.api_key}",
                "Content-Type": content_type,
            },
            method="POST",
        )
        try:
            with urllib.request.urlopen(request, timeout=self.config.timeout_seconds) as resp:
                return UpstreamResponse(
                    status=resp.status,
                    content_type=resp.headers.get("Content-Type", "") or "",
                    body=resp.read(),
                )
        except urllib.error.HTTPError as exc:
            try:
                error_body = exc.read()
            except OSError:
                error_body = b""
            headers = exc.headers
            return UpstreamResponse(
                status=exc.code,
                content_type=(headers.get("Content-Type", "") if headers else "") or "",
                body=error_body or b"",
            )
        except (urllib.error.URLError, OSError) as exc:
            reason = str(getattr(exc, "reason", exc))
            logger.error("Mailer request failed", extra={"url": url, "reason": reason})
            raise UpstreamConnectionError(reason) from exc


def normalize_response(upstream: UpstreamResponse, url: str = "") -> NormalizedResult:
    """Map a mailer answer to the caller-facing result.

    * non-JSON body: ``UpstreamProtocolError`` (502 or mirrored 5xx)
    * JSON with failing status: upstream body passed through verbatim
    * JSON with 2xx status: ``{"success": true, "data": <json>}`` / 200,
      ``data`` present even when the mailer sent ``null``
    """
    if "application/json" not in upstream.content_type.lower():
        return _protocol_error(upstream, url)

    try:
        data = json.loads(upstream.body.decode("utf-8")) if upstream.body else None
    except (UnicodeDecodeError, json.JSONDecodeError):
        return _protocol_error(upstream, url)

    if not 200 <= upstream.status < 300:
        error = UpstreamApplicationError(upstream.status, data)
        logger.error(
            "Mailer API error response",
            extra={"status": upstream.status, "url": url, "body": data},
        )
        return NormalizedResult(
            status_code=upstream.status,
            success=bool(isinstance(data, dict) and data.get("success")),
            payload=error.to_dict(),
        )

    # "data" stays in the body even when the mailer answers with JSON null
    return NormalizedResult(
        status_code=200,
        success=True,
        payload={"success": True, "data": data},
    )


def _protocol_error(upstream: UpstreamResponse, url: str) -> NormalizedResult:
    error = UpstreamProtocolError(
        upstream.status,
        upstream.content_type,
        preview=preview_text(upstream.body),
    )
    logger.error(
        "Mailer returned non-JSON response",
        extra={
            "status": upstream.status,
            "content_type": upstream.content_type,
            "url": url,
            "response_preview": error.preview,
        },
    )
    return NormalizedResult.from_error(error)
