"""Form submission endpoint.

Accepts a POSTed form (JSON or ``multipart/form-data``), strips the
``form-name`` and ``bot-field`` control fields and relays it to the
mailer API. The caller always receives JSON.
"""

from __future__ import annotations

import base64
import binascii
import json
import time
from typing import Any
from typing import Mapping
from typing import Optional

from mailer_relay.config import RelayConfig
from mailer_relay.config import load_config
from mailer_relay.exceptions import AppError
from mailer_relay.exceptions import MethodNotAllowedError
from mailer_relay.exceptions import PayloadTooLargeError
from mailer_relay.exceptions import ValidationError
from mailer_relay.schemas import SubmissionResponse
from mailer_relay.services.mailer_client import MailerClient
from mailer_relay.services.mailer_client import NormalizedResult
from mailer_relay.services.pipeline import SubmissionPipeline
from mailer_relay.utils.logging import clear_request_context
from mailer_relay.utils.logging import enable_debug
from mailer_relay.utils.logging import get_logger
from mailer_relay.utils.logging import log_lambda_event
from mailer_relay.utils.logging import log_response
from mailer_relay.utils.logging import set_request_context
from mailer_relay.utils.responses import error_response
from mailer_relay.utils.responses import get_header
from mailer_relay.utils.responses import json_response

logger = get_logger(__name__)

MULTIPART_CONTENT_TYPE = "multipart/form-data"


def decode_body(event: Mapping[str, Any]) -> bytes:
    """Return the raw request bytes of an event.

    Base64 bodies are decoded. Plain text bodies are mapped back to
    bytes with Latin-1, which preserves every byte value the runtime
    smuggled through as a code point; text with characters beyond
    Latin-1 was real Unicode and is encoded as UTF-8 instead.
    """
    raw = event.get("body") or ""
    if isinstance(raw, bytes):
        return raw
    if event.get("isBase64Encoded"):
        try:
            return base64.b64decode(raw, validate=True)
        except (binascii.Error, ValueError) as exc:
            raise ValidationError("Request body is not valid base64") from exc
    try:
        return raw.encode("latin-1")
    except UnicodeEncodeError:
        return raw.encode("utf-8")


def parse_json_body(body: bytes) -> dict[str, Any]:
    """Parse a JSON form body; an empty body is an empty form."""
    if not body.strip():
        return {}
    try:
        data = json.loads(body.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise ValidationError("Request body must be valid JSON") from exc
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object")
    return data


class SubmissionHandler:
    """Routes one inbound event to the JSON or multipart pipeline."""

    def __init__(
        self,
        config: RelayConfig,
        client: Optional[MailerClient] = None,
    ) -> None:
        self.config = config
        self.client = client

    def handle(self, event: Mapping[str, Any]) -> NormalizedResult:
        method = str(event.get("httpMethod") or "").upper()
        if method != "POST":
            raise MethodNotAllowedError(method)

        content_type = get_header(event.get("headers"), "content-type")
        if self.config.debug:
            log_lambda_event(logger, dict(event), content_type)

        body = decode_body(event)
        if len(body) > self.config.max_body_bytes:
            raise PayloadTooLargeError(len(body), self.config.max_body_bytes)

        pipeline = SubmissionPipeline(self.config, client=self.client)
        if MULTIPART_CONTENT_TYPE in content_type.lower():
            return pipeline.run_multipart(body, content_type)
        return pipeline.run_json(parse_json_body(body))


def lambda_handler(event: Mapping[str, Any], context: Any) -> dict[str, Any]:
    """Handle a form submission from API Gateway or Netlify Functions."""
    started = time.perf_counter()
    request_id = (event.get("requestContext") or {}).get("requestId") or getattr(
        context, "aws_request_id", ""
    )
    set_request_context(req_id=request_id)

    try:
        response = _dispatch(event)
        log_response(logger, response["statusCode"], (time.perf_counter() - started) * 1000)
        return response
    finally:
        clear_request_context()


def _dispatch(event: Mapping[str, Any]) -> dict[str, Any]:
    method = str(event.get("httpMethod") or "").upper()
    try:
        if method != "POST":
            raise MethodNotAllowedError(method)
        config = load_config()
        enable_debug(config.debug)
        result = SubmissionHandler(config).handle(event)
        return json_response(result.status_code, result.payload)
    except MethodNotAllowedError as exc:
        logger.warning(f"Rejected {exc.method or 'unknown'} request")
        return error_response(exc)
    except AppError as exc:
        logger.error(
            f"Submission failed: {exc.message}",
            extra={"error_type": type(exc).__name__, "status_code": exc.status_code},
        )
        return error_response(exc)
    except Exception as exc:  # pragma: no cover - safety net
        logger.exception("Unexpected error in form submission")
        return json_response(
            500,
            SubmissionResponse(success=False, error=str(exc) or "Internal server error"),
        )
