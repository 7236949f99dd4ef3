"""Custom exception classes for the mailer relay.

Every relay failure maps to an HTTP status code and a structured body
that is returned to the original caller. File stream failures are the
one exception: they are recovered locally and never reach the caller.
"""

from __future__ import annotations

from typing import Any
from typing import Optional
from typing import Sequence


class AppError(Exception):
    """Base exception for relay errors.

    Attributes:
        message: Human-readable error message.
        status_code: HTTP status code (default 500).
        detail: Optional additional context.
    """

    def __init__(
        self,
        message: str,
        status_code: int = 500,
        detail: Optional[str] = None,
    ):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.detail = detail

    def to_dict(self) -> dict[str, Any]:
        """Convert exception to the caller-facing response body."""
        result: dict[str, Any] = {"success": False, "error": self.message}
        if self.detail:
            result["details"] = self.detail
        return result


class ConfigurationError(AppError):
    """Raised when required configuration is missing.

    Raised before any network call is attempted.
    """

    def __init__(
        self,
        config_names: str | Sequence[str],
        message: Optional[str] = None,
    ):
        if isinstance(config_names, str):
            config_names = [config_names]
        names = list(config_names)
        super().__init__(
            message or f"Missing required configuration: {', '.join(names)}",
            status_code=500,
        )
        self.config_names = names


class ValidationError(AppError):
    """Raised when the inbound request body cannot be used."""

    def __init__(self, message: str, field: Optional[str] = None):
        detail = f"Field: {field}" if field else None
        super().__init__(message, status_code=400, detail=detail)
        self.field = field


class MethodNotAllowedError(AppError):
    """Raised for any inbound method other than POST."""

    def __init__(self, method: str):
        super().__init__("Method not allowed", status_code=405)
        self.method = method

    def to_dict(self) -> dict[str, Any]:
        return {"error": self.message}


class PayloadTooLargeError(AppError):
    """Raised when the decoded request body exceeds the configured limit."""

    def __init__(self, size: int, limit: int):
        super().__init__(
            "Request body too large",
            status_code=413,
            detail=f"{size} bytes exceeds the {limit} byte limit",
        )
        self.size = size
        self.limit = limit


class ParseError(AppError):
    """Raised when the inbound multipart body is malformed or truncated.

    Aborts the whole submission; nothing is forwarded.
    """

    def __init__(self, message: str):
        super().__init__(message, status_code=500)


class FileStreamError(AppError):
    """A single file part failed while being read.

    Never surfaced to the caller: the file is dropped and the
    submission is forwarded without it.
    """

    def __init__(self, field_name: str, filename: str, reason: str):
        super().__init__(
            f"File '{filename}' in field '{field_name}' failed: {reason}",
            status_code=500,
        )
        self.field_name = field_name
        self.filename = filename
        self.reason = reason


class UpstreamProtocolError(AppError):
    """The mailer API answered with something other than JSON.

    An upstream 5xx status is mirrored; anything else becomes 502. The
    raw body is only kept for server-side diagnostics.
    """

    def __init__(
        self,
        upstream_status: int,
        content_type: str,
        preview: str = "",
    ):
        if "html" in content_type.lower():
            detail = "Received HTML instead of JSON"
        else:
            detail = f"Content-Type: {content_type}"
        status_code = upstream_status if upstream_status >= 500 else 502
        super().__init__(
            f"Mailer API returned invalid response ({upstream_status}). "
            "Check mailer logs.",
            status_code=status_code,
            detail=detail,
        )
        self.upstream_status = upstream_status
        self.content_type = content_type
        self.preview = preview


class UpstreamApplicationError(AppError):
    """The mailer API answered with JSON and a failing status."""

    def __init__(self, upstream_status: int, body: Any):
        super().__init__(
            f"Mailer API rejected the submission ({upstream_status})",
            status_code=upstream_status,
        )
        self.body = body

    def to_dict(self) -> Any:
        """Return the upstream body verbatim."""
        return self.body


class UpstreamConnectionError(AppError):
    """The mailer API could not be reached at all."""

    def __init__(self, reason: str):
        super().__init__(
            "Mailer API is unreachable",
            status_code=502,
            detail=reason,
        )
        self.reason = reason


class InvalidStateTransitionError(AppError):
    """Attempted to move a submission pipeline to a disallowed state."""

    def __init__(self, current_state: str, new_state: str):
        super().__init__(
            f"Invalid pipeline transition: {current_state} -> {new_state}",
            status_code=500,
        )
        self.current_state = current_state
        self.new_state = new_state
