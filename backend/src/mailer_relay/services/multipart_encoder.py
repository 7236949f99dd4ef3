"""Re-encode a submission as a fresh ``multipart/form-data`` body.

The body is assembled as an ordered list of segments. Text segments
are UTF-8 encoded and binary segments are passed through untouched;
the two only meet in a single ``b"".join`` at the end, so file bytes
never go through a text codec.

Part order is fixed: ``formId`` first, then fields in first-seen order,
then files in completion order.
"""

from __future__ import annotations

import secrets
import time
from dataclasses import dataclass
from typing import Callable
from typing import Iterable
from typing import Union

from mailer_relay.exceptions import ConfigurationError
from mailer_relay.services.submission import RESERVED_FIELDS
from mailer_relay.services.submission import Submission
from mailer_relay.utils.logging import get_logger

logger = get_logger(__name__)

CRLF = "\r\n"
FORM_ID_FIELD = "formId"
BOUNDARY_ATTEMPTS = 5

# Same escaping browsers apply to name/filename in Content-Disposition.
_PARAM_ESCAPES = str.maketrans({'"': "%22", "\r": "%0D", "\n": "%0A"})


@dataclass(frozen=True)
class TextSegment:
    text: str

    def to_bytes(self) -> bytes:
        return self.text.encode("utf-8")


@dataclass(frozen=True)
class BinarySegment:
    data: bytes

    def to_bytes(self) -> bytes:
        return self.data


Segment = Union[TextSegment, BinarySegment]


@dataclass(frozen=True)
class EncodedMultipart:
    """Outbound multipart body plus the boundary it was framed with."""

    body: bytes
    boundary: str

    @property
    def content_type(self) -> str:
        return f"multipart/form-data; boundary={self.boundary}"


def generate_boundary() -> str:
    """Return a boundary from a nanosecond timestamp and random bits."""
    return f"----formdata-{time.time_ns()}-{secrets.token_hex(6)}"


def escape_param(value: str) -> str:
    return value.translate(_PARAM_ESCAPES)


def join_segments(segments: Iterable[Segment]) -> bytes:
    return b"".join(segment.to_bytes() for segment in segments)


class MultipartEncoder:
    """Builds outbound multipart bodies for one configured form.

    Raises:
        ConfigurationError: If ``form_id`` is empty after trimming.
    """

    def __init__(
        self,
        form_id: str,
        boundary_factory: Callable[[], str] = generate_boundary,
        debug: bool = False,
    ) -> None:
        self.form_id = str(form_id or "").strip()
        if not self.form_id:
            raise ConfigurationError("MAILER_FORM_ID", "MAILER_FORM_ID is empty or invalid")
        self.boundary_factory = boundary_factory
        self.debug = debug

    def encode(self, submission: Submission) -> EncodedMultipart:
        boundary = self._pick_boundary(submission)
        body = join_segments(self.segments(submission, boundary))
        if self.debug:
            logger.debug(
                "Constructed multipart body",
                extra={
                    "boundary": boundary,
                    "bytes": len(body),
                    "fields": list(submission.fields),
                    "files": len(submission.files),
                },
            )
        return EncodedMultipart(body=body, boundary=boundary)

    def segments(self, submission: Submission, boundary: str) -> list[Segment]:
        delimiter = f"--{boundary}{CRLF}"
        segments: list[Segment] = []

        def text_part(name: str, value: str) -> None:
            segments.append(TextSegment(delimiter))
            segments.append(
                TextSegment(
                    f'Content-Disposition: form-data; name="{escape_param(name)}"{CRLF}{CRLF}'
                )
            )
            segments.append(TextSegment(value))
            segments.append(TextSegment(CRLF))

        text_part(FORM_ID_FIELD, self.form_id)

        for name, value in submission.fields.items():
            if name == FORM_ID_FIELD or name in RESERVED_FIELDS:
                continue
            text_part(name, _field_text(value))

        for file in submission.files:
            segments.append(TextSegment(delimiter))
            segments.append(
                TextSegment(
                    "Content-Disposition: form-data; "
                    f'name="{escape_param(file.field_name)}"; '
                    f'filename="{escape_param(file.filename)}"{CRLF}'
                    f"Content-Type: {file.mime_type}{CRLF}{CRLF}"
                )
            )
            segments.append(BinarySegment(file.payload))
            segments.append(TextSegment(CRLF))

        segments.append(TextSegment(f"--{boundary}--{CRLF}"))
        return segments

    def _pick_boundary(self, submission: Submission) -> str:
        contents = [self.form_id.encode("utf-8")]
        for name, value in submission.fields.items():
            contents.append(name.encode("utf-8"))
            contents.append(_field_text(value).encode("utf-8"))
        for file in submission.files:
            contents.extend(
                (file.field_name.encode("utf-8"), file.filename.encode("utf-8"), file.payload)
            )

        boundary = self.boundary_factory()
        for _ in range(BOUNDARY_ATTEMPTS - 1):
            marker = boundary.encode("ascii")
            if not any(marker in content for content in contents):
                break
            boundary = self.boundary_factory()
        return boundary


def _field_text(value: object) -> str:
    return value if isinstance(value, str) else str(value)
