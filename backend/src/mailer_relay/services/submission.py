"""Submission model and the accumulator that assembles it from parse events.

A submission is complete only when the parser has reached the closing
boundary AND every file stream that was opened has settled (ended or
failed). The two conditions are signalled independently, so readiness
is re-checked after each of them::

    ready = parser_finished and drained == opened
"""

from __future__ import annotations

from dataclasses import dataclass
from dataclasses import field
from typing import Any
from typing import Callable
from typing import Mapping

from mailer_relay.exceptions import FileStreamError
from mailer_relay.exceptions import ParseError
from mailer_relay.services.multipart_parser import FileStream
from mailer_relay.services.multipart_parser import MultipartEventParser
from mailer_relay.utils.logging import get_logger
from mailer_relay.utils.logging import mask_pii

logger = get_logger(__name__)

FORM_NAME_FIELD = "form-name"
HONEYPOT_FIELD = "bot-field"
RESERVED_FIELDS = frozenset({FORM_NAME_FIELD, HONEYPOT_FIELD})


@dataclass(frozen=True)
class FilePart:
    """A fully buffered, non-empty file upload."""

    field_name: str
    filename: str
    mime_type: str
    payload: bytes

    @property
    def size(self) -> int:
        return len(self.payload)


@dataclass
class Submission:
    """One parsed form post: fields in first-seen order, files in completion order."""

    fields: dict[str, Any] = field(default_factory=dict)
    files: list[FilePart] = field(default_factory=list)
    honeypot_tripped: bool = False

    @property
    def has_files(self) -> bool:
        return bool(self.files)


def sanitize_fields(data: Mapping[str, Any]) -> tuple[dict[str, Any], bool]:
    """Drop the reserved control fields from a JSON submission.

    Returns:
        Tuple of (remaining fields, whether the honeypot was filled in).
    """
    tripped = bool(data.get(HONEYPOT_FIELD))
    fields = {key: value for key, value in data.items() if key not in RESERVED_FIELDS}
    return fields, tripped


class SubmissionAccumulator:
    """Collects field and file events into one ``Submission``.

    ``opened`` counts file streams with a usable filename, ``drained``
    counts those that have settled. Streams without a filename are
    drained and ignored; they never touch either counter.
    """

    def __init__(self, debug: bool = False) -> None:
        self.debug = debug
        self.opened = 0
        self.drained = 0
        self.parser_finished = False
        self.file_errors: list[FileStreamError] = []
        self._submission = Submission()
        self._ready_listeners: list[Callable[[Submission], None]] = []
        self._ready_fired = False

    @property
    def is_ready(self) -> bool:
        return self.parser_finished and self.drained == self.opened

    def attach(self, parser: MultipartEventParser) -> None:
        """Subscribe to all events of ``parser``."""
        parser.on_field(self.add_field)
        parser.on_file(self.add_file)
        parser.on_finish(self.finish_parsing)

    def on_ready(self, listener: Callable[[Submission], None]) -> None:
        """Register a listener called once the submission is complete."""
        self._ready_listeners.append(listener)
        if self._ready_fired:
            listener(self._submission)

    def add_field(self, name: str, value: str) -> None:
        if name in RESERVED_FIELDS:
            if name == HONEYPOT_FIELD and value:
                self._submission.honeypot_tripped = True
                logger.warning("Honeypot field filled in", extra={"value": mask_pii(value)})
            return
        # dict keeps the first-seen position when a name repeats
        self._submission.fields[name] = value

    def add_file(self, stream: FileStream) -> None:
        if not stream.filename or not stream.filename.strip():
            if self.debug:
                logger.debug("Skipping empty file input", extra={"field": stream.field_name})
            stream.resume()
            return

        self.opened += 1
        chunks: list[bytes] = []

        def on_data(chunk: bytes) -> None:
            chunks.append(chunk)
            if self.debug:
                logger.debug(
                    "File chunk received",
                    extra={"filename": stream.filename, "bytes": len(chunk)},
                )

        def on_end() -> None:
            payload = b"".join(chunks)
            if payload:
                self._submission.files.append(
                    FilePart(
                        field_name=stream.field_name,
                        filename=stream.filename,
                        mime_type=stream.mime_type,
                        payload=payload,
                    )
                )
                if self.debug:
                    logger.debug(
                        "File complete",
                        extra={"filename": stream.filename, "bytes": len(payload)},
                    )
            elif self.debug:
                logger.debug("Skipping empty file", extra={"filename": stream.filename})
            self._settle()

        def on_error(error: FileStreamError) -> None:
            chunks.clear()
            self.file_errors.append(error)
            logger.error(
                "Dropping file after stream error",
                extra={
                    "field": error.field_name,
                    "filename": error.filename,
                    "reason": error.reason,
                },
            )
            self._settle()

        stream.on_data(on_data)
        stream.on_end(on_end)
        stream.on_error(on_error)

    def finish_parsing(self) -> None:
        self.parser_finished = True
        if self.debug:
            logger.debug(
                "Parser finished",
                extra={
                    "fields": len(self._submission.fields),
                    "files": len(self._submission.files),
                    "pending": self.opened - self.drained,
                },
            )
        self._check_ready()

    def result(self) -> Submission:
        """Return the completed submission.

        Raises:
            ParseError: If the parser has not finished or files are
                still being drained.
        """
        if not self.is_ready:
            raise ParseError(
                "Submission incomplete: "
                f"parser_finished={self.parser_finished}, "
                f"drained {self.drained} of {self.opened} files"
            )
        return self._submission

    def _settle(self) -> None:
        self.drained += 1
        self._check_ready()

    def _check_ready(self) -> None:
        if self._ready_fired or not self.is_ready:
            return
        self._ready_fired = True
        for listener in self._ready_listeners:
            listener(self._submission)


def collect_submission(parser: MultipartEventParser, body: bytes) -> Submission:
    """Feed a complete multipart body through ``parser`` into a ``Submission``.

    Raises:
        ParseError: If the body is malformed or truncated.
    """
    accumulator = SubmissionAccumulator(debug=parser.debug)
    accumulator.attach(parser)
    parser.feed(body)
    parser.close()
    return accumulator.result()
