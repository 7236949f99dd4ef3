"""Event adapter over the python-multipart streaming parser.

``MultipartEventParser`` turns the low-level part/header/data callbacks
of ``python_multipart.MultipartParser`` into three kinds of events:

* field events ``(name, value)`` for parts without a ``filename``,
* file events carrying a ``FileStream`` for parts with a ``filename``,
* one finish event once the closing boundary has been read.

Each ``FileStream`` accepts its own data/end/error listeners, so a
consumer decides per file whether to buffer the bytes or just drain
them.
"""

from __future__ import annotations

from typing import Callable
from typing import Optional

from python_multipart.exceptions import MultipartParseError
from python_multipart.multipart import MultipartParser
from python_multipart.multipart import parse_options_header

from mailer_relay.exceptions import FileStreamError
from mailer_relay.exceptions import ParseError
from mailer_relay.utils.logging import get_logger

logger = get_logger(__name__)

DEFAULT_FILE_CONTENT_TYPE = "application/octet-stream"

FieldListener = Callable[[str, str], None]
FileListener = Callable[["FileStream"], None]
FinishListener = Callable[[], None]
ErrorListener = Callable[[Exception], None]


def _decode_option(value: bytes) -> str:
    try:
        return value.decode("utf-8")
    except UnicodeDecodeError:
        return value.decode("latin-1")


class FileStream:
    """Byte stream of a single file part.

    Chunks are pushed by the parser as they are read. A stream ends
    exactly once: either through ``on_end`` listeners or, if it fails,
    through ``on_error`` listeners.
    """

    def __init__(
        self,
        field_name: str,
        filename: str,
        mime_type: str,
        max_bytes: Optional[int] = None,
    ) -> None:
        self.field_name = field_name
        self.filename = filename
        self.mime_type = mime_type
        self.max_bytes = max_bytes
        self.bytes_read = 0
        self.closed = False
        self.discarding = False
        self._data_listeners: list[Callable[[bytes], None]] = []
        self._end_listeners: list[Callable[[], None]] = []
        self._error_listeners: list[Callable[[FileStreamError], None]] = []

    def on_data(self, listener: Callable[[bytes], None]) -> None:
        self._data_listeners.append(listener)

    def on_end(self, listener: Callable[[], None]) -> None:
        self._end_listeners.append(listener)

    def on_error(self, listener: Callable[[FileStreamError], None]) -> None:
        self._error_listeners.append(listener)

    def resume(self) -> None:
        """Drain the rest of the stream without handing bytes to anyone."""
        self.discarding = True

    def push(self, chunk: bytes) -> None:
        if self.closed or not chunk:
            return
        self.bytes_read += len(chunk)
        if self.max_bytes is not None and self.bytes_read > self.max_bytes:
            self.fail(f"exceeds the {self.max_bytes} byte limit")
            return
        if self.discarding:
            return
        for listener in self._data_listeners:
            listener(chunk)

    def finish(self) -> None:
        if self.closed:
            return
        self.closed = True
        for listener in self._end_listeners:
            listener()

    def fail(self, reason: str) -> None:
        if self.closed:
            return
        self.closed = True
        error = FileStreamError(self.field_name, self.filename, reason)
        for listener in self._error_listeners:
            listener(error)

    def __repr__(self) -> str:
        return (
            f"FileStream(field_name={self.field_name!r}, filename={self.filename!r}, "
            f"mime_type={self.mime_type!r}, bytes_read={self.bytes_read})"
        )


class _Part:
    """Headers and state of the part currently being parsed."""

    def __init__(self) -> None:
        self.headers: dict[str, str] = {}
        self.header_field = bytearray()
        self.header_value = bytearray()
        self.name: Optional[str] = None
        self.value = bytearray()
        self.stream: Optional[FileStream] = None
        self.skip = False


class MultipartEventParser:
    """Incremental ``multipart/form-data`` parser emitting part events.

    Usage::

        parser = MultipartEventParser(content_type)
        parser.on_field(handle_field)
        parser.on_file(handle_file)
        parser.on_finish(handle_finish)
        parser.feed(body)
        parser.close()

    Raises:
        ParseError: On construction when the content type has no
            boundary, from ``feed`` when the body is malformed and from
            ``close`` when the closing boundary was never reached.
    """

    def __init__(
        self,
        content_type: str,
        max_file_bytes: Optional[int] = None,
        debug: bool = False,
    ) -> None:
        mime_type, options = parse_options_header(content_type)
        if mime_type.lower() != b"multipart/form-data":
            raise ParseError(f"Unsupported content type: {content_type or '(none)'}")
        boundary = options.get(b"boundary")
        if not boundary:
            raise ParseError("Multipart content type is missing a boundary")

        self.boundary = boundary
        self.max_file_bytes = max_file_bytes
        self.debug = debug
        self.finished = False
        self.failed = False
        self.bytes_fed = 0

        self._part: Optional[_Part] = None
        self._field_listeners: list[FieldListener] = []
        self._file_listeners: list[FileListener] = []
        self._finish_listeners: list[FinishListener] = []
        self._error_listeners: list[ErrorListener] = []

        self._parser = MultipartParser(
            boundary,
            callbacks={
                "on_part_begin": self._on_part_begin,
                "on_header_field": self._on_header_field,
                "on_header_value": self._on_header_value,
                "on_header_end": self._on_header_end,
                "on_headers_finished": self._on_headers_finished,
                "on_part_data": self._on_part_data,
                "on_part_end": self._on_part_end,
                "on_end": self._on_end,
            },
        )

    def on_field(self, listener: FieldListener) -> None:
        self._field_listeners.append(listener)

    def on_file(self, listener: FileListener) -> None:
        self._file_listeners.append(listener)

    def on_finish(self, listener: FinishListener) -> None:
        self._finish_listeners.append(listener)

    def on_error(self, listener: ErrorListener) -> None:
        self._error_listeners.append(listener)

    def feed(self, data: bytes) -> None:
        """Push the next chunk of the body through the parser."""
        if self.failed:
            raise ParseError("Parser already failed")
        self.bytes_fed += len(data)
        try:
            self._parser.write(data)
        except MultipartParseError as exc:
            self._fail(ParseError(f"Malformed multipart body: {exc}"))

    def close(self) -> None:
        """Signal that the whole body has been fed."""
        if self.failed:
            raise ParseError("Parser already failed")
        self._parser.finalize()
        if not self.finished:
            self._fail(ParseError("Unexpected end of multipart body"))

    def _fail(self, error: ParseError) -> None:
        self.failed = True
        logger.error(
            "Multipart parsing failed",
            extra={"error": error.message, "bytes_fed": self.bytes_fed},
        )
        part = self._part
        if part is not None and part.stream is not None:
            part.stream.fail("body ended inside the part")
        for listener in self._error_listeners:
            listener(error)
        raise error

    # python-multipart callbacks

    def _on_part_begin(self) -> None:
        self._part = _Part()

    def _on_header_field(self, data: bytes, start: int, end: int) -> None:
        if self._part is not None:
            self._part.header_field += data[start:end]

    def _on_header_value(self, data: bytes, start: int, end: int) -> None:
        if self._part is not None:
            self._part.header_value += data[start:end]

    def _on_header_end(self) -> None:
        part = self._part
        if part is None:
            return
        name = bytes(part.header_field).decode("latin-1").strip().lower()
        part.headers[name] = bytes(part.header_value).decode("latin-1").strip()
        part.header_field.clear()
        part.header_value.clear()

    def _on_headers_finished(self) -> None:
        part = self._part
        if part is None:
            return
        disposition, params = parse_options_header(
            part.headers.get("content-disposition", "").encode("latin-1")
        )
        raw_name = params.get(b"name")
        if disposition.lower() != b"form-data" or raw_name is None:
            if self.debug:
                logger.debug(
                    "Skipping part without form-data disposition",
                    extra={"headers": sorted(part.headers)},
                )
            part.skip = True
            return

        part.name = _decode_option(raw_name)
        raw_filename = params.get(b"filename")
        if raw_filename is None:
            return

        mime_type = part.headers.get("content-type", "").strip()
        part.stream = FileStream(
            part.name,
            _decode_option(raw_filename),
            mime_type or DEFAULT_FILE_CONTENT_TYPE,
            max_bytes=self.max_file_bytes,
        )
        if self.debug:
            logger.debug(
                "File part detected",
                extra={
                    "field": part.name,
                    "filename": part.stream.filename,
                    "mime_type": part.stream.mime_type,
                },
            )
        for listener in self._file_listeners:
            listener(part.stream)

    def _on_part_data(self, data: bytes, start: int, end: int) -> None:
        part = self._part
        if part is None or part.skip:
            return
        if part.stream is not None:
            part.stream.push(data[start:end])
        else:
            part.value += data[start:end]

    def _on_part_end(self) -> None:
        part = self._part
        if part is None:
            return
        self._part = None
        if part.skip or part.name is None:
            return
        if part.stream is not None:
            part.stream.finish()
            return
        value = bytes(part.value).decode("utf-8", errors="replace")
        for listener in self._field_listeners:
            listener(part.name, value)

    def _on_end(self) -> None:
        self.finished = True
        if self.debug:
            logger.debug("Multipart parsing finished", extra={"bytes_fed": self.bytes_fed})
        for listener in self._finish_listeners:
            listener()
