"""Per-request submission pipeline.

Idle -> Parsing -> Accumulating -> Encoding -> Forwarding -> Succeeded
                                                          \\-> Failed

Any non-terminal state may also move to Failed. Forwarding is only
reachable from Encoding, and Encoding only after the accumulator has
reported a complete submission.
"""

from __future__ import annotations

from enum import Enum
from typing import Any
from typing import Final
from typing import Mapping
from typing import Optional

from mailer_relay.config import RelayConfig
from mailer_relay.exceptions import InvalidStateTransitionError
from mailer_relay.services.mailer_client import MailerClient
from mailer_relay.services.mailer_client import NormalizedResult
from mailer_relay.services.multipart_encoder import MultipartEncoder
from mailer_relay.services.multipart_parser import MultipartEventParser
from mailer_relay.services.submission import Submission
from mailer_relay.services.submission import collect_submission
from mailer_relay.services.submission import sanitize_fields
from mailer_relay.utils.logging import get_logger

logger = get_logger(__name__)


class PipelineState(str, Enum):
    IDLE = "IDLE"
    PARSING = "PARSING"
    ACCUMULATING = "ACCUMULATING"
    ENCODING = "ENCODING"
    FORWARDING = "FORWARDING"
    SUCCEEDED = "SUCCEEDED"
    FAILED = "FAILED"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATES


TERMINAL_STATES: Final[frozenset[PipelineState]] = frozenset({
    PipelineState.SUCCEEDED,
    PipelineState.FAILED,
})

VALID_TRANSITIONS: Final[dict[PipelineState, frozenset[PipelineState]]] = {
    PipelineState.IDLE: frozenset({PipelineState.PARSING, PipelineState.FAILED}),
    PipelineState.PARSING: frozenset({PipelineState.ACCUMULATING, PipelineState.FAILED}),
    PipelineState.ACCUMULATING: frozenset({PipelineState.ENCODING, PipelineState.FAILED}),
    PipelineState.ENCODING: frozenset({PipelineState.FORWARDING, PipelineState.FAILED}),
    PipelineState.FORWARDING: frozenset({PipelineState.SUCCEEDED, PipelineState.FAILED}),
    PipelineState.SUCCEEDED: frozenset(),
    PipelineState.FAILED: frozenset(),
}


def validate_transition(current: PipelineState, new: PipelineState) -> None:
    """Raise ``InvalidStateTransitionError`` unless ``current -> new`` is allowed."""
    if new not in VALID_TRANSITIONS[current]:
        raise InvalidStateTransitionError(current.value, new.value)


class SubmissionPipeline:
    """Runs one inbound submission through parse, encode and forward.

    A pipeline instance is single use: it owns the submission, the
    boundary and the encoded body of exactly one request.
    """

    def __init__(
        self,
        config: RelayConfig,
        client: Optional[MailerClient] = None,
    ) -> None:
        self.config = config
        self.client = client or MailerClient(config)
        self.state = PipelineState.IDLE
        self.history: list[PipelineState] = [PipelineState.IDLE]

    def run_json(self, body: Mapping[str, Any]) -> NormalizedResult:
        """Forward a JSON submission to ``/form-submissions``."""
        try:
            self._transition(PipelineState.PARSING)
            self._transition(PipelineState.ACCUMULATING)
            form_data, tripped = sanitize_fields(body)
            if tripped:
                logger.warning("Honeypot field filled in on JSON submission")
            self._transition(PipelineState.ENCODING)
            self._transition(PipelineState.FORWARDING)
            result = self.client.submit_json(form_data)
        except Exception:
            self._fail()
            raise
        return self._finish(result)

    def run_multipart(self, body: bytes, content_type: str) -> NormalizedResult:
        """Re-encode a multipart submission and forward it to ``/form-submissions-upload``."""
        try:
            self._transition(PipelineState.PARSING)
            parser = MultipartEventParser(
                content_type,
                max_file_bytes=self.config.max_file_bytes,
                debug=self.config.debug,
            )
            self._transition(PipelineState.ACCUMULATING)
            submission = collect_submission(parser, body)

            self._transition(PipelineState.ENCODING)
            encoded = self.encoder().encode(submission)
            self._log_submission(submission)

            self._transition(PipelineState.FORWARDING)
            result = self.client.submit_multipart(encoded)
        except Exception:
            self._fail()
            raise
        return self._finish(result)

    def encoder(self) -> MultipartEncoder:
        return MultipartEncoder(self.config.form_id, debug=self.config.debug)

    def _log_submission(self, submission: Submission) -> None:
        if not self.config.debug:
            return
        logger.debug(
            "Submission ready",
            extra={
                "fields": list(submission.fields),
                "files": [
                    {"filename": f.filename, "mime_type": f.mime_type, "size": f.size}
                    for f in submission.files
                ],
            },
        )

    def _finish(self, result: NormalizedResult) -> NormalizedResult:
        self._transition(PipelineState.SUCCEEDED if result.success else PipelineState.FAILED)
        return result

    def _fail(self) -> None:
        if not self.state.is_terminal:
            self._transition(PipelineState.FAILED)

    def _transition(self, new: PipelineState) -> None:
        validate_transition(self.state, new)
        if self.config.debug:
            logger.debug(
                "Pipeline transition",
                extra={"from": self.state.value, "to": new.value},
            )
        self.state = new
        self.history.append(new)
