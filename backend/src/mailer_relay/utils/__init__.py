"""Utility modules for the relay."""

from mailer_relay.utils.logging import (
    clear_request_context,
    configure_logging,
    enable_debug,
    get_logger,
    mask_pii,
    set_request_context,
)
from mailer_relay.utils.responses import error_response, get_header, json_response

__all__ = [
    "clear_request_context",
    "configure_logging",
    "enable_debug",
    "error_response",
    "get_header",
    "get_logger",
    "json_response",
    "mask_pii",
    "set_request_context",
]
