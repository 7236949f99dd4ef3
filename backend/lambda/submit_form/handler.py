"""Lambda entrypoint for form submissions."""

from __future__ import annotations

from typing import Any
from typing import Mapping

from mailer_relay.api.submit_form import lambda_handler as _handler
from mailer_relay.utils.logging import configure_logging

configure_logging()


def lambda_handler(event: Mapping[str, Any], context: Any) -> dict[str, Any]:
    """Delegate to the form submission handler."""

    return _handler(event, context)
