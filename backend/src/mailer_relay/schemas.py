"""Pydantic schemas for the caller-facing response envelope."""

from __future__ import annotations

from typing import Any
from typing import Optional

from pydantic import BaseModel
from pydantic import ConfigDict


class SubmissionResponse(BaseModel):
    """Envelope returned to the form that posted the submission."""

    model_config = ConfigDict(extra="forbid")

    success: bool
    data: Optional[Any] = None
    error: Optional[str] = None
    details: Optional[str] = None
