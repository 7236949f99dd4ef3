"""Pytest configuration and fixtures for relay tests.

Shared fixtures: a relay configuration, API Gateway event factories,
an inbound multipart body builder and a fake ``urlopen`` that records
outbound mailer requests instead of touching the network.
"""

from __future__ import annotations

import base64
import io
import json
import sys
import urllib.error
from email.message import Message
from pathlib import Path
from typing import Any
from typing import Optional
from uuid import uuid4

import pytest

# Add backend source to path for imports
sys.path.insert(0, str(Path(__file__).resolve().parents[1] / 'backend' / 'src'))

INBOUND_BOUNDARY = '----WebKitFormBoundary7MA4YWxkTrZu0gW'


# --- Multipart helpers ---


def build_multipart(
    parts: list[tuple[Any, ...]],
    boundary: str = INBOUND_BOUNDARY,
    close: bool = True,
) -> bytes:
    """Build an inbound multipart body the way a browser would.

    Each part is ``(name, value)`` for a text field or
    ``(name, filename, content_type, payload)`` for a file.
    """
    chunks: list[bytes] = []
    for part in parts:
        chunks.append(f'--{boundary}\r\n'.encode())
        if len(part) == 2:
            name, value = part
            chunks.append(f'Content-Disposition: form-data; name="{name}"\r\n\r\n'.encode())
            chunks.append(value.encode('utf-8') if isinstance(value, str) else value)
        else:
            name, filename, content_type, payload = part
            chunks.append(
                (
                    f'Content-Disposition: form-data; name="{name}"; filename="{filename}"\r\n'
                    f'Content-Type: {content_type}\r\n\r\n'
                ).encode('utf-8')
            )
            chunks.append(payload)
        chunks.append(b'\r\n')
    if close:
        chunks.append(f'--{boundary}--\r\n'.encode())
    return b''.join(chunks)


def multipart_content_type(boundary: str = INBOUND_BOUNDARY) -> str:
    return f'multipart/form-data; boundary={boundary}'


def reparse_multipart(body: bytes, content_type: str) -> list[Message]:
    """Parse an outbound body with the standard library email parser."""
    from email.parser import BytesParser

    raw = f'Content-Type: {content_type}\r\nMIME-Version: 1.0\r\n\r\n'.encode() + body
    message = BytesParser().parsebytes(raw)
    assert message.is_multipart()
    return list(message.get_payload())


# --- Configuration fixtures ---


@pytest.fixture
def relay_config():
    """A complete relay configuration with debugging off."""
    from mailer_relay.config import RelayConfig

    return RelayConfig(
        base_url='https://mailer.example.com/api',
        form_id='form-123',
        api_key='test-api-key',
    )


@pytest.fixture
def relay_env(monkeypatch) -> dict[str, str]:
    """Environment variables for a fully configured relay."""
    env = {
        'MAILER_BASE_URL': 'https://mailer.example.com/api',
        'MAILER_FORM_ID': 'form-123',
        'MAILER_FORM_API_KEY': 'test-api-key',
    }
    for key in (
        'MAILER_FORM_API_KEY_SECRET_ARN',
        'MAILER_DEBUG',
        'ENVIRONMENT',
        'MAILER_TIMEOUT_SECONDS',
        'MAILER_MAX_BODY_BYTES',
        'MAILER_MAX_FILE_BYTES',
    ):
        monkeypatch.delenv(key, raising=False)
    for key, value in env.items():
        monkeypatch.setenv(key, value)
    return env


# --- API Event Fixtures ---


@pytest.fixture
def api_gateway_event() -> dict:
    """Base API Gateway event for a JSON form post."""
    return {
        'httpMethod': 'POST',
        'path': '/.netlify/functions/submit-contact',
        'headers': {'content-type': 'application/json'},
        'requestContext': {'requestId': str(uuid4())},
        'body': None,
        'isBase64Encoded': False,
    }


@pytest.fixture
def multipart_event(api_gateway_event):
    """Factory for base64-encoded multipart events."""

    def make(parts: list[tuple[Any, ...]], boundary: str = INBOUND_BOUNDARY) -> dict:
        event = dict(api_gateway_event)
        event['headers'] = {'Content-Type': multipart_content_type(boundary)}
        event['body'] = base64.b64encode(build_multipart(parts, boundary)).decode('ascii')
        event['isBase64Encoded'] = True
        return event

    return make


# --- Mailer API fakes ---


class FakeResponse:
    """Stand-in for the object returned by ``urllib.request.urlopen``."""

    def __init__(self, status: int, body: bytes, content_type: str) -> None:
        self.status = status
        self._body = body
        self.headers = Message()
        if content_type:
            self.headers['Content-Type'] = content_type

    def read(self) -> bytes:
        return self._body

    def __enter__(self) -> 'FakeResponse':
        return self

    def __exit__(self, *exc_info: Any) -> None:
        return None


class FakeMailer:
    """Records outbound requests and replays a canned answer."""

    def __init__(self) -> None:
        self.requests: list[Any] = []
        self.status = 200
        self.body: bytes = b'{}'
        self.content_type = 'application/json'
        self.error: Optional[Exception] = None

    def respond(self, status: int, body: Any, content_type: str = 'application/json') -> None:
        self.status = status
        self.body = body if isinstance(body, bytes) else json.dumps(body).encode()
        self.content_type = content_type

    def __call__(self, request: Any, timeout: Any = None) -> FakeResponse:
        self.requests.append(request)
        if self.error is not None:
            raise self.error
        if self.status >= 400:
            headers = Message()
            headers['Content-Type'] = self.content_type
            raise urllib.error.HTTPError(
                request.full_url,
                self.status,
                'error',
                headers,
                io.BytesIO(self.body),
            )
        return FakeResponse(self.status, self.body, self.content_type)

    @property
    def last_request(self) -> Any:
        assert self.requests, 'no request was sent to the mailer'
        return self.requests[-1]


@pytest.fixture
def fake_mailer(mocker) -> FakeMailer:
    """Patch ``urllib.request.urlopen`` with a recording fake."""
    mailer = FakeMailer()
    mocker.patch('urllib.request.urlopen', side_effect=mailer)
    return mailer
