"""Tests for the outbound multipart encoder."""

from __future__ import annotations

import sys
from pathlib import Path

import pytest

sys.path.append(str(Path(__file__).resolve().parents[1] / 'backend' / 'src'))

from conftest import reparse_multipart  # noqa: E402
from mailer_relay.exceptions import ConfigurationError  # noqa: E402
from mailer_relay.services.multipart_encoder import BinarySegment  # noqa: E402
from mailer_relay.services.multipart_encoder import MultipartEncoder  # noqa: E402
from mailer_relay.services.multipart_encoder import TextSegment  # noqa: E402
from mailer_relay.services.multipart_encoder import escape_param  # noqa: E402
from mailer_relay.services.multipart_encoder import generate_boundary  # noqa: E402
from mailer_relay.services.multipart_parser import MultipartEventParser  # noqa: E402
from mailer_relay.services.submission import FilePart  # noqa: E402
from mailer_relay.services.submission import Submission  # noqa: E402
from mailer_relay.services.submission import collect_submission  # noqa: E402

PDF_BYTES = b'%PDF-1.4\n%\xe2\xe3\xcf\xd3\n' + bytes(range(128, 256))


def fixed_boundary(value: str = 'test-boundary-123'):
    return lambda: value


def sample_submission() -> Submission:
    return Submission(
        fields={'email': 'a@b.com', 'message': 'Grüße'},
        files=[FilePart('resume', 'resume.pdf', 'application/pdf', PDF_BYTES)],
    )


class TestEncoderConstruction:
    """Tests for MultipartEncoder setup."""

    @pytest.mark.parametrize('form_id', ['', '   ', None])
    def test_empty_form_id_is_a_configuration_error(self, form_id) -> None:
        with pytest.raises(ConfigurationError, match='MAILER_FORM_ID is empty or invalid'):
            MultipartEncoder(form_id)

    def test_form_id_is_trimmed(self) -> None:
        assert MultipartEncoder('  form-123 ').form_id == 'form-123'


class TestEncode:
    """Tests for the encoded body."""

    def test_exact_wire_format(self) -> None:
        submission = Submission(
            fields={'name': 'Ann'},
            files=[FilePart('doc', 'a.bin', 'application/octet-stream', b'\x00\xff')],
        )
        encoded = MultipartEncoder('form-123', boundary_factory=fixed_boundary('B')).encode(
            submission
        )
        assert encoded.body == (
            b'--B\r\n'
            b'Content-Disposition: form-data; name="formId"\r\n\r\n'
            b'form-123\r\n'
            b'--B\r\n'
            b'Content-Disposition: form-data; name="name"\r\n\r\n'
            b'Ann\r\n'
            b'--B\r\n'
            b'Content-Disposition: form-data; name="doc"; filename="a.bin"\r\n'
            b'Content-Type: application/octet-stream\r\n\r\n'
            b'\x00\xff\r\n'
            b'--B--\r\n'
        )
        assert encoded.content_type == 'multipart/form-data; boundary=B'

    def test_form_id_part_comes_first(self) -> None:
        encoded = MultipartEncoder('form-123').encode(sample_submission())
        parts = reparse_multipart(encoded.body, encoded.content_type)
        assert parts[0].get_param('name', header='content-disposition') == 'formId'
        assert parts[0].get_payload() == 'form-123'

    def test_standard_parser_sees_fields_then_files(self) -> None:
        encoded = MultipartEncoder('form-123').encode(
            Submission(
                fields={'email': 'a@b.com', 'message': 'hello'},
                files=[FilePart('resume', 'resume.pdf', 'application/pdf', b'%PDF-1.4 body')],
            )
        )
        parts = reparse_multipart(encoded.body, encoded.content_type)
        names = [part.get_param('name', header='content-disposition') for part in parts]
        assert names == ['formId', 'email', 'message', 'resume']
        assert parts[3].get_filename() == 'resume.pdf'
        assert parts[3].get_content_type() == 'application/pdf'
        assert parts[3].get_payload(decode=True) == b'%PDF-1.4 body'

    def test_round_trip_preserves_binary_and_unicode(self) -> None:
        encoded = MultipartEncoder('form-123').encode(sample_submission())
        again = collect_submission(MultipartEventParser(encoded.content_type), encoded.body)
        assert again.fields == {'formId': 'form-123', 'email': 'a@b.com', 'message': 'Grüße'}
        assert again.files[0].payload == PDF_BYTES
        assert again.files[0].mime_type == 'application/pdf'

    def test_file_bytes_are_embedded_unchanged(self) -> None:
        encoded = MultipartEncoder('form-123').encode(sample_submission())
        assert PDF_BYTES in encoded.body

    def test_reserved_and_form_id_fields_are_not_repeated(self) -> None:
        submission = Submission(
            fields={'formId': 'spoofed', 'form-name': 'contact', 'name': 'Ann'},
        )
        encoded = MultipartEncoder('form-123').encode(submission)
        again = collect_submission(MultipartEventParser(encoded.content_type), encoded.body)
        assert again.fields == {'formId': 'form-123', 'name': 'Ann'}
        assert b'spoofed' not in encoded.body

    def test_no_files_means_only_text_parts(self) -> None:
        encoder = MultipartEncoder('form-123', boundary_factory=fixed_boundary())
        segments = encoder.segments(Submission(fields={'a': '1'}), 'test-boundary-123')
        assert all(isinstance(segment, TextSegment) for segment in segments)

    def test_file_payload_is_a_binary_segment(self) -> None:
        encoder = MultipartEncoder('form-123')
        segments = encoder.segments(sample_submission(), 'b')
        binary = [s for s in segments if isinstance(s, BinarySegment)]
        assert [s.data for s in binary] == [PDF_BYTES]

    def test_parameters_are_escaped(self) -> None:
        submission = Submission(
            files=[FilePart('up"load', 'evil"\r\nname.txt', 'text/plain', b'x')],
        )
        encoded = MultipartEncoder('form-123', boundary_factory=fixed_boundary('B')).encode(
            submission
        )
        assert b'name="up%22load"; filename="evil%22%0D%0Aname.txt"' in encoded.body
        assert escape_param('a"b') == 'a%22b'


class TestBoundary:
    """Tests for boundary generation."""

    def test_generated_boundaries_differ(self) -> None:
        assert generate_boundary() != generate_boundary()

    def test_boundary_shape(self) -> None:
        boundary = generate_boundary()
        assert boundary.startswith('----formdata-')
        assert len(boundary) <= 70

    def test_colliding_boundary_is_regenerated(self) -> None:
        candidates = iter(['collide', 'fresh-boundary'])
        submission = Submission(fields={'note': 'text containing collide here'})
        encoded = MultipartEncoder(
            'form-123', boundary_factory=lambda: next(candidates)
        ).encode(submission)
        assert encoded.boundary == 'fresh-boundary'

    def test_boundary_not_found_in_content(self) -> None:
        encoded = MultipartEncoder('form-123').encode(sample_submission())
        marker = encoded.boundary.encode()
        assert marker not in PDF_BYTES
        assert encoded.body.count(b'--' + marker) == 5
