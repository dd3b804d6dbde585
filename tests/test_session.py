"""Tests for session token decoding and credential writing."""

from __future__ import annotations

import base64
import gzip
import zlib

import pytest

from silvabot.errors import InvalidSessionFormat, SessionDecodeError, SessionError
from silvabot.session import decode_session, dump_session, load_session

CREDS = b'{"noiseKey": "abc", "registrationId": 42}'


def _token(payload: bytes, magic: str = "Silva") -> str:
    return f"{magic}~{base64.b64encode(gzip.compress(payload)).decode()}"


class TestDecodeSession:
    def test_valid_gzip_token(self):
        assert decode_session(_token(CREDS)) == CREDS

    def test_zlib_payload_also_accepted(self):
        token = "Silva~" + base64.b64encode(zlib.compress(CREDS)).decode()
        assert decode_session(token) == CREDS

    def test_surrounding_whitespace_ignored(self):
        assert decode_session(f"  {_token(CREDS)}\n") == CREDS

    def test_wrong_magic_rejected(self):
        with pytest.raises(InvalidSessionFormat):
            decode_session("Bad~xxx")

    def test_missing_separator_rejected(self):
        with pytest.raises(InvalidSessionFormat):
            decode_session("Silva" + base64.b64encode(gzip.compress(CREDS)).decode())

    def test_empty_payload_rejected(self):
        with pytest.raises(InvalidSessionFormat):
            decode_session("Silva~")

    def test_invalid_base64_is_decode_error(self):
        with pytest.raises(SessionDecodeError):
            decode_session("Silva~not*base64!")

    def test_uncompressed_payload_is_decode_error(self):
        token = "Silva~" + base64.b64encode(b"plain json, not gzip").decode()
        with pytest.raises(SessionDecodeError):
            decode_session(token)

    def test_custom_magic(self):
        assert decode_session(_token(CREDS, magic="Acme"), magic="Acme") == CREDS
        with pytest.raises(InvalidSessionFormat):
            decode_session(_token(CREDS, magic="Acme"))

    def test_errors_share_a_base(self):
        assert issubclass(InvalidSessionFormat, SessionError)
        assert issubclass(SessionDecodeError, SessionError)


class TestLoadSession:
    def test_writes_credentials(self, tmp_path):
        path = tmp_path / "store" / "neonize.db"

        result = load_session(_token(CREDS), path)

        assert result == path
        assert path.read_bytes() == CREDS
        assert not path.with_name("neonize.db.tmp").exists()

    def test_replaces_existing_credentials(self, tmp_path):
        path = tmp_path / "neonize.db"
        path.write_bytes(b"old session")

        load_session(_token(CREDS), path)

        assert path.read_bytes() == CREDS

    def test_previous_session_sidecar_removed(self, tmp_path):
        path = tmp_path / "neonize.db"
        sidecar = tmp_path / "creds.json"
        path.write_bytes(b"old session")
        sidecar.write_text('{"me": "111@s.whatsapp.net"}')

        load_session(_token(CREDS), path, sidecars=(sidecar,))

        assert path.read_bytes() == CREDS
        assert not sidecar.exists()

    def test_bad_token_keeps_sidecar(self, tmp_path):
        path = tmp_path / "neonize.db"
        sidecar = tmp_path / "creds.json"
        sidecar.write_text("{}")

        with pytest.raises(SessionDecodeError):
            load_session("Silva~%%%", path, sidecars=(sidecar,))

        assert sidecar.exists()

    def test_bad_token_leaves_existing_file_alone(self, tmp_path):
        path = tmp_path / "neonize.db"
        path.write_bytes(b"old session")

        with pytest.raises(SessionDecodeError):
            load_session("Silva~%%%", path)

        assert path.read_bytes() == b"old session"

    def test_bad_magic_creates_nothing(self, tmp_path):
        path = tmp_path / "store" / "neonize.db"

        with pytest.raises(InvalidSessionFormat):
            load_session("Bad~xxx", path)

        assert not path.exists()
        assert not path.parent.exists()


class TestDumpSession:
    def test_dump_produces_loadable_token(self, tmp_path):
        source = tmp_path / "neonize.db"
        source.write_bytes(CREDS)

        token = dump_session(source)

        assert token.startswith("Silva~")
        assert decode_session(token) == CREDS
