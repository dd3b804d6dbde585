"""Session token loader.

A session token is ``<magic>~<base64 payload>`` where the payload is the
transport's credential file, gzip (or zlib) compressed. Tokens let a fresh
deployment resume an already-paired session without scanning a QR code.

Loading is fail-fast and never retried: on any error the caller falls back
to interactive pairing.
"""

from __future__ import annotations

import base64
import binascii
import gzip
import zlib
from collections.abc import Iterable
from pathlib import Path

from silvabot.errors import InvalidSessionFormat, SessionDecodeError
from silvabot.logger import logger

DEFAULT_MAGIC = "Silva"

# 32 + MAX_WBITS: accept both gzip and zlib headers
_AUTO_HEADER_WBITS = 32 + zlib.MAX_WBITS


def decode_session(token: str, *, magic: str = DEFAULT_MAGIC) -> bytes:
    """Return the decompressed credential bytes carried by ``token``."""
    head, sep, payload = token.strip().partition("~")
    if not sep or head != magic:
        raise InvalidSessionFormat(f"Session token must start with '{magic}~'")
    if not payload:
        raise InvalidSessionFormat("Session token has no payload")

    try:
        compressed = base64.b64decode(payload, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise SessionDecodeError(f"Payload is not valid base64: {exc}") from exc

    try:
        data = zlib.decompress(compressed, _AUTO_HEADER_WBITS)
    except zlib.error as exc:
        raise SessionDecodeError(f"Payload does not decompress: {exc}") from exc
    if not data:
        raise SessionDecodeError("Payload decompressed to nothing")
    return data


def load_session(
    token: str,
    credentials_path: Path,
    *,
    magic: str = DEFAULT_MAGIC,
    sidecars: Iterable[Path] = (),
) -> Path:
    """Decode ``token`` and write it as the credential file.

    ``sidecars`` are files derived from the previous session (credential
    deltas and the like); they are removed together with the old credential
    file.

    The token is fully decoded before the disk is touched. The previous
    credential file is removed and the new one is written via tmp+rename, so
    the transport never sees a mix of two sessions or a partial write.
    """
    data = decode_session(token, magic=magic)

    credentials_path.parent.mkdir(parents=True, exist_ok=True)
    credentials_path.unlink(missing_ok=True)
    for path in sidecars:
        path.unlink(missing_ok=True)
    tmp = credentials_path.with_name(credentials_path.name + ".tmp")
    try:
        tmp.write_bytes(data)
        tmp.rename(credentials_path)
    except OSError:
        tmp.unlink(missing_ok=True)
        raise

    logger.info("Session loaded", path=str(credentials_path), size=len(data))
    return credentials_path


def dump_session(credentials_path: Path, *, magic: str = DEFAULT_MAGIC) -> str:
    """Build a session token from an existing credential file."""
    data = credentials_path.read_bytes()
    payload = base64.b64encode(gzip.compress(data)).decode("ascii")
    return f"{magic}~{payload}"
