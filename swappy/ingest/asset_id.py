from __future__ import annotations

import re
from hashlib import sha256
from pathlib import Path, PurePosixPath, PureWindowsPath
from uuid import uuid4

__all__ = [
    "new_asset_id",
    "compute_sha256",
    "compute_sha256_bytes",
    "safe_filename",
]

_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9._-]+")
_MAX_FILENAME_LENGTH = 128


def new_asset_id() -> str:
    """Return a fresh opaque asset identifier."""
    return uuid4().hex


def compute_sha256(path: Path, *, chunk_size: int = 8 * 1024 * 1024) -> str:
    """Return a hexadecimal SHA256 digest for the file.

    Args:
        path: The path to the file.
        chunk_size: The chunk size to use when reading the file.

    Returns:
        The hexadecimal SHA256 digest.
    """
    digest = sha256()
    with path.open("rb") as handle:
        while chunk := handle.read(chunk_size):
            digest.update(chunk)
    return digest.hexdigest()


def compute_sha256_bytes(payload: bytes) -> str:
    """Return a hexadecimal SHA256 digest for an in-memory payload."""
    return sha256(payload).hexdigest()


def safe_filename(filename: str) -> str:
    """Reduce a client supplied filename to a single safe path component.

    Args:
        filename: The filename as sent by the client, possibly with directories.

    Returns:
        A basename containing only ``[A-Za-z0-9._-]``; ``"upload"`` when nothing usable remains.
    """
    name = PureWindowsPath(PurePosixPath(filename).name).name
    name = _UNSAFE_CHARS.sub("_", name).strip("._")
    if not name:
        return "upload"
    return name[-_MAX_FILENAME_LENGTH:]
