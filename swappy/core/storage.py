from __future__ import annotations

import os
import tempfile
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path, PurePosixPath
from typing import BinaryIO

from swappy.domain.models import AssetKind, DerivedKind
from swappy.ingest.asset_id import safe_filename

from .config import Settings
from .errors import InvalidInputError, NotFoundError, StorageError

ORIGINAL_PREFIXES: dict[AssetKind, str] = {
    AssetKind.video: "videos",
    AssetKind.audio: "audio",
}

DERIVED_LAYOUT: dict[DerivedKind, tuple[str, str]] = {
    DerivedKind.thumbnail: ("thumbnails", ".jpg"),
    DerivedKind.transient_markers: ("analysis", ".json"),
    DerivedKind.waveform: ("waveforms", ".json"),
}


def original_key(kind: AssetKind, asset_id: str, filename: str) -> str:
    return f"{ORIGINAL_PREFIXES[kind]}/{asset_id}_{safe_filename(filename)}"


def derived_key(kind: DerivedKind, asset_id: str) -> str:
    prefix, suffix = DERIVED_LAYOUT[kind]
    return f"{prefix}/{asset_id}{suffix}"


@dataclass(slots=True)
class BlobStat:
    size_bytes: int


class BlobStore(ABC):
    @abstractmethod
    def put(self, key: str, payload: bytes) -> str: ...

    @abstractmethod
    def get(self, key: str) -> bytes: ...

    @abstractmethod
    def open(self, key: str) -> BinaryIO: ...

    @abstractmethod
    def exists(self, key: str) -> bool: ...

    @abstractmethod
    def stat(self, key: str) -> BlobStat: ...

    @abstractmethod
    def delete(self, key: str) -> bool: ...

    @abstractmethod
    def path(self, key: str) -> Path: ...


class LocalBlobStore(BlobStore):
    """Filesystem-backed blob store with temp-then-rename writes.

    Readers only ever see a key once its payload has been fully written and
    renamed into place. Directories are created on first write.
    """

    def __init__(self, base_path: Path):
        self.base_path = Path(base_path)

    def _resolve(self, key: str) -> Path:
        relative = PurePosixPath(key)
        if not key or relative.is_absolute() or ".." in relative.parts:
            raise InvalidInputError(f"invalid blob key: {key!r}", code="invalid_blob_key")
        return self.base_path.joinpath(*relative.parts)

    def path(self, key: str) -> Path:
        return self._resolve(key)

    def exists(self, key: str) -> bool:
        return self._resolve(key).is_file()

    def stat(self, key: str) -> BlobStat:
        path = self._resolve(key)
        try:
            return BlobStat(size_bytes=path.stat().st_size)
        except FileNotFoundError as exc:
            raise NotFoundError(key, code="blob_not_found") from exc

    def get(self, key: str) -> bytes:
        path = self._resolve(key)
        try:
            return path.read_bytes()
        except FileNotFoundError as exc:
            raise NotFoundError(key, code="blob_not_found") from exc
        except OSError as exc:
            raise StorageError(f"failed to read {key}: {exc}") from exc

    def open(self, key: str) -> BinaryIO:
        path = self._resolve(key)
        try:
            return path.open("rb")
        except FileNotFoundError as exc:
            raise NotFoundError(key, code="blob_not_found") from exc
        except OSError as exc:
            raise StorageError(f"failed to open {key}: {exc}") from exc

    def put(self, key: str, payload: bytes) -> str:
        path = self._resolve(key)
        tmp_name: str | None = None
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            with tempfile.NamedTemporaryFile(
                dir=path.parent,
                prefix=f".{path.name}.",
                suffix=".tmp",
                delete=False,
            ) as tmp:
                tmp_name = tmp.name
                tmp.write(payload)
                tmp.flush()
                os.fsync(tmp.fileno())
            os.replace(tmp_name, path)
        except OSError as exc:
            if tmp_name is not None:
                Path(tmp_name).unlink(missing_ok=True)
            raise StorageError(f"failed to write {key}: {exc}") from exc
        return path.resolve().as_uri()

    def delete(self, key: str) -> bool:
        path = self._resolve(key)
        try:
            path.unlink()
        except FileNotFoundError:
            return False
        except OSError as exc:
            raise StorageError(f"failed to delete {key}: {exc}") from exc
        return True


def get_blob_store(settings: Settings) -> BlobStore:
    return LocalBlobStore(base_path=Path(settings.storage_root))


__all__ = [
    "BlobStore",
    "LocalBlobStore",
    "BlobStat",
    "original_key",
    "derived_key",
    "get_blob_store",
]
