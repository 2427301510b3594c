from __future__ import annotations

import enum
from datetime import datetime, timezone
from typing import Dict, Optional

from pydantic import BaseModel, ConfigDict, Field


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class AssetKind(str, enum.Enum):
    video = "video"
    audio = "audio"


class DerivedKind(str, enum.Enum):
    thumbnail = "thumbnail"
    transient_markers = "transient_markers"
    waveform = "waveform"


class DerivedStatus(str, enum.Enum):
    not_started = "not_started"
    pending = "pending"
    ready = "ready"
    failed = "failed"


DERIVED_KINDS: Dict[AssetKind, tuple[DerivedKind, ...]] = {
    AssetKind.video: (DerivedKind.thumbnail,),
    AssetKind.audio: (DerivedKind.transient_markers, DerivedKind.waveform),
}


class DerivedAssetState(BaseModel):
    """Lifecycle of one derived artefact: not_started -> pending -> ready | failed."""

    model_config = ConfigDict(frozen=True)

    status: DerivedStatus = DerivedStatus.not_started
    job_id: Optional[str] = None
    storage_key: Optional[str] = None
    produced_at: Optional[datetime] = None
    reason: Optional[str] = None
    failed_at: Optional[datetime] = None

    @classmethod
    def not_started(cls) -> "DerivedAssetState":
        return cls()

    @classmethod
    def pending(cls, job_id: str) -> "DerivedAssetState":
        return cls(status=DerivedStatus.pending, job_id=job_id)

    @classmethod
    def ready(cls, storage_key: str, job_id: Optional[str] = None) -> "DerivedAssetState":
        return cls(status=DerivedStatus.ready, job_id=job_id, storage_key=storage_key, produced_at=utcnow())

    @classmethod
    def failed(cls, reason: str, job_id: Optional[str] = None) -> "DerivedAssetState":
        return cls(status=DerivedStatus.failed, job_id=job_id, reason=reason, failed_at=utcnow())

    @property
    def is_pending(self) -> bool:
        return self.status == DerivedStatus.pending


class AssetRecord(BaseModel):
    id: str
    kind: AssetKind
    original_filename: str
    size_bytes: int = Field(ge=0)
    uploaded_at: datetime = Field(default_factory=utcnow)
    storage_path: str
    sha256: Optional[str] = None
    content_type: Optional[str] = None
    derived: Dict[DerivedKind, DerivedAssetState] = Field(default_factory=dict)

    @classmethod
    def new(
        cls,
        *,
        asset_id: str,
        kind: AssetKind,
        original_filename: str,
        size_bytes: int,
        storage_path: str,
        sha256: Optional[str] = None,
        content_type: Optional[str] = None,
    ) -> "AssetRecord":
        return cls(
            id=asset_id,
            kind=kind,
            original_filename=original_filename,
            size_bytes=size_bytes,
            storage_path=storage_path,
            sha256=sha256,
            content_type=content_type,
            derived={kind_: DerivedAssetState.not_started() for kind_ in DERIVED_KINDS[kind]},
        )


__all__ = [
    "AssetKind",
    "DerivedKind",
    "DerivedStatus",
    "DerivedAssetState",
    "AssetRecord",
    "DERIVED_KINDS",
    "utcnow",
]
