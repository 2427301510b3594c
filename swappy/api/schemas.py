from __future__ import annotations

from datetime import datetime, timezone
from typing import Dict, List, Optional

from pydantic import BaseModel, Field

from swappy.domain.models import AssetRecord, DerivedAssetState


class HealthResponse(BaseModel):
    status: str = Field(default="ok", description="Health status indicator.")
    time: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class UploadResponse(BaseModel):
    id: str = Field(..., json_schema_extra={"example": "3f2b9c0e5d4a4e21b1f9a7c6d5e4f3a2"})
    filename: str = Field(..., json_schema_extra={"example": "clip.mp4"})
    size: int = Field(..., ge=0)
    message: str


class DerivedStateModel(BaseModel):
    status: str = Field(description="not_started | pending | ready | failed")
    storage_key: Optional[str] = None
    produced_at: Optional[datetime] = None
    reason: Optional[str] = None
    failed_at: Optional[datetime] = None

    @classmethod
    def from_state(cls, state: DerivedAssetState) -> "DerivedStateModel":
        return cls(
            status=state.status.value,
            storage_key=state.storage_key,
            produced_at=state.produced_at,
            reason=state.reason,
            failed_at=state.failed_at,
        )


class AssetSummary(BaseModel):
    id: str
    kind: str
    filename: str
    size_bytes: int
    uploaded_at: datetime
    derived: Dict[str, DerivedStateModel]

    @classmethod
    def from_record(cls, record: AssetRecord) -> "AssetSummary":
        return cls(
            id=record.id,
            kind=record.kind.value,
            filename=record.original_filename,
            size_bytes=record.size_bytes,
            uploaded_at=record.uploaded_at,
            derived={kind.value: DerivedStateModel.from_state(state) for kind, state in record.derived.items()},
        )


class AssetResponse(AssetSummary):
    storage_path: str
    sha256: Optional[str]
    content_type: Optional[str]

    @classmethod
    def from_record(cls, record: AssetRecord) -> "AssetResponse":
        summary = AssetSummary.from_record(record)
        return cls(
            **summary.model_dump(),
            storage_path=record.storage_path,
            sha256=record.sha256,
            content_type=record.content_type,
        )


class AnalyzeRequest(BaseModel):
    sensitivity: Optional[float] = Field(default=None, json_schema_extra={"example": 0.8})


class AnalyzeResponse(BaseModel):
    markers: List[float]
    duration: float
    sample_rate: int


class DerivedStatusResponse(BaseModel):
    status: str
    reason: Optional[str] = None


__all__ = [
    "HealthResponse",
    "UploadResponse",
    "DerivedStateModel",
    "AssetSummary",
    "AssetResponse",
    "AnalyzeRequest",
    "AnalyzeResponse",
    "DerivedStatusResponse",
]
