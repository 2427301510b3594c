from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import BinaryIO, Optional

from swappy.core.config import Settings
from swappy.core.errors import InvalidInputError, NotFoundError
from swappy.core.logging import get_logger
from swappy.core.storage import BlobStore
from swappy.domain.models import DERIVED_KINDS, AssetKind, AssetRecord, DerivedAssetState, DerivedKind, DerivedStatus
from swappy.ingest.thumbnails import placeholder_thumbnail

from .catalog import Catalog


@dataclass(slots=True)
class DerivedResult:
    state: DerivedAssetState
    payload: Optional[bytes] = None

    @property
    def status(self) -> DerivedStatus:
        return self.state.status


class QueryService:
    """Read side of the catalog; never waits on derived-asset jobs."""

    def __init__(self, settings: Settings, storage: BlobStore, catalog: Catalog):
        self.settings = settings
        self.storage = storage
        self.catalog = catalog
        self.logger = get_logger(component="query_service")

    def get_record(self, asset_id: str, *, kind: AssetKind | None = None) -> AssetRecord:
        record = self.catalog.require(asset_id)
        if kind is not None and record.kind != kind:
            raise NotFoundError(asset_id, code="asset_not_found")
        return record

    def list(self, kind: AssetKind | None = None, *, offset: int = 0, limit: int | None = None) -> list[AssetRecord]:
        if offset < 0 or (limit is not None and limit < 0):
            raise InvalidInputError("offset and limit must be non-negative", code="invalid_pagination")
        records = self.catalog.list(kind)
        end = None if limit is None else offset + limit
        return records[offset:end]

    async def get_original(self, asset_id: str, *, kind: AssetKind | None = None) -> tuple[AssetRecord, BinaryIO]:
        record = self.get_record(asset_id, kind=kind)
        handle = await asyncio.to_thread(self.storage.open, record.storage_path)
        return record, handle

    async def get_derived(self, asset_id: str, kind: DerivedKind) -> DerivedResult:
        record = self.catalog.require(asset_id)
        if kind not in DERIVED_KINDS[record.kind]:
            raise NotFoundError(f"{kind.value} is not produced for {record.kind.value} assets", code="derived_not_found")
        state = record.derived.get(kind, DerivedAssetState.not_started())
        if state.status != DerivedStatus.ready or not state.storage_key:
            return DerivedResult(state=state)
        try:
            payload = await asyncio.to_thread(self.storage.get, state.storage_key)
        except NotFoundError:
            self.logger.error("derived_artifact_missing", asset_id=asset_id, kind=kind.value, storage_key=state.storage_key)
            raise NotFoundError(state.storage_key, code="derived_not_found")
        return DerivedResult(state=state, payload=payload)

    async def get_thumbnail(self, asset_id: str) -> bytes:
        """Stored thumbnail when ready; otherwise the placeholder, even for unknown ids."""
        quality = self.settings.thumbnail_jpeg_quality
        record = self.catalog.get(asset_id)
        if record is None or record.kind != AssetKind.video:
            return placeholder_thumbnail(quality)
        try:
            result = await self.get_derived(asset_id, DerivedKind.thumbnail)
        except NotFoundError:
            return placeholder_thumbnail(quality)
        return result.payload or placeholder_thumbnail(quality)


__all__ = ["QueryService", "DerivedResult"]
