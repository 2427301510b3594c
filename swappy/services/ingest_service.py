from __future__ import annotations

import asyncio
import json
from typing import Optional

from swappy.core.config import Settings
from swappy.core.errors import AnalysisError, ConflictError, InvalidInputError, NotFoundError
from swappy.core.logging import get_logger
from swappy.core.storage import BlobStore, original_key
from swappy.domain.models import DERIVED_KINDS, AssetKind, AssetRecord, DerivedAssetState, DerivedKind, DerivedStatus
from swappy.ingest.asset_id import compute_sha256_bytes, new_asset_id
from swappy.ingest.audio_analysis import TransientReport, validate_sensitivity

from .catalog import Catalog
from .pipeline import DerivedAssetPipeline

_ID_ATTEMPTS = 5


class IngestService:
    """Write side of the catalog: uploads, explicit re-triggers, analysis and deletion."""

    def __init__(self, settings: Settings, storage: BlobStore, catalog: Catalog, pipeline: DerivedAssetPipeline):
        self.settings = settings
        self.storage = storage
        self.catalog = catalog
        self.pipeline = pipeline
        self.logger = get_logger(component="ingest_service")

    async def upload(
        self,
        kind: AssetKind,
        filename: Optional[str],
        data: bytes,
        *,
        content_type: Optional[str] = None,
    ) -> AssetRecord:
        """Store an original and register it; derived jobs are scheduled but not awaited.

        Raises:
            InvalidInputError: Missing filename, empty or oversize payload.
            StorageError: The original could not be written; nothing is registered.
            ConflictError: No free identifier could be allocated.
        """
        if not filename or not filename.strip():
            raise InvalidInputError("upload requires a filename", code="missing_filename")
        if not data:
            raise InvalidInputError("upload body is empty", code="empty_upload")
        if len(data) > self.settings.max_upload_size_bytes:
            raise InvalidInputError("upload exceeds the configured limit", code="upload_too_large")

        asset_id = self._reserve_id()
        key = original_key(kind, asset_id, filename)
        logger = self.logger.bind(asset_id=asset_id, kind=kind.value)

        try:
            await asyncio.to_thread(self.storage.put, key, data)
        except Exception:
            logger.exception("original_write_failed", storage_key=key)
            raise

        record = AssetRecord.new(
            asset_id=asset_id,
            kind=kind,
            original_filename=filename,
            size_bytes=len(data),
            storage_path=key,
            sha256=compute_sha256_bytes(data),
            content_type=content_type,
        )
        try:
            self.catalog.insert(record)
        except ConflictError:
            logger.critical("asset_id_collision", storage_key=key)
            raise
        except Exception:
            logger.exception("catalog_insert_failed", storage_key=key)
            await asyncio.to_thread(self.storage.delete, key)
            raise
        logger.info("asset_uploaded", filename=filename, size_bytes=len(data), storage_key=key)

        await self.pipeline.enqueue_all(asset_id)
        return self.catalog.require(asset_id)

    def _reserve_id(self) -> str:
        # The storage key embeds the id, so it must be free before the write.
        for _ in range(_ID_ATTEMPTS):
            asset_id = new_asset_id()
            if asset_id not in self.catalog:
                return asset_id
            self.logger.warning("asset_id_taken", asset_id=asset_id)
        raise ConflictError("could not allocate a free asset id", code="asset_id_conflict")

    async def trigger_derived(self, asset_id: str, kind: DerivedKind, *, force: bool = False) -> DerivedAssetState:
        record = self.catalog.require(asset_id)
        if kind not in DERIVED_KINDS[record.kind]:
            raise InvalidInputError(
                f"{kind.value} does not apply to {record.kind.value} assets",
                code="derived_kind_not_applicable",
            )
        return await self.pipeline.enqueue(asset_id, kind, force=force)

    async def analyze_audio(self, asset_id: str, sensitivity: Optional[float] = None) -> TransientReport:
        record = self.catalog.require(asset_id)
        if record.kind != AssetKind.audio:
            raise InvalidInputError("only audio assets can be analysed", code="not_audio")
        value = validate_sensitivity(self.settings.default_sensitivity if sensitivity is None else sensitivity)

        payload = await self.pipeline.run_now(asset_id, DerivedKind.transient_markers, {"sensitivity": value})
        try:
            report = json.loads(payload)
            return TransientReport(
                markers=[float(m) for m in report["markers"]],
                duration=float(report["duration"]),
                sample_rate=int(report["sample_rate"]),
                sensitivity=float(report.get("sensitivity", value)),
                window_size=int(report.get("window_size", 0)),
                peak_frequencies=[float(f) for f in report.get("peak_frequencies", [])],
            )
        except (ValueError, KeyError, TypeError) as exc:
            raise AnalysisError("analysis report is malformed", code="malformed_report") from exc

    async def delete(self, asset_id: str) -> AssetRecord:
        """Remove derived artefacts, then the original, then the catalog record."""
        record = self.catalog.require(asset_id)
        deleted: set[str] = set()
        for key in _ready_keys(record):
            await asyncio.to_thread(self.storage.delete, key)
            deleted.add(key)
        await asyncio.to_thread(self.storage.delete, record.storage_path)
        try:
            removed = self.catalog.remove(asset_id)
        except NotFoundError:
            self.logger.warning("asset_already_removed", asset_id=asset_id)
            raise

        # A job may have published while the deletes above were awaited.
        for key in _ready_keys(removed):
            if key not in deleted:
                self.logger.info("late_artifact_deleted", asset_id=asset_id, storage_key=key)
                await asyncio.to_thread(self.storage.delete, key)
        self.logger.info("asset_deleted", asset_id=asset_id, kind=record.kind.value)
        return removed


def _ready_keys(record: AssetRecord) -> list[str]:
    return [
        state.storage_key
        for state in record.derived.values()
        if state.status == DerivedStatus.ready and state.storage_key
    ]


__all__ = ["IngestService"]
