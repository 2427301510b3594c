from __future__ import annotations

import asyncio
import functools
import json
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import Any, Mapping, Protocol
from uuid import uuid4

from swappy.core.config import Settings
from swappy.core.errors import AnalysisError, NotFoundError, QueueFullError, StorageError
from swappy.core.jobs import BaseJobBackend, DerivedJob
from swappy.core.logging import get_logger
from swappy.core.storage import BlobStore, derived_key
from swappy.domain.models import DERIVED_KINDS, DerivedAssetState, DerivedKind, DerivedStatus
from swappy.ingest.audio_analysis import decode_audio, detect_transients, waveform_envelope
from swappy.ingest.thumbnails import placeholder_thumbnail, render_thumbnail

from .catalog import Catalog


class DerivedGenerator(Protocol):
    kind: DerivedKind

    def generate(self, asset_id: str, source: Path, params: Mapping[str, Any]) -> bytes: ...


class ThumbnailGenerator:
    kind = DerivedKind.thumbnail

    def __init__(self, *, timestamp_s: float = 1.0, quality: int = 85):
        self.timestamp_s = timestamp_s
        self.quality = quality
        self.logger = get_logger(component="thumbnail_generator")

    def generate(self, asset_id: str, source: Path, params: Mapping[str, Any]) -> bytes:
        payload = render_thumbnail(source, timestamp_s=self.timestamp_s, quality=self.quality)
        if payload is None:
            self.logger.warning("thumbnail_extraction_failed", asset_id=asset_id)
            return placeholder_thumbnail(self.quality)
        return payload


class TransientMarkerGenerator:
    kind = DerivedKind.transient_markers

    def __init__(
        self,
        *,
        default_sensitivity: float = 0.5,
        window_size: int = 1024,
        decode_timeout_s: float | None = None,
    ):
        self.default_sensitivity = default_sensitivity
        self.window_size = window_size
        self.decode_timeout_s = decode_timeout_s

    def generate(self, asset_id: str, source: Path, params: Mapping[str, Any]) -> bytes:
        sensitivity = params.get("sensitivity")
        if sensitivity is None:
            sensitivity = self.default_sensitivity
        audio = decode_audio(source, timeout_s=self.decode_timeout_s)
        report = detect_transients(audio, sensitivity, window_size=self.window_size)
        return json.dumps(report.to_dict()).encode("utf-8")


class WaveformGenerator:
    kind = DerivedKind.waveform

    def __init__(self, *, points: int = 512, decode_timeout_s: float | None = None):
        self.points = points
        self.decode_timeout_s = decode_timeout_s

    def generate(self, asset_id: str, source: Path, params: Mapping[str, Any]) -> bytes:
        audio = decode_audio(source, timeout_s=self.decode_timeout_s)
        payload = {
            "duration": round(audio.duration, 6),
            "sample_rate": audio.sample_rate,
            "points": waveform_envelope(audio, int(params.get("points") or self.points)),
        }
        return json.dumps(payload).encode("utf-8")


def default_generators(settings: Settings) -> dict[DerivedKind, DerivedGenerator]:
    return {
        DerivedKind.thumbnail: ThumbnailGenerator(
            timestamp_s=settings.thumbnail_timestamp_s,
            quality=settings.thumbnail_jpeg_quality,
        ),
        DerivedKind.transient_markers: TransientMarkerGenerator(
            default_sensitivity=settings.default_sensitivity,
            window_size=settings.analysis_window_size,
            decode_timeout_s=settings.job_timeout_s,
        ),
        DerivedKind.waveform: WaveformGenerator(
            points=settings.waveform_points,
            decode_timeout_s=settings.job_timeout_s,
        ),
    }


class DerivedAssetPipeline:
    """Schedules derived-asset jobs and records their outcome in the catalog.

    A job only runs after it has claimed its (asset, kind) slot by moving it to
    ``pending``; concurrent triggers for the same slot get the existing pending
    state back instead of a second job.
    """

    def __init__(
        self,
        settings: Settings,
        storage: BlobStore,
        catalog: Catalog,
        backend: BaseJobBackend,
        generators: Mapping[DerivedKind, DerivedGenerator] | None = None,
    ):
        self.settings = settings
        self.storage = storage
        self.catalog = catalog
        self.backend = backend
        self.generators = dict(generators) if generators is not None else default_generators(settings)
        self.logger = get_logger(component="derived_pipeline")
        self._executor: ThreadPoolExecutor | None = None

    async def start(self) -> None:
        await self.backend.start()

    async def stop(self) -> None:
        await self.backend.stop()
        if self._executor is not None:
            # Threads still running a timed-out generator are abandoned, not joined.
            self._executor.shutdown(wait=False, cancel_futures=True)
            self._executor = None

    def _job_executor(self) -> ThreadPoolExecutor:
        # Generators never share threads with blob I/O on the default executor.
        if self._executor is None:
            self._executor = ThreadPoolExecutor(
                max_workers=self.settings.job_workers,
                thread_name_prefix="swappy-derived",
            )
        return self._executor

    def _new_job(self, asset_id: str, kind: DerivedKind, params: Mapping[str, Any] | None) -> DerivedJob:
        return DerivedJob(job_id=uuid4().hex, asset_id=asset_id, kind=kind, params=dict(params or {}))

    async def enqueue(
        self,
        asset_id: str,
        kind: DerivedKind,
        params: Mapping[str, Any] | None = None,
        *,
        force: bool = False,
    ) -> DerivedAssetState:
        record = self.catalog.require(asset_id)
        current = record.derived.get(kind)
        if current is not None and current.status == DerivedStatus.ready and not force:
            return current

        job = self._new_job(asset_id, kind, params)
        state = self.catalog.update_derived(asset_id, kind, DerivedAssetState.pending(job.job_id))
        logger = self.logger.bind(asset_id=asset_id, kind=kind.value, job_id=job.job_id)
        if state.job_id != job.job_id:
            logger.info("derived_job_already_pending", pending_job_id=state.job_id)
            return state

        try:
            await self.backend.enqueue(job, self.run)
        except QueueFullError:
            logger.warning("derived_job_rejected", reason="queue_full")
            return self.catalog.update_derived(
                asset_id,
                kind,
                DerivedAssetState.failed("queue_full", job_id=job.job_id),
                expected_job_id=job.job_id,
            )
        logger.info("derived_job_enqueued")
        return self._current_state(asset_id, kind, fallback=state)

    async def enqueue_all(self, asset_id: str) -> dict[DerivedKind, DerivedAssetState]:
        record = self.catalog.require(asset_id)
        return {kind: await self.enqueue(asset_id, kind) for kind in DERIVED_KINDS[record.kind]}

    async def run(self, job: DerivedJob) -> DerivedAssetState:
        """Execute a claimed job and publish its artefact; never raises for job failures."""
        logger = self.logger.bind(asset_id=job.asset_id, kind=job.kind.value, job_id=job.job_id)
        logger.info("derived_job_started")
        try:
            payload = await self._generate(job)
        except AnalysisError as exc:
            logger.warning("derived_job_failed", reason=exc.message, code=exc.code)
            return self._finish(job, DerivedAssetState.failed(exc.message, job_id=job.job_id))
        except NotFoundError:
            logger.warning("derived_job_asset_missing")
            return DerivedAssetState.failed("asset_missing", job_id=job.job_id)
        except Exception as exc:
            logger.exception("derived_job_crashed")
            return self._finish(job, DerivedAssetState.failed(f"internal_error: {exc}", job_id=job.job_id))

        key = derived_key(job.kind, job.asset_id)
        try:
            await asyncio.to_thread(self.storage.put, key, payload)
        except StorageError as exc:
            logger.error("derived_artifact_write_failed", error=exc.message)
            return self._finish(job, DerivedAssetState.failed(f"storage_error: {exc.message}", job_id=job.job_id))

        try:
            state = self.catalog.update_derived(
                job.asset_id,
                job.kind,
                DerivedAssetState.ready(key, job_id=job.job_id),
                expected_job_id=job.job_id,
            )
        except NotFoundError:
            # Asset deleted while the job ran; drop the orphaned artefact.
            await asyncio.to_thread(self.storage.delete, key)
            logger.info("derived_artifact_discarded", storage_key=key)
            return DerivedAssetState.failed("asset_missing", job_id=job.job_id)

        if state.job_id == job.job_id and state.status == DerivedStatus.ready:
            logger.info("derived_job_succeeded", storage_key=key, size_bytes=len(payload))
        else:
            logger.warning("derived_job_superseded", current_status=state.status.value)
        return state

    async def run_now(self, asset_id: str, kind: DerivedKind, params: Mapping[str, Any] | None = None) -> bytes:
        """Generate an artefact while the caller waits.

        The result is published as the asset's artefact unless another job
        already holds the slot, in which case it is computed but not stored.
        """
        self.catalog.require(asset_id)
        job = self._new_job(asset_id, kind, params)
        state = self.catalog.update_derived(asset_id, kind, DerivedAssetState.pending(job.job_id))
        if state.job_id != job.job_id:
            self.logger.info("derived_slot_busy", asset_id=asset_id, kind=kind.value, pending_job_id=state.job_id)
            return await self._generate(job)

        final = await self.run(job)
        if final.status == DerivedStatus.ready and final.storage_key:
            return await asyncio.to_thread(self.storage.get, final.storage_key)
        raise AnalysisError(final.reason or "analysis failed", code="analysis_failed")

    async def _generate(self, job: DerivedJob) -> bytes:
        generator = self.generators.get(job.kind)
        if generator is None:
            raise AnalysisError(f"no generator registered for {job.kind.value}", code="generator_missing")
        record = self.catalog.require(job.asset_id)
        source = self.storage.path(record.storage_path)
        loop = asyncio.get_running_loop()
        call = functools.partial(generator.generate, job.asset_id, source, job.params)
        try:
            return await asyncio.wait_for(
                loop.run_in_executor(self._job_executor(), call),
                timeout=self.settings.job_timeout_s,
            )
        except asyncio.TimeoutError as exc:
            raise AnalysisError("timeout", code="timeout") from exc

    def _finish(self, job: DerivedJob, state: DerivedAssetState) -> DerivedAssetState:
        try:
            return self.catalog.update_derived(job.asset_id, job.kind, state, expected_job_id=job.job_id)
        except NotFoundError:
            return state

    def _current_state(self, asset_id: str, kind: DerivedKind, *, fallback: DerivedAssetState) -> DerivedAssetState:
        record = self.catalog.get(asset_id)
        if record is None:
            return fallback
        return record.derived.get(kind, fallback)


__all__ = [
    "DerivedGenerator",
    "ThumbnailGenerator",
    "TransientMarkerGenerator",
    "WaveformGenerator",
    "DerivedAssetPipeline",
    "default_generators",
]
