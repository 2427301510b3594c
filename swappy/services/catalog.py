from __future__ import annotations

import itertools
import os
import tempfile
import threading
from pathlib import Path
from typing import Optional

from pydantic import TypeAdapter

from swappy.core.errors import ConflictError, InvalidInputError, NotFoundError, StorageError
from swappy.core.logging import get_logger
from swappy.domain.models import DERIVED_KINDS, AssetKind, AssetRecord, DerivedAssetState, DerivedKind, DerivedStatus

_SNAPSHOT_ADAPTER = TypeAdapter(list[AssetRecord])


class Catalog:
    """Process-wide index of asset records.

    Every read and write goes through ``self._lock``; callers only ever receive
    deep copies, so a record can never be observed half-updated.

    With a ``snapshot_path`` each mutation marks the catalog dirty and a
    background thread writes the JSON snapshot, at most once per
    ``flush_interval_s``. ``close()`` writes whatever is still pending.
    """

    def __init__(self, snapshot_path: Optional[Path] = None, *, flush_interval_s: float = 0.25):
        self.snapshot_path = snapshot_path
        self.flush_interval_s = flush_interval_s
        self.logger = get_logger(component="catalog")
        self._lock = threading.RLock()
        self._records: dict[str, AssetRecord] = {}
        self._sequence: dict[str, int] = {}
        self._counter = itertools.count()
        self._write_lock = threading.Lock()
        self._dirty = threading.Event()
        self._stopping = threading.Event()
        self._writer: threading.Thread | None = None

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)

    def __contains__(self, asset_id: object) -> bool:
        with self._lock:
            return asset_id in self._records

    def insert(self, record: AssetRecord) -> None:
        with self._lock:
            if record.id in self._records:
                raise ConflictError(f"asset id already present: {record.id}", code="asset_id_conflict")
            self._records[record.id] = record.model_copy(deep=True)
            self._sequence[record.id] = next(self._counter)
            self._persist()

    def get(self, asset_id: str) -> AssetRecord | None:
        with self._lock:
            record = self._records.get(asset_id)
            return record.model_copy(deep=True) if record else None

    def require(self, asset_id: str) -> AssetRecord:
        record = self.get(asset_id)
        if record is None:
            raise NotFoundError(asset_id, code="asset_not_found")
        return record

    def list(self, kind: AssetKind | None = None) -> list[AssetRecord]:
        with self._lock:
            records = [r for r in self._records.values() if kind is None or r.kind == kind]
            records.sort(key=lambda r: (r.uploaded_at, self._sequence[r.id]))
            return [r.model_copy(deep=True) for r in records]

    def update_derived(
        self,
        asset_id: str,
        kind: DerivedKind,
        new_state: DerivedAssetState,
        *,
        expected_job_id: str | None = None,
    ) -> DerivedAssetState:
        """Compare-and-transition a derived entry; returns the state in effect afterwards.

        A pending entry is never replaced by another pending entry, so the
        returned state tells the caller whether its job claimed the slot.
        Terminal states only land on a pending entry, and only for the job that
        owns it when ``expected_job_id`` is given.
        """
        with self._lock:
            record = self._records.get(asset_id)
            if record is None:
                raise NotFoundError(asset_id, code="asset_not_found")
            if kind not in DERIVED_KINDS[record.kind]:
                raise InvalidInputError(
                    f"{kind.value} does not apply to {record.kind.value} assets",
                    code="derived_kind_not_applicable",
                )
            current = record.derived.get(kind, DerivedAssetState.not_started())

            if new_state.status == DerivedStatus.pending:
                if current.is_pending:
                    return current
            elif new_state.status in {DerivedStatus.ready, DerivedStatus.failed}:
                if not current.is_pending:
                    return current
                if expected_job_id is not None and current.job_id != expected_job_id:
                    return current

            record.derived[kind] = new_state
            self._persist()
            return new_state

    def remove(self, asset_id: str) -> AssetRecord:
        with self._lock:
            record = self._records.pop(asset_id, None)
            if record is None:
                raise NotFoundError(asset_id, code="asset_not_found")
            self._sequence.pop(asset_id, None)
            self._persist()
            return record

    def load(self) -> int:
        """Restore records from the snapshot file; returns how many were loaded."""
        if self.snapshot_path is None or not self.snapshot_path.exists():
            return 0
        records = _SNAPSHOT_ADAPTER.validate_json(self.snapshot_path.read_bytes())
        with self._lock:
            self._records.clear()
            self._sequence.clear()
            for record in records:
                for kind, state in list(record.derived.items()):
                    # Jobs do not survive a restart.
                    if state.is_pending:
                        record.derived[kind] = DerivedAssetState.failed("interrupted", job_id=state.job_id)
                self._records[record.id] = record
                self._sequence[record.id] = next(self._counter)
            self._persist()
        self.logger.info("catalog_loaded", count=len(records), path=str(self.snapshot_path))
        return len(records)

    def flush(self) -> None:
        """Write the current state to the snapshot file now.

        Raises:
            StorageError: The snapshot could not be written.
        """
        if self.snapshot_path is None:
            return
        with self._write_lock:
            with self._lock:
                ordered = sorted(self._records.values(), key=lambda r: (r.uploaded_at, self._sequence[r.id]))
                payload = _SNAPSHOT_ADAPTER.dump_json(ordered, indent=2)
            self._write_snapshot(payload)

    def close(self) -> None:
        """Stop the snapshot writer after it has written any pending change."""
        with self._lock:
            writer = self._writer
            if writer is None:
                return
            self._stopping.set()
            self._dirty.set()
        writer.join()
        with self._lock:
            self._writer = None
            self._stopping.clear()
            pending = self._dirty.is_set()
            self._dirty.clear()
        if pending:
            self.flush()

    def _persist(self) -> None:
        # Caller holds self._lock. Writes are coalesced by the writer thread.
        if self.snapshot_path is None:
            return
        self._dirty.set()
        if self._writer is None:
            self._start_writer()

    def _start_writer(self) -> None:
        self._writer = threading.Thread(target=self._write_loop, name="swappy-catalog-snapshot", daemon=True)
        self._writer.start()

    def _write_loop(self) -> None:
        while True:
            self._dirty.wait()
            if not self._stopping.is_set():
                self._stopping.wait(self.flush_interval_s)
            self._dirty.clear()
            try:
                self.flush()
            except StorageError:
                # Already logged; the next change retries the write.
                pass
            if self._stopping.is_set():
                return

    def _write_snapshot(self, payload: bytes) -> None:
        target = self.snapshot_path
        tmp_name: str | None = None
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            with tempfile.NamedTemporaryFile(dir=target.parent, prefix=f".{target.name}.", delete=False) as tmp:
                tmp_name = tmp.name
                tmp.write(payload)
            os.replace(tmp_name, target)
        except OSError as exc:
            if tmp_name is not None:
                Path(tmp_name).unlink(missing_ok=True)
            self.logger.error("catalog_snapshot_failed", path=str(target), error=str(exc))
            raise StorageError(f"failed to persist catalog: {exc}") from exc


__all__ = ["Catalog"]
