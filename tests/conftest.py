import contextlib
import io
import wave
from pathlib import Path

import cv2
import numpy as np
import pytest
from fastapi.testclient import TestClient

from swappy.core.config import Settings, get_settings
from swappy.core.jobs import BaseJobBackend, ImmediateJobBackend
from swappy.core.storage import LocalBlobStore
from swappy.main import create_app
from swappy.services import Catalog, DerivedAssetPipeline, IngestService, QueryService


def pytest_configure(config):
    config.addinivalue_line(
        "markers",
        "no_default_env: disable the default Swappy environment bootstrap fixture for tests that manage their own .env",
    )


@pytest.fixture(autouse=True)
def configure_environment(request, monkeypatch, tmp_path):
    if request.node.get_closest_marker("no_default_env"):
        get_settings.cache_clear()
        yield
        get_settings.cache_clear()
        return

    monkeypatch.setenv("SWAPPY_ENV", "test")
    monkeypatch.setenv("SWAPPY_LOG_LEVEL", "debug")
    monkeypatch.setenv("SWAPPY_STORAGE_ROOT", str(tmp_path / "uploads"))
    monkeypatch.setenv("SWAPPY_JOB_BACKEND", "inline")
    monkeypatch.setenv("SWAPPY_JOB_TIMEOUT_S", "30")
    monkeypatch.delenv("SWAPPY_CATALOG_PATH", raising=False)

    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture()
def client(configure_environment):
    app = create_app()
    with TestClient(app) as client:
        yield client


class ServiceBundle:
    def __init__(
        self,
        settings: Settings,
        backend: BaseJobBackend | None = None,
        generators=None,
        storage: LocalBlobStore | None = None,
    ):
        self.settings = settings
        self.storage = storage or LocalBlobStore(Path(settings.storage_root))
        self.catalog = Catalog(snapshot_path=settings.catalog_path, flush_interval_s=settings.catalog_flush_interval_s)
        self.pipeline = DerivedAssetPipeline(
            settings,
            self.storage,
            self.catalog,
            backend or ImmediateJobBackend(),
            generators=generators,
        )
        self.ingest = IngestService(settings, self.storage, self.catalog, self.pipeline)
        self.query = QueryService(settings, self.storage, self.catalog)


@pytest.fixture()
def make_services(tmp_path):
    def _make(backend: BaseJobBackend | None = None, generators=None, storage=None, **overrides) -> ServiceBundle:
        values = {"storage_root": tmp_path / "store", "job_queue_backend": "inline"}
        values.update(overrides)
        return ServiceBundle(Settings(**values), backend=backend, generators=generators, storage=storage)

    return _make


def wav_bytes(samples: np.ndarray, sample_rate: int, *, channels: int = 1) -> bytes:
    pcm = np.clip(samples, -1.0, 1.0)
    pcm = (pcm * 32767.0).astype("<i2")
    buffer = io.BytesIO()
    with contextlib.closing(wave.open(buffer, "wb")) as writer:
        writer.setnchannels(channels)
        writer.setsampwidth(2)
        writer.setframerate(sample_rate)
        writer.writeframes(pcm.tobytes())
    return buffer.getvalue()


def click_track(sample_rate: int = 22050, duration_s: float = 2.0, seed: int = 7) -> np.ndarray:
    """Quiet noise floor with decaying bursts of different strengths."""
    rng = np.random.default_rng(seed)
    total = int(sample_rate * duration_s)
    signal = rng.normal(0.0, 0.01, total).astype(np.float32)
    burst_len = int(sample_rate * 0.03)
    envelope = np.exp(-np.linspace(0.0, 6.0, burst_len)).astype(np.float32)
    for onset_s, amplitude in [(0.2, 0.9), (0.55, 0.3), (0.9, 0.6), (1.25, 0.15), (1.6, 0.75)]:
        start = int(onset_s * sample_rate)
        burst = rng.normal(0.0, amplitude, burst_len).astype(np.float32) * envelope
        signal[start : start + burst_len] += burst
    return signal


def thousand_byte_track() -> bytes:
    """A 1000-byte mono 16-bit WAV (44-byte header + 478 frames) with a tone onset."""
    sample_rate = 8000
    frames = 478
    t = np.arange(frames) / sample_rate
    samples = np.where(np.arange(frames) >= 240, 0.8 * np.sin(2 * np.pi * 1000.0 * t), 0.0)
    payload = wav_bytes(samples.astype(np.float32), sample_rate)
    assert len(payload) == 1000
    return payload


@pytest.fixture()
def track_wav() -> bytes:
    return thousand_byte_track()


@pytest.fixture()
def clicks_wav() -> bytes:
    return wav_bytes(click_track(), 22050)


@pytest.fixture(scope="session")
def generated_video_file(tmp_path_factory) -> Path:
    """A short MJPG/AVI clip written with OpenCV."""
    video_path = tmp_path_factory.mktemp("data") / "test_video.avi"
    writer = cv2.VideoWriter(str(video_path), cv2.VideoWriter_fourcc(*"MJPG"), 10.0, (128, 72))
    if not writer.isOpened():
        pytest.skip("OpenCV build cannot write MJPG video")
    try:
        for index in range(20):
            frame = np.full((72, 128, 3), index * 10 % 255, dtype=np.uint8)
            cv2.rectangle(frame, (10 + index, 10), (40 + index, 40), (0, 0, 255), -1)
            writer.write(frame)
    finally:
        writer.release()
    return video_path
