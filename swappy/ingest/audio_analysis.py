"""Transient detection and waveform extraction for uploaded audio.

Decoding prefers the stdlib ``wave`` reader for PCM WAV files and falls back to
an ``ffmpeg`` subprocess for everything else. Analysis works on a mono float32
signal in ``[-1, 1]``.
"""

from __future__ import annotations

import contextlib
import subprocess
import wave
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional

import numpy as np

from swappy.core.errors import AnalysisError, InvalidInputError

DEFAULT_WINDOW_SIZE = 1024
MIN_WINDOW_SIZE = 32
MIN_WINDOWS = 4
FFMPEG_SAMPLE_RATE = 44100


@dataclass(slots=True)
class DecodedAudio:
    samples: np.ndarray
    sample_rate: int
    channels: int = 1

    @property
    def duration(self) -> float:
        if self.sample_rate <= 0:
            return 0.0
        return float(self.samples.size) / float(self.sample_rate)


@dataclass(slots=True)
class TransientReport:
    markers: List[float]
    duration: float
    sample_rate: int
    sensitivity: float
    window_size: int
    peak_frequencies: List[float] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "markers": self.markers,
            "duration": self.duration,
            "sample_rate": self.sample_rate,
            "sensitivity": self.sensitivity,
            "window_size": self.window_size,
            "peak_frequencies": self.peak_frequencies,
        }


def decode_audio(path: Path, *, timeout_s: Optional[float] = None) -> DecodedAudio:
    """Decode ``path`` to mono float32 samples.

    ``timeout_s`` bounds the ffmpeg fallback; the process is killed when it expires.

    Raises:
        AnalysisError: The file is missing, corrupt, or in a codec nothing here can read.
    """
    if not path.exists():
        raise AnalysisError(f"audio source missing: {path.name}", code="source_missing")
    try:
        decoded = _decode_wav(path)
    except (wave.Error, EOFError):
        decoded = _decode_with_ffmpeg(path, timeout_s)
    if decoded.samples.size == 0:
        raise AnalysisError("no audio samples decoded", code="no_audio_samples")
    return decoded


def _decode_wav(path: Path) -> DecodedAudio:
    with contextlib.closing(wave.open(str(path), "rb")) as reader:
        channels = reader.getnchannels()
        sample_width = reader.getsampwidth()
        sample_rate = reader.getframerate()
        raw = reader.readframes(reader.getnframes())

    if sample_rate <= 0 or channels <= 0:
        raise AnalysisError("corrupt WAV header", code="corrupt_audio")

    usable = len(raw) - len(raw) % (sample_width * channels)
    raw = raw[:usable]
    if sample_width == 1:
        data = (np.frombuffer(raw, dtype=np.uint8).astype(np.float32) - 128.0) / 128.0
    elif sample_width == 2:
        data = np.frombuffer(raw, dtype="<i2").astype(np.float32) / 32768.0
    elif sample_width == 3:
        triplets = np.frombuffer(raw, dtype=np.uint8).reshape(-1, 3).astype(np.int32)
        values = triplets[:, 0] | (triplets[:, 1] << 8) | (triplets[:, 2] << 16)
        values = np.where(values & 0x800000, values - 0x1000000, values)
        data = values.astype(np.float32) / 8388608.0
    elif sample_width == 4:
        data = np.frombuffer(raw, dtype="<i4").astype(np.float32) / 2147483648.0
    else:
        raise AnalysisError(f"unsupported sample width: {sample_width}", code="unsupported_codec")

    if channels > 1:
        data = data.reshape(-1, channels).mean(axis=1)
    return DecodedAudio(samples=data.astype(np.float32), sample_rate=sample_rate, channels=channels)


def _decode_with_ffmpeg(path: Path, timeout_s: Optional[float] = None) -> DecodedAudio:
    command = [
        "ffmpeg",
        "-nostdin",
        "-v",
        "error",
        "-i",
        str(path),
        "-f",
        "f32le",
        "-ac",
        "1",
        "-ar",
        str(FFMPEG_SAMPLE_RATE),
        "-",
    ]
    try:
        proc = subprocess.run(
            command,
            check=True,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            timeout=timeout_s,
        )
    except FileNotFoundError as exc:
        raise AnalysisError("ffmpeg is not available to decode this format", code="unsupported_codec") from exc
    except subprocess.TimeoutExpired as exc:
        raise AnalysisError(f"ffmpeg decode timed out after {timeout_s}s", code="timeout") from exc
    except subprocess.CalledProcessError as exc:
        stderr = exc.stderr.decode(errors="ignore").strip() if exc.stderr else ""
        raise AnalysisError(f"could not decode audio: {stderr or 'ffmpeg failed'}", code="corrupt_audio") from exc

    usable = len(proc.stdout) - len(proc.stdout) % 4
    samples = np.frombuffer(proc.stdout[:usable], dtype="<f4").astype(np.float32)
    return DecodedAudio(samples=samples, sample_rate=FFMPEG_SAMPLE_RATE)


def validate_sensitivity(sensitivity: float) -> float:
    value = float(sensitivity)
    if not np.isfinite(value) or value < 0.0 or value > 1.0:
        raise InvalidInputError(f"sensitivity must be within [0, 1], got {sensitivity}", code="invalid_sensitivity")
    return value


def effective_window_size(sample_count: int, window_size: int = DEFAULT_WINDOW_SIZE) -> int:
    """Shrink the analysis window for short clips so at least a few windows exist."""
    window = max(MIN_WINDOW_SIZE, int(window_size))
    while window > MIN_WINDOW_SIZE and sample_count < window * MIN_WINDOWS:
        window //= 2
    return window


def _frames(samples: np.ndarray, window_size: int, hop_size: int) -> np.ndarray:
    if samples.size < window_size:
        samples = np.pad(samples, (0, window_size - samples.size))
    count = 1 + (samples.size - window_size) // hop_size
    offsets = np.arange(count)[:, None] * hop_size + np.arange(window_size)[None, :]
    return samples[offsets]


def magnitude_spectra(samples: np.ndarray, window_size: int, hop_size: int) -> np.ndarray:
    frames = _frames(samples, window_size, hop_size) * np.hanning(window_size).astype(np.float32)
    return np.abs(np.fft.rfft(frames, axis=1))


def spectral_flux(samples: np.ndarray, window_size: int, hop_size: int) -> np.ndarray:
    """Half-wave rectified spectral difference between consecutive windows; the first window is 0."""
    spectra = magnitude_spectra(samples, window_size, hop_size)
    flux = np.zeros(spectra.shape[0], dtype=np.float64)
    if spectra.shape[0] > 1:
        diff = np.diff(spectra, axis=0)
        flux[1:] = np.maximum(diff, 0.0).sum(axis=1)
    return flux


def pick_peaks(flux: np.ndarray, sensitivity: float) -> np.ndarray:
    """Indices of local flux maxima strictly above a sensitivity-scaled threshold.

    Candidate peaks do not depend on ``sensitivity`` and the threshold only
    falls as it rises, so the selected set grows monotonically.
    """
    if flux.size < 2:
        return np.array([], dtype=np.int64)
    mean = float(flux.mean())
    peak = float(flux.max())
    threshold = mean + (1.0 - sensitivity) * (peak - mean)

    previous = np.concatenate(([np.inf], flux[:-1]))
    following = np.concatenate((flux[1:], [-np.inf]))
    is_local_max = (flux >= previous) & (flux >= following)
    return np.flatnonzero(is_local_max & (flux > threshold))


def detect_transients(
    audio: DecodedAudio,
    sensitivity: float,
    *,
    window_size: int = DEFAULT_WINDOW_SIZE,
) -> TransientReport:
    sensitivity = validate_sensitivity(sensitivity)
    window = effective_window_size(audio.samples.size, window_size)
    hop = window // 2
    flux = spectral_flux(audio.samples, window, hop)
    duration = audio.duration

    markers: List[float] = []
    for index in pick_peaks(flux, sensitivity):
        timestamp = min(max(index * hop / audio.sample_rate, 0.0), duration)
        markers.append(round(float(timestamp), 6))

    return TransientReport(
        markers=markers,
        duration=round(duration, 6),
        sample_rate=audio.sample_rate,
        sensitivity=sensitivity,
        window_size=window,
        peak_frequencies=dominant_frequencies(audio, window_size=window),
    )


def dominant_frequencies(audio: DecodedAudio, *, count: int = 4, window_size: int = DEFAULT_WINDOW_SIZE) -> List[float]:
    window = effective_window_size(audio.samples.size, window_size)
    spectra = magnitude_spectra(audio.samples, window, window // 2)
    average = spectra.mean(axis=0)
    average[0] = 0.0  # ignore DC
    if not np.any(average > 0):
        return []
    freqs = np.fft.rfftfreq(window, d=1.0 / audio.sample_rate)
    strongest = np.argsort(average)[::-1][:count]
    return sorted(round(float(freqs[i]), 2) for i in strongest if average[i] > 0)


def waveform_envelope(audio: DecodedAudio, points: int) -> List[float]:
    """Peak-absolute envelope downsampled to at most ``points`` values in ``[0, 1]``."""
    if points <= 0:
        raise InvalidInputError("points must be positive", code="invalid_waveform_points")
    magnitude = np.clip(np.abs(audio.samples), 0.0, 1.0)
    buckets = np.array_split(magnitude, min(points, magnitude.size))
    return [round(float(bucket.max()), 4) for bucket in buckets if bucket.size]


__all__ = [
    "DecodedAudio",
    "TransientReport",
    "decode_audio",
    "validate_sensitivity",
    "effective_window_size",
    "spectral_flux",
    "pick_peaks",
    "detect_transients",
    "dominant_frequencies",
    "waveform_envelope",
]
