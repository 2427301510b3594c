from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Tuple

import cv2  # type: ignore
import numpy as np

THUMB_WIDTH = 320
THUMB_HEIGHT = 180
DEFAULT_JPEG_QUALITY = 85


def render_thumbnail(
    video_path: Path,
    *,
    timestamp_s: float = 1.0,
    quality: int = DEFAULT_JPEG_QUALITY,
) -> bytes | None:
    """Grab a frame and return it as a 320x180 JPEG, or ``None`` when no frame is decodable.

    The frame at ``timestamp_s`` is preferred; clips shorter than that fall back
    to their first frame. The frame is letterboxed so the output size is fixed.
    """
    frame = _read_frame(video_path, timestamp_s)
    if frame is None:
        return None
    return _encode_jpeg(_letterbox(frame), quality)


@lru_cache(maxsize=4)
def placeholder_thumbnail(quality: int = DEFAULT_JPEG_QUALITY) -> bytes:
    """Deterministic 320x180 gradient served whenever no real thumbnail exists."""
    ys, xs = np.mgrid[0:THUMB_HEIGHT, 0:THUMB_WIDTH]
    intensity = np.minimum(((xs + ys) % 50) * 5, 255).astype(np.int32)
    red = intensity
    green = np.minimum(intensity + 20, 255)
    blue = np.minimum(intensity + 40, 255)
    # OpenCV expects BGR channel order.
    image = np.dstack([blue, green, red]).astype(np.uint8)
    return _encode_jpeg(image, quality)


def image_dimensions(payload: bytes) -> Tuple[int, int]:
    image = cv2.imdecode(np.frombuffer(payload, dtype=np.uint8), cv2.IMREAD_COLOR)
    if image is None:
        raise RuntimeError("Failed to decode thumbnail payload")
    height, width = image.shape[:2]
    return width, height


def _read_frame(video_path: Path, timestamp_s: float) -> np.ndarray | None:
    capture = cv2.VideoCapture(str(video_path))
    try:
        if not capture.isOpened():
            return None
        if timestamp_s > 0:
            capture.set(cv2.CAP_PROP_POS_MSEC, timestamp_s * 1000.0)
            ok, frame = capture.read()
            if ok and frame is not None:
                return frame
            capture.set(cv2.CAP_PROP_POS_FRAMES, 0)
        ok, frame = capture.read()
        if not ok or frame is None:
            return None
        return frame
    finally:
        capture.release()


def _letterbox(frame: np.ndarray) -> np.ndarray:
    if frame.ndim == 2:
        frame = cv2.cvtColor(frame, cv2.COLOR_GRAY2BGR)
    height, width = frame.shape[:2]
    scale = min(THUMB_WIDTH / width, THUMB_HEIGHT / height)
    new_width = max(1, min(THUMB_WIDTH, int(round(width * scale))))
    new_height = max(1, min(THUMB_HEIGHT, int(round(height * scale))))
    resized = cv2.resize(frame, (new_width, new_height), interpolation=cv2.INTER_AREA)

    canvas = np.zeros((THUMB_HEIGHT, THUMB_WIDTH, 3), dtype=np.uint8)
    top = (THUMB_HEIGHT - new_height) // 2
    left = (THUMB_WIDTH - new_width) // 2
    canvas[top : top + new_height, left : left + new_width] = resized[:, :, :3]
    return canvas


def _encode_jpeg(image: np.ndarray, quality: int) -> bytes:
    ok, buffer = cv2.imencode(".jpg", image, [int(cv2.IMWRITE_JPEG_QUALITY), int(quality)])
    if not ok:
        raise RuntimeError("JPEG encoding failed")
    return buffer.tobytes()


__all__ = [
    "THUMB_WIDTH",
    "THUMB_HEIGHT",
    "render_thumbnail",
    "placeholder_thumbnail",
    "image_dimensions",
]
