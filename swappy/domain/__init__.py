"""Domain records and media helpers reused by the services and the API."""

from swappy.domain.models import (
    DERIVED_KINDS,
    AssetKind,
    AssetRecord,
    DerivedAssetState,
    DerivedKind,
    DerivedStatus,
)
from swappy.ingest.asset_id import compute_sha256_bytes, new_asset_id
from swappy.ingest.audio_analysis import DecodedAudio, TransientReport, decode_audio, detect_transients, waveform_envelope
from swappy.ingest.thumbnails import placeholder_thumbnail, render_thumbnail

__all__ = [
    "DERIVED_KINDS",
    "AssetKind",
    "AssetRecord",
    "DerivedAssetState",
    "DerivedKind",
    "DerivedStatus",
    "compute_sha256_bytes",
    "new_asset_id",
    "DecodedAudio",
    "TransientReport",
    "decode_audio",
    "detect_transients",
    "waveform_envelope",
    "placeholder_thumbnail",
    "render_thumbnail",
]
