from __future__ import annotations

import os
import threading

import pytest

from swappy.core.config import get_settings
from swappy.core.errors import InvalidInputError, NotFoundError, StorageError
from swappy.core.storage import LocalBlobStore, derived_key, get_blob_store, original_key
from swappy.domain.models import AssetKind, DerivedKind


def test_directories_are_created_on_first_write(tmp_path):
    root = tmp_path / "blobs"
    storage = LocalBlobStore(root)
    assert not root.exists()

    uri = storage.put("videos/abc_clip.mp4", b"payload")
    assert uri.startswith("file://")
    assert (root / "videos" / "abc_clip.mp4").read_bytes() == b"payload"
    assert storage.exists("videos/abc_clip.mp4")
    assert storage.stat("videos/abc_clip.mp4").size_bytes == len(b"payload")


def test_put_replaces_previous_content(tmp_path):
    storage = LocalBlobStore(tmp_path)
    storage.put("audio/a_track.wav", b"first")
    storage.put("audio/a_track.wav", b"second version")
    assert storage.get("audio/a_track.wav") == b"second version"
    leftovers = [p.name for p in (tmp_path / "audio").iterdir()]
    assert leftovers == ["a_track.wav"]


def test_failed_rename_leaves_no_partial_blob(tmp_path, monkeypatch):
    storage = LocalBlobStore(tmp_path)

    def broken_replace(src, dst):
        raise OSError("disk full")

    monkeypatch.setattr(os, "replace", broken_replace)
    with pytest.raises(StorageError):
        storage.put("thumbnails/x.jpg", b"jpeg-bytes")

    assert not storage.exists("thumbnails/x.jpg")
    assert list((tmp_path / "thumbnails").iterdir()) == []


def test_concurrent_first_writers_share_directory(tmp_path):
    storage = LocalBlobStore(tmp_path / "fresh")
    errors: list[Exception] = []

    def writer(index: int) -> None:
        try:
            storage.put(f"waveforms/{index}.json", b"{}")
        except Exception as exc:  # pragma: no cover - surfaced via assertion
            errors.append(exc)

    threads = [threading.Thread(target=writer, args=(i,)) for i in range(8)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert errors == []
    assert len(list((tmp_path / "fresh" / "waveforms").iterdir())) == 8


def test_missing_blob_raises_not_found(tmp_path):
    storage = LocalBlobStore(tmp_path)
    with pytest.raises(NotFoundError) as excinfo:
        storage.get("videos/missing.mp4")
    assert excinfo.value.code == "blob_not_found"
    with pytest.raises(NotFoundError):
        storage.open("videos/missing.mp4")
    assert storage.exists("videos/missing.mp4") is False


@pytest.mark.parametrize("key", ["", "/etc/passwd", "../escape.bin", "videos/../../escape.bin"])
def test_keys_cannot_escape_root(tmp_path, key):
    storage = LocalBlobStore(tmp_path)
    with pytest.raises(InvalidInputError) as excinfo:
        storage.put(key, b"x")
    assert excinfo.value.code == "invalid_blob_key"


def test_delete_is_idempotent(tmp_path):
    storage = LocalBlobStore(tmp_path)
    storage.put("analysis/a.json", b"{}")
    assert storage.delete("analysis/a.json") is True
    assert storage.delete("analysis/a.json") is False
    assert not storage.exists("analysis/a.json")


def test_key_namespaces_are_disjoint():
    assert original_key(AssetKind.video, "abc", "clip.mp4") == "videos/abc_clip.mp4"
    assert original_key(AssetKind.audio, "abc", "track.wav") == "audio/abc_track.wav"
    assert derived_key(DerivedKind.thumbnail, "abc") == "thumbnails/abc.jpg"
    assert derived_key(DerivedKind.transient_markers, "abc") == "analysis/abc.json"
    assert derived_key(DerivedKind.waveform, "abc") == "waveforms/abc.json"


def test_original_key_strips_client_directories():
    assert original_key(AssetKind.audio, "id1", "../../etc/passwd") == "audio/id1_passwd"
    assert original_key(AssetKind.video, "id2", "C:\\clips\\my clip.mp4") == "videos/id2_my_clip.mp4"


def test_blob_store_follows_settings(tmp_path, monkeypatch):
    monkeypatch.setenv("SWAPPY_STORAGE_ROOT", str(tmp_path / "configured"))
    get_settings.cache_clear()
    storage = get_blob_store(get_settings())
    assert isinstance(storage, LocalBlobStore)
    assert storage.base_path == tmp_path / "configured"
