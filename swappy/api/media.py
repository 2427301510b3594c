"""Request handling shared by the /videos and /audio routers."""

from __future__ import annotations

from typing import BinaryIO, Iterator, Optional

from fastapi import HTTPException, UploadFile, status
from fastapi.responses import StreamingResponse

from swappy.core.errors import SwappyError
from swappy.core.logging import get_logger
from swappy.domain.models import AssetKind
from swappy.services import IngestService, QueryService

from . import schemas
from .deps import read_upload, to_http_error

logger = get_logger(component="media_routes")

STREAM_CHUNK_SIZE = 256 * 1024
DEFAULT_MEDIA_TYPES = {
    AssetKind.video: "video/mp4",
    AssetKind.audio: "audio/mpeg",
}


async def handle_upload(
    kind: AssetKind,
    upload: Optional[UploadFile],
    service: IngestService,
    max_bytes: int,
) -> schemas.UploadResponse:
    if upload is None:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=f"missing_field:{kind.value}")
    data = await read_upload(upload, max_bytes)
    try:
        record = await service.upload(kind, upload.filename, data, content_type=upload.content_type)
    except SwappyError as exc:
        logger.warning("upload_rejected", kind=kind.value, code=exc.code)
        raise to_http_error(exc) from exc
    return schemas.UploadResponse(
        id=record.id,
        filename=record.original_filename,
        size=record.size_bytes,
        message=f"{kind.value.capitalize()} uploaded successfully",
    )


def list_summaries(kind: AssetKind, service: QueryService, offset: int, limit: Optional[int]) -> list[schemas.AssetSummary]:
    try:
        records = service.list(kind, offset=offset, limit=limit)
    except SwappyError as exc:
        raise to_http_error(exc) from exc
    return [schemas.AssetSummary.from_record(record) for record in records]


def _iter_file(handle: BinaryIO) -> Iterator[bytes]:
    try:
        while chunk := handle.read(STREAM_CHUNK_SIZE):
            yield chunk
    finally:
        handle.close()


async def stream_original(kind: AssetKind, asset_id: str, service: QueryService) -> StreamingResponse:
    try:
        record, handle = await service.get_original(asset_id, kind=kind)
    except SwappyError as exc:
        raise to_http_error(exc) from exc
    return StreamingResponse(
        _iter_file(handle),
        media_type=record.content_type or DEFAULT_MEDIA_TYPES[kind],
        headers={
            "Content-Length": str(record.size_bytes),
            "Content-Disposition": f'inline; filename="{record.storage_path.rsplit("/", 1)[-1]}"',
        },
    )


__all__ = ["handle_upload", "list_summaries", "stream_original"]
