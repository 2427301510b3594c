from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, File, Query, Response, UploadFile
from fastapi.responses import StreamingResponse

from swappy.domain.models import AssetKind

from . import deps, media, schemas


router = APIRouter(prefix="/videos", tags=["videos"])


@router.post("", response_model=schemas.UploadResponse, summary="Upload a video")
async def upload_video(
    service: deps.IngestDependency,
    settings: deps.SettingsDependency,
    video: Optional[UploadFile] = File(default=None),
) -> schemas.UploadResponse:
    return await media.handle_upload(AssetKind.video, video, service, settings.max_upload_size_bytes)


@router.get("", response_model=list[schemas.AssetSummary], summary="List videos in upload order")
async def list_videos(
    service: deps.QueryDependency,
    offset: int = Query(default=0, ge=0),
    limit: Optional[int] = Query(default=None, ge=0),
) -> list[schemas.AssetSummary]:
    return media.list_summaries(AssetKind.video, service, offset, limit)


@router.get("/{video_id}", response_class=StreamingResponse, summary="Stream the original video")
async def get_video(video_id: str, service: deps.QueryDependency) -> StreamingResponse:
    return await media.stream_original(AssetKind.video, video_id, service)


@router.get(
    "/{video_id}/thumbnail",
    response_class=Response,
    responses={200: {"content": {"image/jpeg": {}}}},
    summary="Thumbnail JPEG, or a placeholder while unavailable",
)
async def get_thumbnail(video_id: str, service: deps.QueryDependency) -> Response:
    payload = await service.get_thumbnail(video_id)
    return Response(content=payload, media_type="image/jpeg")


__all__ = ["router"]
