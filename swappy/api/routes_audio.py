from __future__ import annotations

import json
from typing import Optional

from fastapi import APIRouter, File, Query, UploadFile, status
from fastapi.responses import JSONResponse, StreamingResponse

from swappy.core.errors import SwappyError
from swappy.domain.models import AssetKind, DerivedKind, DerivedStatus
from swappy.services import QueryService

from . import deps, media, schemas


router = APIRouter(prefix="/audio", tags=["audio"])


@router.post("", response_model=schemas.UploadResponse, summary="Upload an audio file")
async def upload_audio(
    service: deps.IngestDependency,
    settings: deps.SettingsDependency,
    audio: Optional[UploadFile] = File(default=None),
) -> schemas.UploadResponse:
    return await media.handle_upload(AssetKind.audio, audio, service, settings.max_upload_size_bytes)


@router.get("", response_model=list[schemas.AssetSummary], summary="List audio in upload order")
async def list_audio(
    service: deps.QueryDependency,
    offset: int = Query(default=0, ge=0),
    limit: Optional[int] = Query(default=None, ge=0),
) -> list[schemas.AssetSummary]:
    return media.list_summaries(AssetKind.audio, service, offset, limit)


@router.get("/{audio_id}", response_class=StreamingResponse, summary="Stream the original audio")
async def get_audio(audio_id: str, service: deps.QueryDependency) -> StreamingResponse:
    return await media.stream_original(AssetKind.audio, audio_id, service)


@router.post("/{audio_id}/analyze", response_model=schemas.AnalyzeResponse, summary="Detect transients now")
async def analyze_audio(
    audio_id: str,
    service: deps.IngestDependency,
    payload: Optional[schemas.AnalyzeRequest] = None,
) -> schemas.AnalyzeResponse:
    sensitivity = payload.sensitivity if payload else None
    try:
        report = await service.analyze_audio(audio_id, sensitivity)
    except SwappyError as exc:
        raise deps.to_http_error(exc) from exc
    return schemas.AnalyzeResponse(markers=report.markers, duration=report.duration, sample_rate=report.sample_rate)


async def _derived_response(audio_id: str, kind: DerivedKind, service: QueryService) -> JSONResponse:
    try:
        service.get_record(audio_id, kind=AssetKind.audio)
        result = await service.get_derived(audio_id, kind)
    except SwappyError as exc:
        raise deps.to_http_error(exc) from exc

    if result.status == DerivedStatus.ready and result.payload is not None:
        return JSONResponse(status_code=status.HTTP_200_OK, content=json.loads(result.payload))
    body = schemas.DerivedStatusResponse(status=result.status.value, reason=result.state.reason)
    if result.status == DerivedStatus.failed:
        return JSONResponse(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, content=body.model_dump())
    return JSONResponse(status_code=status.HTTP_202_ACCEPTED, content=body.model_dump())


@router.get("/{audio_id}/analysis", summary="Latest transient analysis, or its status")
async def get_analysis(audio_id: str, service: deps.QueryDependency) -> JSONResponse:
    return await _derived_response(audio_id, DerivedKind.transient_markers, service)


@router.get("/{audio_id}/waveform", summary="Waveform envelope, or its status")
async def get_waveform(audio_id: str, service: deps.QueryDependency) -> JSONResponse:
    return await _derived_response(audio_id, DerivedKind.waveform, service)


__all__ = ["router"]
