from __future__ import annotations

from typing import Annotated

from fastapi import Depends, HTTPException, Request, UploadFile, status

from swappy.core.config import Settings, get_settings
from swappy.core.errors import AnalysisError, ConflictError, InvalidInputError, NotFoundError, StorageError, SwappyError
from swappy.services import IngestService, QueryService

UPLOAD_CHUNK_SIZE = 1024 * 1024


def get_ingest_service(request: Request) -> IngestService:
    service: IngestService = request.app.state.ingest_service
    return service


def get_query_service(request: Request) -> QueryService:
    service: QueryService = request.app.state.query_service
    return service


def get_app_settings(request: Request) -> Settings:
    settings = getattr(request.app.state, "settings", None)
    if isinstance(settings, Settings):
        return settings
    return get_settings()


IngestDependency = Annotated[IngestService, Depends(get_ingest_service)]
QueryDependency = Annotated[QueryService, Depends(get_query_service)]
SettingsDependency = Annotated[Settings, Depends(get_app_settings)]


async def read_upload(upload: UploadFile, max_bytes: int) -> bytes:
    """Read a multipart file field in chunks, enforcing the upload size limit."""
    chunks: list[bytes] = []
    total = 0
    try:
        while True:
            chunk = await upload.read(UPLOAD_CHUNK_SIZE)
            if not chunk:
                break
            total += len(chunk)
            if total > max_bytes:
                raise HTTPException(status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE, detail="upload_too_large")
            chunks.append(chunk)
    finally:
        await upload.close()
    return b"".join(chunks)


def to_http_error(exc: SwappyError) -> HTTPException:
    if isinstance(exc, NotFoundError):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=exc.code)
    if isinstance(exc, InvalidInputError):
        if exc.code == "upload_too_large":
            return HTTPException(status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE, detail=exc.code)
        return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=exc.code)
    if isinstance(exc, (StorageError, ConflictError)):
        return HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=exc.code)
    if isinstance(exc, AnalysisError):
        return HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=f"{exc.code}: {exc.message}")
    return HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=exc.code)


__all__ = [
    "get_ingest_service",
    "get_query_service",
    "get_app_settings",
    "IngestDependency",
    "QueryDependency",
    "SettingsDependency",
    "read_upload",
    "to_http_error",
]
