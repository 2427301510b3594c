from __future__ import annotations

from fastapi import APIRouter, HTTPException, Response, status

from swappy.core.errors import SwappyError
from swappy.domain.models import DerivedKind

from . import deps, schemas


router = APIRouter(prefix="/assets", tags=["assets"])


@router.get("/{asset_id}", response_model=schemas.AssetResponse)
async def get_asset(asset_id: str, service: deps.QueryDependency) -> schemas.AssetResponse:
    try:
        record = service.get_record(asset_id)
    except SwappyError as exc:
        raise deps.to_http_error(exc) from exc
    return schemas.AssetResponse.from_record(record)


@router.post(
    "/{asset_id}/derived/{kind}",
    response_model=schemas.DerivedStateModel,
    status_code=status.HTTP_202_ACCEPTED,
    summary="Retry or regenerate a derived artefact",
)
async def trigger_derived(
    asset_id: str,
    kind: str,
    service: deps.IngestDependency,
    force: bool = False,
) -> schemas.DerivedStateModel:
    try:
        derived_kind = DerivedKind(kind)
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="unknown_derived_kind") from exc
    try:
        state = await service.trigger_derived(asset_id, derived_kind, force=force)
    except SwappyError as exc:
        raise deps.to_http_error(exc) from exc
    return schemas.DerivedStateModel.from_state(state)


@router.delete("/{asset_id}", status_code=status.HTTP_204_NO_CONTENT, response_class=Response)
async def delete_asset(asset_id: str, service: deps.IngestDependency) -> Response:
    try:
        await service.delete(asset_id)
    except SwappyError as exc:
        raise deps.to_http_error(exc) from exc
    return Response(status_code=status.HTTP_204_NO_CONTENT)


__all__ = ["router"]
