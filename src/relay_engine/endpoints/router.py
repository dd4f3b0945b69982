"""Endpoint registry API router."""

from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import Response

from relay_engine.common.security import require_api_key
from relay_engine.endpoints.schemas import (
    EndpointCreate,
    EndpointCreatedResponse,
    EndpointResponse,
    EndpointStatsResponse,
    EndpointUpdate,
    SecretResponse,
)
from relay_engine.endpoints.service import HTTPS_REQUIRED, url_error

router = APIRouter()


def _get_engine():
    from relay_engine.deps import get_engine
    return get_engine()


def _check_url(url: str) -> None:
    error = url_error(url, _get_engine().settings.require_https)
    if error == HTTPS_REQUIRED:
        raise HTTPException(status_code=422, detail="Endpoint URL must use HTTPS")
    if error is not None:
        raise HTTPException(status_code=422, detail="Endpoint URL is not a valid HTTP(S) URL")


def _stats_to_response(stats) -> EndpointStatsResponse | None:
    if stats is None:
        return None
    return EndpointStatsResponse(
        total=stats.total,
        delivered=stats.delivered,
        failed=stats.failed,
        success_rate=stats.success_rate,
        last_delivery_at=stats.last_delivery_at,
    )


def _endpoint_to_response(ep, stats=None) -> EndpointResponse:
    return EndpointResponse(
        id=ep.id,
        clinic_id=ep.clinic_id,
        name=ep.name,
        url=ep.url,
        event_types=ep.event_types or [],
        is_active=ep.is_active,
        max_concurrent_deliveries=ep.max_concurrent_deliveries,
        created_at=ep.created_at,
        updated_at=ep.updated_at,
        stats=_stats_to_response(stats),
    )


@router.post("/endpoints", response_model=EndpointCreatedResponse, status_code=201)
async def create_endpoint(
    body: EndpointCreate,
    _=Depends(require_api_key),
):
    _check_url(body.url)
    engine = _get_engine()
    async with engine.db.get_session() as session:
        ep = await engine.registry.create_endpoint(
            session,
            clinic_id=body.clinic_id,
            url=body.url,
            secret=body.secret,
            name=body.name,
            event_types=body.event_types,
            is_active=body.is_active,
            max_concurrent_deliveries=body.max_concurrent_deliveries,
        )
        return EndpointCreatedResponse(
            **_endpoint_to_response(ep).model_dump(), secret=ep.secret,
        )


@router.get("/endpoints", response_model=list[EndpointResponse])
async def list_endpoints(
    clinic_id: str | None = Query(None),
    is_active: bool | None = Query(None),
    _=Depends(require_api_key),
):
    engine = _get_engine()
    async with engine.db.get_session() as session:
        endpoints = await engine.registry.list_endpoints(
            session, clinic_id=clinic_id, is_active=is_active,
        )
        stats = await engine.registry.endpoint_stats(session, [ep.id for ep in endpoints])
        return [_endpoint_to_response(ep, stats.get(ep.id)) for ep in endpoints]


@router.get("/endpoints/{endpoint_id}", response_model=EndpointResponse)
async def get_endpoint(
    endpoint_id: str,
    _=Depends(require_api_key),
):
    engine = _get_engine()
    async with engine.db.get_session() as session:
        ep = await engine.registry.require_endpoint(session, endpoint_id)
        stats = await engine.registry.endpoint_stats(session, [ep.id])
        return _endpoint_to_response(ep, stats.get(ep.id))


@router.patch("/endpoints/{endpoint_id}", response_model=EndpointResponse)
async def update_endpoint(
    endpoint_id: str,
    body: EndpointUpdate,
    _=Depends(require_api_key),
):
    if body.url is not None:
        _check_url(body.url)
    engine = _get_engine()
    updates = body.model_dump(exclude_none=True)
    async with engine.db.get_session() as session:
        ep = await engine.registry.update_endpoint(session, endpoint_id, **updates)
        if ep is None:
            raise HTTPException(status_code=404, detail="Webhook endpoint not found")
        return _endpoint_to_response(ep)


@router.delete("/endpoints/{endpoint_id}", status_code=204)
async def delete_endpoint(
    endpoint_id: str,
    _=Depends(require_api_key),
):
    engine = _get_engine()
    async with engine.db.get_session() as session:
        deleted = await engine.registry.delete_endpoint(session, endpoint_id)
        if not deleted:
            raise HTTPException(status_code=404, detail="Webhook endpoint not found")
    return Response(status_code=204)


@router.post("/endpoints/{endpoint_id}/rotate-secret", response_model=SecretResponse)
async def rotate_endpoint_secret(
    endpoint_id: str,
    _=Depends(require_api_key),
):
    engine = _get_engine()
    async with engine.db.get_session() as session:
        secret = await engine.registry.rotate_secret(session, endpoint_id)
    return SecretResponse(endpoint_id=endpoint_id, secret=secret)
