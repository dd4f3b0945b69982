"""Delivery observability, operator retry and cron trigger routers."""

from fastapi import APIRouter, Depends, Query

from relay_engine.common.models import utcnow
from relay_engine.common.security import require_api_key, require_cron_key
from relay_engine.deliveries.models import STATUSES
from relay_engine.deliveries.schemas import (
    DeliveryPage,
    DeliveryResponse,
    DispatchOutcomeResponse,
    PumpResponse,
    ReapResponse,
    RetryAllResponse,
)

router = APIRouter()
cron_router = APIRouter(prefix="/cron")

_STATUS_PATTERN = "^(" + "|".join(sorted(STATUSES)) + ")$"


def _get_engine():
    from relay_engine.deps import get_engine
    return get_engine()


@router.get("/deliveries", response_model=DeliveryPage)
async def list_deliveries(
    endpoint_id: str | None = Query(None),
    event_id: str | None = Query(None),
    status: str | None = Query(None, pattern=_STATUS_PATTERN),
    cursor: str | None = Query(None),
    limit: int | None = Query(None, ge=1, le=200),
    _=Depends(require_api_key),
):
    engine = _get_engine()
    async with engine.db.get_session() as session:
        items, next_cursor = await engine.store.list_deliveries(
            session,
            endpoint_id=endpoint_id,
            event_id=event_id,
            status=status,
            cursor=cursor,
            limit=min(limit or engine.settings.default_page_size, engine.settings.max_page_size),
        )
        return DeliveryPage(
            items=[DeliveryResponse.model_validate(d) for d in items],
            next_cursor=next_cursor,
        )


@router.get("/deliveries/{delivery_id}", response_model=DeliveryResponse)
async def get_delivery(
    delivery_id: str,
    _=Depends(require_api_key),
):
    engine = _get_engine()
    async with engine.db.get_session() as session:
        delivery = await engine.store.require(session, delivery_id)
        return DeliveryResponse.model_validate(delivery)


@router.post("/deliveries/{delivery_id}/retry", response_model=DeliveryResponse)
async def retry_delivery(
    delivery_id: str,
    _=Depends(require_api_key),
):
    engine = _get_engine()
    async with engine.db.get_session() as session:
        delivery = await engine.store.reset_for_retry(session, delivery_id, utcnow())
        return DeliveryResponse.model_validate(delivery)


@router.post(
    "/endpoints/{endpoint_id}/deliveries/retry-failed",
    response_model=RetryAllResponse,
)
async def retry_failed_for_endpoint(
    endpoint_id: str,
    _=Depends(require_api_key),
):
    engine = _get_engine()
    async with engine.db.get_session() as session:
        await engine.registry.require_endpoint(session, endpoint_id)
        reset = await engine.store.reset_failed_for_endpoint(session, endpoint_id, utcnow())
    return RetryAllResponse(endpoint_id=endpoint_id, reset=reset)


# ── Cron triggers ──


@cron_router.post("/pump", response_model=PumpResponse)
async def run_pump(
    limit: int | None = Query(None, ge=1, le=1000),
    _=Depends(require_cron_key),
):
    result = await _get_engine().pump.pump(limit)
    return PumpResponse(
        picked=result.picked,
        triggered=result.triggered,
        failed=result.failed,
        outcomes=dict(result.outcomes),
    )


@cron_router.post("/reap", response_model=ReapResponse)
async def run_reaper(
    stale_after_seconds: float | None = Query(None, gt=0),
    _=Depends(require_cron_key),
):
    result = await _get_engine().reaper.reap(stale_after_seconds)
    return ReapResponse(recovered=result.recovered, failed=result.failed)


@cron_router.post(
    "/deliveries/{delivery_id}/dispatch",
    response_model=DispatchOutcomeResponse,
)
async def dispatch_delivery(
    delivery_id: str,
    _=Depends(require_cron_key),
):
    outcome = await _get_engine().dispatcher.attempt(delivery_id)
    return DispatchOutcomeResponse.model_validate(outcome)
