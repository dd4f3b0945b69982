"""Event intake API router."""

from fastapi import APIRouter, Depends

from relay_engine.common.security import require_api_key
from relay_engine.events.schemas import EventCreate, EventEmitResponse, EventResponse

router = APIRouter()


def _get_engine():
    from relay_engine.deps import get_engine
    return get_engine()


@router.post("/events", response_model=EventEmitResponse, status_code=201)
async def emit_event(
    body: EventCreate,
    _=Depends(require_api_key),
):
    engine = _get_engine()
    async with engine.db.get_session() as session:
        event, deliveries = await engine.events.emit(
            session,
            clinic_id=body.clinic_id,
            event_type=body.type,
            payload=body.payload,
            resource=body.resource,
            resource_id=body.resource_id,
            event_id=body.id,
        )
        return EventEmitResponse(
            event=EventResponse.model_validate(event),
            delivery_ids=[d.id for d in deliveries],
        )


@router.get("/events/{event_id}", response_model=EventResponse)
async def get_event(
    event_id: str,
    _=Depends(require_api_key),
):
    engine = _get_engine()
    async with engine.db.get_session() as session:
        event = await engine.events.require_event(session, event_id)
        return EventResponse.model_validate(event)
