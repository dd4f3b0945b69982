"""Event intake: persist outbound events and fan them out to endpoints."""

import logging
from typing import Any, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from relay_engine.common.config import RelaySettings
from relay_engine.common.exceptions import EventNotFoundError
from relay_engine.deliveries.models import DeliveryModel
from relay_engine.deliveries.store import DeliveryStore
from relay_engine.endpoints.service import EndpointRegistry
from relay_engine.events.models import OutboundEventModel

logger = logging.getLogger(__name__)


class EventService:
    """Entry point for the business code that emits events."""

    def __init__(
        self,
        settings: RelaySettings,
        registry: EndpointRegistry | None = None,
        store: DeliveryStore | None = None,
    ):
        self.settings = settings
        self.registry = registry or EndpointRegistry(settings)
        self.store = store or DeliveryStore()

    async def emit(
        self,
        session: AsyncSession,
        clinic_id: str,
        event_type: str,
        payload: dict[str, Any],
        resource: str | None = None,
        resource_id: str | None = None,
        event_id: str | None = None,
    ) -> tuple[OutboundEventModel, list[DeliveryModel]]:
        """Record an event and create its deliveries.

        Passing an ``event_id`` that was already emitted re-runs the fan-out
        for the stored event instead of creating a second one.
        """
        event = None
        if event_id is not None:
            event = await self.get_event(session, event_id)
        if event is None:
            event = OutboundEventModel(
                clinic_id=clinic_id,
                type=event_type,
                resource=resource,
                resource_id=resource_id,
                payload=payload,
            )
            if event_id is not None:
                event.id = event_id
            session.add(event)
            await session.flush()

        deliveries = await self.create_deliveries_for_event(session, event)
        return event, deliveries

    async def create_deliveries_for_event(
        self, session: AsyncSession, event: OutboundEventModel,
    ) -> list[DeliveryModel]:
        """One delivery per active subscribed endpoint of the event's clinic.

        Safe to call repeatedly: pairs that already have a delivery are skipped.
        """
        endpoints = await self.registry.subscribed_endpoints(
            session, event.clinic_id, event.type,
        )
        deliveries = await self.store.create_for_event(session, event, endpoints)
        if deliveries:
            logger.info(
                "Deliveries created",
                extra={"event_id": event.id, "event_type": event.type, "count": len(deliveries)},
            )
        return deliveries

    async def get_event(
        self, session: AsyncSession, event_id: str,
    ) -> Optional[OutboundEventModel]:
        result = await session.execute(
            select(OutboundEventModel).where(OutboundEventModel.id == event_id)
        )
        return result.scalar_one_or_none()

    async def require_event(
        self, session: AsyncSession, event_id: str,
    ) -> OutboundEventModel:
        event = await self.get_event(session, event_id)
        if event is None:
            raise EventNotFoundError(f"Event {event_id} not found")
        return event

    async def list_events(
        self,
        session: AsyncSession,
        clinic_id: str | None = None,
        event_type: str | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[OutboundEventModel]:
        query = select(OutboundEventModel)
        if clinic_id is not None:
            query = query.where(OutboundEventModel.clinic_id == clinic_id)
        if event_type is not None:
            query = query.where(OutboundEventModel.type == event_type)
        query = query.order_by(OutboundEventModel.created_at.desc())
        query = query.offset(offset).limit(limit)
        result = await session.execute(query)
        return list(result.scalars().all())
