"""Explicit wiring of the delivery engine from one settings object."""

from dataclasses import dataclass
from datetime import datetime
from typing import Callable

from relay_engine.common.config import RelaySettings
from relay_engine.common.database import DatabaseManager
from relay_engine.common.models import utcnow
from relay_engine.deliveries.backoff import BackoffPolicy
from relay_engine.deliveries.dispatcher import Dispatcher
from relay_engine.deliveries.pump import Pump
from relay_engine.deliveries.reaper import Reaper
from relay_engine.deliveries.remote import RemoteDispatcher
from relay_engine.deliveries.scheduler import Scheduler
from relay_engine.deliveries.store import DeliveryStore
from relay_engine.deliveries.transport import Transport
from relay_engine.endpoints.service import EndpointRegistry
from relay_engine.events.service import EventService


@dataclass
class DeliveryEngine:
    settings: RelaySettings
    db: DatabaseManager
    store: DeliveryStore
    registry: EndpointRegistry
    events: EventService
    dispatcher: Dispatcher
    pump: Pump
    reaper: Reaper
    remote: RemoteDispatcher | None = None

    @classmethod
    def build(
        cls,
        settings: RelaySettings,
        db: DatabaseManager | None = None,
        transport: Transport | None = None,
        backoff: BackoffPolicy | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> "DeliveryEngine":
        db = db or DatabaseManager(settings)
        store = DeliveryStore()
        registry = EndpointRegistry(settings)
        dispatcher = Dispatcher(
            settings, db, store=store, registry=registry,
            transport=transport, backoff=backoff, clock=clock,
        )
        remote = None
        dispatch = dispatcher.attempt
        if settings.dispatch_url:
            remote = RemoteDispatcher(
                settings.dispatch_url,
                settings.cron_key,
                timeout=settings.request_timeout_seconds * 2,
            )
            dispatch = remote.attempt
        return cls(
            settings=settings,
            db=db,
            store=store,
            registry=registry,
            events=EventService(settings, registry=registry, store=store),
            dispatcher=dispatcher,
            pump=Pump(settings, db, dispatch, store=store, clock=clock),
            reaper=Reaper(settings, db, store=store, clock=clock),
            remote=remote,
        )

    def scheduler(self) -> Scheduler:
        return Scheduler(self.settings, self.pump, self.reaper)

    async def aclose(self) -> None:
        await self.dispatcher.aclose()
        if self.remote is not None:
            await self.remote.aclose()
