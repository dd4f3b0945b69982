"""Pump: claim due deliveries and hand them to a bounded worker pool."""

import asyncio
import logging
from collections import Counter, defaultdict, deque
from dataclasses import dataclass, field
from datetime import datetime
from typing import Awaitable, Callable

from sqlalchemy import select

from relay_engine.common.config import RelaySettings
from relay_engine.common.database import DatabaseManager
from relay_engine.common.models import utcnow
from relay_engine.deliveries.dispatcher import DispatchOutcome
from relay_engine.deliveries.store import DeliveryStore, DueDelivery
from relay_engine.endpoints.models import EndpointModel

logger = logging.getLogger(__name__)

DispatchHandler = Callable[[str], Awaitable[DispatchOutcome]]

DEFAULT_ENDPOINT_CONCURRENCY = 5


@dataclass
class PumpResult:
    picked: int = 0
    # Hand-offs that ran to completion, whatever the delivery outcome.
    triggered: int = 0
    # Hand-offs that raised (store unreachable, remote dispatcher down, ...).
    failed: int = 0
    outcomes: Counter = field(default_factory=Counter)


class Pump:
    """One pump cycle selects up to ``limit`` due deliveries, oldest first,
    and runs them through ``dispatch`` with at most ``concurrency`` in
    flight, and at most ``max_concurrent_deliveries`` per endpoint.
    """

    def __init__(
        self,
        settings: RelaySettings,
        db: DatabaseManager,
        dispatch: DispatchHandler,
        store: DeliveryStore | None = None,
        concurrency: int | None = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.settings = settings
        self.db = db
        self.dispatch = dispatch
        self.store = store or DeliveryStore()
        self.concurrency = max(1, concurrency or settings.pump_concurrency)
        self.clock = clock

    async def pump(self, limit: int | None = None) -> PumpResult:
        if limit is None:
            limit = self.settings.pump_batch_size
        if limit <= 0:
            return PumpResult()
        async with self.db.get_session() as session:
            due = await self.store.due(session, self.clock(), limit)
            if not due:
                return PumpResult()
            endpoint_limits = await self._endpoint_limits(session, due)

        result = PumpResult(picked=len(due))
        queue: asyncio.Queue[DueDelivery] = asyncio.Queue()
        for item in due:
            queue.put_nowait(item)
        parked: dict[str, deque[DueDelivery]] = defaultdict(deque)

        workers = [
            asyncio.create_task(self._worker(queue, endpoint_limits, parked, result))
            for _ in range(min(self.concurrency, len(due)))
        ]
        await asyncio.gather(*workers)

        logger.info(
            "Pump cycle complete",
            extra={
                "picked": result.picked,
                "triggered": result.triggered,
                "failed": result.failed,
                "outcomes": dict(result.outcomes),
            },
        )
        return result

    async def _endpoint_limits(
        self, session, due: list[DueDelivery],
    ) -> dict[str, asyncio.Semaphore]:
        endpoint_ids = {item.endpoint_id for item in due}
        rows = await session.execute(
            select(EndpointModel.id, EndpointModel.max_concurrent_deliveries)
            .where(EndpointModel.id.in_(endpoint_ids))
        )
        caps = {endpoint_id: cap for endpoint_id, cap in rows.all()}
        return {
            endpoint_id: asyncio.Semaphore(max(1, caps.get(endpoint_id) or DEFAULT_ENDPOINT_CONCURRENCY))
            for endpoint_id in endpoint_ids
        }

    async def _worker(
        self,
        queue: asyncio.Queue,
        endpoint_limits: dict[str, asyncio.Semaphore],
        parked: dict[str, deque],
        result: PumpResult,
    ) -> None:
        while True:
            try:
                item = queue.get_nowait()
            except asyncio.QueueEmpty:
                return
            endpoint_limit = endpoint_limits[item.endpoint_id]
            if endpoint_limit.locked():
                # Endpoint at capacity: set the item aside until one of its
                # slots frees up so other endpoints keep moving.
                parked[item.endpoint_id].append(item)
                continue
            async with endpoint_limit:
                await self._hand_off(item, result)
            if parked[item.endpoint_id]:
                queue.put_nowait(parked[item.endpoint_id].popleft())

    async def _hand_off(self, item: DueDelivery, result: PumpResult) -> None:
        try:
            outcome = await self.dispatch(item.id)
        except Exception:
            logger.exception(
                "Dispatch hand-off failed", extra={"delivery_id": item.id},
            )
            result.failed += 1
            return
        result.triggered += 1
        result.outcomes[outcome.outcome] += 1
