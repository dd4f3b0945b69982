"""Reaper: recover deliveries left IN_FLIGHT by a crashed dispatch."""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable

from relay_engine.common.config import RelaySettings
from relay_engine.common.database import DatabaseManager
from relay_engine.common.models import utcnow
from relay_engine.deliveries.store import DeliveryStore

logger = logging.getLogger(__name__)

MAX_ATTEMPTS_EXCEEDED = "max_attempts_exceeded"


@dataclass
class ReapResult:
    recovered: int = 0
    failed: int = 0


class Reaper:
    """Returns stale IN_FLIGHT deliveries to PENDING, due immediately.

    The attempt that went missing still counts, so ``attempts`` is left as
    is; a delivery whose attempts are already used up is failed instead of
    being sent again.
    """

    def __init__(
        self,
        settings: RelaySettings,
        db: DatabaseManager,
        store: DeliveryStore | None = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.settings = settings
        self.db = db
        self.store = store or DeliveryStore()
        self.clock = clock

    async def reap(
        self, stale_after: timedelta | float | None = None, limit: int | None = None,
    ) -> ReapResult:
        if stale_after is None:
            stale_after = self.settings.reaper_stale_after_seconds
        if not isinstance(stale_after, timedelta):
            stale_after = timedelta(seconds=stale_after)
        if limit is None:
            limit = self.settings.reaper_batch_size
        if limit <= 0:
            return ReapResult()

        now = self.clock()
        cutoff = now - stale_after
        result = ReapResult()
        async with self.db.get_session() as session:
            stale = await self.store.stale(session, cutoff, limit)
            for item in stale:
                if item.attempts >= self.settings.max_attempts:
                    if await self.store.expire_stale(
                        session, item.id, cutoff, MAX_ATTEMPTS_EXCEEDED, now,
                    ):
                        result.failed += 1
                        logger.warning(
                            "Stale delivery out of attempts, marked failed",
                            extra={"delivery_id": item.id, "attempts": item.attempts},
                        )
                elif await self.store.recover_stale(session, item.id, cutoff, now):
                    result.recovered += 1
                    logger.info(
                        "Recovered stale delivery",
                        extra={"delivery_id": item.id, "attempts": item.attempts},
                    )

        if stale:
            logger.info(
                "Reaper cycle complete",
                extra={"stale": len(stale), "recovered": result.recovered, "failed": result.failed},
            )
        return result
