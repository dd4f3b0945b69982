"""Delivery record store: every durable state transition of a delivery.

Each transition is one UPDATE guarded by the state it leaves, so concurrent
pumps, dispatchers and reapers need no locks: whoever's guard still matches
wins, everyone else sees ``rowcount == 0`` and backs off.

    PENDING ──claim──▶ IN_FLIGHT ──▶ DELIVERED
       ▲                  │    └───▶ FAILED
       └──retry / reap────┘

Completion writes also match the attempt number taken at claim time, so a
dispatcher that outlived its claim cannot overwrite a newer attempt.
"""

import base64
import binascii
import json
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Optional, Sequence

from sqlalchemy import and_, insert, or_, select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession

from relay_engine.common.exceptions import (
    DeliveryNotFoundError,
    DeliveryStateError,
    InvalidCursorError,
)
from relay_engine.common.models import generate_uuid, utcnow
from relay_engine.deliveries.models import (
    DELIVERED,
    FAILED,
    IN_FLIGHT,
    PENDING,
    DeliveryModel,
)
from relay_engine.endpoints.models import EndpointModel
from relay_engine.events.models import OutboundEventModel

logger = logging.getLogger(__name__)


@dataclass
class DueDelivery:
    id: str
    endpoint_id: str


@dataclass
class StaleDelivery:
    id: str
    attempts: int


def encode_cursor(created_at: datetime, delivery_id: str) -> str:
    raw = json.dumps([created_at.isoformat(), delivery_id]).encode("utf-8")
    return base64.urlsafe_b64encode(raw).decode("ascii")


def decode_cursor(cursor: str) -> tuple[datetime, str]:
    try:
        created_at, delivery_id = json.loads(base64.urlsafe_b64decode(cursor.encode("ascii")))
        return datetime.fromisoformat(created_at), str(delivery_id)
    except (binascii.Error, UnicodeError, ValueError, TypeError) as exc:
        raise InvalidCursorError(f"Invalid pagination cursor: {cursor!r}") from exc


def _guarded(stmt):
    return stmt.execution_options(synchronize_session=False)


class DeliveryStore:
    """Owns all durable delivery state."""

    # ── Creation ──

    async def create_for_event(
        self,
        session: AsyncSession,
        event: OutboundEventModel,
        endpoints: Sequence[EndpointModel],
    ) -> list[DeliveryModel]:
        """Insert one PENDING delivery per endpoint, skipping existing pairs.

        Returns only the deliveries created by this call.
        """
        if not endpoints:
            return []

        existing = await session.execute(
            select(DeliveryModel.endpoint_id).where(
                DeliveryModel.event_id == event.id,
                DeliveryModel.endpoint_id.in_([ep.id for ep in endpoints]),
            )
        )
        already = set(existing.scalars().all())

        now = utcnow()
        created_ids = []
        for ep in endpoints:
            if ep.id in already:
                continue
            delivery_id = generate_uuid()
            values = {
                "id": delivery_id,
                "endpoint_id": ep.id,
                "event_id": event.id,
                "status": PENDING,
                "attempts": 0,
                "next_attempt_at": None,
                "created_at": now,
                "updated_at": now,
            }
            result = await session.execute(self._insert_ignoring_duplicates(session, values))
            if result.rowcount == 1:
                created_ids.append(delivery_id)
            already.add(ep.id)

        if not created_ids:
            return []
        result = await session.execute(
            select(DeliveryModel)
            .where(DeliveryModel.id.in_(created_ids))
            .order_by(DeliveryModel.created_at, DeliveryModel.id)
        )
        return list(result.scalars().all())

    @staticmethod
    def _insert_ignoring_duplicates(session: AsyncSession, values: dict):
        dialect = session.get_bind().dialect.name
        if dialect == "postgresql":
            return pg_insert(DeliveryModel).values(**values).on_conflict_do_nothing(
                constraint="uq_outbound_deliveries_event_endpoint",
            )
        if dialect == "sqlite":
            return sqlite_insert(DeliveryModel).values(**values).on_conflict_do_nothing(
                index_elements=["event_id", "endpoint_id"],
            )
        return insert(DeliveryModel).values(**values)

    # ── Reads ──

    async def get(self, session: AsyncSession, delivery_id: str) -> Optional[DeliveryModel]:
        result = await session.execute(
            select(DeliveryModel)
            .where(DeliveryModel.id == delivery_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def require(self, session: AsyncSession, delivery_id: str) -> DeliveryModel:
        delivery = await self.get(session, delivery_id)
        if delivery is None:
            raise DeliveryNotFoundError(f"Delivery {delivery_id} not found")
        return delivery

    async def due(
        self, session: AsyncSession, now: datetime, limit: int,
    ) -> list[DueDelivery]:
        """PENDING deliveries whose next attempt time has come, oldest first."""
        result = await session.execute(
            select(DeliveryModel.id, DeliveryModel.endpoint_id)
            .where(
                DeliveryModel.status == PENDING,
                or_(
                    DeliveryModel.next_attempt_at.is_(None),
                    DeliveryModel.next_attempt_at <= now,
                ),
            )
            .order_by(DeliveryModel.created_at.asc(), DeliveryModel.id.asc())
            .limit(limit)
        )
        return [DueDelivery(id=row[0], endpoint_id=row[1]) for row in result.all()]

    async def stale(
        self, session: AsyncSession, cutoff: datetime, limit: int,
    ) -> list[StaleDelivery]:
        """IN_FLIGHT deliveries whose dispatch started before ``cutoff``."""
        result = await session.execute(
            select(DeliveryModel.id, DeliveryModel.attempts)
            .where(
                DeliveryModel.status == IN_FLIGHT,
                DeliveryModel.dispatch_started_at < cutoff,
            )
            .order_by(DeliveryModel.dispatch_started_at.asc())
            .limit(limit)
        )
        return [StaleDelivery(id=row[0], attempts=row[1]) for row in result.all()]

    async def list_deliveries(
        self,
        session: AsyncSession,
        endpoint_id: str | None = None,
        event_id: str | None = None,
        status: str | None = None,
        cursor: str | None = None,
        limit: int = 50,
    ) -> tuple[list[DeliveryModel], Optional[str]]:
        """Newest-first page of deliveries and the cursor for the next page."""
        query = select(DeliveryModel)
        if endpoint_id is not None:
            query = query.where(DeliveryModel.endpoint_id == endpoint_id)
        if event_id is not None:
            query = query.where(DeliveryModel.event_id == event_id)
        if status is not None:
            query = query.where(DeliveryModel.status == status)
        if cursor:
            created_at, last_id = decode_cursor(cursor)
            query = query.where(
                or_(
                    DeliveryModel.created_at < created_at,
                    and_(DeliveryModel.created_at == created_at, DeliveryModel.id < last_id),
                )
            )
        query = query.order_by(DeliveryModel.created_at.desc(), DeliveryModel.id.desc())
        result = await session.execute(query.limit(limit + 1))
        rows = list(result.scalars().all())

        next_cursor = None
        if len(rows) > limit:
            rows = rows[:limit]
            last = rows[-1]
            next_cursor = encode_cursor(last.created_at, last.id)
        return rows, next_cursor

    # ── Dispatch transitions ──

    async def claim(self, session: AsyncSession, delivery_id: str, now: datetime) -> bool:
        """PENDING → IN_FLIGHT, counting the attempt. False if another worker won."""
        result = await session.execute(_guarded(
            update(DeliveryModel)
            .where(DeliveryModel.id == delivery_id, DeliveryModel.status == PENDING)
            .values(
                status=IN_FLIGHT,
                attempts=DeliveryModel.attempts + 1,
                dispatch_started_at=now,
                updated_at=now,
            )
        ))
        return result.rowcount == 1

    async def mark_delivered(
        self,
        session: AsyncSession,
        delivery_id: str,
        attempts: int,
        code: int,
        now: datetime,
    ) -> bool:
        result = await session.execute(_guarded(
            update(DeliveryModel)
            .where(
                DeliveryModel.id == delivery_id,
                DeliveryModel.status == IN_FLIGHT,
                DeliveryModel.attempts == attempts,
            )
            .values(
                status=DELIVERED,
                last_code=code,
                last_error=None,
                next_attempt_at=None,
                delivered_at=now,
                updated_at=now,
            )
        ))
        return result.rowcount == 1

    async def schedule_retry(
        self,
        session: AsyncSession,
        delivery_id: str,
        attempts: int,
        next_attempt_at: datetime,
        code: int | None,
        error: str | None,
        now: datetime,
    ) -> bool:
        result = await session.execute(_guarded(
            update(DeliveryModel)
            .where(
                DeliveryModel.id == delivery_id,
                DeliveryModel.status == IN_FLIGHT,
                DeliveryModel.attempts == attempts,
            )
            .values(
                status=PENDING,
                last_code=code,
                last_error=error,
                next_attempt_at=next_attempt_at,
                updated_at=now,
            )
        ))
        return result.rowcount == 1

    async def mark_failed(
        self,
        session: AsyncSession,
        delivery_id: str,
        attempts: int,
        code: int | None,
        error: str | None,
        now: datetime,
    ) -> bool:
        result = await session.execute(_guarded(
            update(DeliveryModel)
            .where(
                DeliveryModel.id == delivery_id,
                DeliveryModel.status == IN_FLIGHT,
                DeliveryModel.attempts == attempts,
            )
            .values(
                status=FAILED,
                last_code=code,
                last_error=error,
                next_attempt_at=None,
                updated_at=now,
            )
        ))
        return result.rowcount == 1

    # ── Recovery ──

    async def recover_stale(
        self, session: AsyncSession, delivery_id: str, cutoff: datetime, now: datetime,
    ) -> bool:
        """Stale IN_FLIGHT → PENDING, due immediately. Attempts are kept."""
        result = await session.execute(_guarded(
            update(DeliveryModel)
            .where(
                DeliveryModel.id == delivery_id,
                DeliveryModel.status == IN_FLIGHT,
                DeliveryModel.dispatch_started_at < cutoff,
            )
            .values(status=PENDING, next_attempt_at=now, updated_at=now)
        ))
        return result.rowcount == 1

    async def expire_stale(
        self, session: AsyncSession, delivery_id: str, cutoff: datetime, error: str,
        now: datetime,
    ) -> bool:
        """Stale IN_FLIGHT → FAILED for a delivery with no attempts left."""
        result = await session.execute(_guarded(
            update(DeliveryModel)
            .where(
                DeliveryModel.id == delivery_id,
                DeliveryModel.status == IN_FLIGHT,
                DeliveryModel.dispatch_started_at < cutoff,
            )
            .values(status=FAILED, last_error=error, next_attempt_at=None, updated_at=now)
        ))
        return result.rowcount == 1

    # ── Manual operator retry ──

    async def reset_for_retry(
        self, session: AsyncSession, delivery_id: str, now: datetime,
    ) -> DeliveryModel:
        """Terminal → PENDING with a fresh attempt budget.

        A delivery that is already PENDING is returned unchanged, so repeated
        calls are harmless. IN_FLIGHT deliveries cannot be reset.
        """
        delivery = await self.require(session, delivery_id)
        if delivery.status == PENDING:
            return delivery
        if delivery.status == IN_FLIGHT:
            raise DeliveryStateError(f"Delivery {delivery_id} is being dispatched")

        result = await session.execute(_guarded(
            update(DeliveryModel)
            .where(
                DeliveryModel.id == delivery_id,
                DeliveryModel.status.in_((DELIVERED, FAILED)),
            )
            .values(
                status=PENDING,
                attempts=0,
                next_attempt_at=now,
                delivered_at=None,
                updated_at=now,
            )
        ))
        if result.rowcount != 1:
            raise DeliveryStateError(f"Delivery {delivery_id} changed state during reset")
        logger.info("Delivery reset for manual retry", extra={"delivery_id": delivery_id})
        return await self.require(session, delivery_id)

    async def reset_failed_for_endpoint(
        self, session: AsyncSession, endpoint_id: str, now: datetime,
    ) -> int:
        result = await session.execute(_guarded(
            update(DeliveryModel)
            .where(DeliveryModel.endpoint_id == endpoint_id, DeliveryModel.status == FAILED)
            .values(status=PENDING, attempts=0, next_attempt_at=now, updated_at=now)
        ))
        count = result.rowcount or 0
        logger.info(
            "Failed deliveries reset for manual retry",
            extra={"endpoint_id": endpoint_id, "count": count},
        )
        return count
