"""Endpoint registry: registered URLs and signing secrets per clinic."""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Optional

import httpx
from sqlalchemy import case, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from relay_engine.common.config import RelaySettings
from relay_engine.common.exceptions import EndpointNotFoundError
from relay_engine.common.models import utcnow
from relay_engine.deliveries.models import DELIVERED, FAILED, DeliveryModel
from relay_engine.endpoints.models import EndpointModel
from relay_engine.signing.signature import generate_secret

logger = logging.getLogger(__name__)

_UPDATABLE_FIELDS = (
    "name", "url", "event_types", "is_active", "max_concurrent_deliveries",
)

# Endpoint URL problems, also recorded as non-retryable delivery errors.
HTTPS_REQUIRED = "https_required"
INVALID_URL = "invalid_url"


def url_error(url: str, require_https: bool = True) -> Optional[str]:
    """Return why ``url`` cannot receive webhooks, or None if it can."""
    try:
        parsed = httpx.URL(url)
    except httpx.InvalidURL:
        return INVALID_URL
    if parsed.scheme not in ("http", "https") or not parsed.host:
        return INVALID_URL
    if require_https and parsed.scheme != "https":
        return HTTPS_REQUIRED
    return None


@dataclass
class EndpointStats:
    total: int = 0
    delivered: int = 0
    failed: int = 0
    last_delivery_at: Optional[datetime] = None

    @property
    def success_rate(self) -> float:
        return self.delivered / max(1, self.total)


class EndpointRegistry:
    """Read and write accessors over registered webhook endpoints."""

    def __init__(self, settings: RelaySettings):
        self.settings = settings

    # ── CRUD ──

    async def create_endpoint(
        self,
        session: AsyncSession,
        clinic_id: str,
        url: str,
        secret: str | None = None,
        name: str = "",
        event_types: list[str] | None = None,
        is_active: bool = True,
        max_concurrent_deliveries: int = 5,
    ) -> EndpointModel:
        endpoint = EndpointModel(
            clinic_id=clinic_id,
            url=url,
            secret=secret or generate_secret(),
            name=name,
            event_types=event_types or [],
            is_active=is_active,
            max_concurrent_deliveries=max_concurrent_deliveries,
        )
        session.add(endpoint)
        await session.flush()
        return endpoint

    async def get_endpoint(
        self, session: AsyncSession, endpoint_id: str,
        clinic_id: str | None = None,
    ) -> Optional[EndpointModel]:
        query = select(EndpointModel).where(EndpointModel.id == endpoint_id)
        if clinic_id is not None:
            query = query.where(EndpointModel.clinic_id == clinic_id)
        result = await session.execute(query)
        return result.scalar_one_or_none()

    async def require_endpoint(
        self, session: AsyncSession, endpoint_id: str,
        clinic_id: str | None = None,
    ) -> EndpointModel:
        endpoint = await self.get_endpoint(session, endpoint_id, clinic_id=clinic_id)
        if endpoint is None:
            raise EndpointNotFoundError(f"Webhook endpoint {endpoint_id} not found")
        return endpoint

    async def list_endpoints(
        self,
        session: AsyncSession,
        clinic_id: str | None = None,
        is_active: bool | None = None,
    ) -> list[EndpointModel]:
        query = select(EndpointModel)
        if clinic_id is not None:
            query = query.where(EndpointModel.clinic_id == clinic_id)
        if is_active is not None:
            query = query.where(EndpointModel.is_active == is_active)
        query = query.order_by(EndpointModel.created_at.desc(), EndpointModel.id.desc())
        result = await session.execute(query)
        return list(result.scalars().all())

    async def subscribed_endpoints(
        self, session: AsyncSession, clinic_id: str, event_type: str,
    ) -> list[EndpointModel]:
        """Active endpoints of a clinic that subscribe to ``event_type``."""
        endpoints = await self.list_endpoints(session, clinic_id=clinic_id, is_active=True)
        return [ep for ep in endpoints if ep.subscribes_to(event_type)]

    async def update_endpoint(
        self,
        session: AsyncSession,
        endpoint_id: str,
        clinic_id: str | None = None,
        **updates: Any,
    ) -> Optional[EndpointModel]:
        endpoint = await self.get_endpoint(session, endpoint_id, clinic_id=clinic_id)
        if endpoint is None:
            return None
        for field in _UPDATABLE_FIELDS:
            if field in updates and updates[field] is not None:
                setattr(endpoint, field, updates[field])
        await session.flush()
        return endpoint

    async def delete_endpoint(
        self,
        session: AsyncSession,
        endpoint_id: str,
        clinic_id: str | None = None,
    ) -> bool:
        endpoint = await self.get_endpoint(session, endpoint_id, clinic_id=clinic_id)
        if endpoint is None:
            return False
        await session.delete(endpoint)
        await session.flush()
        return True

    # ── Secrets ──

    async def set_secret(
        self, session: AsyncSession, endpoint_id: str, secret: str,
    ) -> bool:
        """Replace the signing secret in a single UPDATE."""
        result = await session.execute(
            update(EndpointModel)
            .where(EndpointModel.id == endpoint_id)
            .values(secret=secret, updated_at=utcnow())
            .execution_options(synchronize_session="fetch")
        )
        return result.rowcount == 1

    async def rotate_secret(self, session: AsyncSession, endpoint_id: str) -> str:
        """Generate and store a new secret; later attempts sign with it."""
        secret = generate_secret()
        if not await self.set_secret(session, endpoint_id, secret):
            raise EndpointNotFoundError(f"Webhook endpoint {endpoint_id} not found")
        logger.info("Rotated signing secret", extra={"endpoint_id": endpoint_id})
        return secret

    # ── Stats ──

    async def endpoint_stats(
        self, session: AsyncSession, endpoint_ids: list[str],
    ) -> dict[str, EndpointStats]:
        if not endpoint_ids:
            return {}
        result = await session.execute(
            select(
                DeliveryModel.endpoint_id,
                func.count(DeliveryModel.id),
                func.sum(case((DeliveryModel.status == DELIVERED, 1), else_=0)),
                func.sum(case((DeliveryModel.status == FAILED, 1), else_=0)),
                func.max(DeliveryModel.delivered_at),
            )
            .where(DeliveryModel.endpoint_id.in_(endpoint_ids))
            .group_by(DeliveryModel.endpoint_id)
        )
        stats = {}
        for endpoint_id, total, delivered, failed, last_delivery_at in result.all():
            stats[endpoint_id] = EndpointStats(
                total=int(total or 0),
                delivered=int(delivered or 0),
                failed=int(failed or 0),
                last_delivery_at=last_delivery_at,
            )
        return stats
