"""Dispatcher: one delivery attempt from claim to recorded outcome."""

import json
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Optional

from relay_engine.common.config import RelaySettings
from relay_engine.common.database import DatabaseManager
from relay_engine.common.models import utcnow
from relay_engine.deliveries.backoff import BackoffPolicy
from relay_engine.deliveries.models import DELIVERED, FAILED, PENDING
from relay_engine.deliveries.store import DeliveryStore
from relay_engine.deliveries.transport import HttpTransport, OutboundRequest, Transport
from relay_engine.endpoints.models import EndpointModel
from relay_engine.endpoints.service import EndpointRegistry, url_error
from relay_engine.events.models import OutboundEventModel
from relay_engine.signing.signature import signature_headers

logger = logging.getLogger(__name__)

SPEC_VERSION = "1.0"

# Non-retryable local precondition errors.
ENDPOINT_INACTIVE = "endpoint_inactive"
ENDPOINT_NOT_FOUND = "endpoint_not_found"
EVENT_NOT_FOUND = "event_not_found"
PAYLOAD_TOO_LARGE = "payload_too_large"

# Outcome kinds.
OUTCOME_DELIVERED = "delivered"
OUTCOME_RETRY = "retry_scheduled"
OUTCOME_FAILED = "failed"
OUTCOME_SKIPPED = "skipped"
OUTCOME_NOT_FOUND = "not_found"


@dataclass
class DispatchOutcome:
    delivery_id: str
    outcome: str
    status: Optional[str] = None
    attempts: int = 0
    code: Optional[int] = None
    error: Optional[str] = None
    next_attempt_at: Optional[datetime] = None


def build_envelope(event: OutboundEventModel, attempt: int) -> dict[str, Any]:
    return {
        "specVersion": SPEC_VERSION,
        "id": event.id,
        "type": event.type,
        "createdAt": event.created_at.isoformat(),
        "attempt": attempt,
        "idempotencyKey": event.id,
        "clinicId": event.clinic_id,
        "resource": event.resource,
        "data": event.payload,
    }


def canonical_json(payload: dict[str, Any]) -> bytes:
    """Deterministic UTF-8 JSON: sorted keys, no insignificant whitespace."""
    return json.dumps(
        payload, sort_keys=True, separators=(",", ":"), ensure_ascii=False, default=str,
    ).encode("utf-8")


class Dispatcher:
    """Performs single delivery attempts and records their outcome."""

    def __init__(
        self,
        settings: RelaySettings,
        db: DatabaseManager,
        store: DeliveryStore | None = None,
        registry: EndpointRegistry | None = None,
        transport: Transport | None = None,
        backoff: BackoffPolicy | None = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.settings = settings
        self.db = db
        self.store = store or DeliveryStore()
        self.registry = registry or EndpointRegistry(settings)
        self.transport = transport or HttpTransport()
        self.backoff = backoff or BackoffPolicy.from_settings(settings)
        self.clock = clock

    async def attempt(self, delivery_id: str) -> DispatchOutcome:
        """Claim, send and record one attempt for ``delivery_id``.

        Expected failures (HTTP errors, timeouts, inactive endpoints) are
        recorded on the delivery and reported in the outcome, never raised.
        """
        async with self.db.get_session() as session:
            if not await self.store.claim(session, delivery_id, self.clock()):
                delivery = await self.store.get(session, delivery_id)
                if delivery is None:
                    return DispatchOutcome(delivery_id, OUTCOME_NOT_FOUND)
                logger.debug(
                    "Delivery not claimable, skipping",
                    extra={"delivery_id": delivery_id, "status": delivery.status},
                )
                return DispatchOutcome(
                    delivery_id, OUTCOME_SKIPPED,
                    status=delivery.status, attempts=delivery.attempts,
                )
            delivery = await self.store.require(session, delivery_id)
            endpoint = await self.registry.get_endpoint(session, delivery.endpoint_id)
            event = await session.get(OutboundEventModel, delivery.event_id)

        attempts = delivery.attempts

        precondition = self._precondition_error(endpoint, event)
        if precondition is not None:
            return await self._fail(delivery_id, attempts, None, precondition)

        body = canonical_json(build_envelope(event, attempts))
        if len(body) > self.settings.max_payload_bytes:
            return await self._fail(
                delivery_id, attempts, None,
                f"{PAYLOAD_TOO_LARGE}: {len(body)} bytes "
                f"(max {self.settings.max_payload_bytes})",
            )

        request = OutboundRequest(
            url=endpoint.url,
            body=body,
            headers=self._headers(delivery_id, endpoint, event, body),
            timeout=self.settings.request_timeout_seconds,
        )
        result = await self.transport.send(request)

        if result.ok:
            return await self._succeed(delivery_id, attempts, result.status_code)

        if result.status_code is not None:
            error = f"HTTP {result.status_code}"
            if result.body_excerpt:
                error = f"{error}: {result.body_excerpt}"
        else:
            error = result.error or "unknown transport error"
        return await self._retry_or_fail(delivery_id, attempts, result.status_code, error)

    # ── Helpers ──

    def _precondition_error(
        self, endpoint: EndpointModel | None, event: OutboundEventModel | None,
    ) -> Optional[str]:
        if endpoint is None:
            return ENDPOINT_NOT_FOUND
        if event is None:
            return EVENT_NOT_FOUND
        if not endpoint.is_active:
            return ENDPOINT_INACTIVE
        return url_error(endpoint.url, self.settings.require_https)

    def _headers(
        self,
        delivery_id: str,
        endpoint: EndpointModel,
        event: OutboundEventModel,
        body: bytes,
    ) -> dict[str, str]:
        # Sign with the secret current at send time.
        timestamp = int(self.clock().timestamp())
        headers = {
            "Content-Type": "application/json",
            "User-Agent": self.settings.user_agent,
            "X-Webhook-Id": event.id,
            "X-Webhook-Delivery": delivery_id,
            "X-Webhook-Event": event.type,
            "X-Webhook-Spec-Version": SPEC_VERSION,
        }
        headers.update(signature_headers(endpoint.secret, body, timestamp))
        return headers

    def _truncate(self, error: str) -> str:
        return error[: self.settings.max_error_length]

    async def _succeed(self, delivery_id: str, attempts: int, code: int) -> DispatchOutcome:
        async with self.db.get_session() as session:
            written = await self.store.mark_delivered(
                session, delivery_id, attempts, code, self.clock(),
            )
        if not written:
            return self._lost_claim(delivery_id, attempts)
        logger.info(
            "Delivery succeeded",
            extra={"delivery_id": delivery_id, "attempts": attempts, "code": code},
        )
        return DispatchOutcome(
            delivery_id, OUTCOME_DELIVERED, status=DELIVERED, attempts=attempts, code=code,
        )

    async def _fail(
        self, delivery_id: str, attempts: int, code: int | None, error: str,
    ) -> DispatchOutcome:
        error = self._truncate(error)
        async with self.db.get_session() as session:
            written = await self.store.mark_failed(
                session, delivery_id, attempts, code, error, self.clock(),
            )
        if not written:
            return self._lost_claim(delivery_id, attempts)
        logger.warning(
            "Delivery failed permanently",
            extra={"delivery_id": delivery_id, "attempts": attempts, "error": error},
        )
        return DispatchOutcome(
            delivery_id, OUTCOME_FAILED, status=FAILED,
            attempts=attempts, code=code, error=error,
        )

    async def _retry_or_fail(
        self, delivery_id: str, attempts: int, code: int | None, error: str,
    ) -> DispatchOutcome:
        if attempts >= self.settings.max_attempts:
            return await self._fail(delivery_id, attempts, code, error)

        error = self._truncate(error)
        now = self.clock()
        next_attempt_at = now + self.backoff.delay(attempts)
        async with self.db.get_session() as session:
            written = await self.store.schedule_retry(
                session, delivery_id, attempts, next_attempt_at, code, error, now,
            )
        if not written:
            return self._lost_claim(delivery_id, attempts)
        logger.info(
            "Delivery attempt failed, retry scheduled",
            extra={
                "delivery_id": delivery_id,
                "attempts": attempts,
                "code": code,
                "error": error,
                "next_attempt_at": next_attempt_at.isoformat(),
            },
        )
        return DispatchOutcome(
            delivery_id, OUTCOME_RETRY, status=PENDING, attempts=attempts,
            code=code, error=error, next_attempt_at=next_attempt_at,
        )

    def _lost_claim(self, delivery_id: str, attempts: int) -> DispatchOutcome:
        # The reaper recovered the row and another worker may own it now.
        logger.warning(
            "Delivery changed while in flight, outcome discarded",
            extra={"delivery_id": delivery_id, "attempts": attempts},
        )
        return DispatchOutcome(delivery_id, OUTCOME_SKIPPED, attempts=attempts)

    async def aclose(self) -> None:
        await self.transport.aclose()
