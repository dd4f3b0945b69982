"""Hand-off to a dispatcher running in another process."""

from datetime import datetime

import httpx

from relay_engine.deliveries.dispatcher import DispatchOutcome


class RemoteDispatcher:
    """Dispatch through the ``/cron/deliveries/{id}/dispatch`` route of a
    sibling Relay-Engine service.

    Raises ``httpx.HTTPError`` when the service cannot be reached or answers
    with an error, which the pump counts as a failed hand-off.
    """

    def __init__(
        self,
        base_url: str,
        cron_key: str,
        timeout: float = 30.0,
        client: httpx.AsyncClient | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.cron_key = cron_key
        self.timeout = timeout
        self._client = client
        self._owns_client = client is None

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient()
        return self._client

    async def attempt(self, delivery_id: str) -> DispatchOutcome:
        resp = await self._get_client().post(
            f"{self.base_url}/cron/deliveries/{delivery_id}/dispatch",
            headers={"X-Relay-Cron-Key": self.cron_key},
            timeout=self.timeout,
        )
        resp.raise_for_status()
        data = resp.json()
        next_attempt_at = data.get("next_attempt_at")
        return DispatchOutcome(
            delivery_id=data["delivery_id"],
            outcome=data["outcome"],
            status=data.get("status"),
            attempts=data.get("attempts", 0),
            code=data.get("code"),
            error=data.get("error"),
            next_attempt_at=datetime.fromisoformat(next_attempt_at) if next_attempt_at else None,
        )

    async def aclose(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None
