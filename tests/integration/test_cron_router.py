"""Integration tests for cron-triggered pump, reaper and dispatch routes."""

from datetime import timedelta

from relay_engine.common.models import utcnow
from relay_engine.signing.signature import SIGNATURE_HEADER, TIMESTAMP_HEADER, verify


class TestCronRouter:
    async def _setup(self, client, admin_headers, events=1):
        endpoint = (await client.post("/endpoints", json={
            "clinic_id": "clinic-1", "url": "https://receiver.example.com/hook",
        }, headers=admin_headers)).json()
        delivery_ids = []
        for _ in range(events):
            resp = await client.post("/events", json={
                "clinic_id": "clinic-1", "type": "purchase.created", "payload": {"amount": 1},
            }, headers=admin_headers)
            delivery_ids.extend(resp.json()["delivery_ids"])
        return endpoint, delivery_ids

    async def test_requires_cron_key(self, client, admin_headers):
        resp = await client.post("/cron/pump", headers=admin_headers)
        assert resp.status_code == 422
        resp = await client.post("/cron/pump", headers={"X-Relay-Cron-Key": "wrong"})
        assert resp.status_code == 403

    async def test_pump_idle(self, client, cron_headers):
        resp = await client.post("/cron/pump", headers=cron_headers)
        assert resp.status_code == 200
        assert resp.json() == {"picked": 0, "triggered": 0, "failed": 0, "outcomes": {}}

    async def test_pump_delivers_signed_requests(self, client, admin_headers, cron_headers, api_transport):
        endpoint, delivery_ids = await self._setup(client, admin_headers, events=2)

        resp = await client.post("/cron/pump", headers=cron_headers)
        assert resp.json() == {
            "picked": 2, "triggered": 2, "failed": 0, "outcomes": {"delivered": 2},
        }
        for request in api_transport.requests:
            assert verify(
                endpoint["secret"],
                request.headers[TIMESTAMP_HEADER],
                request.body,
                request.headers[SIGNATURE_HEADER],
            )

    async def test_pump_limit(self, client, admin_headers, cron_headers):
        await self._setup(client, admin_headers, events=3)
        resp = await client.post("/cron/pump", params={"limit": 1}, headers=cron_headers)
        assert resp.json()["picked"] == 1

    async def test_dispatch_one(self, client, admin_headers, cron_headers):
        _, (delivery_id,) = await self._setup(client, admin_headers)
        resp = await client.post(f"/cron/deliveries/{delivery_id}/dispatch", headers=cron_headers)
        assert resp.status_code == 200
        data = resp.json()
        assert data["delivery_id"] == delivery_id
        assert data["outcome"] == "delivered"
        assert data["attempts"] == 1

        again = await client.post(f"/cron/deliveries/{delivery_id}/dispatch", headers=cron_headers)
        assert again.json()["outcome"] == "skipped"

    async def test_dispatch_missing(self, client, cron_headers):
        resp = await client.post("/cron/deliveries/nope/dispatch", headers=cron_headers)
        assert resp.status_code == 200
        assert resp.json()["outcome"] == "not_found"

    async def test_dispatch_retry_reported(self, client, admin_headers, cron_headers, api_transport):
        api_transport.push(502)
        _, (delivery_id,) = await self._setup(client, admin_headers)
        resp = await client.post(f"/cron/deliveries/{delivery_id}/dispatch", headers=cron_headers)
        data = resp.json()
        assert data["outcome"] == "retry_scheduled"
        assert data["status"] == "PENDING"
        assert data["code"] == 502
        assert data["next_attempt_at"] is not None

    async def test_reap(self, client, admin_headers, cron_headers):
        from relay_engine.deps import get_engine

        _, (delivery_id,) = await self._setup(client, admin_headers)
        engine = get_engine()
        async with engine.db.get_session() as session:
            await engine.store.claim(session, delivery_id, utcnow() - timedelta(minutes=10))

        resp = await client.post("/cron/reap", headers=cron_headers)
        assert resp.status_code == 200
        assert resp.json() == {"recovered": 1, "failed": 0}

        delivery = (await client.get(f"/deliveries/{delivery_id}", headers=admin_headers)).json()
        assert delivery["status"] == "PENDING"
        assert delivery["attempts"] == 1

    async def test_reap_threshold(self, client, admin_headers, cron_headers):
        from relay_engine.deps import get_engine

        _, (delivery_id,) = await self._setup(client, admin_headers)
        engine = get_engine()
        async with engine.db.get_session() as session:
            await engine.store.claim(session, delivery_id, utcnow() - timedelta(seconds=90))

        resp = await client.post("/cron/reap", params={"stale_after_seconds": 120}, headers=cron_headers)
        assert resp.json()["recovered"] == 0
        resp = await client.post("/cron/reap", params={"stale_after_seconds": 60}, headers=cron_headers)
        assert resp.json()["recovered"] == 1

    async def test_health(self, client):
        resp = await client.get("/health")
        assert resp.status_code == 200
        assert resp.json()["status"] == "ok"
