"""Shared test fixtures for Relay-Engine."""

from datetime import timedelta

import pytest
from httpx import ASGITransport, AsyncClient

from relay_engine.common.config import RelaySettings
from relay_engine.common.database import DatabaseManager
from relay_engine.common.models import utcnow
from relay_engine.deliveries.transport import TransportResult
from relay_engine.engine import DeliveryEngine

API_KEY = "test-admin-api-key"
CRON_KEY = "test-cron-key"
CLINIC_ID = "clinic-1"


class FakeClock:
    """Settable clock; starts at the real current time so rows created with
    ``utcnow()`` defaults sort consistently with clock-driven timestamps."""

    def __init__(self):
        self.now = utcnow()

    def __call__(self):
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


class FakeTransport:
    """Records requests and replays scripted results.

    Script entries are status codes, ``TransportResult`` objects, or
    exceptions to raise. When the script runs out, ``default`` is used.
    """

    def __init__(self, *script, default=200):
        self.script = list(script)
        self.default = default
        self.requests = []

    def push(self, *entries) -> None:
        self.script.extend(entries)

    async def send(self, request):
        self.requests.append(request)
        entry = self.script.pop(0) if self.script else self.default
        if isinstance(entry, Exception):
            raise entry
        if isinstance(entry, TransportResult):
            return entry
        return TransportResult(status_code=entry)

    async def aclose(self):
        pass


def make_settings(tmp_path=None, **overrides) -> RelaySettings:
    db_url = f"sqlite+aiosqlite:///{tmp_path}/relay.db" if tmp_path else "sqlite+aiosqlite://"
    defaults = {
        "db_url": db_url,
        "api_key": API_KEY,
        "cron_key": CRON_KEY,
        "backoff_jitter_ratio": 0.0,
    }
    defaults.update(overrides)
    return RelaySettings(**defaults)


@pytest.fixture
def settings(tmp_path):
    return make_settings(tmp_path)


@pytest.fixture
async def db(settings):
    manager = DatabaseManager(settings)
    await manager.init()
    await manager.create_all()
    yield manager
    await manager.close()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def transport():
    return FakeTransport()


@pytest.fixture
def engine(settings, db, transport, clock):
    return DeliveryEngine.build(settings, db=db, transport=transport, clock=clock)


@pytest.fixture
def create_endpoint(engine):
    async def _create(clinic_id=CLINIC_ID, url="https://receiver.example.com/hook", **kwargs):
        async with engine.db.get_session() as session:
            return await engine.registry.create_endpoint(
                session, clinic_id=clinic_id, url=url, **kwargs,
            )
    return _create


@pytest.fixture
def emit(engine):
    async def _emit(event_type="purchase.created", payload=None, clinic_id=CLINIC_ID, **kwargs):
        async with engine.db.get_session() as session:
            return await engine.events.emit(
                session, clinic_id, event_type, payload or {"amount": 1000}, **kwargs,
            )
    return _emit


@pytest.fixture
def load_delivery(engine):
    async def _load(delivery_id):
        async with engine.db.get_session() as session:
            return await engine.store.get(session, delivery_id)
    return _load


# ── API fixtures ──


@pytest.fixture
def app(monkeypatch):
    """Create a test app with in-memory DB."""
    monkeypatch.setenv("RELAY_DB_URL", "sqlite+aiosqlite://")
    monkeypatch.setenv("RELAY_API_KEY", API_KEY)
    monkeypatch.setenv("RELAY_CRON_KEY", CRON_KEY)
    monkeypatch.setenv("RELAY_BACKOFF_JITTER_RATIO", "0")
    # One in-memory connection is shared by every session.
    monkeypatch.setenv("RELAY_PUMP_CONCURRENCY", "1")

    # Clear caches and singletons so new env vars take effect
    from relay_engine.common.config import get_settings
    get_settings.cache_clear()

    from relay_engine.deps import reset_singletons
    reset_singletons()

    from relay_engine.app import create_app
    return create_app()


@pytest.fixture
def api_transport():
    return FakeTransport()


@pytest.fixture
async def client(app, api_transport):
    # Manually init DB since ASGITransport doesn't run lifespan
    from relay_engine.deps import get_engine
    engine = get_engine()
    engine.dispatcher.transport = api_transport
    await engine.db.init()
    await engine.db.create_all()

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    await engine.db.close()


@pytest.fixture
def admin_headers():
    return {"X-Relay-Api-Key": API_KEY}


@pytest.fixture
def cron_headers():
    return {"X-Relay-Cron-Key": CRON_KEY}
