"""Dependency injection singletons for the Relay-Engine API."""

from relay_engine.common.config import get_settings
from relay_engine.engine import DeliveryEngine

_engine: DeliveryEngine | None = None


def get_engine() -> DeliveryEngine:
    global _engine
    if _engine is None:
        _engine = DeliveryEngine.build(get_settings())
    return _engine


def reset_singletons() -> None:
    """Reset all singletons (for testing)."""
    global _engine
    _engine = None
