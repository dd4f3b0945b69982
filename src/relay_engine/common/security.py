"""API key authentication dependencies."""

import hmac

from fastapi import Header, HTTPException


def _matches(provided: str, expected: str) -> bool:
    return hmac.compare_digest(provided.encode("utf-8"), expected.encode("utf-8"))


async def require_api_key(
    x_relay_api_key: str = Header(..., alias="X-Relay-Api-Key"),
) -> str:
    """FastAPI dependency that validates the admin API key from header."""
    from relay_engine.common.config import get_settings

    settings = get_settings()
    if not _matches(x_relay_api_key, settings.api_key):
        raise HTTPException(status_code=403, detail="Invalid API key")
    return x_relay_api_key


async def require_cron_key(
    x_relay_cron_key: str = Header(..., alias="X-Relay-Cron-Key"),
) -> str:
    """FastAPI dependency that validates the scheduler key for pump/reap triggers."""
    from relay_engine.common.config import get_settings

    settings = get_settings()
    if not _matches(x_relay_cron_key, settings.cron_key):
        raise HTTPException(status_code=403, detail="Invalid cron key")
    return x_relay_cron_key
