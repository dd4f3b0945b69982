"""Shared Pydantic schemas for Relay-Engine."""

from pydantic import BaseModel

from relay_engine import __version__


class HealthResponse(BaseModel):
    status: str = "ok"
    version: str = __version__
    service: str = "relay-engine"


class ErrorResponse(BaseModel):
    error: str
    code: str
    detail: str = ""
