"""Pydantic schemas for endpoint registry API routes."""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field


class EndpointCreate(BaseModel):
    clinic_id: str = Field(..., min_length=1, max_length=36)
    url: str = Field(..., max_length=2048)
    name: str = Field("", max_length=255)
    secret: Optional[str] = Field(None, min_length=16, max_length=255)
    event_types: list[str] = []
    is_active: bool = True
    max_concurrent_deliveries: int = Field(5, ge=1, le=15)


class EndpointUpdate(BaseModel):
    url: Optional[str] = Field(None, max_length=2048)
    name: Optional[str] = Field(None, max_length=255)
    event_types: Optional[list[str]] = None
    is_active: Optional[bool] = None
    max_concurrent_deliveries: Optional[int] = Field(None, ge=1, le=15)


class EndpointStatsResponse(BaseModel):
    total: int = 0
    delivered: int = 0
    failed: int = 0
    success_rate: float = 0.0
    last_delivery_at: Optional[datetime] = None


class EndpointResponse(BaseModel):
    id: str
    clinic_id: str
    name: str
    url: str
    event_types: list[str] = []
    is_active: bool
    max_concurrent_deliveries: int
    created_at: datetime
    updated_at: datetime
    stats: Optional[EndpointStatsResponse] = None


class EndpointCreatedResponse(EndpointResponse):
    # The secret is only ever returned when it is first set.
    secret: str


class SecretResponse(BaseModel):
    endpoint_id: str
    secret: str
