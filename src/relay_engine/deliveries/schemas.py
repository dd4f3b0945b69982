"""Pydantic schemas for delivery observability and cron routes."""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel


class DeliveryResponse(BaseModel):
    id: str
    endpoint_id: str
    event_id: str
    status: str
    attempts: int
    last_code: Optional[int] = None
    last_error: Optional[str] = None
    next_attempt_at: Optional[datetime] = None
    dispatch_started_at: Optional[datetime] = None
    delivered_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class DeliveryPage(BaseModel):
    items: list[DeliveryResponse]
    next_cursor: Optional[str] = None


class RetryAllResponse(BaseModel):
    endpoint_id: str
    reset: int


class DispatchOutcomeResponse(BaseModel):
    delivery_id: str
    outcome: str
    status: Optional[str] = None
    attempts: int = 0
    code: Optional[int] = None
    error: Optional[str] = None
    next_attempt_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class PumpResponse(BaseModel):
    picked: int
    triggered: int
    failed: int
    outcomes: dict[str, int] = {}


class ReapResponse(BaseModel):
    recovered: int
    failed: int
