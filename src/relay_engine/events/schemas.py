"""Pydantic schemas for event intake routes."""

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, Field


class EventCreate(BaseModel):
    id: Optional[str] = Field(None, max_length=36)
    clinic_id: str = Field(..., min_length=1, max_length=36)
    type: str = Field(..., min_length=1, max_length=100)
    resource: Optional[str] = Field(None, max_length=100)
    resource_id: Optional[str] = Field(None, max_length=100)
    payload: dict[str, Any] = {}


class EventResponse(BaseModel):
    id: str
    clinic_id: str
    type: str
    resource: Optional[str] = None
    resource_id: Optional[str] = None
    payload: dict[str, Any] = {}
    created_at: datetime

    model_config = {"from_attributes": True}


class EventEmitResponse(BaseModel):
    event: EventResponse
    delivery_ids: list[str] = []
