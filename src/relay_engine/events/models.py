"""SQLAlchemy model for immutable outbound business events."""

from datetime import datetime

from sqlalchemy import Index, JSON, String
from sqlalchemy.orm import Mapped, mapped_column

from relay_engine.common.models import Base, UTCDateTime, generate_uuid, utcnow


class OutboundEventModel(Base):
    __tablename__ = "outbound_events"
    __table_args__ = (
        Index("ix_outbound_events_clinic_type_created", "clinic_id", "type", "created_at"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_uuid)
    clinic_id: Mapped[str] = mapped_column(String(36), nullable=False)
    type: Mapped[str] = mapped_column(String(100), nullable=False)
    resource: Mapped[str | None] = mapped_column(String(100), nullable=True)
    resource_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    payload: Mapped[dict] = mapped_column(JSON, default=dict)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False, default=utcnow)
