"""SQLAlchemy model for delivery records and their status values."""

from datetime import datetime

from sqlalchemy import ForeignKey, Index, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from relay_engine.common.models import Base, TimestampMixin, UTCDateTime, generate_uuid

PENDING = "PENDING"
IN_FLIGHT = "IN_FLIGHT"
DELIVERED = "DELIVERED"
FAILED = "FAILED"

STATUSES: frozenset[str] = frozenset({PENDING, IN_FLIGHT, DELIVERED, FAILED})


class DeliveryModel(Base, TimestampMixin):
    __tablename__ = "outbound_deliveries"
    __table_args__ = (
        UniqueConstraint("event_id", "endpoint_id", name="uq_outbound_deliveries_event_endpoint"),
        Index("ix_outbound_deliveries_status_next", "status", "next_attempt_at"),
        Index("ix_outbound_deliveries_status_started", "status", "dispatch_started_at"),
        Index("ix_outbound_deliveries_endpoint_status", "endpoint_id", "status"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_uuid)
    # No foreign key: endpoints belong to the registry and may be deleted
    # while their deliveries are kept for audit.
    endpoint_id: Mapped[str] = mapped_column(String(36), nullable=False)
    event_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("outbound_events.id"), nullable=False, index=True,
    )
    status: Mapped[str] = mapped_column(String(20), nullable=False, default=PENDING)
    attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_code: Mapped[int | None] = mapped_column(Integer, nullable=True)
    last_error: Mapped[str | None] = mapped_column(String(1024), nullable=True)
    next_attempt_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    dispatch_started_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    delivered_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
