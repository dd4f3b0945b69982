"""SQLAlchemy model for registered webhook endpoints."""

from sqlalchemy import Boolean, Index, Integer, JSON, String
from sqlalchemy.orm import Mapped, mapped_column

from relay_engine.common.models import Base, TimestampMixin, generate_uuid


class EndpointModel(Base, TimestampMixin):
    __tablename__ = "webhook_endpoints"
    __table_args__ = (
        Index("ix_webhook_endpoints_clinic_active", "clinic_id", "is_active"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_uuid)
    clinic_id: Mapped[str] = mapped_column(String(36), nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    url: Mapped[str] = mapped_column(String(2048), nullable=False)
    secret: Mapped[str] = mapped_column(String(255), nullable=False)
    # Empty list subscribes the endpoint to every event type.
    event_types: Mapped[list] = mapped_column(JSON, default=list)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    max_concurrent_deliveries: Mapped[int] = mapped_column(Integer, nullable=False, default=5)

    def subscribes_to(self, event_type: str) -> bool:
        return not self.event_types or event_type in self.event_types
