"""Create endpoint, event and delivery tables.

Revision ID: 001
Revises:
Create Date: 2026-10-19
"""

import sqlalchemy as sa

from alembic import op

revision = "001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "webhook_endpoints",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("clinic_id", sa.String(36), nullable=False),
        sa.Column("name", sa.String(255), nullable=False, server_default=""),
        sa.Column("url", sa.String(2048), nullable=False),
        sa.Column("secret", sa.String(255), nullable=False),
        sa.Column("event_types", sa.JSON, nullable=True),
        sa.Column("is_active", sa.Boolean, nullable=False, server_default=sa.true()),
        sa.Column("max_concurrent_deliveries", sa.Integer, nullable=False, server_default="5"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_webhook_endpoints_created_at", "webhook_endpoints", ["created_at"])
    op.create_index(
        "ix_webhook_endpoints_clinic_active", "webhook_endpoints", ["clinic_id", "is_active"],
    )

    op.create_table(
        "outbound_events",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("clinic_id", sa.String(36), nullable=False),
        sa.Column("type", sa.String(100), nullable=False),
        sa.Column("resource", sa.String(100), nullable=True),
        sa.Column("resource_id", sa.String(100), nullable=True),
        sa.Column("payload", sa.JSON, nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index(
        "ix_outbound_events_clinic_type_created",
        "outbound_events",
        ["clinic_id", "type", "created_at"],
    )

    op.create_table(
        "outbound_deliveries",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("endpoint_id", sa.String(36), nullable=False),
        sa.Column(
            "event_id", sa.String(36), sa.ForeignKey("outbound_events.id"), nullable=False,
        ),
        sa.Column("status", sa.String(20), nullable=False, server_default="PENDING"),
        sa.Column("attempts", sa.Integer, nullable=False, server_default="0"),
        sa.Column("last_code", sa.Integer, nullable=True),
        sa.Column("last_error", sa.String(1024), nullable=True),
        sa.Column("next_attempt_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("dispatch_started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("delivered_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint(
            "event_id", "endpoint_id", name="uq_outbound_deliveries_event_endpoint",
        ),
        sa.CheckConstraint(
            "status IN ('PENDING', 'IN_FLIGHT', 'DELIVERED', 'FAILED')",
            name="ck_outbound_deliveries_status",
        ),
    )
    op.create_index("ix_outbound_deliveries_created_at", "outbound_deliveries", ["created_at"])
    op.create_index("ix_outbound_deliveries_event_id", "outbound_deliveries", ["event_id"])
    op.create_index(
        "ix_outbound_deliveries_status_next", "outbound_deliveries", ["status", "next_attempt_at"],
    )
    op.create_index(
        "ix_outbound_deliveries_status_started",
        "outbound_deliveries",
        ["status", "dispatch_started_at"],
    )
    op.create_index(
        "ix_outbound_deliveries_endpoint_status", "outbound_deliveries", ["endpoint_id", "status"],
    )


def downgrade() -> None:
    op.drop_table("outbound_deliveries")
    op.drop_table("outbound_events")
    op.drop_table("webhook_endpoints")
