"""
Initial schema - tenants, catalog, usage ledger, detections, notifications

Revision ID: 001
Revises: None
Create Date: 2026-10-19
"""

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects.postgresql import UUID

revision: str = "001"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    # 1. Tenants
    op.create_table(
        "tenants",
        sa.Column("tenant_id", UUID(as_uuid=True), primary_key=True, server_default=sa.text("gen_random_uuid()")),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("is_active", sa.Boolean, nullable=False, server_default="true"),
        sa.Column("max_skus", sa.Integer, nullable=False, server_default="50"),
        sa.Column("max_images_per_month", sa.Integer, nullable=False, server_default="1000"),
        sa.Column("max_images_per_week", sa.Integer, nullable=False, server_default="250"),
        sa.Column("max_images_per_year", sa.Integer, nullable=False, server_default="12000"),
        sa.Column("confidence_threshold", sa.Float, nullable=False, server_default="0.95"),
        sa.Column("created_at", sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.CheckConstraint("max_skus >= 0", name="ck_tenant_max_skus"),
        sa.CheckConstraint("max_images_per_month >= 0", name="ck_tenant_max_month"),
        sa.CheckConstraint("max_images_per_week >= 0", name="ck_tenant_max_week"),
        sa.CheckConstraint("max_images_per_year >= 0", name="ck_tenant_max_year"),
        sa.CheckConstraint(
            "confidence_threshold >= 0.5 AND confidence_threshold <= 1",
            name="ck_tenant_confidence_range",
        ),
    )

    # 2. Stores
    op.create_table(
        "stores",
        sa.Column("store_id", UUID(as_uuid=True), primary_key=True, server_default=sa.text("gen_random_uuid()")),
        sa.Column("tenant_id", UUID(as_uuid=True), sa.ForeignKey("tenants.tenant_id"), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("address", sa.Text),
        sa.Column("city", sa.String(100)),
        sa.Column("country", sa.String(100)),
        sa.Column("created_at", sa.DateTime, nullable=False, server_default=sa.func.now()),
    )
    op.create_index("ix_stores_tenant", "stores", ["tenant_id"])

    # 3. Categories
    op.create_table(
        "categories",
        sa.Column("category_id", UUID(as_uuid=True), primary_key=True, server_default=sa.text("gen_random_uuid()")),
        sa.Column("tenant_id", UUID(as_uuid=True), sa.ForeignKey("tenants.tenant_id"), nullable=False),
        sa.Column("name", sa.String(100), nullable=False),
        sa.Column("description", sa.Text),
        sa.Column("created_at", sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.UniqueConstraint("tenant_id", "name", name="uq_category_name_per_tenant"),
    )

    # 4. SKUs
    op.create_table(
        "skus",
        sa.Column("sku_id", UUID(as_uuid=True), primary_key=True, server_default=sa.text("gen_random_uuid()")),
        sa.Column("tenant_id", UUID(as_uuid=True), sa.ForeignKey("tenants.tenant_id"), nullable=False),
        sa.Column("category_id", UUID(as_uuid=True), sa.ForeignKey("categories.category_id"), nullable=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("barcode", sa.String(64)),
        sa.Column("description", sa.Text),
        sa.Column("is_active", sa.Boolean, nullable=False, server_default="true"),
        sa.Column("training_status", sa.String(20), nullable=False, server_default="pending"),
        sa.Column("created_at", sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.CheckConstraint(
            "training_status IN ('pending', 'training', 'completed', 'failed')",
            name="ck_sku_training_status",
        ),
    )
    op.create_index("ix_skus_tenant", "skus", ["tenant_id"])

    # 5. Usage counters
    op.create_table(
        "usage_counters",
        sa.Column("id", UUID(as_uuid=True), primary_key=True, server_default=sa.text("gen_random_uuid()")),
        sa.Column("tenant_id", UUID(as_uuid=True), sa.ForeignKey("tenants.tenant_id"), nullable=False),
        sa.Column("period_type", sa.String(10), nullable=False),
        sa.Column("period_start", sa.Date, nullable=False),
        sa.Column("images_processed", sa.Integer, nullable=False, server_default="0"),
        sa.Column("training_jobs", sa.Integer, nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.UniqueConstraint("tenant_id", "period_type", "period_start", name="uq_usage_counter_period"),
        sa.CheckConstraint("period_type IN ('daily', 'weekly', 'monthly', 'yearly')", name="ck_usage_period_type"),
        sa.CheckConstraint("images_processed >= 0", name="ck_usage_images_positive"),
    )

    # 6. Usage events (idempotency keys)
    op.create_table(
        "usage_events",
        sa.Column("id", UUID(as_uuid=True), primary_key=True, server_default=sa.text("gen_random_uuid()")),
        sa.Column("tenant_id", UUID(as_uuid=True), sa.ForeignKey("tenants.tenant_id"), nullable=False),
        sa.Column("idempotency_key", sa.String(255), nullable=False),
        sa.Column("images_count", sa.Integer, nullable=False),
        sa.Column("created_at", sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.UniqueConstraint("tenant_id", "idempotency_key", name="uq_usage_event_key"),
    )

    # 7. Detections
    op.create_table(
        "detections",
        sa.Column("detection_id", UUID(as_uuid=True), primary_key=True, server_default=sa.text("gen_random_uuid()")),
        sa.Column("tenant_id", UUID(as_uuid=True), sa.ForeignKey("tenants.tenant_id"), nullable=False),
        sa.Column("store_id", UUID(as_uuid=True), sa.ForeignKey("stores.store_id"), nullable=True),
        sa.Column("requested_by", sa.String(255)),
        sa.Column("image_reference", sa.Text, nullable=False),
        sa.Column("confidence_threshold", sa.Float, nullable=False),
        sa.Column("detection_result", sa.JSON, nullable=False),
        sa.Column("share_of_shelf_percentage", sa.Float, nullable=False, server_default="0"),
        sa.Column("total_facings", sa.Integer, nullable=False, server_default="0"),
        sa.Column("detected_skus", sa.Integer, nullable=False, server_default="0"),
        sa.Column("missing_skus", sa.Integer, nullable=False, server_default="0"),
        sa.Column("processed_at", sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.CheckConstraint(
            "share_of_shelf_percentage >= 0 AND share_of_shelf_percentage <= 100",
            name="ck_detection_sos_range",
        ),
    )
    op.create_index("ix_detections_tenant_time", "detections", ["tenant_id", "processed_at"])

    # 8. Notifications
    op.create_table(
        "notifications",
        sa.Column(
            "notification_id", UUID(as_uuid=True), primary_key=True, server_default=sa.text("gen_random_uuid()")
        ),
        sa.Column("user_id", sa.String(255), nullable=False),
        sa.Column("tenant_id", UUID(as_uuid=True), sa.ForeignKey("tenants.tenant_id"), nullable=True),
        sa.Column("type", sa.String(30), nullable=False),
        sa.Column("title", sa.String(255), nullable=False),
        sa.Column("message", sa.Text, nullable=False),
        sa.Column("is_read", sa.Boolean, nullable=False, server_default="false"),
        sa.Column("metadata", sa.JSON),
        sa.Column("created_at", sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.CheckConstraint(
            "type IN ('processing_complete', 'training_complete', 'quota_warning', 'system_alert')",
            name="ck_notification_type",
        ),
    )
    op.create_index("ix_notifications_user_time", "notifications", ["user_id", "created_at"])

    # Row-Level Security for tenant isolation
    tables_with_rls = ["stores", "categories", "skus", "usage_counters", "usage_events", "detections"]
    for table in tables_with_rls:
        op.execute(f"ALTER TABLE {table} ENABLE ROW LEVEL SECURITY")
        op.execute(
            f"CREATE POLICY tenant_isolation ON {table} "
            f"USING (tenant_id::text = current_setting('app.current_tenant_id', true))"
        )


def downgrade() -> None:
    tables = [
        "notifications",
        "detections",
        "usage_events",
        "usage_counters",
        "skus",
        "categories",
        "stores",
        "tenants",
    ]
    for table in tables:
        op.drop_table(table)
