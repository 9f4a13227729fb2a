"""
ShelfLens Database Models

Multi-tenant via tenant_id on all tenant-owned tables.

Tables:
  1. tenants          - Tenant accounts and their resource limits
  2. stores           - Physical store locations
  3. categories       - SKU groupings used for share-of-shelf breakdowns
  4. skus             - Registered products the detector is trained on
  5. usage_counters   - Images processed per tenant per quota period
  6. usage_events     - Idempotency keys of already-counted detection events
  7. detections       - Audit trail of detection results
  8. notifications    - Per-user notification feed
"""

import uuid
from datetime import datetime, timezone

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Column,
    Date,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    TypeDecorator,
    UniqueConstraint,
    types,
)
from sqlalchemy.dialects.postgresql import UUID as PG_UUID


class GUID(TypeDecorator):
    """Platform-independent UUID type.

    Uses PostgreSQL UUID when available, stores as CHAR(36) on SQLite.
    """

    impl = types.String(36)
    cache_ok = True

    def load_dialect_impl(self, dialect):
        if dialect.name == "postgresql":
            return dialect.type_descriptor(PG_UUID(as_uuid=True))
        return dialect.type_descriptor(types.String(36))

    def process_bind_param(self, value, dialect):
        if value is None:
            return value
        if dialect.name == "postgresql":
            return value if isinstance(value, uuid.UUID) else uuid.UUID(str(value))
        return str(value) if isinstance(value, uuid.UUID) else str(uuid.UUID(str(value)))

    def process_result_value(self, value, dialect):
        if value is None:
            return value
        if isinstance(value, uuid.UUID):
            return value
        return uuid.UUID(str(value))


from sqlalchemy.orm import relationship

from core.config import get_settings
from db.session import Base

PERIOD_TYPES = ("daily", "weekly", "monthly", "yearly")
TRAINING_STATUSES = ("pending", "training", "completed", "failed")
NOTIFICATION_TYPES = ("processing_complete", "training_complete", "quota_warning", "system_alert")


def naive_utcnow() -> datetime:
    """Current UTC time without tzinfo, matching the timezone-less DateTime columns."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def default_confidence_threshold() -> float:
    return get_settings().default_confidence_threshold


# ─── 1. Tenants ─────────────────────────────────────────────────────────────


class Tenant(Base):
    __tablename__ = "tenants"

    tenant_id = Column(GUID(), primary_key=True, default=uuid.uuid4)
    name = Column(String(255), nullable=False)
    is_active = Column(Boolean, nullable=False, default=True)
    max_skus = Column(Integer, nullable=False, default=50)
    max_images_per_month = Column(Integer, nullable=False, default=1000)
    max_images_per_week = Column(Integer, nullable=False, default=250)
    max_images_per_year = Column(Integer, nullable=False, default=12000)
    confidence_threshold = Column(Float, nullable=False, default=default_confidence_threshold)
    created_at = Column(DateTime, nullable=False, default=naive_utcnow)
    updated_at = Column(DateTime, nullable=False, default=naive_utcnow, onupdate=naive_utcnow)

    __table_args__ = (
        CheckConstraint("max_skus >= 0", name="ck_tenant_max_skus"),
        CheckConstraint("max_images_per_month >= 0", name="ck_tenant_max_month"),
        CheckConstraint("max_images_per_week >= 0", name="ck_tenant_max_week"),
        CheckConstraint("max_images_per_year >= 0", name="ck_tenant_max_year"),
        CheckConstraint(
            "confidence_threshold >= 0.5 AND confidence_threshold <= 1",
            name="ck_tenant_confidence_range",
        ),
    )

    stores = relationship("Store", back_populates="tenant", cascade="all, delete-orphan")
    skus = relationship("Sku", back_populates="tenant", cascade="all, delete-orphan")


# ─── 2. Stores ──────────────────────────────────────────────────────────────


class Store(Base):
    __tablename__ = "stores"

    store_id = Column(GUID(), primary_key=True, default=uuid.uuid4)
    tenant_id = Column(GUID(), ForeignKey("tenants.tenant_id"), nullable=False)
    name = Column(String(255), nullable=False)
    address = Column(Text)
    city = Column(String(100))
    country = Column(String(100))
    created_at = Column(DateTime, nullable=False, default=naive_utcnow)

    __table_args__ = (Index("ix_stores_tenant", "tenant_id"),)

    tenant = relationship("Tenant", back_populates="stores")


# ─── 3. Categories ──────────────────────────────────────────────────────────


class Category(Base):
    __tablename__ = "categories"

    category_id = Column(GUID(), primary_key=True, default=uuid.uuid4)
    tenant_id = Column(GUID(), ForeignKey("tenants.tenant_id"), nullable=False)
    name = Column(String(100), nullable=False)
    description = Column(Text)
    created_at = Column(DateTime, nullable=False, default=naive_utcnow)

    __table_args__ = (UniqueConstraint("tenant_id", "name", name="uq_category_name_per_tenant"),)

    skus = relationship("Sku", back_populates="category")


# ─── 4. SKUs ────────────────────────────────────────────────────────────────


class Sku(Base):
    __tablename__ = "skus"

    sku_id = Column(GUID(), primary_key=True, default=uuid.uuid4)
    tenant_id = Column(GUID(), ForeignKey("tenants.tenant_id"), nullable=False)
    category_id = Column(GUID(), ForeignKey("categories.category_id"), nullable=True)
    name = Column(String(255), nullable=False)
    barcode = Column(String(64))
    description = Column(Text)
    is_active = Column(Boolean, nullable=False, default=True)
    training_status = Column(String(20), nullable=False, default="pending")
    created_at = Column(DateTime, nullable=False, default=naive_utcnow)
    updated_at = Column(DateTime, nullable=False, default=naive_utcnow, onupdate=naive_utcnow)

    __table_args__ = (
        Index("ix_skus_tenant", "tenant_id"),
        CheckConstraint(
            "training_status IN ('pending', 'training', 'completed', 'failed')",
            name="ck_sku_training_status",
        ),
    )

    tenant = relationship("Tenant", back_populates="skus")
    category = relationship("Category", back_populates="skus")


# ─── 5. Usage Counters ──────────────────────────────────────────────────────


class UsageCounter(Base):
    """One row per (tenant, period type, period start). Past periods are history."""

    __tablename__ = "usage_counters"

    id = Column(GUID(), primary_key=True, default=uuid.uuid4)
    tenant_id = Column(GUID(), ForeignKey("tenants.tenant_id"), nullable=False)
    period_type = Column(String(10), nullable=False)
    period_start = Column(Date, nullable=False)
    images_processed = Column(Integer, nullable=False, default=0)
    training_jobs = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime, nullable=False, default=naive_utcnow)
    updated_at = Column(DateTime, nullable=False, default=naive_utcnow, onupdate=naive_utcnow)

    __table_args__ = (
        UniqueConstraint("tenant_id", "period_type", "period_start", name="uq_usage_counter_period"),
        CheckConstraint("period_type IN ('daily', 'weekly', 'monthly', 'yearly')", name="ck_usage_period_type"),
        CheckConstraint("images_processed >= 0", name="ck_usage_images_positive"),
    )


# ─── 6. Usage Events ────────────────────────────────────────────────────────


class UsageEvent(Base):
    __tablename__ = "usage_events"

    id = Column(GUID(), primary_key=True, default=uuid.uuid4)
    tenant_id = Column(GUID(), ForeignKey("tenants.tenant_id"), nullable=False)
    idempotency_key = Column(String(255), nullable=False)
    images_count = Column(Integer, nullable=False)
    created_at = Column(DateTime, nullable=False, default=naive_utcnow)

    __table_args__ = (UniqueConstraint("tenant_id", "idempotency_key", name="uq_usage_event_key"),)


# ─── 7. Detections ──────────────────────────────────────────────────────────


class Detection(Base):
    __tablename__ = "detections"

    detection_id = Column(GUID(), primary_key=True, default=uuid.uuid4)
    tenant_id = Column(GUID(), ForeignKey("tenants.tenant_id"), nullable=False)
    store_id = Column(GUID(), ForeignKey("stores.store_id"), nullable=True)
    requested_by = Column(String(255))
    image_reference = Column(Text, nullable=False)
    confidence_threshold = Column(Float, nullable=False)
    detection_result = Column(JSON, nullable=False)
    share_of_shelf_percentage = Column(Float, nullable=False, default=0.0)
    total_facings = Column(Integer, nullable=False, default=0)
    detected_skus = Column(Integer, nullable=False, default=0)
    missing_skus = Column(Integer, nullable=False, default=0)
    processed_at = Column(DateTime, nullable=False, default=naive_utcnow)

    __table_args__ = (
        Index("ix_detections_tenant_time", "tenant_id", "processed_at"),
        CheckConstraint(
            "share_of_shelf_percentage >= 0 AND share_of_shelf_percentage <= 100",
            name="ck_detection_sos_range",
        ),
    )


# ─── 8. Notifications ───────────────────────────────────────────────────────


class Notification(Base):
    __tablename__ = "notifications"

    notification_id = Column(GUID(), primary_key=True, default=uuid.uuid4)
    user_id = Column(String(255), nullable=False)
    tenant_id = Column(GUID(), ForeignKey("tenants.tenant_id"), nullable=True)
    type = Column(String(30), nullable=False)
    title = Column(String(255), nullable=False)
    message = Column(Text, nullable=False)
    is_read = Column(Boolean, nullable=False, default=False)
    notification_metadata = Column("metadata", JSON, default=dict)
    created_at = Column(DateTime, nullable=False, default=naive_utcnow)

    __table_args__ = (
        Index("ix_notifications_user_time", "user_id", "created_at"),
        CheckConstraint(
            "type IN ('processing_complete', 'training_complete', 'quota_warning', 'system_alert')",
            name="ck_notification_type",
        ),
    )
