"""
Usage Ledger — per-tenant image counters for daily/weekly/monthly/yearly windows.

Every increment is a single atomic upsert against usage_counters:

    INSERT ... ON CONFLICT (tenant_id, period_type, period_start)
    DO UPDATE SET images_processed = images_processed + :count
    RETURNING images_processed

so concurrent requests for the same tenant never lose updates and callers
never read-then-write. Period rollover falls out of the key: when ``now``
lands in a new window its ``period_start`` has no row yet, so a fresh row is
inserted and the previous one is left untouched as history.

Windows are computed in UTC:
  daily   - calendar day
  weekly  - ISO week (starting Monday)
  monthly - calendar month
  yearly  - calendar year
"""

import uuid
from datetime import date, datetime, timedelta, timezone

import structlog
from sqlalchemy import and_, or_, select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from core.errors import StoreError, ValidationError
from db.models import PERIOD_TYPES, UsageCounter, UsageEvent, naive_utcnow
from usage.quota import LedgerSnapshot

logger = structlog.get_logger()


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc_date(now: datetime | None) -> date:
    if now is None:
        now = utc_now()
    if now.tzinfo is not None:
        now = now.astimezone(timezone.utc)
    return now.date()


def period_start(period_type: str, now: datetime | None = None) -> date:
    """First day of the ``period_type`` window containing ``now`` (UTC)."""
    today = _as_utc_date(now)
    if period_type == "daily":
        return today
    if period_type == "weekly":
        return today - timedelta(days=today.weekday())
    if period_type == "monthly":
        return today.replace(day=1)
    if period_type == "yearly":
        return today.replace(month=1, day=1)
    raise ValidationError(
        f"Unknown period type: {period_type!r}",
        user_message=f"Period type must be one of: {', '.join(PERIOD_TYPES)}.",
    )


def _dialect_insert(db: AsyncSession):
    dialect = db.get_bind().dialect.name
    if dialect == "postgresql":
        return pg_insert
    if dialect == "sqlite":
        return sqlite_insert
    raise StoreError(f"Atomic upsert is not supported on dialect {dialect!r}")


def _coerce_tenant_id(tenant_id) -> uuid.UUID:
    if isinstance(tenant_id, uuid.UUID):
        return tenant_id
    try:
        return uuid.UUID(str(tenant_id))
    except (TypeError, ValueError) as exc:
        raise ValidationError(
            f"Invalid tenant id: {tenant_id!r}",
            user_message="A valid tenant id is required.",
        ) from exc


class UsageLedger:
    """Atomic usage counters backed by the relational store."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def _upsert(
        self,
        tenant_id: uuid.UUID,
        period_type: str,
        images: int,
        training_jobs: int,
        now: datetime | None,
    ) -> int:
        start = period_start(period_type, now)
        stamp = naive_utcnow()
        insert = _dialect_insert(self.db)
        stmt = insert(UsageCounter).values(
            id=uuid.uuid4(),
            tenant_id=tenant_id,
            period_type=period_type,
            period_start=start,
            images_processed=images,
            training_jobs=training_jobs,
            created_at=stamp,
            updated_at=stamp,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=["tenant_id", "period_type", "period_start"],
            set_={
                "images_processed": UsageCounter.images_processed + stmt.excluded.images_processed,
                "training_jobs": UsageCounter.training_jobs + stmt.excluded.training_jobs,
                "updated_at": stamp,
            },
        ).returning(UsageCounter.images_processed)
        result = await self.db.execute(stmt)
        return int(result.scalar_one())

    async def increment(
        self,
        tenant_id,
        period_type: str,
        count: int = 1,
        now: datetime | None = None,
    ) -> int:
        """
        Atomically add ``count`` images to the current ``period_type`` counter.
        Returns the counter value after the increment.
        """
        tenant_uuid = _coerce_tenant_id(tenant_id)
        if count < 0:
            raise ValidationError(f"Negative usage increment: {count}", user_message="Count must not be negative.")
        try:
            value = await self._upsert(tenant_uuid, period_type, count, 0, now)
            await self.db.commit()
        except SQLAlchemyError as exc:
            await self.db.rollback()
            logger.error("usage.increment_failed", tenant_id=str(tenant_uuid), period_type=period_type, error=str(exc))
            raise StoreError(f"Usage increment failed: {exc}") from exc
        return value

    async def record_images(
        self,
        tenant_id,
        count: int = 1,
        idempotency_key: str | None = None,
        now: datetime | None = None,
        period_types: tuple[str, ...] = PERIOD_TYPES,
    ) -> bool:
        """
        Count ``count`` processed images in each of ``period_types`` (every
        window by default) in one transaction. With an ``idempotency_key`` the
        same logical event is counted at most once; a replay returns False
        without touching counters.
        """
        tenant_uuid = _coerce_tenant_id(tenant_id)
        if count < 0:
            raise ValidationError(f"Negative usage increment: {count}", user_message="Count must not be negative.")
        for period_type in period_types:
            period_start(period_type)  # validates period_type
        try:
            if idempotency_key:
                insert = _dialect_insert(self.db)
                claim = (
                    insert(UsageEvent)
                    .values(
                        id=uuid.uuid4(),
                        tenant_id=tenant_uuid,
                        idempotency_key=idempotency_key,
                        images_count=count,
                        created_at=naive_utcnow(),
                    )
                    .on_conflict_do_nothing(index_elements=["tenant_id", "idempotency_key"])
                    .returning(UsageEvent.id)
                )
                claimed = (await self.db.execute(claim)).scalar_one_or_none()
                if claimed is None:
                    logger.info(
                        "usage.duplicate_event_skipped",
                        tenant_id=str(tenant_uuid),
                        idempotency_key=idempotency_key,
                    )
                    return False

            for period_type in period_types:
                await self._upsert(tenant_uuid, period_type, count, 0, now)
            await self.db.commit()
        except SQLAlchemyError as exc:
            await self.db.rollback()
            logger.error("usage.record_failed", tenant_id=str(tenant_uuid), error=str(exc))
            raise StoreError(f"Usage recording failed: {exc}") from exc

        logger.info("usage.recorded", tenant_id=str(tenant_uuid), images=count, idempotency_key=idempotency_key)
        return True

    async def increment_training_jobs(self, tenant_id, count: int = 1, now: datetime | None = None) -> None:
        """Count completed training jobs in the monthly and yearly windows."""
        tenant_uuid = _coerce_tenant_id(tenant_id)
        try:
            for period_type in ("monthly", "yearly"):
                await self._upsert(tenant_uuid, period_type, 0, count, now)
            await self.db.commit()
        except SQLAlchemyError as exc:
            await self.db.rollback()
            raise StoreError(f"Training job counter update failed: {exc}") from exc

    async def read(self, tenant_id, period_type: str, now: datetime | None = None) -> int:
        """Images processed in the current ``period_type`` window, 0 if no row yet."""
        tenant_uuid = _coerce_tenant_id(tenant_id)
        start = period_start(period_type, now)
        try:
            result = await self.db.execute(
                select(UsageCounter.images_processed).where(
                    UsageCounter.tenant_id == tenant_uuid,
                    UsageCounter.period_type == period_type,
                    UsageCounter.period_start == start,
                )
            )
        except SQLAlchemyError as exc:
            raise StoreError(f"Usage read failed: {exc}") from exc
        return int(result.scalar_one_or_none() or 0)

    async def snapshot(self, tenant_id, now: datetime | None = None) -> LedgerSnapshot:
        """Read all current-window counters for a tenant in one query."""
        tenant_uuid = _coerce_tenant_id(tenant_id)
        windows = {pt: period_start(pt, now) for pt in PERIOD_TYPES}
        try:
            result = await self.db.execute(
                select(UsageCounter.period_type, UsageCounter.images_processed).where(
                    UsageCounter.tenant_id == tenant_uuid,
                    or_(
                        *(
                            and_(UsageCounter.period_type == pt, UsageCounter.period_start == start)
                            for pt, start in windows.items()
                        )
                    ),
                )
            )
        except SQLAlchemyError as exc:
            raise StoreError(f"Usage snapshot failed: {exc}") from exc
        counts = {row.period_type: int(row.images_processed) for row in result.all()}
        return LedgerSnapshot(**{pt: counts.get(pt, 0) for pt in PERIOD_TYPES})

    async def history(self, tenant_id, period_type: str, limit: int = 12) -> list[UsageCounter]:
        """Most recent counter rows for a period type, newest first."""
        tenant_uuid = _coerce_tenant_id(tenant_id)
        period_start(period_type)  # validates period_type
        result = await self.db.execute(
            select(UsageCounter)
            .where(UsageCounter.tenant_id == tenant_uuid, UsageCounter.period_type == period_type)
            .order_by(UsageCounter.period_start.desc())
            .limit(limit)
        )
        return list(result.scalars().all())
