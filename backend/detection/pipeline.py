"""
Detection Pipeline — one inbound shelf-image request end to end.

  1. Validate the request
  2. Evaluate quota (short-circuits before the paid provider call)
  3. Resolve catalog categories for the candidate SKUs
  4. Call the detection provider under a timeout
  5. Aggregate raw detections into a DetectionResult
  6. Persist the result for audit/history
  7. Count usage across all quota windows (idempotent, retried)
  8. Emit processing_complete (+ a deduplicated quota_warning)

A usage-ledger failure after a successful detection is logged and reported
via ``usage_recorded=False``; the computed result is still returned.
"""

import asyncio
import uuid
from dataclasses import dataclass, field

import structlog
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from core.config import get_settings
from core.errors import ProviderError, QuotaExceededError, ShelfLensError, StoreError, ValidationError
from db.models import Category, Detection, Sku, Tenant
from detection.aggregator import CandidateSku, DetectionResult, aggregate
from detection.confidence import validate_confidence_threshold
from detection.provider import DetectionProvider
from notifications.channel import PushChannel
from notifications.dispatcher import NotificationDispatcher
from usage.ledger import UsageLedger, period_start
from usage.quota import STATUS_INACTIVE, STATUS_NEAR_LIMIT, STATUS_QUOTA_EXCEEDED, QuotaInfo
from usage.service import check_tenant_quota, get_tenant

logger = structlog.get_logger()


@dataclass
class DetectionRequest:
    image_reference: str
    tenant_id: str
    candidate_skus: list[CandidateSku] = field(default_factory=list)
    store_id: str | None = None
    confidence_threshold: float | None = None
    idempotency_key: str | None = None


@dataclass
class DetectionOutcome:
    result: DetectionResult
    detection_id: uuid.UUID | None
    usage_recorded: bool
    quota: QuotaInfo | None = None


def _parse_uuid(value, field_name: str) -> uuid.UUID:
    try:
        return value if isinstance(value, uuid.UUID) else uuid.UUID(str(value))
    except (TypeError, ValueError) as exc:
        raise ValidationError(f"Invalid {field_name}: {value!r}", user_message=f"A valid {field_name} is required.") from exc


def validate_request(request: DetectionRequest) -> None:
    if not request.image_reference or not str(request.image_reference).strip():
        raise ValidationError("Missing image reference", user_message="An image is required for detection.")
    if not request.tenant_id or not str(request.tenant_id).strip():
        raise ValidationError("Missing tenant id", user_message="A tenant is required for detection.")
    _parse_uuid(request.tenant_id, "tenant id")
    if request.store_id:
        _parse_uuid(request.store_id, "store id")
    if request.confidence_threshold is not None:
        validate_confidence_threshold(request.confidence_threshold)


class DetectionService:
    def __init__(
        self,
        db: AsyncSession,
        provider: DetectionProvider,
        channel: PushChannel | None = None,
    ):
        self.db = db
        self.provider = provider
        self.settings = get_settings()
        self.ledger = UsageLedger(db)
        self.notifications = NotificationDispatcher(db, channel)

    async def process(self, request: DetectionRequest, user_id: str | None = None) -> DetectionOutcome:
        validate_request(request)
        tenant = await get_tenant(self.db, request.tenant_id)
        log = logger.bind(tenant_id=str(tenant.tenant_id), store_id=request.store_id)

        threshold = validate_confidence_threshold(
            request.confidence_threshold
            if request.confidence_threshold is not None
            else tenant.confidence_threshold
        )

        quota = await check_tenant_quota(self.db, tenant.tenant_id)
        if not quota.can_process:
            log.info("detection.quota_denied", status=quota.status, monthly_usage=quota.monthly_usage)
            await self._warn_quota(user_id, tenant, quota)
            raise QuotaExceededError(
                f"Tenant {tenant.tenant_id} cannot process images (status={quota.status})",
                user_message=(
                    "This account is inactive."
                    if quota.status == STATUS_INACTIVE
                    else f"Image quota exceeded (monthly {quota.monthly_usage}/{quota.monthly_limit})."
                ),
                details={"quota": quota.to_rpc()},
            )

        candidates = await self._resolve_categories(tenant.tenant_id, request.candidate_skus)
        raw = await self._call_provider(request.image_reference)
        result = aggregate(raw, candidates, threshold)
        log.info(
            "detection.aggregated",
            matched=len(result.matches),
            missing=len(result.missing_skus),
            share_of_shelf=result.share_of_shelf.percentage,
        )

        detection_id = await self._persist(tenant.tenant_id, request, result, threshold, user_id)
        idempotency_key = request.idempotency_key or f"detection:{detection_id or uuid.uuid4()}"
        usage_recorded = await self._record_usage(tenant.tenant_id, idempotency_key)

        post_quota = None
        if user_id:
            post_quota = await self._notify_completion(user_id, tenant, result, detection_id, usage_recorded)

        return DetectionOutcome(
            result=result,
            detection_id=detection_id,
            usage_recorded=usage_recorded,
            quota=post_quota,
        )

    async def _call_provider(self, image_reference: str):
        timeout = self.settings.detection_timeout_seconds
        try:
            return await asyncio.wait_for(self.provider.detect(image_reference), timeout=timeout)
        except asyncio.TimeoutError as exc:
            logger.warning("detection.provider_timeout", provider=self.provider.name, timeout=timeout)
            raise ProviderError(
                f"Detection provider did not answer within {timeout}s",
                user_message="The detection service timed out. Please try again.",
                unavailable=True,
            ) from exc

    async def _resolve_categories(self, tenant_id: uuid.UUID, candidates: list[CandidateSku]) -> list[CandidateSku]:
        """Fill in catalog categories for candidates that did not bring one."""
        lookup_ids = []
        for sku in candidates:
            if sku.category:
                continue
            try:
                lookup_ids.append(uuid.UUID(str(sku.id)))
            except ValueError:
                continue
        if not lookup_ids:
            return list(candidates)

        try:
            result = await self.db.execute(
                select(Sku.sku_id, Category.name)
                .join(Category, Category.category_id == Sku.category_id)
                .where(Sku.tenant_id == tenant_id, Sku.sku_id.in_(lookup_ids))
            )
        except SQLAlchemyError as exc:
            logger.error("detection.category_lookup_failed", tenant_id=str(tenant_id), error=str(exc))
            raise StoreError(f"Category lookup failed: {exc}") from exc
        categories = {str(row.sku_id): row.name for row in result.all()}
        return [
            sku if sku.category else CandidateSku(id=sku.id, name=sku.name, category=categories.get(str(sku.id)))
            for sku in candidates
        ]

    async def _persist(
        self,
        tenant_id: uuid.UUID,
        request: DetectionRequest,
        result: DetectionResult,
        threshold: float,
        user_id: str | None,
    ) -> uuid.UUID | None:
        detection = Detection(
            tenant_id=tenant_id,
            store_id=_parse_uuid(request.store_id, "store id") if request.store_id else None,
            requested_by=user_id,
            image_reference=request.image_reference,
            confidence_threshold=threshold,
            detection_result=result.to_dict(),
            share_of_shelf_percentage=result.share_of_shelf.percentage,
            total_facings=result.total_facings,
            detected_skus=len(result.matches),
            missing_skus=len(result.missing_skus),
        )
        try:
            self.db.add(detection)
            await self.db.commit()
        except SQLAlchemyError as exc:
            await self.db.rollback()
            logger.error("detection.persist_failed", tenant_id=str(tenant_id), error=str(exc))
            return None
        return detection.detection_id

    async def _record_usage(self, tenant_id: uuid.UUID, idempotency_key: str) -> bool:
        retrying = AsyncRetrying(
            stop=stop_after_attempt(max(1, self.settings.usage_retry_attempts)),
            wait=wait_exponential(multiplier=0.2, max=2),
            retry=retry_if_exception_type(StoreError),
            reraise=True,
        )
        try:
            async for attempt in retrying:
                with attempt:
                    await self.ledger.record_images(tenant_id, 1, idempotency_key=idempotency_key)
        except StoreError as exc:
            logger.error(
                "detection.usage_not_recorded",
                tenant_id=str(tenant_id),
                idempotency_key=idempotency_key,
                error=exc.message,
            )
            return False
        return True

    async def _notify_completion(
        self,
        user_id: str,
        tenant: Tenant,
        result: DetectionResult,
        detection_id: uuid.UUID | None,
        usage_recorded: bool,
    ) -> QuotaInfo | None:
        try:
            await self.notifications.emit(
                user_id,
                tenant.tenant_id,
                "processing_complete",
                "Shelf analysis complete",
                result.summary,
                {
                    "detection_id": str(detection_id) if detection_id else None,
                    "share_of_shelf": result.share_of_shelf.percentage,
                    "detected_skus": len(result.matches),
                    "missing_skus": len(result.missing_skus),
                    "usage_recorded": usage_recorded,
                },
            )
            quota = await check_tenant_quota(self.db, tenant.tenant_id)
            await self._warn_quota(user_id, tenant, quota)
            return quota
        except ShelfLensError as exc:
            logger.warning("detection.notify_failed", tenant_id=str(tenant.tenant_id), error=exc.message)
            return None

    async def _warn_quota(self, user_id: str | None, tenant: Tenant, quota: QuotaInfo) -> None:
        """One quota_warning per user, status and monthly window until it is read."""
        if not user_id or quota.status not in (STATUS_NEAR_LIMIT, STATUS_QUOTA_EXCEEDED):
            return
        if quota.status == STATUS_QUOTA_EXCEEDED:
            title = "Image quota exceeded"
            message = (
                f"{tenant.name} has reached its image quota "
                f"(monthly {quota.monthly_usage}/{quota.monthly_limit}). New detections are paused."
            )
        else:
            title = "Approaching image quota"
            message = (
                f"{tenant.name} has used {quota.monthly_percentage:.0f}% of its monthly image quota "
                f"({quota.monthly_usage}/{quota.monthly_limit})."
            )
        dedupe_key = f"{tenant.tenant_id}:{quota.status}:{period_start('monthly').isoformat()}"
        try:
            await self.notifications.emit_once(
                user_id,
                tenant.tenant_id,
                "quota_warning",
                title,
                message,
                dedupe_key=dedupe_key,
                metadata={"status": quota.status, "quota": quota.to_rpc()},
            )
        except ShelfLensError as exc:
            logger.warning("detection.quota_warning_failed", tenant_id=str(tenant.tenant_id), error=exc.message)
