"""
Detections Router — run shelf detection and browse detection history.
"""

from datetime import datetime
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from api.deps import get_current_user, get_detection_provider, get_push_channel, get_tenant_db, get_tenant_id
from db.models import Detection
from detection.aggregator import CandidateSku
from detection.pipeline import DetectionRequest, DetectionService
from detection.provider import DetectionProvider
from notifications.channel import PushChannel

router = APIRouter(prefix="/api/v1/detections", tags=["detections"])


# ─── Schemas ────────────────────────────────────────────────────────────────


class CandidateSkuIn(BaseModel):
    id: str
    name: str
    category: str | None = None


class DetectionCreate(BaseModel):
    image_reference: str = ""
    store_id: str | None = None
    candidate_skus: list[CandidateSkuIn] = []
    confidence_threshold: float | None = None
    idempotency_key: str | None = None


class DetectionRunResponse(BaseModel):
    detection_id: UUID | None
    usage_recorded: bool
    result: dict
    quota: dict | None = None


class DetectionResponse(BaseModel):
    detection_id: UUID
    tenant_id: UUID
    store_id: UUID | None
    image_reference: str
    confidence_threshold: float
    share_of_shelf_percentage: float
    total_facings: int
    detected_skus: int
    missing_skus: int
    processed_at: datetime
    detection_result: dict | None = None

    model_config = {"from_attributes": True}


# ─── Endpoints ──────────────────────────────────────────────────────────────


@router.post("/", response_model=DetectionRunResponse, status_code=201)
async def run_detection(
    body: DetectionCreate,
    db: AsyncSession = Depends(get_tenant_db),
    tenant_id: UUID = Depends(get_tenant_id),
    user: dict = Depends(get_current_user),
    provider: DetectionProvider = Depends(get_detection_provider),
    channel: PushChannel = Depends(get_push_channel),
):
    """Analyze a shelf image against the given candidate SKUs."""
    request = DetectionRequest(
        image_reference=body.image_reference,
        tenant_id=str(tenant_id),
        store_id=body.store_id,
        candidate_skus=[CandidateSku(id=s.id, name=s.name, category=s.category) for s in body.candidate_skus],
        confidence_threshold=body.confidence_threshold,
        idempotency_key=body.idempotency_key,
    )
    outcome = await DetectionService(db, provider, channel).process(request, user_id=user.get("sub"))
    return DetectionRunResponse(
        detection_id=outcome.detection_id,
        usage_recorded=outcome.usage_recorded,
        result=outcome.result.to_dict(),
        quota=outcome.quota.to_rpc() if outcome.quota else None,
    )


@router.get("/", response_model=list[DetectionResponse])
async def list_detections(
    store_id: UUID | None = None,
    skip: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=100),
    db: AsyncSession = Depends(get_tenant_db),
    tenant_id: UUID = Depends(get_tenant_id),
):
    """Detection history, newest first (results omitted; fetch one for detail)."""
    query = select(Detection).where(Detection.tenant_id == tenant_id)
    if store_id:
        query = query.where(Detection.store_id == store_id)
    query = query.order_by(Detection.processed_at.desc()).offset(skip).limit(limit)
    result = await db.execute(query)
    return [
        DetectionResponse.model_validate(d).model_copy(update={"detection_result": None})
        for d in result.scalars().all()
    ]


@router.get("/{detection_id}", response_model=DetectionResponse)
async def get_detection(
    detection_id: UUID,
    db: AsyncSession = Depends(get_tenant_db),
    tenant_id: UUID = Depends(get_tenant_id),
):
    result = await db.execute(
        select(Detection).where(Detection.detection_id == detection_id, Detection.tenant_id == tenant_id)
    )
    detection = result.scalar_one_or_none()
    if not detection:
        raise HTTPException(status_code=404, detail="Detection not found")
    return detection
