"""
Detection Workers — run queued shelf-detection requests.

Each task is an independent unit of work with its own engine and session;
nothing is shared between tasks except the database.
"""

from __future__ import annotations

import asyncio

import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from workers.celery_app import celery_app

logger = structlog.get_logger()


async def run_detection_task(
    db: AsyncSession,
    *,
    payload: dict,
    provider,
    channel=None,
) -> dict:
    """Execute one detection payload within an existing session."""
    from core.errors import ShelfLensError
    from detection.aggregator import CandidateSku
    from detection.pipeline import DetectionRequest, DetectionService

    request = DetectionRequest(
        image_reference=payload.get("image_reference", ""),
        tenant_id=payload.get("tenant_id", ""),
        store_id=payload.get("store_id"),
        candidate_skus=[
            CandidateSku(id=str(s["id"]), name=s["name"], category=s.get("category"))
            for s in payload.get("candidate_skus", [])
        ],
        confidence_threshold=payload.get("confidence_threshold"),
        idempotency_key=payload.get("idempotency_key"),
    )
    try:
        outcome = await DetectionService(db, provider, channel).process(request, user_id=payload.get("user_id"))
    except ShelfLensError as exc:
        logger.warning("worker.detection_failed", tenant_id=request.tenant_id, kind=exc.kind, error=exc.message)
        return {"status": "failed", **exc.to_dict()}

    return {
        "status": "success",
        "detection_id": str(outcome.detection_id) if outcome.detection_id else None,
        "usage_recorded": outcome.usage_recorded,
        "result": outcome.result.to_dict(),
    }


@celery_app.task(
    name="workers.detection.process_detection",
    bind=True,
    acks_late=True,
)
def process_detection(self, payload: dict):
    """
    Process a queued detection request.

    ``payload`` mirrors the HTTP request body plus ``tenant_id`` and
    ``user_id``. The idempotency key defaults to the Celery task id so a
    redelivered task never double-counts usage.
    """
    from core.config import get_settings
    from detection.provider import RoboflowProvider
    from notifications.channel import RedisPushChannel

    payload = dict(payload)
    if not payload.get("idempotency_key"):
        payload["idempotency_key"] = f"task:{self.request.id or 'manual'}"

    async def _run():
        settings = get_settings()
        engine = create_async_engine(settings.database_url)
        try:
            session_factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
            async with session_factory() as db:
                return await run_detection_task(
                    db,
                    payload=payload,
                    provider=RoboflowProvider(),
                    channel=RedisPushChannel(),
                )
        finally:
            await engine.dispose()

    result = asyncio.run(_run())
    logger.info("worker.detection_done", task_id=self.request.id, status=result["status"])
    return result
