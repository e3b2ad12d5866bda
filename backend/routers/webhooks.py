"""
Render provider completion webhook

Primary channel for closing generation records; the orchestrator's polling
fallback only covers deliveries that never arrive.
"""

from fastapi import APIRouter, Depends, HTTPException, Request, status
from fastapi.concurrency import run_in_threadpool
from pydantic import ValidationError
from sqlalchemy.orm import Session
import structlog

from auth import verify_webhook_signature
from database import get_db
from pipeline.generation_sync import find_generation_by_request, record_provider_result
from schemas import GenerationWebhookPayload, WebhookAck
from services.replicate_client import map_prediction_status

logger = structlog.get_logger()

router = APIRouter(prefix="/api/ai", tags=["Webhooks"])


@router.post("/webhook", response_model=WebhookAck)
async def generation_webhook(request: Request, db: Session = Depends(get_db)):
    """
    Record a prediction's terminal status.

    Unknown prediction ids and repeated deliveries are acknowledged without
    changes so the provider stops retrying.
    """
    body = await request.body()
    if not verify_webhook_signature(
        body,
        request.headers.get("webhook-id"),
        request.headers.get("webhook-timestamp"),
        request.headers.get("webhook-signature"),
    ):
        logger.warning("webhook_signature_invalid")
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid webhook signature")

    try:
        payload = GenerationWebhookPayload.model_validate_json(body)
    except ValidationError as e:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=e.errors())

    updated = await run_in_threadpool(record_webhook_delivery, db, payload)
    return WebhookAck(updated=updated)


def record_webhook_delivery(db: Session, payload: GenerationWebhookPayload) -> bool:
    """Apply a verified delivery to its generation record. Blocking."""
    generation = find_generation_by_request(db, payload.id)
    if generation is None:
        logger.info("webhook_unknown_generation", provider_request_id=payload.id, status=payload.status)
        return False

    result = map_prediction_status(payload.status, payload.output, payload.error)
    updated = record_provider_result(db, generation, result)

    logger.info(
        "webhook_processed",
        generation_id=generation.id,
        provider_request_id=payload.id,
        provider_status=payload.status,
        updated=updated,
    )
    return updated
