"""
Keeping ai_generations rows in step with the render provider.

Two channels update a generation record:
- the provider's completion webhook (primary)
- poll_generation_fallback, the secondary path for dropped webhook deliveries

Both go through record_provider_result so a terminal record is never
modified again.
"""

from typing import Optional

from sqlalchemy import update
from sqlalchemy.orm import Session
import structlog

from models import Generation, GenerationStatus, utc_now
from pipeline.error_handler import GenerationError
from services.replicate_client import ProviderStatus, ReplicateClient

logger = structlog.get_logger()


def find_generation_by_request(db: Session, provider_request_id: str) -> Optional[Generation]:
    return db.query(Generation).filter(Generation.provider_request_id == provider_request_id).first()


def record_provider_result(db: Session, generation: Generation, result: ProviderStatus) -> bool:
    """
    Apply a provider status to a generation record and commit.

    Returns:
        True if the record changed
    """
    if generation.status in GenerationStatus.terminal():
        logger.debug("generation_already_terminal", generation_id=generation.id, status=generation.status)
        return False

    if result.is_completed:
        values = {
            "status": GenerationStatus.COMPLETED.value,
            "video_url": result.video_url,
            "completed_at": utc_now(),
        }
    elif result.is_failed:
        values = {"status": GenerationStatus.FAILED.value, "error_message": result.error}
    elif result.status == GenerationStatus.PROCESSING and generation.status != GenerationStatus.PROCESSING.value:
        values = {"status": GenerationStatus.PROCESSING.value}
    else:
        return False

    # Conditional on the row, not the loaded object: the reconciler may have
    # expired and refunded it from another session since it was read
    updated = db.execute(
        update(Generation)
        .where(
            Generation.id == generation.id,
            Generation.status.in_(GenerationStatus.in_flight()),
        )
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    db.commit()
    db.refresh(generation)

    if updated.rowcount == 0:
        logger.info(
            "generation_already_terminal",
            generation_id=generation.id,
            status=generation.status,
            ignored_status=values["status"],
        )
        return False

    logger.info(
        "generation_status_recorded",
        generation_id=generation.id,
        provider_request_id=generation.provider_request_id,
        status=generation.status,
    )
    return True


def poll_generation_fallback(
    db: Session,
    generation: Generation,
    client: ReplicateClient,
) -> Optional[ProviderStatus]:
    """
    Ask the provider directly about an in-flight generation.

    Only used when the webhook has not yet updated the record. Placeholder
    and terminal records are not polled; a failed status call is logged and
    reported as None so the caller simply tries again next sweep.

    The returned status is what the provider said; generation.status is
    what the row holds afterwards, and only the latter decides what happens
    to the scene.
    """
    if generation.status in GenerationStatus.terminal():
        return None
    if not generation.has_provider_request:
        logger.debug("generation_poll_skipped_placeholder", generation_id=generation.id)
        return None

    try:
        result = client.poll_status(generation.provider_request_id)
    except GenerationError as e:
        logger.warning(
            "generation_poll_failed",
            generation_id=generation.id,
            provider_request_id=generation.provider_request_id,
            error=str(e),
        )
        return None

    record_provider_result(db, generation, result)
    return result
