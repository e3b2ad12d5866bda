"""
Generation reconciliation sweep.

Catches render requests the webhook never closed:
1. Poll stale in-flight generations and record completions
2. Expire generations stuck past the timeout and refund their charge
3. Refund failed generations that were charged but never refunded

Refunds for movie scenes also take the amount off the project's
spent_credits, so project spend keeps matching its scenes' net charges.
"""

from datetime import timedelta
from typing import Optional

import structlog
from sqlalchemy import update
from sqlalchemy.orm import Session

from config import settings
from database import SessionLocal, get_db_context
from models import (
    CreditTransaction,
    Generation,
    GenerationStatus,
    TransactionType,
    utc_now,
)
from pipeline.generation_sync import poll_generation_fallback
from schemas import ReconcileSummary
from services.credit_ledger import CreditLedger
from services.cron_lock import DistributedLock
from services.model_registry import ModelRegistry
from services.project_counters import increment_project_field
from services.replicate_client import ReplicateClient, get_replicate_client

logger = structlog.get_logger(__name__)

TIMEOUT_MESSAGE = "Generation timed out after {minutes} minutes"
ORPHAN_BATCH_SIZE = 20


class GenerationReconciler:
    """Periodic cleanup of generation records the webhook left open."""

    def __init__(
        self,
        session_factory=None,
        generation_client: ReplicateClient = None,
        stale_minutes: int = None,
        timeout_minutes: int = None,
        batch_size: int = None,
    ):
        self.session_factory = session_factory or SessionLocal
        self._generation_client = generation_client
        self.stale_minutes = stale_minutes or settings.GENERATION_STALE_MINUTES
        self.timeout_minutes = timeout_minutes or settings.GENERATION_TIMEOUT_MINUTES
        self.batch_size = batch_size or settings.RECONCILE_BATCH_SIZE

    @property
    def generation_client(self) -> ReplicateClient:
        if self._generation_client is None:
            self._generation_client = get_replicate_client()
        return self._generation_client

    def run(self) -> ReconcileSummary:
        """Run one reconciliation sweep under its own lock."""
        lock = DistributedLock(settings.TIMEOUT_LOCK_JOB_NAME, settings.TIMEOUT_LOCK_TTL_SECONDS, self.session_factory)
        if not lock.acquire():
            logger.info("reconcile_sweep_skipped", reason="lock_held")
            return ReconcileSummary(skipped=True)

        try:
            with get_db_context(self.session_factory) as db:
                summary = ReconcileSummary()
                self.poll_stale(db, summary)
                self.expire_timed_out(db, summary)
                self.recover_orphaned_charges(db, summary)
        finally:
            lock.release()

        logger.info("reconcile_sweep_completed", **summary.model_dump())
        return summary

    def poll_stale(self, db: Session, summary: ReconcileSummary) -> None:
        cutoff = utc_now() - timedelta(minutes=self.stale_minutes)
        stale = (
            db.query(Generation)
            .filter(
                Generation.status.in_(GenerationStatus.in_flight()),
                Generation.created_at < cutoff,
            )
            .order_by(Generation.created_at.asc())
            .limit(self.batch_size)
            .all()
        )
        summary.stale_found = len(stale)

        for generation in stale:
            if not generation.has_provider_request:
                continue
            if ModelRegistry.get_model(generation.model) is None:
                logger.warning("reconcile_unknown_model", generation_id=generation.id, model=generation.model)
                continue

            result = poll_generation_fallback(db, generation, self.generation_client)
            if result is None:
                continue
            summary.polled += 1
            if generation.status == GenerationStatus.COMPLETED.value:
                summary.auto_completed += 1

    def expire_timed_out(self, db: Session, summary: ReconcileSummary) -> None:
        cutoff = utc_now() - timedelta(minutes=self.timeout_minutes)
        timed_out = (
            db.query(Generation)
            .filter(
                Generation.status.in_(GenerationStatus.in_flight()),
                Generation.created_at < cutoff,
            )
            .all()
        )

        for generation in timed_out:
            if not self.mark_expired(db, generation):
                continue
            summary.expired += 1
            logger.warning("generation_expired", generation_id=generation.id, movie_project_id=generation.movie_project_id)
            if generation.credit_deducted and generation.credit_amount:
                summary.credits_refunded += self._refund(db, generation) or 0

    def mark_expired(self, db: Session, generation: Generation) -> bool:
        """
        Expire one generation if it is still in flight.

        A webhook landing after the timeout query wins: its completion stays
        and no refund is issued.
        """
        updated = db.execute(
            update(Generation)
            .where(
                Generation.id == generation.id,
                Generation.status.in_(GenerationStatus.in_flight()),
            )
            .values(
                status=GenerationStatus.EXPIRED.value,
                error_message=TIMEOUT_MESSAGE.format(minutes=self.timeout_minutes),
            )
            .execution_options(synchronize_session=False)
        )
        db.commit()
        db.refresh(generation)

        if updated.rowcount == 0:
            logger.info("generation_expiry_skipped", generation_id=generation.id, status=generation.status)
            return False
        return True

    def recover_orphaned_charges(self, db: Session, summary: ReconcileSummary) -> None:
        cutoff = utc_now() - timedelta(minutes=self.stale_minutes)
        orphaned = (
            db.query(Generation)
            .filter(
                Generation.status == GenerationStatus.FAILED.value,
                Generation.credit_deducted.is_(True),
                Generation.credit_amount.isnot(None),
                Generation.created_at < cutoff,
                ~db.query(CreditTransaction.id)
                .filter(
                    CreditTransaction.reference_id == Generation.id,
                    CreditTransaction.type == TransactionType.REFUND,
                )
                .exists(),
            )
            .limit(ORPHAN_BATCH_SIZE)
            .all()
        )

        for generation in orphaned:
            refunded = self._refund(db, generation)
            if refunded:
                summary.orphaned_credits_recovered += refunded
                logger.info("orphaned_credits_recovered", generation_id=generation.id, amount=refunded)

    def _refund(self, db: Session, generation: Generation) -> Optional[int]:
        result = CreditLedger(db).refund(generation.user_id, generation.id)
        if not result.success:
            return None

        if generation.movie_project_id:
            increment_project_field(db, generation.movie_project_id, "spent_credits", -result.amount)
            db.commit()
        return result.amount


def create_generation_reconciler(session_factory=None) -> GenerationReconciler:
    return GenerationReconciler(session_factory=session_factory)
