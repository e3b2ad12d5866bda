"""
Tests for the generation reconciliation sweep.
"""

from datetime import timedelta

import pytest

from models import (
    CreditTransaction,
    CronLock,
    Generation,
    GenerationStatus,
    MovieProject,
    TransactionType,
    User,
    utc_now,
)
from pipeline.error_handler import GenerationError
from pipeline.generation_reconciler import GenerationReconciler
from services.replicate_client import ProviderStatus


@pytest.fixture
def reconciler(session_factory, generation_client):
    return GenerationReconciler(
        session_factory=session_factory,
        generation_client=generation_client,
        stale_minutes=10,
        timeout_minutes=30,
        batch_size=50,
    )


@pytest.fixture
def charged_project(db, make_project):
    """A project that has paid 7 credits for one in-flight scene."""
    project = make_project(balance=93)
    project.spent_credits = 7
    db.commit()
    return project


def add_generation(db, project, age_minutes, status=GenerationStatus.PROCESSING, request_id="pred-1", charged=True, model=None):
    generation = Generation(
        user_id=project.user_id,
        provider_request_id=request_id,
        status=status.value,
        model=model or project.model,
        credit_deducted=charged,
        credit_amount=7 if charged else None,
        movie_project_id=project.id,
        scene_number=1,
        created_at=utc_now() - timedelta(minutes=age_minutes),
    )
    db.add(generation)
    db.commit()
    return generation


def refresh_all(db, *instances):
    db.expire_all()
    return [db.get(type(i), i.id) for i in instances]


class TestPollStale:

    def test_recent_generations_are_left_alone(self, db, reconciler, charged_project, generation_client):
        add_generation(db, charged_project, age_minutes=2)

        summary = reconciler.run()

        assert summary.stale_found == 0
        generation_client.poll_status.assert_not_called()

    def test_stale_generation_completed_by_poll(self, db, reconciler, charged_project, generation_client):
        generation_client.poll_status.return_value = ProviderStatus(
            status=GenerationStatus.COMPLETED,
            video_url="https://replicate.delivery/late.mp4",
        )
        generation = add_generation(db, charged_project, age_minutes=15)

        summary = reconciler.run()

        assert summary.stale_found == 1
        assert summary.polled == 1
        assert summary.auto_completed == 1
        [generation] = refresh_all(db, generation)
        assert generation.status == GenerationStatus.COMPLETED.value
        assert generation.video_url == "https://replicate.delivery/late.mp4"

    def test_placeholder_and_unknown_model_are_not_polled(self, db, reconciler, charged_project, generation_client):
        add_generation(db, charged_project, age_minutes=15, request_id="placeholder_123")
        add_generation(db, charged_project, age_minutes=15, request_id="pred-2", model="retired-model")

        summary = reconciler.run()

        assert summary.stale_found == 2
        assert summary.polled == 0
        generation_client.poll_status.assert_not_called()

    def test_poll_error_is_skipped(self, db, reconciler, charged_project, generation_client):
        generation_client.poll_status.side_effect = GenerationError("Status check failed")
        generation = add_generation(db, charged_project, age_minutes=15)

        summary = reconciler.run()

        assert summary.polled == 0
        [generation] = refresh_all(db, generation)
        assert generation.status == GenerationStatus.PROCESSING.value


class TestExpireTimedOut:

    def test_timed_out_generation_expired_and_refunded(self, db, reconciler, charged_project):
        generation = add_generation(db, charged_project, age_minutes=45)

        summary = reconciler.run()

        assert summary.expired == 1
        assert summary.credits_refunded == 7
        generation, project, user = refresh_all(
            db, generation, charged_project, db.get(User, charged_project.user_id)
        )
        assert generation.status == GenerationStatus.EXPIRED.value
        assert generation.error_message == "Generation timed out after 30 minutes"
        assert project.spent_credits == 0
        assert user.balance_credits == 100

    def test_uncharged_generation_expired_without_refund(self, db, reconciler, charged_project):
        add_generation(db, charged_project, age_minutes=45, charged=False)

        summary = reconciler.run()

        assert summary.expired == 1
        assert summary.credits_refunded == 0
        db.expire_all()
        assert db.get(User, charged_project.user_id).balance_credits == 93

    def test_second_run_does_not_refund_again(self, db, reconciler, charged_project):
        add_generation(db, charged_project, age_minutes=45)

        reconciler.run()
        summary = reconciler.run()

        assert summary.expired == 0
        assert summary.credits_refunded == 0
        assert summary.orphaned_credits_recovered == 0
        db.expire_all()
        assert db.get(User, charged_project.user_id).balance_credits == 100
        assert db.get(MovieProject, charged_project.id).spent_credits == 0

    def test_completion_landing_before_expiry_wins(self, db, session_factory, reconciler, charged_project):
        generation = add_generation(db, charged_project, age_minutes=45)
        assert generation.status == GenerationStatus.PROCESSING.value

        # Webhook delivery commits from another session after the timeout query
        with session_factory() as other:
            delivered = other.get(Generation, generation.id)
            delivered.status = GenerationStatus.COMPLETED.value
            delivered.video_url = "https://replicate.delivery/late.mp4"
            other.commit()

        assert reconciler.mark_expired(db, generation) is False

        [generation] = refresh_all(db, generation)
        assert generation.status == GenerationStatus.COMPLETED.value
        assert generation.video_url == "https://replicate.delivery/late.mp4"
        assert generation.error_message is None
        assert db.get(User, charged_project.user_id).balance_credits == 93


class TestOrphanedCharges:

    def test_failed_charge_without_refund_is_recovered(self, db, reconciler, charged_project):
        generation = add_generation(db, charged_project, age_minutes=20, status=GenerationStatus.FAILED)

        summary = reconciler.run()

        assert summary.orphaned_credits_recovered == 7
        db.expire_all()
        assert db.get(User, charged_project.user_id).balance_credits == 100
        assert db.get(MovieProject, charged_project.id).spent_credits == 0
        refunds = (
            db.query(CreditTransaction)
            .filter(CreditTransaction.reference_id == generation.id, CreditTransaction.type == TransactionType.REFUND)
            .count()
        )
        assert refunds == 1

    def test_already_refunded_failure_is_ignored(self, db, reconciler, charged_project):
        generation = add_generation(db, charged_project, age_minutes=20, status=GenerationStatus.FAILED)
        db.add(CreditTransaction(
            user_id=charged_project.user_id,
            type=TransactionType.REFUND,
            amount=7,
            balance_after=100,
            reference_id=generation.id,
        ))
        db.commit()

        summary = reconciler.run()

        assert summary.orphaned_credits_recovered == 0

    def test_recent_failure_is_not_touched(self, db, reconciler, charged_project):
        add_generation(db, charged_project, age_minutes=1, status=GenerationStatus.FAILED)

        summary = reconciler.run()

        assert summary.orphaned_credits_recovered == 0


class TestReconcileLock:

    def test_skips_when_lock_held(self, db, reconciler, charged_project, generation_client):
        add_generation(db, charged_project, age_minutes=45)
        db.add(CronLock(
            job_name="ai-generation-timeout",
            lock_id="other",
            acquired_at=utc_now(),
            expires_at=utc_now() + timedelta(minutes=1),
        ))
        db.commit()

        summary = reconciler.run()

        assert summary.skipped is True
        assert summary.expired == 0
        generation_client.poll_status.assert_not_called()
