"""
Scene state machine.

Advances one scene by at most one transition per call:

    pending -> generating -> narrating -> merging -> completed
                    |            (voice only)   |
                    +--------> failed <---------+
    failed -> pending (retry_count < max) | project failed

Each SceneStatus has exactly one handler; the dispatch table is checked
for completeness at construction.
"""

import uuid
from dataclasses import dataclass
from typing import Callable, Dict, Optional

from sqlalchemy import update
from sqlalchemy.orm import Session
import structlog

from config import settings
from models import (
    Generation,
    GenerationMode,
    GenerationStatus,
    MovieProject,
    MovieScene,
    PLACEHOLDER_REQUEST_PREFIX,
    ProjectStatus,
    SceneStatus,
    utc_now,
)
from pipeline.error_handler import ErrorCode, GenerationError, PipelineError, categorize_error, should_retry
from pipeline.frame_extractor import FrameExtractor
from pipeline.generation_sync import poll_generation_fallback
from pipeline.muxer import Muxer
from services.credit_ledger import CreditLedger
from services.model_registry import ModelRegistry
from services.narration import NarrationClient, load_narration_config
from services.project_counters import increment_project_field
from services.replicate_client import ReplicateClient, get_replicate_client
from services.s3_storage import (
    S3StorageService,
    frame_key,
    get_s3_storage_service,
    narrated_video_key,
    scene_video_key,
)

logger = structlog.get_logger()

NARRATION_FALLBACK_MESSAGE = "Narration failed, using video without voiceover"


@dataclass
class SceneOutcome:
    """
    Result of one dispatch.

    processed: the scene made progress this sweep
    error: the scene (or project) hit a failure
    advance: the scene is completed and the project should move on
    """
    processed: bool = True
    error: bool = False
    advance: bool = False


class SceneStateMachine:
    """
    Per-scene lifecycle transitions.

    Collaborators are injected so tests can replace every external service;
    anything left as None falls back to the shared default instance.
    """

    def __init__(
        self,
        db: Session,
        generation_client: ReplicateClient = None,
        narration_client: NarrationClient = None,
        muxer: Muxer = None,
        frame_extractor: FrameExtractor = None,
        storage: S3StorageService = None,
        max_retries: int = None,
        webhook_url: Optional[str] = None,
    ):
        self.db = db
        self.ledger = CreditLedger(db)
        self._generation_client = generation_client
        self._storage = storage
        self.narration_client = narration_client or NarrationClient()
        self.muxer = muxer or Muxer(storage=storage)
        self.frame_extractor = frame_extractor or FrameExtractor(storage=storage)
        self.max_retries = settings.MOVIE_MAX_SCENE_RETRIES if max_retries is None else max_retries
        self.webhook_url = webhook_url if webhook_url is not None else settings.webhook_url

        self.handlers: Dict[SceneStatus, Callable[[MovieProject, MovieScene], SceneOutcome]] = {
            SceneStatus.PENDING: self.handle_pending,
            SceneStatus.GENERATING: self.handle_generating,
            SceneStatus.NARRATING: self.handle_narrating,
            SceneStatus.MERGING: self.handle_merging,
            SceneStatus.COMPLETED: self.handle_completed,
            SceneStatus.FAILED: self.handle_failed,
        }
        missing = set(SceneStatus) - set(self.handlers)
        if missing:
            raise RuntimeError(f"No handler for scene statuses: {sorted(s.value for s in missing)}")

    @property
    def generation_client(self) -> ReplicateClient:
        if self._generation_client is None:
            self._generation_client = get_replicate_client()
        return self._generation_client

    @property
    def storage(self) -> S3StorageService:
        if self._storage is None:
            self._storage = get_s3_storage_service()
        return self._storage

    def process(self, project: MovieProject, scene: MovieScene) -> SceneOutcome:
        """Dispatch the scene to the handler for its current status."""
        try:
            status = SceneStatus(scene.status)
        except ValueError:
            logger.error("scene_status_unknown", project_id=project.id, scene_number=scene.scene_number, status=scene.status)
            return SceneOutcome(processed=False, error=True)

        logger.debug("scene_dispatch", project_id=project.id, scene_number=scene.scene_number, status=status.value)
        return self.handlers[status](project, scene)

    # ------------------------------------------------------------------
    # pending -> generating
    # ------------------------------------------------------------------

    def handle_pending(self, project: MovieProject, scene: MovieScene) -> SceneOutcome:
        # Rendered on an earlier attempt: resume without resubmitting or re-charging
        if scene.video_url:
            self._transition(project, scene, self._post_generation_status(project))
            logger.info("scene_resumed", project_id=project.id, scene_number=scene.scene_number, status=scene.status)
            return SceneOutcome()

        cost = scene.credit_cost if scene.credit_cost is not None else ModelRegistry.credit_cost(project.model)

        generation = Generation(
            user_id=project.user_id,
            provider_request_id=f"{PLACEHOLDER_REQUEST_PREFIX}{uuid.uuid4().hex}",
            status=GenerationStatus.PENDING.value,
            prompt=(scene.video_prompt or "")[:2000],
            model=project.model,
            style=project.style,
            credit_deducted=False,
            movie_project_id=project.id,
            scene_number=scene.scene_number,
        )
        self.db.add(generation)
        self.db.commit()

        charge = self.ledger.deduct(project.user_id, cost, generation.id)
        if not charge.success:
            return self._pause_for_credits(project, scene, generation, charge.reason)

        if scene.credit_cost is None:
            scene.credit_cost = cost
        increment_project_field(self.db, project.id, "spent_credits", cost)
        self.db.commit()

        previous_frame_url = self._previous_frame_url(project, scene)
        use_image = bool(previous_frame_url) and ModelRegistry.supports_image_to_video(project.model)

        try:
            if use_image:
                job_id = self.generation_client.submit_image_to_video(
                    project.model,
                    scene.video_prompt,
                    previous_frame_url,
                    style=project.style,
                    webhook_url=self.webhook_url,
                )
            else:
                job_id = self.generation_client.submit_text_to_video(
                    project.model,
                    scene.video_prompt,
                    style=project.style,
                    webhook_url=self.webhook_url,
                )
        except Exception as e:
            return self._submission_failed(project, scene, generation, e)

        generation.provider_request_id = job_id
        generation.generation_mode = GenerationMode.IMAGE_TO_VIDEO if use_image else GenerationMode.TEXT_TO_VIDEO
        generation.image_url = previous_frame_url if use_image else None
        scene.ai_generation_id = generation.id
        scene.error_message = None
        self._transition(project, scene, SceneStatus.GENERATING)

        logger.info(
            "scene_submitted",
            project_id=project.id,
            scene_number=scene.scene_number,
            total_scenes=project.total_scenes,
            mode=generation.generation_mode,
            provider_request_id=job_id,
            credit_cost=cost,
        )
        return SceneOutcome()

    def _pause_for_credits(
        self,
        project: MovieProject,
        scene: MovieScene,
        generation: Generation,
        reason: Optional[str],
    ) -> SceneOutcome:
        error = PipelineError(
            ErrorCode.INSUFFICIENT_CREDITS,
            reason or "Insufficient credits",
            details={"generation_id": generation.id, "user_id": project.user_id},
        )
        generation.status = GenerationStatus.FAILED.value
        generation.error_message = error.message
        self.db.commit()

        if self._set_project_status(project, ProjectStatus.PAUSED, error.get_user_friendly_message()):
            logger.warning(
                "project_paused_insufficient_credits",
                project_id=project.id,
                scene_number=scene.scene_number,
                **error.to_dict(),
            )
        return SceneOutcome(processed=False, error=True)

    def _submission_failed(
        self,
        project: MovieProject,
        scene: MovieScene,
        generation: Generation,
        error: Exception,
    ) -> SceneOutcome:
        logger.error(
            "scene_submission_failed",
            project_id=project.id,
            scene_number=scene.scene_number,
            error=str(error),
            error_code=categorize_error(error).value,
            retryable=should_retry(error),
        )

        # Nothing was rendered, so the charge goes back
        refund = self.ledger.refund(project.user_id, generation.id)
        if refund.success:
            increment_project_field(self.db, project.id, "spent_credits", -refund.amount)

        message = error.message if isinstance(error, PipelineError) else str(error)
        generation.status = GenerationStatus.FAILED.value
        generation.error_message = message
        scene.status = SceneStatus.FAILED.value
        scene.error_message = message or "Generation submit failed"
        self.db.commit()
        return SceneOutcome(processed=False, error=True)

    def _previous_frame_url(self, project: MovieProject, scene: MovieScene) -> Optional[str]:
        if scene.scene_number <= 1:
            return None
        previous = (
            self.db.query(MovieScene)
            .filter(
                MovieScene.project_id == project.id,
                MovieScene.scene_number == scene.scene_number - 1,
            )
            .first()
        )
        return previous.last_frame_url if previous else None

    # ------------------------------------------------------------------
    # generating -> narrating | merging | failed
    # ------------------------------------------------------------------

    def handle_generating(self, project: MovieProject, scene: MovieScene) -> SceneOutcome:
        if not scene.ai_generation_id:
            return self._fail_scene(project, scene, "No generation record found")

        generation = self.db.get(Generation, scene.ai_generation_id)
        if generation is None:
            return self._fail_scene(project, scene, "Generation record not found")

        if generation.status in GenerationStatus.in_flight():
            # Webhook has not landed yet
            result = poll_generation_fallback(self.db, generation, self.generation_client)
            if result is None or generation.status in GenerationStatus.in_flight():
                logger.debug("scene_still_generating", project_id=project.id, scene_number=scene.scene_number)
                return SceneOutcome(processed=False)
            logger.info(
                "generation_resolved_by_poll",
                project_id=project.id,
                scene_number=scene.scene_number,
                generation_id=generation.id,
                status=generation.status,
            )

        if generation.status == GenerationStatus.COMPLETED.value and generation.video_url:
            return self._generation_done(project, scene, generation.video_url)
        return self._generation_failed(project, scene, generation)

    def _generation_done(self, project: MovieProject, scene: MovieScene, video_url: str) -> SceneOutcome:
        scene.video_url = video_url
        self._transition(project, scene, self._post_generation_status(project))
        return SceneOutcome()

    def _generation_failed(self, project: MovieProject, scene: MovieScene, generation: Generation) -> SceneOutcome:
        error = GenerationError(
            generation.error_message or f"Generation {generation.status}",
            code=ErrorCode.GENERATION_FAILED,
            model=project.model,
            details={"generation_id": generation.id, "status": generation.status},
        )
        error.log_error()
        return self._fail_scene(project, scene, error.get_user_friendly_message())

    # ------------------------------------------------------------------
    # narrating -> merging
    # ------------------------------------------------------------------

    def handle_narrating(self, project: MovieProject, scene: MovieScene) -> SceneOutcome:
        if not project.voice_id or not scene.narration_text:
            self._transition(project, scene, SceneStatus.MERGING)
            return SceneOutcome()

        try:
            config = load_narration_config(self.db)
            audio = self.narration_client.synthesize(scene.narration_text, project.voice_id, config)
            narrated_url = self.muxer.mux(
                scene.video_url,
                audio,
                narrated_video_key(project.id, scene.scene_number),
            )
        except Exception as e:
            # Narration is an enhancement; continue with the silent video
            logger.warning(
                "scene_narration_failed",
                project_id=project.id,
                scene_number=scene.scene_number,
                error=str(e),
            )
            scene.error_message = NARRATION_FALLBACK_MESSAGE
            self._transition(project, scene, SceneStatus.MERGING)
            return SceneOutcome()

        scene.video_url = narrated_url
        self._transition(project, scene, SceneStatus.MERGING)
        logger.info("scene_narrated", project_id=project.id, scene_number=scene.scene_number)
        return SceneOutcome()

    # ------------------------------------------------------------------
    # merging -> completed
    # ------------------------------------------------------------------

    def handle_merging(self, project: MovieProject, scene: MovieScene) -> SceneOutcome:
        if not scene.video_url:
            return self._fail_scene(project, scene, "No video URL for merging")

        try:
            video_bytes = self.storage.download_bytes(scene.video_url)
            public_url = self.storage.upload_bytes(
                scene_video_key(project.id, scene.scene_number),
                video_bytes,
                "video/mp4",
            )
        except PipelineError as e:
            # Render cost was incurred; no refund
            e.log_error()
            return self._fail_scene(project, scene, e.message or "Merging failed")

        last_frame_url = None
        try:
            last_frame_url = self.frame_extractor.extract(
                video_bytes,
                ModelRegistry.last_frame_timestamp(project.model),
                frame_key(project.id, scene.scene_number),
            )
        except Exception as e:
            # Next scene falls back to text-to-video
            logger.warning(
                "frame_extraction_failed",
                project_id=project.id,
                scene_number=scene.scene_number,
                error=str(e),
            )

        scene.public_video_url = public_url
        scene.last_frame_url = last_frame_url
        scene.duration_seconds = ModelRegistry.duration_seconds(project.model)
        scene.completed_at = utc_now()
        scene.status = SceneStatus.COMPLETED.value
        completed = increment_project_field(self.db, project.id, "completed_scenes", 1)
        self.db.commit()

        logger.info(
            "scene_completed",
            project_id=project.id,
            scene_number=scene.scene_number,
            completed_scenes=completed,
            total_scenes=project.total_scenes,
            has_last_frame=last_frame_url is not None,
        )
        return SceneOutcome(advance=True)

    # ------------------------------------------------------------------
    # completed / failed
    # ------------------------------------------------------------------

    def handle_completed(self, project: MovieProject, scene: MovieScene) -> SceneOutcome:
        return SceneOutcome(advance=True)

    def handle_failed(self, project: MovieProject, scene: MovieScene) -> SceneOutcome:
        if scene.retry_count < self.max_retries:
            scene.retry_count += 1
            scene.error_message = None
            self._transition(project, scene, SceneStatus.PENDING)
            logger.info(
                "scene_retry_scheduled",
                project_id=project.id,
                scene_number=scene.scene_number,
                retry_count=scene.retry_count,
                max_retries=self.max_retries,
            )
            return SceneOutcome()

        message = (
            f"Scene {scene.scene_number} failed after {self.max_retries} retries: "
            f"{scene.error_message or 'Unknown error'}"
        )
        if self._set_project_status(project, ProjectStatus.FAILED, message):
            logger.error("project_failed", project_id=project.id, scene_number=scene.scene_number, error=message)
        return SceneOutcome(processed=False, error=True)

    # ------------------------------------------------------------------
    # helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _post_generation_status(project: MovieProject) -> SceneStatus:
        return SceneStatus.NARRATING if project.voice_id else SceneStatus.MERGING

    def _transition(self, project: MovieProject, scene: MovieScene, status: SceneStatus) -> None:
        previous = scene.status
        scene.status = status.value
        self.db.commit()
        logger.info(
            "scene_transition",
            project_id=project.id,
            scene_number=scene.scene_number,
            from_status=previous,
            to_status=status.value,
        )

    def _set_project_status(self, project: MovieProject, status: ProjectStatus, message: str) -> bool:
        """
        Move a still-generating project to status.

        Conditional on the row, so a cancel that landed after the project was
        loaded is never overwritten.

        Returns:
            True if the project changed
        """
        result = self.db.execute(
            update(MovieProject)
            .where(
                MovieProject.id == project.id,
                MovieProject.status == ProjectStatus.GENERATING.value,
            )
            .values(status=status.value, error_message=message, updated_at=utc_now())
            .execution_options(synchronize_session=False)
        )
        self.db.commit()
        self.db.refresh(project)

        if result.rowcount == 0:
            logger.info(
                "project_status_change_skipped",
                project_id=project.id,
                status=project.status,
                wanted_status=status.value,
            )
            return False
        return True

    def _fail_scene(self, project: MovieProject, scene: MovieScene, message: str) -> SceneOutcome:
        scene.status = SceneStatus.FAILED.value
        scene.error_message = message
        self.db.commit()
        logger.warning(
            "scene_failed",
            project_id=project.id,
            scene_number=scene.scene_number,
            retry_count=scene.retry_count,
            error=message,
        )
        return SceneOutcome(processed=False, error=True)
