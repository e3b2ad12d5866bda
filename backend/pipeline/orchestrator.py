"""
Movie Project Orchestrator

One sweep:
1. Acquire the process_movie_scenes lock (skip if held)
2. Load a bounded batch of generating projects, oldest-updated first
3. Dispatch each project's current scene to the state machine once
4. Advance current_scene, or run the completion check and concatenate
5. Release the lock

Each project is handled in its own session and its own try block, so one
project's failure is counted and never aborts the sweep.
"""

from typing import Callable, Optional

import structlog
from sqlalchemy import func, update
from sqlalchemy.orm import Session

from config import settings
from database import SessionLocal, get_db_context
from models import MovieProject, MovieScene, ProjectStatus, SceneStatus, utc_now
from pipeline.concatenator import Concatenator, SceneVideo
from pipeline.error_handler import categorize_error
from pipeline.scene_state_machine import SceneOutcome, SceneStateMachine
from schemas import SweepSummary
from services.cron_lock import DistributedLock
from services.model_registry import DEFAULT_SCENE_DURATION

logger = structlog.get_logger(__name__)


class ProjectOrchestrator:
    """
    Sweep loop for generating movie projects.

    Example:
        >>> orchestrator = create_project_orchestrator()
        >>> summary = orchestrator.run_sweep()
        >>> summary.processed
        3
    """

    def __init__(
        self,
        session_factory=None,
        state_machine_factory: Optional[Callable[[Session], SceneStateMachine]] = None,
        concatenator: Concatenator = None,
        batch_size: int = None,
        lock_ttl_seconds: int = None,
    ):
        """
        Initialize the orchestrator.

        Args:
            session_factory: sessionmaker for all database work (default: SessionLocal)
            state_machine_factory: Builds a SceneStateMachine for a session
            concatenator: Final movie builder
            batch_size: Projects per sweep
            lock_ttl_seconds: Lock expiry, must exceed the longest plausible sweep
        """
        self.session_factory = session_factory or SessionLocal
        self.state_machine_factory = state_machine_factory or (lambda db: SceneStateMachine(db))
        self.concatenator = concatenator or Concatenator()
        self.batch_size = batch_size or settings.MOVIE_BATCH_SIZE
        self.lock_ttl_seconds = lock_ttl_seconds or settings.MOVIE_LOCK_TTL_SECONDS

    def run_sweep(self) -> SweepSummary:
        """Run one sweep under the distributed lock."""
        lock = DistributedLock(settings.MOVIE_LOCK_JOB_NAME, self.lock_ttl_seconds, self.session_factory)
        if not lock.acquire():
            logger.info("movie_sweep_skipped", reason="lock_held")
            return SweepSummary(skipped=True)

        try:
            return self._sweep()
        finally:
            lock.release()

    def _sweep(self) -> SweepSummary:
        with get_db_context(self.session_factory) as db:
            project_ids = [
                row[0]
                for row in db.query(MovieProject.id)
                .filter(MovieProject.status == ProjectStatus.GENERATING.value)
                .order_by(MovieProject.updated_at.asc())
                .limit(self.batch_size)
                .all()
            ]

        summary = SweepSummary(projects=len(project_ids))
        if not project_ids:
            logger.info("movie_sweep_idle")
            return summary

        for project_id in project_ids:
            try:
                outcome = self.process_project(project_id)
            except Exception as e:
                logger.error(
                    "project_processing_failed",
                    project_id=project_id,
                    error=str(e),
                    error_code=categorize_error(e).value,
                    exc_info=True,
                )
                summary.errors += 1
                continue

            if outcome.processed:
                summary.processed += 1
            if outcome.error:
                summary.errors += 1

        logger.info(
            "movie_sweep_completed",
            projects=summary.projects,
            processed=summary.processed,
            errors=summary.errors,
        )
        return summary

    def process_project(self, project_id: str) -> SceneOutcome:
        """Advance one project's current scene by one transition."""
        with get_db_context(self.session_factory) as db:
            project = db.get(MovieProject, project_id)
            # Cancelled or paused since the batch was listed
            if project is None or project.status != ProjectStatus.GENERATING.value:
                logger.info("project_no_longer_generating", project_id=project_id)
                return SceneOutcome(processed=False)

            scene = (
                db.query(MovieScene)
                .filter(
                    MovieScene.project_id == project.id,
                    MovieScene.scene_number == project.current_scene,
                )
                .first()
            )
            if scene is None:
                # Plan exhausted
                self.check_completion(db, project)
                return SceneOutcome()

            outcome = self.state_machine_factory(db).process(project, scene)
            if outcome.advance:
                self.advance_to_next_scene(db, project)
            self.touch_project(db, project.id)
            return outcome

    def touch_project(self, db: Session, project_id: str) -> None:
        """
        Mark a still-generating project as visited.

        Scene-only transitions leave the project row untouched, so without
        this a full batch of projects waiting on renders would be picked
        first on every sweep.
        """
        db.execute(
            update(MovieProject)
            .where(
                MovieProject.id == project_id,
                MovieProject.status == ProjectStatus.GENERATING.value,
            )
            .values(updated_at=utc_now())
            .execution_options(synchronize_session=False)
        )
        db.commit()

    def advance_to_next_scene(self, db: Session, project: MovieProject) -> None:
        """
        Move current_scene forward, or check completion after the last scene.

        The update is conditional on the project still generating at the
        scene it was read at, so a cancel or a racing sweep wins.
        """
        db.refresh(project)
        current = project.current_scene
        next_scene = current + 1

        if project.completed_scenes >= project.total_scenes or next_scene > project.total_scenes:
            self.check_completion(db, project)
            return

        result = db.execute(
            update(MovieProject)
            .where(
                MovieProject.id == project.id,
                MovieProject.status == ProjectStatus.GENERATING.value,
                MovieProject.current_scene == current,
            )
            .values(current_scene=next_scene, updated_at=utc_now())
            .execution_options(synchronize_session=False)
        )
        db.commit()

        if result.rowcount == 0:
            logger.info("scene_advance_skipped", project_id=project.id, current_scene=current)
            return
        logger.info(
            "scene_advanced",
            project_id=project.id,
            current_scene=next_scene,
            total_scenes=project.total_scenes,
        )

    def check_completion(self, db: Session, project: MovieProject) -> bool:
        """
        Complete the project once every scene is completed.

        Concatenation failure still completes the project, without a final
        video; the scenes stay individually viewable.

        Returns:
            True if the project was marked completed
        """
        db.refresh(project)
        if project.status != ProjectStatus.GENERATING.value:
            return False

        completed_count = (
            db.query(func.count(MovieScene.id))
            .filter(
                MovieScene.project_id == project.id,
                MovieScene.status == SceneStatus.COMPLETED.value,
            )
            .scalar()
        ) or 0

        if completed_count < project.total_scenes:
            logger.info(
                "project_not_complete",
                project_id=project.id,
                completed_scenes=completed_count,
                total_scenes=project.total_scenes,
            )
            return False

        scenes = (
            db.query(MovieScene)
            .filter(
                MovieScene.project_id == project.id,
                MovieScene.status == SceneStatus.COMPLETED.value,
            )
            .order_by(MovieScene.scene_number.asc())
            .all()
        )
        logger.info("project_concatenation_starting", project_id=project.id, scene_count=len(scenes))

        result = self.concatenator.concatenate(
            project.id,
            [
                SceneVideo(scene_number=s.scene_number, video_url=s.public_video_url or s.video_url)
                for s in scenes
                if s.public_video_url or s.video_url
            ],
        )

        # The concatenation can take minutes; a cancel during it wins
        db.refresh(project)
        if project.status != ProjectStatus.GENERATING.value:
            logger.info("project_cancelled_during_concatenation", project_id=project.id)
            return False

        project.status = ProjectStatus.COMPLETED.value
        project.completed_at = utc_now()
        if result.ok:
            project.final_video_url = result.public_url
            project.total_duration_seconds = result.total_duration_seconds or sum(
                s.duration_seconds or DEFAULT_SCENE_DURATION for s in scenes
            )
        db.commit()

        if result.ok:
            logger.info(
                "project_completed",
                project_id=project.id,
                scenes=completed_count,
                final_video_url=result.public_url,
                file_size_mb=result.file_size_mb,
            )
        else:
            logger.warning(
                "project_completed_without_final_video",
                project_id=project.id,
                scenes=completed_count,
                error=result.error,
            )
        return True


def create_project_orchestrator(session_factory=None) -> ProjectOrchestrator:
    """Factory for the orchestrator with default collaborators."""
    return ProjectOrchestrator(session_factory=session_factory)
