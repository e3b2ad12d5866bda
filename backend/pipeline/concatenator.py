"""
Final movie concatenation.

Joins completed scene videos, in scene order, into one MP4 using MoviePy
and uploads it. Failures are reported in the result, never raised, so a
fully rendered project is never left stuck on this step.
"""

import tempfile
from pathlib import Path
from typing import List, Optional

from moviepy import VideoFileClip, concatenate_videoclips
from pydantic import BaseModel
import structlog

from config import settings
from pipeline.error_handler import ConcatenationError, PipelineError
from services.s3_storage import S3StorageService, final_video_key, get_s3_storage_service

logger = structlog.get_logger()


class SceneVideo(BaseModel):
    scene_number: int
    video_url: str


class ConcatResult(BaseModel):
    """Outcome of a concatenation; error is set when ok is False"""
    ok: bool
    public_url: Optional[str] = None
    storage_key: Optional[str] = None
    total_duration_seconds: Optional[float] = None
    file_size_mb: Optional[float] = None
    error: Optional[str] = None


def merge_video_files(video_paths: List[str], output_path: str) -> float:
    """
    Merge video files into output_path.

    Returns:
        Duration of the merged video in seconds
    """
    clips = [VideoFileClip(path) for path in video_paths]
    final_clip = None
    try:
        final_clip = concatenate_videoclips(clips, method="compose")
        total_duration = final_clip.duration

        final_clip.write_videofile(
            output_path,
            codec="libx264",
            audio_codec="aac",
            logger=None  # Suppress MoviePy's progress bar
        )
        return total_duration
    finally:
        for clip in clips:
            clip.close()
        if final_clip is not None:
            final_clip.close()


class Concatenator:
    """Builds the final movie for a project."""

    def __init__(self, storage: S3StorageService = None, merge_fn=None):
        self._storage = storage
        self.merge_fn = merge_fn or merge_video_files

    @property
    def storage(self) -> S3StorageService:
        if self._storage is None:
            self._storage = get_s3_storage_service()
        return self._storage

    def concatenate(self, project_id: str, scenes: List[SceneVideo]) -> ConcatResult:
        """
        Download, merge and upload the project's scene videos.

        Args:
            project_id: Owning project, used for the output key
            scenes: Completed scenes; merged in ascending scene_number

        Returns:
            ConcatResult with ok=False and an error message on any failure
        """
        if not scenes:
            return ConcatResult(ok=False, error="No scene videos to concatenate")

        ordered = sorted(scenes, key=lambda s: s.scene_number)
        storage_key = final_video_key(project_id)
        logger.info("concatenation_started", project_id=project_id, scene_count=len(ordered))

        try:
            with tempfile.TemporaryDirectory(prefix="movie_concat_") as tmp_dir:
                paths = self._download_scenes(ordered, Path(tmp_dir))
                output_path = Path(tmp_dir) / "final.mp4"
                total_duration = self.merge_fn([str(p) for p in paths], str(output_path))
                if not output_path.exists() or output_path.stat().st_size == 0:
                    raise ConcatenationError("Merged movie is empty", details={"project_id": project_id})
                final_bytes = output_path.read_bytes()

            public_url = self.storage.upload_bytes(
                storage_key,
                final_bytes,
                "video/mp4",
                timeout=settings.FINAL_UPLOAD_TIMEOUT
            )
        except Exception as e:
            logger.error("concatenation_failed", project_id=project_id, error=str(e), exc_info=True)
            message = e.message if isinstance(e, PipelineError) else str(e)
            return ConcatResult(ok=False, error=message or "Concatenation failed")

        file_size_mb = round(len(final_bytes) / (1024 * 1024), 1)
        logger.info(
            "concatenation_completed",
            project_id=project_id,
            storage_key=storage_key,
            total_duration_seconds=total_duration,
            file_size_mb=file_size_mb,
        )
        return ConcatResult(
            ok=True,
            public_url=public_url,
            storage_key=storage_key,
            total_duration_seconds=total_duration,
            file_size_mb=file_size_mb,
        )

    def _download_scenes(self, scenes: List[SceneVideo], tmp_dir: Path) -> List[Path]:
        paths = []
        for scene in scenes:
            path = tmp_dir / f"scene_{scene.scene_number:03d}.mp4"
            path.write_bytes(self.storage.download_bytes(scene.video_url))
            paths.append(path)
        return paths
