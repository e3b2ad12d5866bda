"""
Continuity frame extraction.

Pulls one frame near the end of a finished scene with MoviePy, encodes it
as JPEG with Pillow and uploads it so the next scene can seed an
image-to-video render.
"""

import io
import tempfile
from pathlib import Path

from moviepy import VideoFileClip
from PIL import Image
import structlog

from pipeline.error_handler import FrameExtractionError
from services.s3_storage import S3StorageService, get_s3_storage_service

logger = structlog.get_logger()

JPEG_QUALITY = 90


def extract_frame_jpeg(video_path: str, timestamp: float) -> bytes:
    """
    Encode the frame at timestamp as JPEG.

    The timestamp is clamped into the clip, since the real duration can be
    shorter than the model's nominal one.
    """
    clip = VideoFileClip(video_path)
    try:
        duration = clip.duration or 0.0
        t = min(max(timestamp, 0.0), max(duration - 0.05, 0.0))
        frame = clip.get_frame(t)
    finally:
        clip.close()

    buffer = io.BytesIO()
    Image.fromarray(frame).convert("RGB").save(buffer, format="JPEG", quality=JPEG_QUALITY)
    return buffer.getvalue()


class FrameExtractor:
    """Extracts and uploads continuity frames."""

    def __init__(self, storage: S3StorageService = None):
        self._storage = storage

    @property
    def storage(self) -> S3StorageService:
        if self._storage is None:
            self._storage = get_s3_storage_service()
        return self._storage

    def extract(self, video_bytes: bytes, timestamp: float, output_key: str) -> str:
        """
        Extract the frame at timestamp from video_bytes and upload it.

        Returns:
            Public URL of the JPEG frame

        Raises:
            FrameExtractionError: If decoding or encoding fails
            StorageError: If the upload fails
        """
        with tempfile.TemporaryDirectory(prefix="movie_frame_") as tmp_dir:
            video_path = Path(tmp_dir) / "scene.mp4"
            video_path.write_bytes(video_bytes)
            try:
                jpeg = extract_frame_jpeg(str(video_path), timestamp)
            except (OSError, ValueError, KeyError, IndexError) as e:
                raise FrameExtractionError(
                    f"Could not extract frame at {timestamp:.2f}s: {e}",
                    details={"output_key": output_key}
                ) from e

        url = self.storage.upload_bytes(output_key, jpeg, "image/jpeg")
        logger.info("frame_extracted", output_key=output_key, timestamp=timestamp, size_bytes=len(jpeg))
        return url
