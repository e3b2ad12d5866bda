"""
Narration muxer.

Combines a silent scene video with a narration audio track using an
ffmpeg subprocess, then uploads the result to storage.
"""

import shutil
import subprocess
import tempfile
from pathlib import Path
from typing import List, Optional

import structlog

from config import settings
from pipeline.error_handler import ConfigurationError, ErrorCode, MuxError
from services.s3_storage import S3StorageService, get_s3_storage_service

logger = structlog.get_logger()


def resolve_ffmpeg(ffmpeg_path: Optional[str] = None) -> str:
    """
    Locate the ffmpeg executable.

    Raises:
        ConfigurationError: If ffmpeg cannot be found
    """
    candidate = ffmpeg_path or settings.FFMPEG_PATH
    if candidate:
        if Path(candidate).is_file():
            return candidate
        raise ConfigurationError(f"FFMPEG_PATH does not exist: {candidate}")

    found = shutil.which("ffmpeg")
    if not found:
        raise ConfigurationError("ffmpeg binary not found. Install ffmpeg or set FFMPEG_PATH.")
    return found


def build_mux_command(ffmpeg: str, video_path: str, audio_path: str, output_path: str) -> List[str]:
    """Video stream copied as-is, narration becomes the only audio track."""
    return [
        ffmpeg,
        "-i", video_path,
        "-i", audio_path,
        "-map", "0:v:0",
        "-map", "1:a:0",
        "-c:v", "copy",
        "-c:a", "aac",
        "-shortest",
        "-y",
        output_path,
    ]


class Muxer:
    """
    Adds narration audio to scene videos.

    Every call works in its own temporary directory, removed on every exit path.
    """

    def __init__(self, storage: S3StorageService = None, ffmpeg_path: str = None, timeout: int = None):
        self._storage = storage
        self.ffmpeg_path = ffmpeg_path
        self.timeout = timeout or settings.MUX_TIMEOUT

    @property
    def storage(self) -> S3StorageService:
        if self._storage is None:
            self._storage = get_s3_storage_service()
        return self._storage

    def mux(self, video_url: str, audio: bytes, output_key: str) -> str:
        """
        Download video_url, add audio, upload to output_key.

        Args:
            video_url: Silent scene video
            audio: Encoded narration audio (mp3)
            output_key: Storage key for the narrated video

        Returns:
            Public URL of the narrated video

        Raises:
            MuxError: If ffmpeg fails or times out
            StorageError: If the download or upload fails
        """
        ffmpeg = resolve_ffmpeg(self.ffmpeg_path)
        video_bytes = self.storage.download_bytes(video_url)

        with tempfile.TemporaryDirectory(prefix="movie_mux_") as tmp_dir:
            video_path = Path(tmp_dir) / "video.mp4"
            audio_path = Path(tmp_dir) / "audio.mp3"
            output_path = Path(tmp_dir) / "merged.mp4"
            video_path.write_bytes(video_bytes)
            audio_path.write_bytes(audio)

            cmd = build_mux_command(ffmpeg, str(video_path), str(audio_path), str(output_path))
            logger.info("mux_started", output_key=output_key, timeout=self.timeout)

            try:
                result = subprocess.run(
                    cmd,
                    capture_output=True,
                    text=True,
                    timeout=self.timeout
                )
            except subprocess.TimeoutExpired as e:
                raise MuxError(
                    f"ffmpeg timed out after {self.timeout}s",
                    code=ErrorCode.API_TIMEOUT,
                    details={"output_key": output_key}
                ) from e

            if result.returncode != 0:
                raise MuxError(
                    f"ffmpeg failed: {result.stderr[-500:]}",
                    code=ErrorCode.FFMPEG_ERROR,
                    details={"returncode": result.returncode}
                )
            if not output_path.exists() or output_path.stat().st_size == 0:
                raise MuxError("ffmpeg produced no output", details={"output_key": output_key})

            merged = output_path.read_bytes()

        url = self.storage.upload_bytes(output_key, merged, "video/mp4")
        logger.info("mux_completed", output_key=output_key, size_bytes=len(merged))
        return url
