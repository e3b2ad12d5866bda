"""
Replicate API Wrapper

Generation service adapter for movie scenes: submits text-to-video and
image-to-video predictions and polls their status.

Key Features:
- Bounded per-call HTTP timeout
- Retry logic with exponential backoff on transient network errors
- Webhook support (primary completion channel)
- Provider statuses mapped onto GenerationStatus
- Logging integration with structlog
"""

import logging
from dataclasses import dataclass
from typing import Any, Optional

import replicate
from replicate.exceptions import ReplicateError
from tenacity import (
    retry,
    stop_after_attempt,
    wait_exponential,
    retry_if_exception_type,
    before_sleep_log,
)
import structlog
import httpx

from config import settings
from models import GenerationStatus
from pipeline.error_handler import ConfigurationError, ErrorCode, GenerationError
from services.model_registry import ModelRegistry


logger = structlog.get_logger(__name__)

TRANSIENT_ERRORS = (httpx.TransportError, httpx.HTTPStatusError)

# Replicate prediction status -> generation status
STATUS_MAP = {
    "starting": GenerationStatus.PENDING,
    "processing": GenerationStatus.PROCESSING,
    "succeeded": GenerationStatus.COMPLETED,
    "failed": GenerationStatus.FAILED,
    "canceled": GenerationStatus.FAILED,
}


@dataclass
class ProviderStatus:
    """Normalized view of a provider job"""
    status: GenerationStatus
    video_url: Optional[str] = None
    error: Optional[str] = None

    @property
    def is_completed(self) -> bool:
        return self.status == GenerationStatus.COMPLETED and bool(self.video_url)

    @property
    def is_failed(self) -> bool:
        return self.status == GenerationStatus.FAILED


def extract_output_url(output: Any) -> Optional[str]:
    """
    Pull the video URL out of a prediction output.

    Video models return either a single URL or a list whose first item is
    the video.
    """
    if output is None:
        return None
    if isinstance(output, (list, tuple)):
        return extract_output_url(output[0]) if output else None
    if isinstance(output, dict):
        return extract_output_url(output.get("video") or output.get("url"))
    return str(output) or None


def map_prediction_status(status: Optional[str], output: Any = None, error: Any = None) -> ProviderStatus:
    """Map a raw Replicate status onto ProviderStatus."""
    mapped = STATUS_MAP.get(status or "", GenerationStatus.PENDING)
    if mapped == GenerationStatus.COMPLETED:
        video_url = extract_output_url(output)
        if not video_url:
            return ProviderStatus(status=GenerationStatus.FAILED, error="Prediction succeeded without output")
        return ProviderStatus(status=mapped, video_url=video_url)
    if mapped == GenerationStatus.FAILED:
        return ProviderStatus(status=mapped, error=str(error) if error else f"Prediction {status}")
    return ProviderStatus(status=mapped)


def is_rate_limited(error: Exception) -> bool:
    """True for a provider 429, raised either by replicate or by httpx."""
    if isinstance(error, httpx.HTTPStatusError):
        return error.response.status_code == 429
    return getattr(error, "status", None) == 429


class ReplicateClient:
    """
    Wrapper for Replicate prediction calls used by the scene pipeline.

    Usage:
        client = ReplicateClient()
        job_id = client.submit_text_to_video("kling-2.6", "a lighthouse at dusk", style="cinematic")
        status = client.poll_status(job_id)
    """

    def __init__(self, api_token: str = None, timeout: int = None, client=None):
        """
        Initialize Replicate client.

        Args:
            api_token: Replicate API token. If None, loads from settings
            timeout: Per-call HTTP timeout in seconds
            client: Pre-built replicate.Client (tests)
        """
        self.api_token = api_token or settings.replicate_api_token
        self.timeout = timeout or settings.REPLICATE_TIMEOUT
        self.logger = logger.bind(service="replicate_client")
        self._client = client

    @property
    def client(self) -> replicate.Client:
        # Credentials are checked at call time, never at import time
        if self._client is None:
            if not self.api_token:
                raise ConfigurationError(
                    "Replicate API token is required. Set REPLICATE_API_TOKEN environment variable."
                )
            self._client = replicate.Client(
                api_token=self.api_token,
                timeout=httpx.Timeout(self.timeout),
            )
        return self._client

    def submit_text_to_video(
        self,
        model_key: str,
        prompt: str,
        style: Optional[str] = None,
        webhook_url: Optional[str] = None,
    ) -> str:
        """
        Submit a text-to-video render.

        Returns:
            Provider job id

        Raises:
            GenerationError: If the model is unknown or submission fails
        """
        model = ModelRegistry.get_model(model_key)
        if model is None:
            raise GenerationError(f"Unknown model: {model_key}", code=ErrorCode.UNKNOWN_MODEL, model=model_key)
        input_params = ModelRegistry.build_input(model_key, prompt, style)
        return self._submit(model.model_id, input_params, model_key, webhook_url)

    def submit_image_to_video(
        self,
        model_key: str,
        prompt: str,
        image_url: str,
        style: Optional[str] = None,
        webhook_url: Optional[str] = None,
    ) -> str:
        """
        Submit an image-to-video render seeded with image_url.

        Raises:
            GenerationError: If the model has no image-to-video variant or submission fails
        """
        model = ModelRegistry.get_model(model_key)
        if model is None or not model.supports_image_to_video:
            raise GenerationError(
                f"Model does not support image-to-video: {model_key}",
                code=ErrorCode.UNKNOWN_MODEL,
                model=model_key,
            )
        input_params = ModelRegistry.build_input(model_key, prompt, style, image_url=image_url)
        return self._submit(model.image_model_id, input_params, model_key, webhook_url)

    def poll_status(self, job_id: str) -> ProviderStatus:
        """
        Fetch the current status of a prediction.

        Raises:
            GenerationError: If the status call fails after retries
        """
        try:
            prediction = self._get_prediction(job_id)
        except (ReplicateError, *TRANSIENT_ERRORS) as e:
            self.logger.warning("prediction_status_failed", job_id=job_id, error=str(e))
            raise GenerationError(
                f"Status check failed for {job_id}: {e}",
                code=ErrorCode.API_RATE_LIMIT if is_rate_limited(e) else ErrorCode.GENERATION_STATUS_FAILED,
                details={"job_id": job_id},
            ) from e

        status = map_prediction_status(prediction.status, prediction.output, prediction.error)
        self.logger.info("prediction_status", job_id=job_id, raw_status=prediction.status, status=status.status.value)
        return status

    def _submit(self, model_id: str, input_params: dict, model_key: str, webhook_url: Optional[str]) -> str:
        self.logger.info(
            "creating_prediction",
            model_id=model_id,
            model=model_key,
            webhook=bool(webhook_url),
        )
        try:
            prediction = self._create_prediction(model_id, input_params, webhook_url)
        except (ReplicateError, *TRANSIENT_ERRORS) as e:
            self.logger.error("prediction_creation_failed", model_id=model_id, error=str(e))
            code = ErrorCode.API_RATE_LIMIT if is_rate_limited(e) else ErrorCode.GENERATION_SUBMIT_FAILED
            raise GenerationError(f"Submission failed: {e}", code=code, model=model_key) from e

        self.logger.info("prediction_created", prediction_id=prediction.id, model_id=model_id)
        return prediction.id

    @retry(
        stop=stop_after_attempt(settings.REPLICATE_MAX_RETRIES),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        retry=retry_if_exception_type(TRANSIENT_ERRORS),
        before_sleep=before_sleep_log(logging.getLogger(__name__), logging.INFO),
        reraise=True,
    )
    def _create_prediction(self, model_id: str, input_params: dict, webhook_url: Optional[str]):
        kwargs = {"model": model_id, "input": input_params}
        if webhook_url:
            kwargs["webhook"] = webhook_url
            kwargs["webhook_events_filter"] = ["completed"]
        return self.client.predictions.create(**kwargs)

    @retry(
        stop=stop_after_attempt(settings.REPLICATE_MAX_RETRIES),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        retry=retry_if_exception_type(TRANSIENT_ERRORS),
        before_sleep=before_sleep_log(logging.getLogger(__name__), logging.INFO),
        reraise=True,
    )
    def _get_prediction(self, job_id: str):
        return self.client.predictions.get(job_id)


# Singleton instance
_replicate_client: Optional[ReplicateClient] = None


def get_replicate_client() -> ReplicateClient:
    """Get or create the shared ReplicateClient."""
    global _replicate_client
    if _replicate_client is None:
        _replicate_client = ReplicateClient()
    return _replicate_client
