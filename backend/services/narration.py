"""
Narration adapter: ElevenLabs text-to-speech over httpx.

Configuration is runtime data, read from the feature_flags row keyed by
settings.NARRATION_FLAG_KEY, so voices and tuning change without a deploy.
"""

from typing import List, Optional

import httpx
import structlog
from pydantic import BaseModel, ValidationError
from sqlalchemy.orm import Session

from config import settings
from models import FeatureFlag
from pipeline.error_handler import ConfigurationError, ErrorCode, NarrationError

logger = structlog.get_logger()


class NarrationVoice(BaseModel):
    id: str
    name: Optional[str] = None


class NarrationConfig(BaseModel):
    """Provider configuration stored in the narration feature flag"""
    model_id: str = "eleven_multilingual_v2"
    stability: float = 0.5
    similarity_boost: float = 0.75
    style: float = 0.0
    output_format: str = "mp3_44100_128"
    voices: List[NarrationVoice] = []
    max_chars: int = 200

    def is_known_voice(self, voice_id: str) -> bool:
        # An empty voice list means any voice id is accepted
        return not self.voices or any(v.id == voice_id for v in self.voices)


def load_narration_config(db: Session) -> NarrationConfig:
    """
    Read narration configuration from the feature flag row.

    Raises:
        NarrationError: If the flag is missing, disabled or malformed
    """
    flag = db.get(FeatureFlag, settings.NARRATION_FLAG_KEY)
    if flag is None or not flag.enabled or not flag.config:
        raise NarrationError("Narration not configured", code=ErrorCode.NARRATION_NOT_CONFIGURED)
    try:
        return NarrationConfig(**flag.config)
    except (TypeError, ValidationError) as e:
        raise NarrationError(
            f"Invalid narration config: {e}",
            code=ErrorCode.NARRATION_NOT_CONFIGURED,
        ) from e


class NarrationClient:
    """Synthesizes speech audio for scene narration text."""

    def __init__(self, api_key: str = None, base_url: str = None, timeout: int = None):
        self.api_key = api_key or settings.ELEVENLABS_API_KEY
        self.base_url = (base_url or settings.ELEVENLABS_BASE_URL).rstrip("/")
        self.timeout = timeout or settings.NARRATION_TIMEOUT

    def synthesize(self, text: str, voice_id: str, config: NarrationConfig) -> bytes:
        """
        Generate speech for text with the given voice.

        Args:
            text: Narration text, truncated to config.max_chars
            voice_id: ElevenLabs voice id
            config: Narration configuration

        Returns:
            Encoded audio bytes (mp3 by default)

        Raises:
            ConfigurationError: If no API key is configured
            NarrationError: On HTTP failure or empty audio
        """
        if not self.api_key:
            raise ConfigurationError("ELEVENLABS_API_KEY is not configured")
        if not config.is_known_voice(voice_id):
            raise NarrationError(f"Voice not allowed: {voice_id}", details={"voice_id": voice_id})

        text = text.strip()[:config.max_chars]
        url = f"{self.base_url}/v1/text-to-speech/{voice_id}"
        payload = {
            "text": text,
            "model_id": config.model_id,
            "voice_settings": {
                "stability": config.stability,
                "similarity_boost": config.similarity_boost,
                "style": config.style,
            },
        }

        logger.info("narration_requested", voice_id=voice_id, chars=len(text), model_id=config.model_id)
        try:
            response = httpx.post(
                url,
                params={"output_format": config.output_format},
                headers={"xi-api-key": self.api_key, "Accept": "audio/mpeg"},
                json=payload,
                timeout=self.timeout,
            )
            response.raise_for_status()
        except httpx.TimeoutException as e:
            raise NarrationError(f"Narration timed out: {e}", code=ErrorCode.API_TIMEOUT) from e
        except httpx.HTTPError as e:
            raise NarrationError(f"Narration request failed: {e}", details={"voice_id": voice_id}) from e

        if not response.content:
            raise NarrationError("No audio returned from narration", details={"voice_id": voice_id})

        logger.info("narration_generated", voice_id=voice_id, size_bytes=len(response.content))
        return response.content
