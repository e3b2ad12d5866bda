"""
Configuration management for the movie scene orchestrator
"""

import os
from typing import Optional
from dotenv import load_dotenv

# Load environment variables
load_dotenv()


class Settings:
    """Application settings"""

    # Database
    DATABASE_URL: str = os.getenv("DATABASE_URL", "sqlite:///./movie_orchestrator.db")

    # Application
    DEBUG: bool = os.getenv("DEBUG", "false").lower() == "true"
    ENVIRONMENT: str = os.getenv("ENVIRONMENT", "development")
    API_HOST: str = os.getenv("API_HOST", "0.0.0.0")
    API_PORT: int = int(os.getenv("API_PORT", "8000"))

    # Public base URL of this service, used to build render-completion callbacks
    APP_URL: str = os.getenv("APP_URL", "")

    # Shared secret the external scheduler sends as a bearer token
    CRON_SECRET: str = os.getenv("CRON_SECRET", "")

    # API Keys
    REPLICATE_API_KEY: str = os.getenv("REPLICATE_API_KEY", "")
    REPLICATE_API_TOKEN: str = os.getenv("REPLICATE_API_TOKEN", "")  # Alternative naming
    ELEVENLABS_API_KEY: str = os.getenv("ELEVENLABS_API_KEY", "")

    # Signing secret for provider webhooks (whsec_...); unsigned deliveries accepted when empty
    REPLICATE_WEBHOOK_SECRET: str = os.getenv("REPLICATE_WEBHOOK_SECRET", "")

    # Replicate Configuration
    REPLICATE_MAX_RETRIES: int = int(os.getenv("REPLICATE_MAX_RETRIES", "3"))
    REPLICATE_TIMEOUT: int = int(os.getenv("REPLICATE_TIMEOUT", "15"))  # per HTTP call

    # ElevenLabs settings
    ELEVENLABS_BASE_URL: str = os.getenv("ELEVENLABS_BASE_URL", "https://api.elevenlabs.io")
    NARRATION_TIMEOUT: int = int(os.getenv("NARRATION_TIMEOUT", "30"))
    NARRATION_FLAG_KEY: str = "elevenlabs_narration"

    # Object storage (S3 or any S3-compatible endpoint such as R2)
    STORAGE_BUCKET: str = os.getenv("STORAGE_BUCKET", "")
    STORAGE_ENDPOINT_URL: Optional[str] = os.getenv("STORAGE_ENDPOINT_URL", None)
    STORAGE_PUBLIC_BASE_URL: str = os.getenv("STORAGE_PUBLIC_BASE_URL", "")
    AWS_ACCESS_KEY_ID: str = os.getenv("AWS_ACCESS_KEY_ID", "")
    AWS_SECRET_ACCESS_KEY: str = os.getenv("AWS_SECRET_ACCESS_KEY", "")
    AWS_REGION: str = os.getenv("AWS_REGION", "us-east-1")
    PRESIGNED_URL_EXPIRY: int = int(os.getenv("PRESIGNED_URL_EXPIRY", "3600"))  # 1 hour in seconds

    # Network timeouts for media transfer (in seconds)
    DOWNLOAD_TIMEOUT: int = int(os.getenv("DOWNLOAD_TIMEOUT", "30"))
    UPLOAD_TIMEOUT: int = int(os.getenv("UPLOAD_TIMEOUT", "30"))
    FINAL_UPLOAD_TIMEOUT: int = int(os.getenv("FINAL_UPLOAD_TIMEOUT", "60"))

    # FFmpeg Configuration (for narration muxing)
    FFMPEG_PATH: Optional[str] = os.getenv("FFMPEG_PATH", None)  # Optional path to ffmpeg executable
    MUX_TIMEOUT: int = int(os.getenv("MUX_TIMEOUT", "120"))

    # Movie orchestrator
    MOVIE_LOCK_JOB_NAME: str = "process_movie_scenes"
    MOVIE_LOCK_TTL_SECONDS: int = int(os.getenv("MOVIE_LOCK_TTL_SECONDS", "300"))
    MOVIE_BATCH_SIZE: int = int(os.getenv("MOVIE_BATCH_SIZE", "10"))
    MOVIE_MAX_SCENE_RETRIES: int = int(os.getenv("MOVIE_MAX_SCENE_RETRIES", "3"))

    # Generation reconciliation sweep
    TIMEOUT_LOCK_JOB_NAME: str = "ai-generation-timeout"
    TIMEOUT_LOCK_TTL_SECONDS: int = int(os.getenv("TIMEOUT_LOCK_TTL_SECONDS", "60"))
    GENERATION_STALE_MINUTES: int = int(os.getenv("GENERATION_STALE_MINUTES", "10"))
    GENERATION_TIMEOUT_MINUTES: int = int(os.getenv("GENERATION_TIMEOUT_MINUTES", "30"))
    RECONCILE_BATCH_SIZE: int = int(os.getenv("RECONCILE_BATCH_SIZE", "50"))

    @property
    def is_production(self) -> bool:
        return self.ENVIRONMENT.lower() == "production"

    @property
    def replicate_api_token(self) -> str:
        """Replicate token, accepting either env var name."""
        return self.REPLICATE_API_TOKEN or self.REPLICATE_API_KEY

    @property
    def webhook_url(self) -> Optional[str]:
        """Callback URL handed to the render provider, or None when APP_URL is unset."""
        if not self.APP_URL:
            return None
        return f"{self.APP_URL.rstrip('/')}/api/ai/webhook"


# Global settings instance
settings = Settings()
