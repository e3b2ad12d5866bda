"""
Model Registry - catalogue of video generation models

Single source of truth for provider model ids, per-model input parameters,
nominal clip durations and credit pricing.
"""

import math
from typing import Dict, Any, Optional
from pydantic import BaseModel
import structlog

logger = structlog.get_logger()

# Provider price is quoted in cents; one credit buys 5 cents of rendering
CENTS_PER_CREDIT = 5
# Charged when a project references a model missing from the catalogue
DEFAULT_CREDIT_COST = 7
DEFAULT_SCENE_DURATION = 5.0
# Seconds before the end of a clip where the continuity frame is taken
LAST_FRAME_OFFSET = 0.1

DEFAULT_NEGATIVE_PROMPT = "blurry, low quality, distorted, watermark, text overlay"

STYLE_PREFIXES: Dict[str, str] = {
    "cinematic": "cinematic film style,",
    "anime": "anime style,",
    "realistic": "photorealistic,",
    "abstract": "abstract art style,",
    "noir": "film noir style, black and white,",
    "retro": "retro VHS style,",
    "neon": "neon-lit cyberpunk style,",
}


class VideoModelConfig(BaseModel):
    """Configuration for one video generation model"""
    model_id: str  # Replicate model id for text-to-video (e.g., "kwaivgi/kling-v2.6")
    image_model_id: Optional[str] = None  # image-to-video variant, None when unsupported
    image_param: str = "image"  # input field carrying the seed frame
    display_name: str
    cost_cents: int
    duration_seconds: float = DEFAULT_SCENE_DURATION
    default_params: Dict[str, Any] = {}

    @property
    def supports_image_to_video(self) -> bool:
        return self.image_model_id is not None


class ModelRegistry:
    """
    Registry of video models available to movie projects.

    Provides:
    - Model lookup by project model key
    - Provider input construction (style prefix + model defaults)
    - Credit cost and nominal duration lookup
    """

    VIDEO_MODELS: Dict[str, VideoModelConfig] = {
        "hailuo-2.3": VideoModelConfig(
            model_id="minimax/hailuo-2.3",
            image_model_id="minimax/hailuo-2.3",
            image_param="first_frame_image",
            display_name="Hailuo 2.3",
            cost_cents=49,
            duration_seconds=6,
            # Only accepts prompt + prompt_optimizer
            default_params={"prompt_optimizer": True},
        ),
        "kling-2.6": VideoModelConfig(
            model_id="kwaivgi/kling-v2.6",
            image_model_id="kwaivgi/kling-v2.6",
            image_param="start_image",
            display_name="Kling 2.6",
            cost_cents=35,
            duration_seconds=5,
            default_params={
                "negative_prompt": DEFAULT_NEGATIVE_PROMPT,
                "aspect_ratio": "9:16",
                "duration": 5,
            },
        ),
        "veo3-fast": VideoModelConfig(
            model_id="google/veo-3-fast",
            image_model_id="google/veo-3-fast",
            image_param="image",
            display_name="Veo 3 Fast",
            cost_cents=80,
            duration_seconds=8,
            default_params={
                "negative_prompt": DEFAULT_NEGATIVE_PROMPT,
                "aspect_ratio": "9:16",
                "duration": 8,
            },
        ),
        "sora-2": VideoModelConfig(
            model_id="openai/sora-2",
            display_name="Sora 2",
            cost_cents=80,
            duration_seconds=8,
            default_params={
                "seconds": 8,
                "aspect_ratio": "portrait",
            },
        ),
    }

    @classmethod
    def get_model(cls, model_key: str) -> Optional[VideoModelConfig]:
        """Return the model config, or None for an unknown key."""
        return cls.VIDEO_MODELS.get(model_key)

    @classmethod
    def credit_cost(cls, model_key: str) -> int:
        """
        Credits charged for one scene rendered with this model.

        Only read at submission time; the result is frozen onto the scene.
        """
        model = cls.get_model(model_key)
        if model is None:
            logger.warning("unknown_model_default_cost", model=model_key, credits=DEFAULT_CREDIT_COST)
            return DEFAULT_CREDIT_COST
        return math.ceil(model.cost_cents / CENTS_PER_CREDIT)

    @classmethod
    def duration_seconds(cls, model_key: str) -> float:
        model = cls.get_model(model_key)
        return model.duration_seconds if model else DEFAULT_SCENE_DURATION

    @classmethod
    def last_frame_timestamp(cls, model_key: str) -> float:
        return max(cls.duration_seconds(model_key) - LAST_FRAME_OFFSET, 0.0)

    @classmethod
    def supports_image_to_video(cls, model_key: str) -> bool:
        model = cls.get_model(model_key)
        return bool(model and model.supports_image_to_video)

    @classmethod
    def build_input(
        cls,
        model_key: str,
        prompt: str,
        style: Optional[str] = None,
        image_url: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Build the provider input for a render request.

        Args:
            model_key: Catalogue key (e.g., "kling-2.6")
            prompt: Scene video prompt
            style: Optional visual style; known styles prefix the prompt
            image_url: Seed frame for image-to-video

        Raises:
            ValueError: If the model is unknown
        """
        model = cls.get_model(model_key)
        if model is None:
            raise ValueError(f"Unknown model: {model_key}")

        prefix = STYLE_PREFIXES.get(style) if style else None
        styled_prompt = f"{prefix} {prompt}" if prefix else prompt

        input_params = {"prompt": styled_prompt, **model.default_params}
        if image_url:
            input_params[model.image_param] = image_url
        return input_params
