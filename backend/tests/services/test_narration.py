"""
Tests for narration configuration and the ElevenLabs client.
"""

from unittest.mock import Mock, patch

import httpx
import pytest

from models import FeatureFlag
from pipeline.error_handler import ConfigurationError, ErrorCode, NarrationError
from services.narration import NarrationClient, NarrationConfig, load_narration_config


@pytest.fixture
def config():
    return NarrationConfig(voices=[{"id": "voice-1", "name": "Rachel"}], max_chars=20)


@pytest.fixture
def client():
    return NarrationClient(api_key="xi-test", base_url="https://api.elevenlabs.test/", timeout=5)


class TestLoadNarrationConfig:

    def test_missing_flag(self, db):
        with pytest.raises(NarrationError) as exc_info:
            load_narration_config(db)

        assert exc_info.value.code == ErrorCode.NARRATION_NOT_CONFIGURED

    def test_disabled_flag(self, db):
        db.add(FeatureFlag(key="elevenlabs_narration", enabled=False, config={"model_id": "m"}))
        db.commit()

        with pytest.raises(NarrationError):
            load_narration_config(db)

    def test_malformed_config(self, db):
        db.add(FeatureFlag(key="elevenlabs_narration", enabled=True, config={"stability": "very"}))
        db.commit()

        with pytest.raises(NarrationError) as exc_info:
            load_narration_config(db)

        assert exc_info.value.code == ErrorCode.NARRATION_NOT_CONFIGURED

    def test_loads_config(self, db, narration_flag):
        config = load_narration_config(db)

        assert config.model_id == "eleven_multilingual_v2"
        assert config.is_known_voice("voice-1")
        assert not config.is_known_voice("voice-2")
        assert config.output_format == "mp3_44100_128"


class TestSynthesize:

    @patch("services.narration.httpx.post")
    def test_posts_text_to_speech(self, mock_post, client, config):
        mock_post.return_value = Mock(content=b"mp3-bytes")

        audio = client.synthesize("  The tide comes in at midnight.  ", "voice-1", config)

        assert audio == b"mp3-bytes"
        args, kwargs = mock_post.call_args
        assert args[0] == "https://api.elevenlabs.test/v1/text-to-speech/voice-1"
        assert kwargs["params"] == {"output_format": "mp3_44100_128"}
        assert kwargs["headers"]["xi-api-key"] == "xi-test"
        assert kwargs["json"]["text"] == "The tide comes in at"
        assert kwargs["json"]["voice_settings"] == {"stability": 0.5, "similarity_boost": 0.75, "style": 0.0}
        assert kwargs["timeout"] == 5

    def test_unknown_voice(self, client, config):
        with pytest.raises(NarrationError, match="Voice not allowed"):
            client.synthesize("hello", "voice-9", config)

    def test_any_voice_when_list_empty(self):
        assert NarrationConfig().is_known_voice("anything")

    def test_missing_api_key(self, config):
        with patch("services.narration.settings") as mock_settings:
            mock_settings.ELEVENLABS_API_KEY = ""
            mock_settings.ELEVENLABS_BASE_URL = "https://api.elevenlabs.test"
            mock_settings.NARRATION_TIMEOUT = 5
            client = NarrationClient()

        with pytest.raises(ConfigurationError):
            client.synthesize("hello", "voice-1", config)

    @patch("services.narration.httpx.post")
    def test_timeout(self, mock_post, client, config):
        mock_post.side_effect = httpx.ReadTimeout("timed out")

        with pytest.raises(NarrationError) as exc_info:
            client.synthesize("hello", "voice-1", config)

        assert exc_info.value.code == ErrorCode.API_TIMEOUT

    @patch("services.narration.httpx.post")
    def test_http_error(self, mock_post, client, config):
        response = Mock(content=b"")
        response.raise_for_status.side_effect = httpx.HTTPStatusError(
            "500 Internal Server Error", request=Mock(), response=Mock(status_code=500)
        )
        mock_post.return_value = response

        with pytest.raises(NarrationError) as exc_info:
            client.synthesize("hello", "voice-1", config)

        assert exc_info.value.code == ErrorCode.NARRATION_FAILED

    @patch("services.narration.httpx.post")
    def test_empty_audio(self, mock_post, client, config):
        mock_post.return_value = Mock(content=b"")

        with pytest.raises(NarrationError, match="No audio"):
            client.synthesize("hello", "voice-1", config)
