"""
Tests for the Replicate prediction wrapper.
"""

from unittest.mock import MagicMock, Mock, patch

import httpx
import pytest
from replicate.exceptions import ReplicateError

from config import settings
from models import GenerationStatus
from pipeline.error_handler import ConfigurationError, ErrorCode, GenerationError
from services.replicate_client import ReplicateClient, extract_output_url, is_rate_limited, map_prediction_status


@pytest.fixture
def replicate_api():
    api = MagicMock()
    api.predictions.create.return_value = Mock(id="pred-123")
    return api


@pytest.fixture
def client(replicate_api):
    return ReplicateClient(api_token="r8_test", client=replicate_api)


class TestStatusMapping:

    @pytest.mark.parametrize("raw, expected", [
        ("starting", GenerationStatus.PENDING),
        ("processing", GenerationStatus.PROCESSING),
        ("failed", GenerationStatus.FAILED),
        ("canceled", GenerationStatus.FAILED),
        ("mystery", GenerationStatus.PENDING),
        (None, GenerationStatus.PENDING),
    ])
    def test_status_map(self, raw, expected):
        assert map_prediction_status(raw).status == expected

    def test_succeeded_with_output(self):
        result = map_prediction_status("succeeded", "https://replicate.delivery/v.mp4")

        assert result.is_completed
        assert result.video_url == "https://replicate.delivery/v.mp4"

    def test_succeeded_without_output_is_failure(self):
        result = map_prediction_status("succeeded", None)

        assert result.is_failed
        assert result.error == "Prediction succeeded without output"

    def test_failed_carries_provider_error(self):
        assert map_prediction_status("failed", error="CUDA out of memory").error == "CUDA out of memory"

    def test_canceled_without_error(self):
        assert map_prediction_status("canceled").error == "Prediction canceled"

    @pytest.mark.parametrize("output, expected", [
        ("https://x/v.mp4", "https://x/v.mp4"),
        (["https://x/a.mp4", "https://x/b.mp4"], "https://x/a.mp4"),
        ({"video": "https://x/v.mp4"}, "https://x/v.mp4"),
        ([], None),
        ("", None),
    ])
    def test_extract_output_url(self, output, expected):
        assert extract_output_url(output) == expected


class TestSubmit:

    def test_text_to_video(self, client, replicate_api):
        job_id = client.submit_text_to_video(
            "kling-2.6",
            "a lighthouse at dusk",
            style="cinematic",
            webhook_url="https://app.test/api/ai/webhook",
        )

        assert job_id == "pred-123"
        kwargs = replicate_api.predictions.create.call_args.kwargs
        assert kwargs["model"] == "kwaivgi/kling-v2.6"
        assert kwargs["input"]["prompt"] == "cinematic film style, a lighthouse at dusk"
        assert kwargs["input"]["aspect_ratio"] == "9:16"
        assert kwargs["webhook"] == "https://app.test/api/ai/webhook"
        assert kwargs["webhook_events_filter"] == ["completed"]

    def test_without_webhook(self, client, replicate_api):
        client.submit_text_to_video("hailuo-2.3", "waves")

        kwargs = replicate_api.predictions.create.call_args.kwargs
        assert "webhook" not in kwargs
        assert kwargs["input"] == {"prompt": "waves", "prompt_optimizer": True}

    def test_image_to_video_uses_model_image_param(self, client, replicate_api):
        client.submit_image_to_video("kling-2.6", "the storm breaks", "https://cdn.test/frame.jpg")

        kwargs = replicate_api.predictions.create.call_args.kwargs
        assert kwargs["input"]["start_image"] == "https://cdn.test/frame.jpg"

    def test_image_to_video_unsupported(self, client, replicate_api):
        with pytest.raises(GenerationError) as exc_info:
            client.submit_image_to_video("sora-2", "prompt", "https://cdn.test/frame.jpg")

        assert exc_info.value.code == ErrorCode.UNKNOWN_MODEL
        replicate_api.predictions.create.assert_not_called()

    def test_unknown_model(self, client):
        with pytest.raises(GenerationError) as exc_info:
            client.submit_text_to_video("not-a-model", "prompt")

        assert exc_info.value.code == ErrorCode.UNKNOWN_MODEL

    def test_provider_rejection_wrapped(self, client, replicate_api):
        replicate_api.predictions.create.side_effect = ReplicateError(status=422, detail="Invalid input")

        with pytest.raises(GenerationError) as exc_info:
            client.submit_text_to_video("kling-2.6", "prompt")

        assert exc_info.value.code == ErrorCode.GENERATION_SUBMIT_FAILED
        assert replicate_api.predictions.create.call_count == 1

    def test_missing_token(self):
        with patch.object(settings, "REPLICATE_API_TOKEN", ""), patch.object(settings, "REPLICATE_API_KEY", ""):
            client = ReplicateClient()

            with pytest.raises(ConfigurationError):
                client.submit_text_to_video("kling-2.6", "prompt")


class TestPollStatus:

    def test_completed(self, client, replicate_api):
        replicate_api.predictions.get.return_value = Mock(
            status="succeeded",
            output=["https://replicate.delivery/v.mp4"],
            error=None,
        )

        result = client.poll_status("pred-123")

        replicate_api.predictions.get.assert_called_once_with("pred-123")
        assert result.is_completed
        assert result.video_url == "https://replicate.delivery/v.mp4"

    def test_processing(self, client, replicate_api):
        replicate_api.predictions.get.return_value = Mock(status="processing", output=None, error=None)

        assert client.poll_status("pred-123").status == GenerationStatus.PROCESSING

    def test_status_error_wrapped(self, client, replicate_api):
        replicate_api.predictions.get.side_effect = ReplicateError(status=404, detail="Not found")

        with pytest.raises(GenerationError) as exc_info:
            client.poll_status("pred-123")

        assert exc_info.value.code == ErrorCode.GENERATION_STATUS_FAILED

    def test_rate_limit_is_its_own_code(self, client, replicate_api):
        replicate_api.predictions.get.side_effect = ReplicateError(status=429, detail="Too many requests")

        with pytest.raises(GenerationError) as exc_info:
            client.poll_status("pred-123")

        assert exc_info.value.code == ErrorCode.API_RATE_LIMIT
        assert exc_info.value.to_dict()["user_message"] == "Too many requests. Please wait a moment and try again."


def test_submit_rate_limited(client, replicate_api):
    replicate_api.predictions.create.side_effect = ReplicateError(status=429, detail="Too many requests")

    with pytest.raises(GenerationError) as exc_info:
        client.submit_text_to_video("kling-2.6", "prompt")

    assert exc_info.value.code == ErrorCode.API_RATE_LIMIT


def test_is_rate_limited():
    request = httpx.Request("POST", "https://api.replicate.com/v1/predictions")

    assert is_rate_limited(httpx.HTTPStatusError("429", request=request, response=httpx.Response(429, request=request)))
    assert not is_rate_limited(httpx.HTTPStatusError("503", request=request, response=httpx.Response(503, request=request)))
    assert is_rate_limited(ReplicateError(status=429))
    assert not is_rate_limited(ReplicateError(status=422))
    assert not is_rate_limited(httpx.ConnectError("refused"))
