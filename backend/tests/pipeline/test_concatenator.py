"""
Tests for final movie concatenation.

The MoviePy merge is replaced by a function that writes a fake output file.
"""

from pathlib import Path
from unittest.mock import MagicMock

import pytest

from pipeline.concatenator import Concatenator, SceneVideo
from pipeline.error_handler import StorageError
from services.s3_storage import S3StorageService


@pytest.fixture
def storage():
    storage = MagicMock(spec=S3StorageService)
    storage.download_bytes.side_effect = lambda url: f"bytes-of-{url}".encode()
    storage.upload_bytes.return_value = "https://cdn.test/movies/p1/final.mp4"
    return storage


def writing_merge(size=3 * 1024 * 1024, duration=15.0):
    calls = []

    def merge(paths, output_path):
        calls.append([Path(p).read_bytes() for p in paths])
        Path(output_path).write_bytes(b"\0" * size)
        return duration

    merge.calls = calls
    return merge


def scenes(*numbers):
    return [SceneVideo(scene_number=n, video_url=f"https://cdn.test/scene_{n}.mp4") for n in numbers]


class TestConcatenate:

    def test_merges_in_scene_order(self, storage):
        merge = writing_merge()
        result = Concatenator(storage=storage, merge_fn=merge).concatenate("p1", scenes(3, 1, 2))

        assert result.ok is True
        assert merge.calls[0] == [
            b"bytes-of-https://cdn.test/scene_1.mp4",
            b"bytes-of-https://cdn.test/scene_2.mp4",
            b"bytes-of-https://cdn.test/scene_3.mp4",
        ]

    def test_result_fields(self, storage):
        result = Concatenator(storage=storage, merge_fn=writing_merge(size=1572864)).concatenate("p1", scenes(1))

        assert result.public_url == "https://cdn.test/movies/p1/final.mp4"
        assert result.storage_key == "movies/p1/final.mp4"
        assert result.total_duration_seconds == 15.0
        assert result.file_size_mb == 1.5
        assert result.error is None

    def test_upload_uses_final_key_and_long_timeout(self, storage):
        Concatenator(storage=storage, merge_fn=writing_merge()).concatenate("p1", scenes(1))

        args, kwargs = storage.upload_bytes.call_args
        assert args[0] == "movies/p1/final.mp4"
        assert args[2] == "video/mp4"
        assert kwargs["timeout"] == 60

    def test_no_scenes(self, storage):
        result = Concatenator(storage=storage, merge_fn=writing_merge()).concatenate("p1", [])

        assert result.ok is False
        assert result.error == "No scene videos to concatenate"

    def test_download_failure_reported(self, storage):
        storage.download_bytes.side_effect = StorageError("Download failed with status 403")

        result = Concatenator(storage=storage, merge_fn=writing_merge()).concatenate("p1", scenes(1, 2))

        assert result.ok is False
        assert result.error == "Download failed with status 403"
        storage.upload_bytes.assert_not_called()

    def test_merge_failure_reported(self, storage):
        def broken_merge(paths, output_path):
            raise OSError("codec not supported")

        result = Concatenator(storage=storage, merge_fn=broken_merge).concatenate("p1", scenes(1))

        assert result.ok is False
        assert "codec not supported" in result.error

    def test_empty_merge_output_reported(self, storage):
        result = Concatenator(storage=storage, merge_fn=writing_merge(size=0)).concatenate("p1", scenes(1))

        assert result.ok is False
        assert result.error == "Merged movie is empty"

    def test_upload_failure_reported(self, storage):
        storage.upload_bytes.side_effect = StorageError("Upload failed for movies/p1/final.mp4")

        result = Concatenator(storage=storage, merge_fn=writing_merge()).concatenate("p1", scenes(1))

        assert result.ok is False
        assert result.public_url is None
