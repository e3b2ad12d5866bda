"""
Shared fixtures for the orchestrator test suite.

Every test gets its own SQLite file so sessions behave like separate
connections, the way the orchestrator uses them in production.
"""

import os
import sys
from pathlib import Path

# Configure before any backend module reads settings
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("REPLICATE_MAX_RETRIES", "1")

backend_dir = Path(__file__).parent.parent
if str(backend_dir) not in sys.path:
    sys.path.insert(0, str(backend_dir))

from unittest.mock import MagicMock

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from database import Base
from models import (
    FeatureFlag,
    GenerationStatus,
    MovieProject,
    MovieScene,
    ProjectStatus,
    SceneStatus,
    User,
    new_id,
)
from pipeline.concatenator import ConcatResult, Concatenator
from pipeline.frame_extractor import FrameExtractor
from pipeline.muxer import Muxer
from pipeline.scene_state_machine import SceneStateMachine
from services.narration import NarrationClient
from services.replicate_client import ProviderStatus, ReplicateClient
from services.s3_storage import S3StorageService

WEBHOOK_URL = "https://app.test/api/ai/webhook"
CDN = "https://cdn.test"


@pytest.fixture
def engine(tmp_path):
    engine = create_engine(
        f"sqlite:///{tmp_path / 'orchestrator.db'}",
        connect_args={"check_same_thread": False},
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def make_user(db):
    def _make(balance: int = 100) -> User:
        user = User(id=new_id(), balance_credits=balance)
        db.add(user)
        db.commit()
        return user
    return _make


@pytest.fixture
def make_project(db, make_user):
    """Create a generating project with pending scenes."""
    def _make(
        total_scenes: int = 1,
        balance: int = 100,
        model: str = "kling-2.6",
        style: str = None,
        voice_id: str = None,
        narration_text: str = None,
        status: ProjectStatus = ProjectStatus.GENERATING,
        user: User = None,
    ) -> MovieProject:
        user = user or make_user(balance)
        project = MovieProject(
            user_id=user.id,
            title="Test Movie",
            model=model,
            style=style,
            voice_id=voice_id,
            status=status.value,
            current_scene=1,
            total_scenes=total_scenes,
        )
        db.add(project)
        db.flush()
        for number in range(1, total_scenes + 1):
            db.add(MovieScene(
                project_id=project.id,
                scene_number=number,
                video_prompt=f"Scene {number}: a lighthouse at dusk",
                narration_text=narration_text,
                status=SceneStatus.PENDING.value,
            ))
        db.commit()
        return project
    return _make


@pytest.fixture
def narration_flag(db):
    flag = FeatureFlag(
        key="elevenlabs_narration",
        enabled=True,
        config={"model_id": "eleven_multilingual_v2", "voices": [{"id": "voice-1", "name": "Rachel"}]},
    )
    db.add(flag)
    db.commit()
    return flag


@pytest.fixture
def generation_client():
    client = MagicMock(spec=ReplicateClient)
    client.submit_text_to_video.return_value = "pred-t2v"
    client.submit_image_to_video.return_value = "pred-i2v"
    client.poll_status.return_value = ProviderStatus(status=GenerationStatus.PROCESSING)
    return client


@pytest.fixture
def storage():
    storage = MagicMock(spec=S3StorageService)
    storage.download_bytes.return_value = b"scene-video-bytes"
    storage.upload_bytes.side_effect = lambda key, data, content_type, timeout=None: f"{CDN}/{key}"
    return storage


@pytest.fixture
def muxer():
    muxer = MagicMock(spec=Muxer)
    muxer.mux.side_effect = lambda video_url, audio, output_key: f"{CDN}/{output_key}"
    return muxer


@pytest.fixture
def frame_extractor():
    extractor = MagicMock(spec=FrameExtractor)
    extractor.extract.side_effect = lambda video_bytes, timestamp, output_key: f"{CDN}/{output_key}"
    return extractor


@pytest.fixture
def narration_client():
    client = MagicMock(spec=NarrationClient)
    client.synthesize.return_value = b"narration-audio"
    return client


@pytest.fixture
def concatenator():
    concatenator = MagicMock(spec=Concatenator)
    concatenator.concatenate.side_effect = lambda project_id, scenes: ConcatResult(
        ok=True,
        public_url=f"{CDN}/movies/{project_id}/final.mp4",
        storage_key=f"movies/{project_id}/final.mp4",
        total_duration_seconds=5.0 * len(scenes),
        file_size_mb=1.5,
    )
    return concatenator


@pytest.fixture
def state_machine_factory(generation_client, narration_client, muxer, frame_extractor, storage):
    def _factory(session) -> SceneStateMachine:
        return SceneStateMachine(
            session,
            generation_client=generation_client,
            narration_client=narration_client,
            muxer=muxer,
            frame_extractor=frame_extractor,
            storage=storage,
            max_retries=3,
            webhook_url=WEBHOOK_URL,
        )
    return _factory
