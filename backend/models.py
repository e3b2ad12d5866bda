"""
SQLAlchemy database models
"""

import uuid
from datetime import datetime, timezone
from enum import Enum

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    JSON,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship
from database import Base


def utc_now() -> datetime:
    """Naive UTC timestamp, matching how DateTime columns are stored."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def new_id() -> str:
    return str(uuid.uuid4())


class ProjectStatus(str, Enum):
    """Movie project lifecycle. Only GENERATING is driven by the orchestrator."""
    DRAFT = "draft"
    SCRIPT_READY = "script_ready"
    GENERATING = "generating"
    PAUSED = "paused"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


class SceneStatus(str, Enum):
    """Per-scene pipeline states"""
    PENDING = "pending"
    GENERATING = "generating"
    NARRATING = "narrating"
    MERGING = "merging"
    COMPLETED = "completed"
    FAILED = "failed"


class GenerationStatus(str, Enum):
    """Status of one external render request"""
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    EXPIRED = "expired"

    @classmethod
    def in_flight(cls):
        return [cls.PENDING.value, cls.PROCESSING.value]

    @classmethod
    def terminal(cls):
        return [cls.COMPLETED.value, cls.FAILED.value, cls.EXPIRED.value]


class GenerationMode:
    """Constants for generation_mode values"""
    TEXT_TO_VIDEO = "text-to-video"
    IMAGE_TO_VIDEO = "image-to-video"


class TransactionType:
    """Constants for credit transaction types"""
    GENERATION = "generation"
    REFUND = "refund"
    PURCHASE = "purchase"


PLACEHOLDER_REQUEST_PREFIX = "placeholder_"


class User(Base):
    """
    Credit-holding account

    Only the balance is relevant here; profile data lives elsewhere.
    """
    __tablename__ = "users"

    id = Column(String, primary_key=True, default=new_id)
    balance_credits = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime, default=utc_now, nullable=False)

    def __repr__(self):
        return f"<User(id={self.id}, balance={self.balance_credits})>"


class CreditTransaction(Base):
    """
    Ledger entry for every balance change

    A refund may exist at most once per reference, enforced by the
    (reference_id, type) constraint.
    """
    __tablename__ = "credit_transactions"
    __table_args__ = (
        UniqueConstraint("reference_id", "type", name="uq_credit_transactions_reference_type"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String, ForeignKey("users.id"), nullable=False, index=True)
    type = Column(String, nullable=False)  # generation, refund, purchase
    amount = Column(Integer, nullable=False)  # negative for deductions
    balance_after = Column(Integer, nullable=False)
    reference_id = Column(String, nullable=True, index=True)  # ai_generations.id
    reason = Column(Text, nullable=True)
    created_at = Column(DateTime, default=utc_now, nullable=False)

    def __repr__(self):
        return f"<CreditTransaction(type={self.type}, amount={self.amount}, ref={self.reference_id})>"


class Generation(Base):
    """
    Tracks one external render request

    Created before the provider call so a credit charge always has a durable
    row to reference; provider_request_id starts as a placeholder.
    """
    __tablename__ = "ai_generations"

    id = Column(String, primary_key=True, default=new_id)
    user_id = Column(String, ForeignKey("users.id"), nullable=False, index=True)
    provider_request_id = Column(String, nullable=False, index=True)
    status = Column(String, nullable=False, default=GenerationStatus.PENDING.value, index=True)

    prompt = Column(Text, nullable=True)
    model = Column(String, nullable=False)
    style = Column(String, nullable=True)
    generation_mode = Column(String, nullable=True)
    image_url = Column(Text, nullable=True)

    video_url = Column(Text, nullable=True)
    error_message = Column(Text, nullable=True)

    credit_deducted = Column(Boolean, nullable=False, default=False)
    credit_amount = Column(Integer, nullable=True)

    # Set for renders owned by a movie project
    movie_project_id = Column(String, ForeignKey("movie_projects.id"), nullable=True, index=True)
    scene_number = Column(Integer, nullable=True)

    created_at = Column(DateTime, default=utc_now, nullable=False)
    updated_at = Column(DateTime, default=utc_now, onupdate=utc_now, nullable=False)
    completed_at = Column(DateTime, nullable=True)

    @property
    def has_provider_request(self) -> bool:
        return not self.provider_request_id.startswith(PLACEHOLDER_REQUEST_PREFIX)

    def __repr__(self):
        return f"<Generation(id={self.id}, status={self.status}, request={self.provider_request_id})>"


class MovieProject(Base):
    """
    A user's multi-scene movie

    spent_credits and completed_scenes are only ever changed through
    services.project_counters.increment_project_field.
    """
    __tablename__ = "movie_projects"

    id = Column(String, primary_key=True, default=new_id)
    user_id = Column(String, ForeignKey("users.id"), nullable=False, index=True)
    title = Column(String, nullable=True)

    model = Column(String, nullable=False)
    style = Column(String, nullable=True)
    voice_id = Column(String, nullable=True)

    status = Column(String, nullable=False, default=ProjectStatus.DRAFT.value, index=True)
    current_scene = Column(Integer, nullable=False, default=1)
    total_scenes = Column(Integer, nullable=False, default=0)
    completed_scenes = Column(Integer, nullable=False, default=0)
    spent_credits = Column(Integer, nullable=False, default=0)

    final_video_url = Column(Text, nullable=True)
    total_duration_seconds = Column(Float, nullable=True)
    error_message = Column(Text, nullable=True)

    created_at = Column(DateTime, default=utc_now, nullable=False)
    updated_at = Column(DateTime, default=utc_now, onupdate=utc_now, nullable=False, index=True)
    completed_at = Column(DateTime, nullable=True)

    scenes = relationship(
        "MovieScene",
        back_populates="project",
        cascade="all, delete-orphan",
        order_by="MovieScene.scene_number",
    )

    def __repr__(self):
        return f"<MovieProject(id={self.id}, status={self.status}, scene={self.current_scene}/{self.total_scenes})>"

    def to_dict(self):
        """Convert project to dictionary"""
        return {
            "id": self.id,
            "user_id": self.user_id,
            "model": self.model,
            "style": self.style,
            "voice_id": self.voice_id,
            "status": self.status,
            "current_scene": self.current_scene,
            "total_scenes": self.total_scenes,
            "completed_scenes": self.completed_scenes,
            "spent_credits": self.spent_credits,
            "final_video_url": self.final_video_url,
            "total_duration_seconds": self.total_duration_seconds,
            "error_message": self.error_message,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
        }


class MovieScene(Base):
    """
    One scene of a movie project, advanced through SceneStatus
    """
    __tablename__ = "movie_scenes"
    __table_args__ = (
        UniqueConstraint("project_id", "scene_number", name="uq_movie_scenes_project_number"),
    )

    id = Column(String, primary_key=True, default=new_id)
    project_id = Column(String, ForeignKey("movie_projects.id", ondelete="CASCADE"), nullable=False, index=True)
    scene_number = Column(Integer, nullable=False)

    video_prompt = Column(Text, nullable=False)
    narration_text = Column(Text, nullable=True)
    status = Column(String, nullable=False, default=SceneStatus.PENDING.value)

    video_url = Column(Text, nullable=True)  # provider-hosted, or narrated copy
    public_video_url = Column(Text, nullable=True)  # permanent storage
    last_frame_url = Column(Text, nullable=True)  # continuity seed for the next scene
    duration_seconds = Column(Float, nullable=True)

    ai_generation_id = Column(String, ForeignKey("ai_generations.id"), nullable=True)
    credit_cost = Column(Integer, nullable=True)  # frozen at first successful charge

    retry_count = Column(Integer, nullable=False, default=0)
    error_message = Column(Text, nullable=True)

    created_at = Column(DateTime, default=utc_now, nullable=False)
    completed_at = Column(DateTime, nullable=True)

    project = relationship("MovieProject", back_populates="scenes")

    def __repr__(self):
        return f"<MovieScene(project={self.project_id}, number={self.scene_number}, status={self.status})>"

    def to_dict(self):
        """Convert scene to dictionary"""
        return {
            "id": self.id,
            "project_id": self.project_id,
            "scene_number": self.scene_number,
            "status": self.status,
            "video_url": self.video_url,
            "public_video_url": self.public_video_url,
            "last_frame_url": self.last_frame_url,
            "ai_generation_id": self.ai_generation_id,
            "credit_cost": self.credit_cost,
            "retry_count": self.retry_count,
            "error_message": self.error_message,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
        }


class CronLock(Base):
    """
    Named mutual-exclusion row for scheduled jobs

    job_name is the primary key, so a second insert for a live lock fails.
    """
    __tablename__ = "cron_locks"

    job_name = Column(String, primary_key=True)
    lock_id = Column(String, nullable=False)
    acquired_at = Column(DateTime, nullable=False)
    expires_at = Column(DateTime, nullable=False)

    def __repr__(self):
        return f"<CronLock(job={self.job_name}, lock_id={self.lock_id}, expires_at={self.expires_at})>"


class FeatureFlag(Base):
    """
    Runtime feature switch with an optional JSON configuration payload
    """
    __tablename__ = "feature_flags"

    key = Column(String, primary_key=True)
    enabled = Column(Boolean, nullable=False, default=False)
    config = Column(JSON, nullable=True)
    updated_at = Column(DateTime, default=utc_now, onupdate=utc_now, nullable=False)
