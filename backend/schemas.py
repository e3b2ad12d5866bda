"""
Pydantic schemas for request/response validation
"""

from pydantic import BaseModel, Field
from typing import Optional, Any


class GenerationWebhookPayload(BaseModel):
    """Prediction payload posted by the render provider on completion"""
    id: str = Field(..., description="Provider prediction id")
    status: str = Field(..., description="starting, processing, succeeded, failed or canceled")
    output: Optional[Any] = Field(None, description="Video URL or list of URLs")
    error: Optional[Any] = Field(None, description="Provider error message")

    class Config:
        extra = "allow"
        json_schema_extra = {
            "example": {
                "id": "ufawqhfynnddngldkgtslldrkq",
                "status": "succeeded",
                "output": "https://replicate.delivery/pbxt/scene.mp4",
                "error": None
            }
        }


class WebhookAck(BaseModel):
    """Response to a webhook delivery"""
    ok: bool = True
    updated: bool = Field(False, description="Whether a generation record changed")


class SweepSummary(BaseModel):
    """Outcome of one orchestrator sweep"""
    skipped: bool = Field(False, description="Another sweep held the lock")
    processed: int = Field(0, description="Projects that made progress")
    errors: int = Field(0, description="Projects whose scene failed or raised")
    projects: int = Field(0, description="Projects examined")

    class Config:
        json_schema_extra = {
            "example": {
                "skipped": False,
                "processed": 3,
                "errors": 1,
                "projects": 4
            }
        }


class ReconcileSummary(BaseModel):
    """Outcome of one generation reconciliation sweep"""
    skipped: bool = False
    stale_found: int = Field(0, description="In-flight generations older than the stale threshold")
    polled: int = Field(0, description="Stale generations polled at the provider")
    auto_completed: int = Field(0, description="Generations completed by polling")
    expired: int = Field(0, description="Generations marked expired")
    credits_refunded: int = Field(0, description="Credits returned for expired generations")
    orphaned_credits_recovered: int = Field(0, description="Credits returned for failed generations never refunded")


class HealthResponse(BaseModel):
    """Health check response"""
    status: str
    database: str
    environment: str
