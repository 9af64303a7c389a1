"""
Pydantic schemas for analysis results and API requests/responses.
"""

from datetime import datetime
from typing import Optional, List
from uuid import UUID

from pydantic import BaseModel, Field


class VideoAnalysis(BaseModel):
    """Structured output of one model analysis call."""
    summary: str = ""
    key_points: List[str] = Field(default_factory=list)
    topics: List[str] = Field(default_factory=list)
    transcript: str = ""
    language: str = "en"


class AnalysisResponse(BaseModel):
    """Schema for an analysis record with decoded list fields."""
    id: UUID
    recording_id: UUID
    status: str  # pending, processing, completed, failed
    summary: str = ""
    key_points: List[str] = []
    topics: List[str] = []
    transcript: str = ""
    language: Optional[str] = None
    error_message: Optional[str] = None
    model_used: Optional[str] = None
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class ManualAnalysisRequest(BaseModel):
    """
    Schema for saving a human-edited analysis.

    Key points are one per line; topics are comma or newline separated.
    """
    summary: str = ""
    key_points: str = ""
    topics: str = ""
    transcript: str = ""


class StatusCountsResponse(BaseModel):
    """Schema for per-status analysis counts."""
    pending: int = 0
    processing: int = 0
    completed: int = 0
    failed: int = 0


class BatchRunResponse(BaseModel):
    """Schema for batch and reconciliation run results."""
    attempted: int
    message: str
