"""
Pydantic schemas for caption extraction responses.
"""

from typing import Optional
from uuid import UUID

from pydantic import BaseModel


class TranscriptExtractionResponse(BaseModel):
    """Schema for caption extraction API response."""
    recording_id: UUID
    found: bool
    characters: int = 0
    preview: Optional[str] = None
    message: str


class SummaryResponse(BaseModel):
    """Schema for a plain-text recording summary."""
    recording_id: UUID
    summary: str
    model_used: str
