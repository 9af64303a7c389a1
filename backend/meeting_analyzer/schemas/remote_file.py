"""
Pydantic schema for files held by the Gemini File API.
"""

from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field


class RemoteFileState(str, Enum):
    """Processing state reported by the File API."""
    STATE_UNSPECIFIED = "STATE_UNSPECIFIED"
    PROCESSING = "PROCESSING"
    ACTIVE = "ACTIVE"
    FAILED = "FAILED"


class RemoteFile(BaseModel):
    """
    A file uploaded to the Gemini File API.

    ``name`` is the resource name (``files/abc123``) used for status and
    delete calls; ``uri`` is what generation requests reference.
    """
    name: str
    uri: Optional[str] = None
    state: str = RemoteFileState.STATE_UNSPECIFIED.value
    mime_type: Optional[str] = Field(default=None, alias="mimeType")
    display_name: Optional[str] = Field(default=None, alias="displayName")
    size_bytes: Optional[int] = Field(default=None, alias="sizeBytes")

    class Config:
        populate_by_name = True
        extra = "ignore"

    @property
    def is_active(self) -> bool:
        return self.state == RemoteFileState.ACTIVE.value

    @property
    def is_failed(self) -> bool:
        return self.state == RemoteFileState.FAILED.value
