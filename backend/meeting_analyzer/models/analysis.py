"""
SQLAlchemy model for recording analysis records.
"""

import enum
import uuid
from sqlalchemy import Column, String, DateTime, Text, ForeignKey, Uuid
from sqlalchemy.orm import relationship

from meeting_analyzer.db.database import Base, utcnow

MANUAL_MODEL = "manual"


class AnalysisStatus(str, enum.Enum):
    """Lifecycle of an analysis record."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class AnalysisRecord(Base):
    """
    Database model for the AI analysis of one recording.

    Stores the summary, key points, topics, transcript and detected language
    produced by the model along with processing status. ``key_points`` and
    ``topics`` hold JSON-encoded arrays; decoding is done by the record store.
    """

    __tablename__ = "analysis_records"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4, index=True)
    recording_id = Column(Uuid(as_uuid=True), ForeignKey("recordings.id"), nullable=False, unique=True, index=True)
    status = Column(String(20), nullable=False, default=AnalysisStatus.PENDING.value, index=True)
    summary = Column(Text, nullable=True)
    key_points = Column(Text, nullable=True)
    topics = Column(Text, nullable=True)
    transcript = Column(Text, nullable=True)
    language = Column(String(10), nullable=True)
    error_message = Column(Text, nullable=True)
    model_used = Column(String(50), nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow, index=True)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    recording = relationship("Recording", back_populates="analysis")

    def __repr__(self) -> str:
        return f"<AnalysisRecord(id={self.id}, recording_id={self.recording_id}, status='{self.status}')>"
