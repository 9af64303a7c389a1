"""
SQLAlchemy model for meeting recordings.

Rows are owned by the host application's sync layer; the analyzer only
reads them and caches extracted captions in ``transcript_text``.
"""

import uuid
from sqlalchemy import Column, String, DateTime, Text, Uuid
from sqlalchemy.orm import relationship

from meeting_analyzer.db.database import Base, utcnow


class Recording(Base):
    """
    Database model for a recorded meeting stored on Google Drive.

    Holds the display name, the Drive web-view link used to locate the
    video, a human-readable duration and an optional pre-extracted transcript.
    """

    __tablename__ = "recordings"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4, index=True)
    name = Column(String(255), nullable=False)
    web_view_link = Column(String(500), nullable=True)
    duration = Column(String(50), nullable=True)
    transcript_text = Column(Text, nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow, index=True)

    # One analysis per recording
    analysis = relationship("AnalysisRecord", back_populates="recording", uselist=False,
                            cascade="all, delete-orphan")

    def __repr__(self) -> str:
        return f"<Recording(id={self.id}, name='{self.name}')>"
