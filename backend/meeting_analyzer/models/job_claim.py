"""
SQLAlchemy model for analysis job dedup claims.
"""

import uuid
from sqlalchemy import Column, DateTime, Uuid

from meeting_analyzer.db.database import Base, utcnow


class JobClaim(Base):
    """
    A held dedup slot for one recording.

    The unique ``recording_id`` makes inserting a claim an
    enqueue-if-absent operation across every process sharing the database.
    """

    __tablename__ = "analysis_job_claims"

    recording_id = Column(Uuid(as_uuid=True), primary_key=True)
    job_id = Column(Uuid(as_uuid=True), nullable=False, default=uuid.uuid4, unique=True)
    analysis_id = Column(Uuid(as_uuid=True), nullable=False)
    claimed_at = Column(DateTime, nullable=False, default=utcnow, index=True)

    def __repr__(self) -> str:
        return f"<JobClaim(recording_id={self.recording_id}, job_id={self.job_id})>"
