"""
Service layer for recording lookups and transcript caching.
"""

import uuid
from typing import List, Optional

from sqlalchemy.orm import Session

from meeting_analyzer.models.analysis import AnalysisRecord, AnalysisStatus
from meeting_analyzer.models.recording import Recording
from meeting_analyzer.services.analysis_service import RecordingNotFoundError
from meeting_analyzer.utils.logger import get_logger

logger = get_logger(__name__)


class RecordingService:
    """
    Read access to recordings plus the one write the analyzer makes:
    caching extracted captions in ``transcript_text``.
    """

    def __init__(self, db: Session) -> None:
        self.db: Session = db

    def get_recording(self, recording_id: uuid.UUID) -> Optional[Recording]:
        """
        Get a recording by ID.

        Args:
            recording_id: UUID of the recording

        Returns:
            Recording object or None if not found
        """
        return self.db.query(Recording).filter(Recording.id == recording_id).first()

    def require_recording(self, recording_id: uuid.UUID) -> Recording:
        recording = self.get_recording(recording_id)
        if not recording:
            raise RecordingNotFoundError(f"Recording with ID {recording_id} not found")
        return recording

    def list_recordings_needing_transcripts(self) -> List[Recording]:
        """Recordings with a Drive link whose analysis is not completed, oldest first."""
        return (
            self.db.query(Recording)
            .outerjoin(AnalysisRecord, AnalysisRecord.recording_id == Recording.id)
            .filter(Recording.web_view_link.isnot(None))
            .filter(Recording.web_view_link != "")
            .filter((AnalysisRecord.id.is_(None)) | (AnalysisRecord.status != AnalysisStatus.COMPLETED.value))
            .order_by(Recording.created_at.asc())
            .all()
        )

    def save_transcript_text(self, recording: Recording, transcript: str) -> Recording:
        """Cache an extracted transcript on the recording."""
        recording.transcript_text = transcript
        try:
            self.db.commit()
            self.db.refresh(recording)
        except Exception as e:
            self.db.rollback()
            logger.error("Failed to save transcript text", recording_id=str(recording.id), error=str(e))
            raise

        logger.info("Transcript cached on recording", recording_id=str(recording.id), characters=len(transcript))
        return recording
