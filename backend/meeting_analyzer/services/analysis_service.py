"""
Persistence and status transitions for recording analysis records.
"""

import json
import re
import uuid
from datetime import datetime
from typing import Dict, List, Optional, Set

from sqlalchemy import func
from sqlalchemy.orm import Session

from meeting_analyzer.config import Settings, get_settings
from meeting_analyzer.models.analysis import MANUAL_MODEL, AnalysisRecord, AnalysisStatus
from meeting_analyzer.models.recording import Recording  # noqa: F401  registers the relationship target
from meeting_analyzer.schemas.analysis import AnalysisResponse, StatusCountsResponse, VideoAnalysis
from meeting_analyzer.utils.logger import get_logger

logger = get_logger(__name__)

_BULLET_PREFIX_RE = re.compile(r"^[\-\*•\d\.]+\s*")
_TOPIC_SPLIT_RE = re.compile(r"[,\n]+")

# Moves allowed without force; force covers regenerate, manual edits and reconciliation
ALLOWED_TRANSITIONS: Dict[AnalysisStatus, Set[AnalysisStatus]] = {
    AnalysisStatus.PENDING: {AnalysisStatus.PROCESSING, AnalysisStatus.FAILED},
    AnalysisStatus.PROCESSING: {AnalysisStatus.PROCESSING, AnalysisStatus.COMPLETED, AnalysisStatus.FAILED},
    AnalysisStatus.COMPLETED: set(),
    AnalysisStatus.FAILED: set(),
}


class RecordingNotFoundError(Exception):
    """Raised when a recording is not found in the database."""
    pass


class AnalysisNotFoundError(Exception):
    """Raised when a recording has no analysis record."""
    pass


class InvalidTransitionError(ValueError):
    """Raised when a status change would move a record backwards."""
    pass


class AnalysisRecordStore:
    """
    Owns the analysis_records table.

    At most one record exists per recording; updates are last-write-wins.
    """

    def __init__(self, db: Session, settings: Optional[Settings] = None) -> None:
        self.db: Session = db
        self.settings: Settings = settings or get_settings()

    def get(self, analysis_id: uuid.UUID) -> Optional[AnalysisRecord]:
        return self.db.query(AnalysisRecord).filter(AnalysisRecord.id == analysis_id).first()

    def get_by_recording(self, recording_id: uuid.UUID) -> Optional[AnalysisRecord]:
        return self.db.query(AnalysisRecord).filter(AnalysisRecord.recording_id == recording_id).first()

    def require_by_recording(self, recording_id: uuid.UUID) -> AnalysisRecord:
        record = self.get_by_recording(recording_id)
        if not record:
            raise AnalysisNotFoundError(f"No analysis found for recording {recording_id}")
        return record

    def start_processing(self, recording_id: uuid.UUID, existing: Optional[AnalysisRecord] = None) -> AnalysisRecord:
        """
        Create or reset the record for a recording in ``processing`` state.

        An existing record keeps its id; result fields are cleared so
        pollers never see stale output next to a fresh status.
        """
        record = existing or self.get_by_recording(recording_id)

        if record is None:
            record = AnalysisRecord(
                recording_id=recording_id,
                status=AnalysisStatus.PROCESSING.value,
                language=self.settings.default_language,
            )
            self.db.add(record)
        else:
            self._set_status(record, AnalysisStatus.PROCESSING, force=True)
            self._clear_results(record)

        self._commit(record, "Analysis record set to processing")
        return record

    def mark_processing(self, record: AnalysisRecord) -> AnalysisRecord:
        self._set_status(record, AnalysisStatus.PROCESSING)
        self._commit(record, "Analysis record set to processing")
        return record

    def save_results(self, record: AnalysisRecord, analysis: VideoAnalysis, model_used: str) -> AnalysisRecord:
        """Store a finished analysis and mark the record completed."""
        record.summary = analysis.summary
        record.key_points = json.dumps(analysis.key_points, ensure_ascii=False)
        record.topics = json.dumps(analysis.topics, ensure_ascii=False)
        record.transcript = analysis.transcript
        record.language = analysis.language or self.settings.default_language
        record.model_used = model_used
        record.error_message = None
        self._set_status(record, AnalysisStatus.COMPLETED)

        self._commit(record, "Analysis completed",
                     summary_length=len(record.summary or ""),
                     key_points=len(analysis.key_points),
                     topics=len(analysis.topics))
        return record

    def mark_failed(self, record: AnalysisRecord, message: str) -> AnalysisRecord:
        self._set_status(record, AnalysisStatus.FAILED)
        record.error_message = message
        self._commit(record, "Analysis failed", error=message)
        return record

    def queue_for_analysis(self, recording_id: uuid.UUID) -> AnalysisRecord:
        """Create a pending record for batch processing; an existing record is returned unchanged."""
        record = self.get_by_recording(recording_id)
        if record:
            return record

        record = AnalysisRecord(
            recording_id=recording_id,
            status=AnalysisStatus.PENDING.value,
            language=self.settings.default_language,
        )
        self.db.add(record)
        self._commit(record, "Analysis queued")
        return record

    def reset_to_pending(self, record: AnalysisRecord, transcript: Optional[str] = None) -> AnalysisRecord:
        self._set_status(record, AnalysisStatus.PENDING, force=True)
        record.error_message = None
        if transcript is not None:
            record.transcript = transcript
        self._commit(record, "Analysis reset to pending")
        return record

    def list_pending(self, limit: int) -> List[AnalysisRecord]:
        """Oldest pending records first."""
        return (
            self.db.query(AnalysisRecord)
            .filter(AnalysisRecord.status == AnalysisStatus.PENDING.value)
            .order_by(AnalysisRecord.created_at.asc())
            .limit(limit)
            .all()
        )

    def list_stale_processing(self, older_than: datetime) -> List[AnalysisRecord]:
        return (
            self.db.query(AnalysisRecord)
            .filter(AnalysisRecord.status == AnalysisStatus.PROCESSING.value)
            .filter(AnalysisRecord.updated_at < older_than)
            .order_by(AnalysisRecord.updated_at.asc())
            .all()
        )

    def delete_by_recording(self, recording_id: uuid.UUID) -> bool:
        """Delete a recording's analysis; returns whether one existed."""
        record = self.get_by_recording(recording_id)
        if not record:
            return False

        try:
            self.db.delete(record)
            self.db.commit()
        except Exception as e:
            self.db.rollback()
            logger.error("Failed to delete analysis", recording_id=str(recording_id), error=str(e))
            raise

        logger.info("Analysis deleted", recording_id=str(recording_id))
        return True

    def save_manual(
        self,
        recording_id: uuid.UUID,
        summary: str,
        key_points_text: str,
        topics_text: str,
        transcript: str = "",
    ) -> AnalysisRecord:
        """
        Save a human-edited analysis.

        Args:
            recording_id: Recording the analysis belongs to
            summary: Summary text
            key_points_text: One key point per line; leading bullets and numbers are removed
            topics_text: Topics separated by commas or newlines
            transcript: Transcript text

        Returns:
            The completed record, created if it did not exist
        """
        record = self.get_by_recording(recording_id)
        if record is None:
            record = AnalysisRecord(recording_id=recording_id, language=self.settings.default_language)
            self.db.add(record)

        record.summary = summary
        record.key_points = json.dumps(self.parse_key_points(key_points_text), ensure_ascii=False)
        record.topics = json.dumps(self.parse_topics(topics_text), ensure_ascii=False)
        record.transcript = transcript
        record.model_used = MANUAL_MODEL
        record.error_message = None
        self._set_status(record, AnalysisStatus.COMPLETED, force=True)

        self._commit(record, "Manual analysis saved")
        return record

    def status_counts(self) -> StatusCountsResponse:
        """Number of records in each status; every status is present."""
        rows = (
            self.db.query(AnalysisRecord.status, func.count(AnalysisRecord.id))
            .group_by(AnalysisRecord.status)
            .all()
        )
        counts = {status.value: 0 for status in AnalysisStatus}
        for status, count in rows:
            if status in counts:
                counts[status] = count
        return StatusCountsResponse(**counts)

    def to_response(self, record: AnalysisRecord) -> AnalysisResponse:
        return AnalysisResponse(
            id=record.id,
            recording_id=record.recording_id,
            status=record.status,
            summary=record.summary or "",
            key_points=self.decode_list(record.key_points),
            topics=self.decode_list(record.topics),
            transcript=record.transcript or "",
            language=record.language,
            error_message=record.error_message,
            model_used=record.model_used,
            created_at=record.created_at,
            updated_at=record.updated_at,
        )

    @staticmethod
    def decode_list(value: Optional[str]) -> List[str]:
        """Decode a stored JSON array, defaulting to empty when absent or unparseable."""
        if not value:
            return []
        try:
            decoded = json.loads(value)
        except ValueError:
            return []
        if not isinstance(decoded, list):
            return []
        return [str(item) for item in decoded]

    @staticmethod
    def parse_key_points(text: str) -> List[str]:
        points = []
        for line in (text or "").splitlines():
            line = _BULLET_PREFIX_RE.sub("", line.strip()).strip()
            if line:
                points.append(line)
        return points

    @staticmethod
    def parse_topics(text: str) -> List[str]:
        return [topic.strip() for topic in _TOPIC_SPLIT_RE.split(text or "") if topic.strip()]

    def _set_status(self, record: AnalysisRecord, status: AnalysisStatus, force: bool = False) -> None:
        current = AnalysisStatus(record.status) if record.status else None
        if not force and current is not None and status not in ALLOWED_TRANSITIONS[current]:
            raise InvalidTransitionError(f"Cannot move analysis from {current.value} to {status.value}")
        record.status = status.value

    @staticmethod
    def _clear_results(record: AnalysisRecord) -> None:
        record.summary = None
        record.key_points = None
        record.topics = None
        record.transcript = None
        record.error_message = None
        record.model_used = None

    def _commit(self, record: AnalysisRecord, event: str, **context: object) -> None:
        try:
            self.db.commit()
            self.db.refresh(record)
        except Exception as e:
            self.db.rollback()
            logger.error("Failed to save analysis record", error=str(e), recording_id=str(record.recording_id))
            raise

        logger.info(event,
                   analysis_id=str(record.id),
                   recording_id=str(record.recording_id),
                   status=record.status,
                   **context)
