"""
Dedup claims for analysis jobs.

A claim row per recording marks a job as pending or running. Inserting
the row is the enqueue-if-absent step; the worker deletes it when the
job ends.
"""

import uuid
from datetime import timedelta
from typing import Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from meeting_analyzer.config import Settings, get_settings
from meeting_analyzer.db.database import utcnow
from meeting_analyzer.models.job_claim import JobClaim
from meeting_analyzer.utils.logger import get_logger

logger = get_logger(__name__)


class JobRegistry:
    """Claims and releases the per-recording job slot."""

    def __init__(self, db: Session, settings: Optional[Settings] = None) -> None:
        self.db: Session = db
        self.settings: Settings = settings or get_settings()

    def _is_stale(self, claim: JobClaim) -> bool:
        return claim.claimed_at < utcnow() - timedelta(seconds=self.settings.stale_processing_seconds)

    def get_claim(self, recording_id: uuid.UUID) -> Optional[JobClaim]:
        return self.db.query(JobClaim).filter(JobClaim.recording_id == recording_id).first()

    def is_claimed(self, recording_id: uuid.UUID) -> bool:
        """Whether a live (non-stale) claim exists for the recording."""
        claim = self.get_claim(recording_id)
        return claim is not None and not self._is_stale(claim)

    def claim(self, recording_id: uuid.UUID, analysis_id: uuid.UUID) -> Optional[uuid.UUID]:
        """
        Take the job slot for a recording.

        Args:
            recording_id: Dedup key
            analysis_id: Record the job will update

        Returns:
            New job id, or None if a live claim already holds the slot
        """
        existing = self.get_claim(recording_id)
        if existing is not None:
            if not self._is_stale(existing):
                logger.info("Job already claimed for recording",
                           recording_id=str(recording_id),
                           job_id=str(existing.job_id))
                return None
            logger.warning("Replacing stale job claim",
                          recording_id=str(recording_id),
                          job_id=str(existing.job_id),
                          claimed_at=existing.claimed_at.isoformat())
            self.db.delete(existing)
            self.db.flush()

        job_id = uuid.uuid4()
        self.db.add(JobClaim(recording_id=recording_id, job_id=job_id, analysis_id=analysis_id))

        try:
            self.db.commit()
        except IntegrityError:
            # Another process claimed the slot between our read and insert
            self.db.rollback()
            logger.info("Lost job claim race", recording_id=str(recording_id))
            return None

        logger.info("Job claimed", recording_id=str(recording_id), job_id=str(job_id))
        return job_id

    def release(self, recording_id: uuid.UUID, job_id: Optional[uuid.UUID] = None) -> bool:
        """
        Free the job slot.

        When ``job_id`` is given only that job's claim is removed, so a
        finished job never frees a slot that was re-claimed after it went stale.
        """
        query = self.db.query(JobClaim).filter(JobClaim.recording_id == recording_id)
        if job_id is not None:
            query = query.filter(JobClaim.job_id == job_id)

        try:
            deleted = query.delete(synchronize_session=False)
            self.db.commit()
        except Exception as e:
            self.db.rollback()
            logger.error("Failed to release job claim", recording_id=str(recording_id), error=str(e))
            raise

        if deleted:
            logger.info("Job claim released", recording_id=str(recording_id))
        return bool(deleted)
