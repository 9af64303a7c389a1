"""
Entry point for analysis requests.

Applies the request rules (idempotent reads, regenerate, one job per
recording) and hands work to the job queue or runs it inline.
"""

import uuid
from datetime import timedelta
from typing import Callable, Optional, Tuple

from sqlalchemy.orm import Session

from meeting_analyzer.config import Settings, get_settings
from meeting_analyzer.db.database import utcnow
from meeting_analyzer.models.analysis import AnalysisRecord, AnalysisStatus
from meeting_analyzer.services.analysis_service import AnalysisRecordStore
from meeting_analyzer.services.job_queue import JobQueue
from meeting_analyzer.services.job_registry import JobRegistry
from meeting_analyzer.services.kafka_service import KafkaConnectionError
from meeting_analyzer.services.pipeline import PipelineOrchestrator
from meeting_analyzer.services.recording_service import RecordingService
from meeting_analyzer.utils.logger import get_logger

logger = get_logger(__name__)

OrchestratorFactory = Callable[[Session, Settings], PipelineOrchestrator]


def _default_orchestrator(db: Session, settings: Settings) -> PipelineOrchestrator:
    return PipelineOrchestrator(db, settings)


class JobDispatcher:
    """
    Accepts analysis requests for recordings.

    ``request_analysis`` queues a background job; ``request_analysis_sync``
    runs the pipeline in the caller's thread and raises its errors.
    """

    def __init__(
        self,
        db: Session,
        queue: Optional[JobQueue] = None,
        orchestrator_factory: Optional[OrchestratorFactory] = None,
        settings: Optional[Settings] = None,
    ) -> None:
        self.db: Session = db
        self.settings: Settings = settings or get_settings()
        self.queue = queue
        self.store = AnalysisRecordStore(db, self.settings)
        self.recordings = RecordingService(db)
        self.registry = JobRegistry(db, self.settings)
        self._orchestrator_factory = orchestrator_factory or _default_orchestrator

    def _current_or_none(
        self, recording_id: uuid.UUID, regenerate: bool
    ) -> Tuple[Optional[AnalysisRecord], Optional[AnalysisRecord]]:
        """Load the recording's record; return it as the answer if no new run is needed."""
        self.recordings.require_recording(recording_id)
        existing = self.store.get_by_recording(recording_id)

        if existing is not None and not regenerate:
            if existing.status in (AnalysisStatus.COMPLETED.value, AnalysisStatus.PROCESSING.value):
                return existing, existing
        return existing, None

    def request_analysis(self, recording_id: uuid.UUID, regenerate: bool = False) -> AnalysisRecord:
        """
        Request analysis of a recording.

        Completed and in-progress records are returned as they are unless
        ``regenerate`` is set. Otherwise the record is set to ``processing``
        and one background job is queued; a job that is already pending or
        running for the recording is not duplicated.

        Raises:
            RecordingNotFoundError: If the recording does not exist
            KafkaConnectionError: If the job cannot be queued (the record is marked failed)
        """
        if self.queue is None:
            raise RuntimeError("JobDispatcher has no job queue configured")

        existing, answer = self._current_or_none(recording_id, regenerate)
        if answer is not None:
            logger.info("Returning existing analysis", recording_id=str(recording_id), status=answer.status)
            return answer

        record = self.store.start_processing(recording_id, existing)

        try:
            queued = self.queue.enqueue(recording_id, record.id)
        except KafkaConnectionError as e:
            logger.error("Failed to queue analysis job", recording_id=str(recording_id), error=str(e))
            self.store.mark_failed(record, f"Failed to queue job: {str(e)}")
            raise

        if queued:
            logger.info("Analysis job queued", recording_id=str(recording_id), analysis_id=str(record.id))
        else:
            logger.info("Analysis job already pending, not queued again", recording_id=str(recording_id))

        return record

    def request_analysis_sync(self, recording_id: uuid.UUID, regenerate: bool = False) -> AnalysisRecord:
        """
        Run the analysis pipeline inline.

        Same return rules as ``request_analysis``. Pipeline errors are
        raised to the caller after the record is marked failed.
        """
        existing, answer = self._current_or_none(recording_id, regenerate)
        if answer is not None:
            return answer

        record = self.store.start_processing(recording_id, existing)
        orchestrator = self._orchestrator_factory(self.db, self.settings)
        try:
            orchestrator.run(recording_id, record.id, raise_errors=True)
        finally:
            orchestrator.close()

        self.db.refresh(record)
        return record

    def process_pending(self, limit: Optional[int] = None) -> int:
        """
        Run the oldest pending analyses inline.

        Per-record failures are already stored on the record and do not
        stop the batch.

        Returns:
            Number of records attempted
        """
        limit = limit if limit is not None else self.settings.batch_size
        pending = self.store.list_pending(limit)

        logger.info("Processing pending analyses", count=len(pending), limit=limit)

        attempted = 0
        for record in pending:
            attempted += 1
            try:
                self.request_analysis_sync(record.recording_id, regenerate=True)
            except Exception as e:
                logger.warning("Pending analysis failed",
                              recording_id=str(record.recording_id),
                              error=str(e))

        return attempted

    def reconcile_stale(self, max_age_seconds: Optional[int] = None) -> int:
        """
        Reset ``processing`` records that no live job owns back to ``pending``.

        Returns:
            Number of records reset
        """
        max_age = max_age_seconds if max_age_seconds is not None else self.settings.stale_processing_seconds
        cutoff = utcnow() - timedelta(seconds=max_age)

        reset = 0
        for record in self.store.list_stale_processing(cutoff):
            if self.registry.is_claimed(record.recording_id):
                continue
            self.registry.release(record.recording_id)
            self.store.reset_to_pending(record)
            reset += 1
            logger.warning("Reset stuck analysis to pending",
                          recording_id=str(record.recording_id),
                          analysis_id=str(record.id))

        logger.info("Reconciliation complete", reset=reset, max_age_seconds=max_age)
        return reset
