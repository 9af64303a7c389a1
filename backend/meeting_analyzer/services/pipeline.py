"""
Analysis pipeline for one recording.

Uses the cached transcript when there is one (fast path). Otherwise it
downloads the video, uploads it to the Gemini File API, waits for
processing and analyzes the uploaded file (slow path). The scratch file
and the uploaded remote file are deleted on every exit path.
"""

import time
import uuid
from contextlib import ExitStack
from typing import Callable, Optional

from sqlalchemy.orm import Session

from meeting_analyzer.agents.meeting_analyst import MeetingAnalystAgent
from meeting_analyzer.clients.gemini_client import GeminiClient, GeminiError, NotConfiguredError
from meeting_analyzer.config import Settings, get_settings
from meeting_analyzer.models.analysis import AnalysisRecord, AnalysisStatus
from meeting_analyzer.models.recording import Recording
from meeting_analyzer.schemas.analysis import VideoAnalysis
from meeting_analyzer.services.analysis_service import AnalysisRecordStore
from meeting_analyzer.services.recording_service import RecordingService
from meeting_analyzer.services.video_fetcher import BadReferenceError, VideoFetcher
from meeting_analyzer.utils.logger import get_logger

logger = get_logger(__name__)

TERMINAL_STATUSES = {AnalysisStatus.COMPLETED.value, AnalysisStatus.FAILED.value}


class PipelineTimeoutError(Exception):
    """Raised when the slow path runs past its overall deadline."""
    pass


class PipelineOrchestrator:
    """
    Runs the analysis for one recording and records the outcome.

    Any failure becomes a ``failed`` record whose error message is the
    exception text. With ``raise_errors`` the exception is re-raised after
    the record is written.
    """

    def __init__(
        self,
        db: Session,
        settings: Optional[Settings] = None,
        client: Optional[GeminiClient] = None,
        analyst: Optional[MeetingAnalystAgent] = None,
        fetcher: Optional[VideoFetcher] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.db: Session = db
        self.settings: Settings = settings or get_settings()
        self.client: GeminiClient = client or GeminiClient(self.settings)
        self.analyst: MeetingAnalystAgent = analyst or MeetingAnalystAgent(client=self.client, settings=self.settings)
        self.fetcher: VideoFetcher = fetcher or VideoFetcher(self.settings, clock=clock)
        self.store = AnalysisRecordStore(db, self.settings)
        self.recordings = RecordingService(db)
        self._clock = clock

    def run(
        self,
        recording_id: uuid.UUID,
        analysis_id: uuid.UUID,
        raise_errors: bool = False,
        should_cancel: Optional[Callable[[], bool]] = None,
    ) -> Optional[AnalysisRecord]:
        """
        Analyze a recording and persist the result.

        Args:
            recording_id: Recording to analyze
            analysis_id: Analysis record to update
            raise_errors: Re-raise failures after marking the record failed
            should_cancel: Polled while waiting for remote processing

        Returns:
            The updated record, or None when the recording or record is missing
        """
        recording = self.recordings.get_recording(recording_id)
        record = self.store.get(analysis_id)

        if recording is None or record is None:
            logger.error("Pipeline aborted, recording or analysis record missing",
                        recording_id=str(recording_id),
                        analysis_id=str(analysis_id),
                        recording_found=recording is not None,
                        record_found=record is not None)
            return None

        if record.status in TERMINAL_STATUSES:
            logger.info("Analysis already finished, skipping run",
                       recording_id=str(recording_id),
                       status=record.status)
            return record

        self.store.mark_processing(record)
        start_time = time.time()

        try:
            if not self.client.is_configured():
                raise NotConfiguredError()

            if (recording.transcript_text or "").strip():
                logger.info("Using cached transcript", recording_id=str(recording_id))
                analysis = self.analyst.analyze_transcript(recording.transcript_text, recording.name, recording.duration)
            else:
                logger.info("No transcript, analyzing video file", recording_id=str(recording_id))
                analysis = self._analyze_video(recording, should_cancel)

            self.store.save_results(record, analysis, self.client.model)

        except Exception as e:
            logger.error("Analysis pipeline failed",
                        recording_id=str(recording_id),
                        error=str(e),
                        error_type=type(e).__name__,
                        duration_seconds=round(time.time() - start_time, 2))
            try:
                self.store.mark_failed(record, str(e) or type(e).__name__)
            except Exception as store_error:
                logger.error("Failed to mark analysis as failed",
                            recording_id=str(recording_id),
                            error=str(store_error))
            if raise_errors:
                raise
            return record

        logger.info("Analysis pipeline complete",
                   recording_id=str(recording_id),
                   duration_seconds=round(time.time() - start_time, 2))
        return record

    def _analyze_video(self, recording: Recording, should_cancel: Optional[Callable[[], bool]]) -> VideoAnalysis:
        file_id = self.fetcher.extract_file_id(recording.web_view_link or "")
        if not file_id:
            raise BadReferenceError(f"Could not extract a Drive file id from {recording.web_view_link!r}")

        deadline = self._clock() + self.settings.slow_path_timeout

        with ExitStack() as stack:
            path = stack.enter_context(self.fetcher.fetched(file_id, recording.name))
            self._check_deadline(deadline, "download")

            mime_type = self.fetcher.detect_video_mime_type(path, recording.name)
            remote = self.client.upload_file(path, mime_type, recording.name)
            stack.callback(self._delete_remote_file, remote.name)
            self._check_deadline(deadline, "upload")

            remaining = deadline - self._clock()
            active = self.client.wait_for_active(
                remote.name,
                max_wait_seconds=min(self.settings.pipeline_file_wait_timeout, remaining),
                should_cancel=should_cancel,
            )
            self._check_deadline(deadline, "remote processing")

            return self.analyst.analyze_video_file(
                active.uri or remote.uri,
                active.mime_type or mime_type,
                recording.name,
                recording.duration,
            )

    def _check_deadline(self, deadline: float, stage: str) -> None:
        if self._clock() >= deadline:
            raise PipelineTimeoutError(
                f"Video analysis exceeded {int(self.settings.slow_path_timeout)} seconds during {stage}"
            )

    def _delete_remote_file(self, file_name: str) -> None:
        try:
            self.client.delete_file(file_name)
        except GeminiError as e:
            logger.warning("Failed to delete remote file", file_name=file_name, error=str(e))

    def close(self) -> None:
        self.client.close()
        self.fetcher.close()
