"""
API routes for recording analysis.
Handles analysis requests, status polling, manual edits and batch runs.
"""

import uuid
from typing import Optional

from fastapi import APIRouter, Depends, Query, Response
from sqlalchemy.orm import Session

from meeting_analyzer.config import get_settings
from meeting_analyzer.db.database import get_db
from meeting_analyzer.schemas.analysis import (
    AnalysisResponse, BatchRunResponse, ManualAnalysisRequest, StatusCountsResponse
)
from meeting_analyzer.services.analysis_service import AnalysisRecordStore
from meeting_analyzer.services.dispatcher import JobDispatcher
from meeting_analyzer.services.job_queue import JobQueue, KafkaJobQueue
from meeting_analyzer.services.job_registry import JobRegistry
from meeting_analyzer.services.recording_service import RecordingService
from meeting_analyzer.utils.logger import get_logger

logger = get_logger(__name__)
router = APIRouter(prefix="/api", tags=["analysis"])


def get_job_queue(db: Session = Depends(get_db)) -> JobQueue:
    """Dependency providing the Kafka-backed job queue."""
    settings = get_settings()
    return KafkaJobQueue(JobRegistry(db, settings), settings)


def get_dispatcher(db: Session = Depends(get_db), queue: JobQueue = Depends(get_job_queue)) -> JobDispatcher:
    """Dependency providing the analysis dispatcher."""
    return JobDispatcher(db, queue, settings=get_settings())


def get_store(db: Session = Depends(get_db)) -> AnalysisRecordStore:
    return AnalysisRecordStore(db, get_settings())


@router.post("/recordings/{recording_id}/analysis", response_model=AnalysisResponse)
def request_analysis(
    recording_id: uuid.UUID,
    regenerate: bool = Query(False, description="Discard the current result and analyze again"),
    dispatcher: JobDispatcher = Depends(get_dispatcher),
) -> AnalysisResponse:
    """
    Request analysis of a recording.

    Returns immediately. A completed or in-progress analysis is returned
    as it is; otherwise a background job is queued and the record is
    returned in ``processing`` state.
    """
    logger.info("Analysis requested", recording_id=str(recording_id), regenerate=regenerate)

    record = dispatcher.request_analysis(recording_id, regenerate=regenerate)
    return dispatcher.store.to_response(record)


@router.post("/recordings/{recording_id}/analysis/sync", response_model=AnalysisResponse)
def request_analysis_sync(
    recording_id: uuid.UUID,
    regenerate: bool = Query(False, description="Discard the current result and analyze again"),
    dispatcher: JobDispatcher = Depends(get_dispatcher),
) -> AnalysisResponse:
    """Run the analysis inside the request and return the finished record."""
    logger.info("Synchronous analysis requested", recording_id=str(recording_id), regenerate=regenerate)

    record = dispatcher.request_analysis_sync(recording_id, regenerate=regenerate)
    return dispatcher.store.to_response(record)


@router.get("/recordings/{recording_id}/analysis", response_model=AnalysisResponse)
def get_analysis(
    recording_id: uuid.UUID,
    store: AnalysisRecordStore = Depends(get_store),
) -> AnalysisResponse:
    """Get the analysis record of a recording."""
    return store.to_response(store.require_by_recording(recording_id))


@router.put("/recordings/{recording_id}/analysis", response_model=AnalysisResponse)
def save_manual_analysis(
    recording_id: uuid.UUID,
    request: ManualAnalysisRequest,
    db: Session = Depends(get_db),
    store: AnalysisRecordStore = Depends(get_store),
) -> AnalysisResponse:
    """Save a human-edited analysis, replacing any model output."""
    RecordingService(db).require_recording(recording_id)

    record = store.save_manual(
        recording_id,
        summary=request.summary,
        key_points_text=request.key_points,
        topics_text=request.topics,
        transcript=request.transcript,
    )
    return store.to_response(record)


@router.delete("/recordings/{recording_id}/analysis", status_code=204)
def delete_analysis(
    recording_id: uuid.UUID,
    store: AnalysisRecordStore = Depends(get_store),
) -> Response:
    """Delete the analysis record of a recording."""
    store.require_by_recording(recording_id)
    store.delete_by_recording(recording_id)
    return Response(status_code=204)


@router.post("/recordings/{recording_id}/analysis/queue", response_model=AnalysisResponse)
def queue_for_analysis(
    recording_id: uuid.UUID,
    db: Session = Depends(get_db),
    store: AnalysisRecordStore = Depends(get_store),
) -> AnalysisResponse:
    """Mark a recording for the next batch run."""
    RecordingService(db).require_recording(recording_id)
    return store.to_response(store.queue_for_analysis(recording_id))


@router.get("/analysis/status-counts", response_model=StatusCountsResponse)
def get_status_counts(store: AnalysisRecordStore = Depends(get_store)) -> StatusCountsResponse:
    """Number of analysis records in each status."""
    return store.status_counts()


@router.post("/analysis/process-pending", response_model=BatchRunResponse)
def process_pending(
    limit: Optional[int] = Query(None, ge=1, le=100, description="Maximum records to process"),
    dispatcher: JobDispatcher = Depends(get_dispatcher),
) -> BatchRunResponse:
    """Run the oldest pending analyses inside the request."""
    attempted = dispatcher.process_pending(limit)
    return BatchRunResponse(attempted=attempted, message=f"Processed {attempted} pending analyses")
