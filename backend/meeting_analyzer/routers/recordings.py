"""
API routes for recording transcripts and plain-text summaries.
"""

import uuid
from typing import Generator

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from meeting_analyzer.agents.summarizer import SummarizerAgent
from meeting_analyzer.config import get_settings
from meeting_analyzer.db.database import get_db
from meeting_analyzer.schemas.transcript import SummaryResponse, TranscriptExtractionResponse
from meeting_analyzer.services.recording_service import RecordingService
from meeting_analyzer.services.subtitle_extractor import SubtitleExtractor
from meeting_analyzer.utils.logger import get_correlation_id, get_logger

logger = get_logger(__name__)
router = APIRouter(prefix="/api/recordings", tags=["recordings"])

PREVIEW_CHARS = 500


def get_subtitle_extractor() -> Generator[SubtitleExtractor, None, None]:
    """Dependency providing the caption extractor, closed after the request."""
    extractor = SubtitleExtractor(settings=get_settings())
    try:
        yield extractor
    finally:
        extractor.close()


def get_summarizer() -> Generator[SummarizerAgent, None, None]:
    summarizer = SummarizerAgent(settings=get_settings())
    try:
        yield summarizer
    finally:
        summarizer.client.close()


@router.post("/{recording_id}/transcript/extract", response_model=TranscriptExtractionResponse)
def extract_transcript(
    recording_id: uuid.UUID,
    db: Session = Depends(get_db),
    extractor: SubtitleExtractor = Depends(get_subtitle_extractor),
) -> TranscriptExtractionResponse:
    """
    Extract captions for a recording and cache them as its transcript.

    A cached transcript lets analysis skip the video download.
    """
    recordings = RecordingService(db)
    recording = recordings.require_recording(recording_id)

    if not extractor.is_available():
        raise HTTPException(status_code=503, detail={
            "error": {
                "code": "CAPTIONS_UNAVAILABLE",
                "message": "Caption extraction tool is not installed on this host",
                "correlation_id": get_correlation_id()
            }
        })

    logger.info("Extracting transcript", recording_id=str(recording_id))

    transcript = extractor.extract(recording.web_view_link or "")
    if not transcript:
        return TranscriptExtractionResponse(
            recording_id=recording_id,
            found=False,
            message="No usable captions found for this recording",
        )

    recordings.save_transcript_text(recording, transcript)

    return TranscriptExtractionResponse(
        recording_id=recording_id,
        found=True,
        characters=len(transcript),
        preview=transcript[:PREVIEW_CHARS],
        message="Transcript extracted and saved",
    )


@router.post("/{recording_id}/summary", response_model=SummaryResponse)
def generate_summary(
    recording_id: uuid.UUID,
    db: Session = Depends(get_db),
    summarizer: SummarizerAgent = Depends(get_summarizer),
) -> SummaryResponse:
    """
    Write a short prose summary of a recording from its link and title.

    The summary is returned only; the analysis record is left untouched.
    """
    recording = RecordingService(db).require_recording(recording_id)

    logger.info("Summary requested", recording_id=str(recording_id))

    summary = summarizer.generate_summary(recording.web_view_link or "", recording.name)
    return SummaryResponse(recording_id=recording_id, summary=summary, model_used=summarizer.model)
