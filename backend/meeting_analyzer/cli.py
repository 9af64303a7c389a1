"""
Command line tools for batch transcript extraction and analysis.
"""

import argparse
import sys
import time
import uuid
from dataclasses import dataclass
from typing import Callable, List, Optional

from sqlalchemy.orm import Session

from meeting_analyzer.clients.gemini_client import GeminiClient
from meeting_analyzer.config import Settings, get_settings
from meeting_analyzer.db.database import SessionLocal, init_db
from meeting_analyzer.models.analysis import AnalysisStatus
from meeting_analyzer.models.recording import Recording
from meeting_analyzer.services.analysis_service import AnalysisRecordStore
from meeting_analyzer.services.dispatcher import JobDispatcher
from meeting_analyzer.services.recording_service import RecordingService
from meeting_analyzer.services.subtitle_extractor import SubtitleExtractor
from meeting_analyzer.utils.logger import get_logger, setup_logging

logger = get_logger(__name__)

PAUSE_BETWEEN_ANALYSES = 2.0


@dataclass
class TranscriptRunStats:
    processed: int = 0
    skipped: int = 0
    errors: int = 0


def process_transcripts(
    db: Session,
    extractor: SubtitleExtractor,
    dispatcher: JobDispatcher,
    recording_id: Optional[uuid.UUID] = None,
    dry_run: bool = False,
    skip_analysis: bool = False,
    sleep: Callable[[float], None] = time.sleep,
    echo: Callable[[str], None] = print,
) -> TranscriptRunStats:
    """
    Extract captions for recordings and analyze them from the transcript.

    Recordings whose analysis is already completed are skipped. Extracted
    transcripts are cached on the recording and the analysis record is set
    back to ``pending`` before the analysis runs.
    """
    recordings = RecordingService(db)
    store = AnalysisRecordStore(db, dispatcher.settings)
    stats = TranscriptRunStats()

    if recording_id is not None:
        targets: List[Recording] = [recordings.require_recording(recording_id)]
    else:
        targets = recordings.list_recordings_needing_transcripts()

    if not targets:
        echo("No recordings to process.")
        return stats

    total = len(targets)
    echo(f"Found {total} recordings. Starting processing...")

    for number, recording in enumerate(targets, start=1):
        echo(f"=== [{number}/{total}] Recording {recording.id}: {recording.name} ===")

        record = store.get_by_recording(recording.id)
        if record is not None and record.status == AnalysisStatus.COMPLETED.value:
            echo("  SKIP: Already has completed AI analysis.")
            stats.skipped += 1
            continue

        if not recording.web_view_link:
            echo("  ERROR: No Drive link for this recording.")
            stats.errors += 1
            continue

        transcript = extractor.extract(recording.web_view_link)
        if not transcript:
            echo("  ERROR: No usable captions found.")
            stats.errors += 1
            continue

        echo(f"  Downloaded {len(transcript)} characters of transcript.")

        if dry_run:
            echo("  DRY-RUN: Would save transcript and run AI analysis.")
            echo(f"  Preview: {transcript[:200]}...")
            stats.processed += 1
            continue

        recordings.save_transcript_text(recording, transcript)
        if record is None:
            record = store.queue_for_analysis(recording.id)
        store.reset_to_pending(record, transcript=transcript)
        echo(f"  Transcript saved (analysis {record.id}).")

        if skip_analysis:
            echo("  SKIP-ANALYSIS: Transcript saved, AI analysis skipped.")
            stats.processed += 1
            continue

        if not dispatcher.settings.ai_configured:
            echo("  WARNING: AI not configured. Transcript saved but no analysis.")
            stats.processed += 1
            continue

        try:
            result = dispatcher.request_analysis_sync(recording.id, regenerate=True)
            echo(f"  Analysis {result.status}.")
        except Exception as e:
            # Transcript is saved; the failure is stored on the record
            logger.warning("Transcript analysis failed", recording_id=str(recording.id), error=str(e))
            echo(f"  WARNING: AI analysis failed: {e}")

        stats.processed += 1
        if number < total:
            sleep(PAUSE_BETWEEN_ANALYSES)

    echo(f"Done. Processed: {stats.processed}, skipped: {stats.skipped}, errors: {stats.errors}")
    return stats


def cmd_process_transcripts(args: argparse.Namespace, settings: Settings) -> int:
    extractor = SubtitleExtractor(language=args.language, settings=settings)
    if not extractor.is_available():
        print("yt-dlp not found. Install it from https://github.com/yt-dlp/yt-dlp and make sure it is on PATH.",
              file=sys.stderr)
        return 1

    db = SessionLocal()
    try:
        dispatcher = JobDispatcher(db, settings=settings)
        stats = process_transcripts(
            db,
            extractor,
            dispatcher,
            recording_id=args.recording_id,
            dry_run=args.dry_run,
            skip_analysis=args.skip_analysis,
        )
    finally:
        extractor.close()
        db.close()

    return 1 if stats.errors and not stats.processed else 0


def cmd_process_pending(args: argparse.Namespace, settings: Settings) -> int:
    db = SessionLocal()
    try:
        attempted = JobDispatcher(db, settings=settings).process_pending(args.limit)
        counts = AnalysisRecordStore(db, settings).status_counts()
    finally:
        db.close()

    print(f"Attempted {attempted} pending analyses.")
    print(f"Status counts: pending={counts.pending} processing={counts.processing} "
          f"completed={counts.completed} failed={counts.failed}")
    return 0


def cmd_reconcile(args: argparse.Namespace, settings: Settings) -> int:
    db = SessionLocal()
    try:
        reset = JobDispatcher(db, settings=settings).reconcile_stale(args.max_age)
    finally:
        db.close()

    print(f"Reset {reset} stuck analyses to pending.")
    return 0


def cmd_check(args: argparse.Namespace, settings: Settings) -> int:
    if not settings.ai_configured:
        print("AI analysis is not configured.")
        return 1

    with GeminiClient(settings) as client:
        connected = client.test_connection()

    print(f"Gemini API ({settings.gemini_model}): {'OK' if connected else 'FAILED'}")
    return 0 if connected else 1


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="meeting-analyzer", description="Meeting recording analysis tools.")
    sub = parser.add_subparsers(dest="cmd", required=True)

    transcripts = sub.add_parser(
        "process-transcripts",
        help="Extract captions from Drive recordings and analyze the transcripts.",
    )
    transcripts.add_argument("--recording-id", type=uuid.UUID, default=None, help="Process only this recording.")
    transcripts.add_argument("--language", type=str, default=None, help="Caption language code.")
    transcripts.add_argument("--dry-run", action="store_true", help="Show what would be done without saving.")
    transcripts.add_argument("--skip-analysis", action="store_true", help="Only extract captions.")
    transcripts.set_defaults(func=cmd_process_transcripts)

    pending = sub.add_parser("process-pending", help="Analyze the oldest pending recordings.")
    pending.add_argument("--limit", type=int, default=None, help="Maximum recordings to process.")
    pending.set_defaults(func=cmd_process_pending)

    reconcile = sub.add_parser("reconcile", help="Reset analyses stuck in processing back to pending.")
    reconcile.add_argument("--max-age", type=int, default=None, help="Seconds without progress before a record is stuck.")
    reconcile.set_defaults(func=cmd_reconcile)

    check = sub.add_parser("check", help="Send a test prompt to the Gemini API.")
    check.set_defaults(func=cmd_check)

    return parser


def main(argv: Optional[List[str]] = None) -> None:
    args = build_parser().parse_args(argv)

    settings = get_settings()
    setup_logging(settings.log_level)
    init_db()

    sys.exit(args.func(args, settings))


if __name__ == "__main__":
    main()
