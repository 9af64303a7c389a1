"""
Kafka consumer worker for processing analysis jobs.
Runs the analysis pipeline for each queued recording.
"""

import json
import signal
import sys
import uuid
from typing import Any, Callable, Dict, Optional

from kafka import KafkaConsumer
from kafka.errors import KafkaError
from sqlalchemy.orm import Session

from meeting_analyzer.config import Settings, get_settings
from meeting_analyzer.db.database import SessionLocal, init_db
from meeting_analyzer.models.analysis import AnalysisStatus
from meeting_analyzer.services.analysis_service import AnalysisRecordStore
from meeting_analyzer.services.job_queue import JobQueue, KafkaJobQueue
from meeting_analyzer.services.job_registry import JobRegistry
from meeting_analyzer.services.kafka_service import KafkaConnectionError
from meeting_analyzer.services.pipeline import PipelineOrchestrator
from meeting_analyzer.utils.logger import get_logger, set_correlation_id, setup_logging

logger = get_logger(__name__)

OrchestratorFactory = Callable[[Session, Settings], PipelineOrchestrator]
QueueFactory = Callable[[Session, Settings], JobQueue]


def _kafka_job_queue(db: Session, settings: Settings) -> JobQueue:
    return KafkaJobQueue(JobRegistry(db, settings), settings)


class AnalysisWorker:
    """
    Kafka consumer worker that processes analysis jobs.

    Consumes messages from the analysis topic, runs the pipeline for the
    referenced recording and frees the recording's job slot afterwards.
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        session_factory: Callable[[], Session] = SessionLocal,
        orchestrator_factory: Optional[OrchestratorFactory] = None,
        queue_factory: QueueFactory = _kafka_job_queue,
    ) -> None:
        """Initialize the analysis worker."""
        self.settings: Settings = settings or get_settings()
        self.running = False
        self.consumer: Optional[KafkaConsumer] = None
        self._session_factory = session_factory
        self._orchestrator_factory = orchestrator_factory or PipelineOrchestrator
        self._queue_factory = queue_factory

        logger.info("Analysis worker initialized")

    def _setup_consumer(self) -> None:
        """Set up Kafka consumer with error handling."""
        try:
            self.consumer = KafkaConsumer(
                self.settings.kafka_topic_analysis,
                bootstrap_servers=self.settings.kafka_bootstrap_servers.split(','),
                value_deserializer=lambda m: json.loads(m.decode('utf-8')),
                key_deserializer=lambda m: m.decode('utf-8') if m else None,
                group_id=self.settings.kafka_consumer_group,
                auto_offset_reset='earliest',
                enable_auto_commit=True,
            )

            logger.info("Kafka consumer setup complete",
                       topic=self.settings.kafka_topic_analysis,
                       bootstrap_servers=self.settings.kafka_bootstrap_servers)

        except KafkaError as e:
            logger.error("Failed to setup Kafka consumer", error=str(e))
            raise

    def _setup_signal_handlers(self) -> None:
        """Setup signal handlers for graceful shutdown."""
        def signal_handler(signum, frame):
            logger.info("Received shutdown signal", signal=signum)
            self.running = False

        signal.signal(signal.SIGINT, signal_handler)
        signal.signal(signal.SIGTERM, signal_handler)

    def process_analysis_job(self, message: Dict[str, Any]) -> None:
        """
        Process a single analysis job message.

        Pipeline failures are stored on the analysis record by the
        orchestrator; the job slot is released whatever the outcome. A
        record that was regenerated after this job saved its result is
        queued again once the slot is free.

        Args:
            message: Kafka message with ``job_id``, ``recording_id`` and ``analysis_id``
        """
        try:
            job_id = uuid.UUID(message['job_id'])
            recording_id = uuid.UUID(message['recording_id'])
            analysis_id = uuid.UUID(message['analysis_id'])
        except (KeyError, TypeError, ValueError) as e:
            logger.error("Malformed analysis job message", error=str(e), message=message)
            return

        set_correlation_id(str(job_id))

        logger.info("Worker picked up job", job_id=str(job_id), recording_id=str(recording_id))

        db = self._session_factory()
        orchestrator = None
        try:
            try:
                orchestrator = self._orchestrator_factory(db, self.settings)
                orchestrator.run(
                    recording_id,
                    analysis_id,
                    raise_errors=False,
                    should_cancel=lambda: not self.running,
                )
            finally:
                if orchestrator is not None:
                    orchestrator.close()
                try:
                    JobRegistry(db, self.settings).release(recording_id, job_id)
                except Exception as e:
                    logger.error("Failed to release job claim", job_id=str(job_id), error=str(e))

            self._requeue_if_reset(db, recording_id, analysis_id)
        finally:
            db.close()

    def _requeue_if_reset(self, db: Session, recording_id: uuid.UUID, analysis_id: uuid.UUID) -> None:
        """Queue the record again if it is back in processing with no job to finish it."""
        db.expire_all()
        store = AnalysisRecordStore(db, self.settings)
        record = store.get(analysis_id)
        if record is None or record.status != AnalysisStatus.PROCESSING.value:
            return

        logger.info("Analysis was reset while the job finished, queueing it again",
                   recording_id=str(recording_id), analysis_id=str(analysis_id))
        try:
            self._queue_factory(db, self.settings).enqueue(recording_id, analysis_id)
        except KafkaConnectionError as e:
            logger.error("Failed to queue analysis job again", recording_id=str(recording_id), error=str(e))
            store.mark_failed(record, f"Failed to queue job: {str(e)}")

    def run(self) -> None:
        """
        Main worker loop.

        Sets up consumer, listens for messages, and processes them.
        """
        logger.info("Starting analysis worker")

        try:
            self._setup_signal_handlers()
            self._setup_consumer()

            self.running = True

            logger.info("Worker ready to process analysis jobs")

            for message in self.consumer:
                if not self.running:
                    break

                try:
                    self.process_analysis_job(message.value)
                except Exception as e:
                    logger.error("Error processing message",
                                error=str(e),
                                message_key=message.key,
                                message_value=message.value)

        except KeyboardInterrupt:
            logger.info("Received keyboard interrupt")
        finally:
            self.stop()

    def stop(self) -> None:
        """Stop the worker gracefully."""
        logger.info("Stopping analysis worker")

        self.running = False

        if self.consumer:
            try:
                self.consumer.close()
                logger.info("Kafka consumer closed")
            except KafkaError as e:
                logger.error("Error closing Kafka consumer", error=str(e))

        logger.info("Analysis worker stopped")


def main() -> None:
    """Main entry point for the analysis worker."""
    settings = get_settings()
    setup_logging(settings.log_level)
    logger.info("Meeting Analyzer - Analysis Worker starting")

    try:
        init_db()
        worker = AnalysisWorker(settings)
        worker.run()
    except Exception as e:
        logger.error("Failed to start analysis worker", error=str(e))
        sys.exit(1)


if __name__ == "__main__":
    main()
