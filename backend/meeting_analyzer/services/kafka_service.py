"""
Service for Kafka message publishing.
Carries analysis jobs from the dispatcher to the workers.
"""

import json
import uuid
from typing import Optional

from kafka import KafkaProducer
from kafka.errors import KafkaError

from meeting_analyzer.config import Settings, get_settings
from meeting_analyzer.utils.logger import get_logger

logger = get_logger(__name__)


class KafkaConnectionError(Exception):
    """Raised when Kafka connection fails."""
    pass


class KafkaService:
    """
    Service class for Kafka message publishing.

    Messages are keyed by recording id, so every job for one recording
    lands on the same partition.
    """

    def __init__(self, settings: Optional[Settings] = None) -> None:
        """Initialize Kafka producer."""
        self.settings: Settings = settings or get_settings()
        self.producer: Optional[KafkaProducer] = None
        self._initialize_producer()

    def _initialize_producer(self) -> None:
        """
        Initialize Kafka producer with error handling.

        Raises:
            KafkaConnectionError: If unable to connect to Kafka
        """
        try:
            self.producer = KafkaProducer(
                bootstrap_servers=self.settings.kafka_bootstrap_servers.split(','),
                value_serializer=lambda v: json.dumps(v).encode('utf-8'),
                key_serializer=lambda k: str(k).encode('utf-8') if k else None,
                acks='all',
                retries=3,
                retry_backoff_ms=100
            )

            logger.info("Kafka producer initialized",
                       bootstrap_servers=self.settings.kafka_bootstrap_servers)

        except Exception as e:
            logger.error("Failed to initialize Kafka producer", error=str(e))
            raise KafkaConnectionError(f"Cannot connect to Kafka: {str(e)}")

    def publish_analysis_job(self, job_id: uuid.UUID, recording_id: uuid.UUID, analysis_id: uuid.UUID) -> bool:
        """
        Publish an analysis job message to the Kafka topic.

        Args:
            job_id: UUID of the job (its dedup claim)
            recording_id: UUID of the recording to analyze
            analysis_id: UUID of the analysis record to update

        Returns:
            True if message was published successfully

        Raises:
            KafkaConnectionError: If publishing fails
        """
        if not self.producer:
            raise KafkaConnectionError("Kafka producer not initialized")

        message = {
            "job_id": str(job_id),
            "recording_id": str(recording_id),
            "analysis_id": str(analysis_id),
        }

        try:
            future = self.producer.send(
                topic=self.settings.kafka_topic_analysis,
                key=str(recording_id),
                value=message
            )

            record_metadata = future.get(timeout=10)

            logger.info("Analysis job published to Kafka",
                       job_id=str(job_id),
                       recording_id=str(recording_id),
                       topic=record_metadata.topic,
                       partition=record_metadata.partition,
                       offset=record_metadata.offset)

            return True

        except KafkaError as e:
            logger.error("Kafka publish error",
                        job_id=str(job_id),
                        recording_id=str(recording_id),
                        error=str(e))
            raise KafkaConnectionError(f"Failed to publish message: {str(e)}")

    def close(self) -> None:
        """Close the Kafka producer connection."""
        if self.producer:
            try:
                self.producer.close(timeout=5)
                logger.info("Kafka producer closed")
            except KafkaError as e:
                logger.error("Error closing Kafka producer", error=str(e))

    def __enter__(self) -> "KafkaService":
        """Context manager entry."""
        return self

    def __exit__(self, exc_type: Optional[type], exc_val: Optional[BaseException], exc_tb: Optional[object]) -> None:
        """Context manager exit."""
        self.close()
