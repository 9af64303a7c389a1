"""
Job queue used by the dispatcher to hand analysis runs to workers.
"""

import uuid
from typing import Callable, Optional, Protocol

from meeting_analyzer.config import Settings, get_settings
from meeting_analyzer.services.job_registry import JobRegistry
from meeting_analyzer.services.kafka_service import KafkaConnectionError, KafkaService
from meeting_analyzer.utils.logger import get_logger

logger = get_logger(__name__)


class JobQueue(Protocol):
    def enqueue(self, recording_id: uuid.UUID, analysis_id: uuid.UUID) -> bool:
        """Schedule a job unless one is already pending or running; returns whether one was scheduled."""
        ...


class KafkaJobQueue:
    """Claims the recording's job slot, then publishes the job to Kafka."""

    def __init__(
        self,
        registry: JobRegistry,
        settings: Optional[Settings] = None,
        kafka_factory: Optional[Callable[[Settings], KafkaService]] = None,
    ) -> None:
        self.registry = registry
        self.settings: Settings = settings or get_settings()
        self._kafka_factory = kafka_factory or KafkaService

    def enqueue(self, recording_id: uuid.UUID, analysis_id: uuid.UUID) -> bool:
        job_id = self.registry.claim(recording_id, analysis_id)
        if job_id is None:
            return False

        try:
            with self._kafka_factory(self.settings) as kafka:
                kafka.publish_analysis_job(job_id, recording_id, analysis_id)
        except KafkaConnectionError:
            self.registry.release(recording_id, job_id)
            raise

        return True
