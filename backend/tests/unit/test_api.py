"""
Tests for the HTTP API.
"""

import uuid
from typing import Generator, List, Optional

import httpx
import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import Session
from unittest.mock import Mock, patch

from meeting_analyzer.agents.summarizer import SummarizerAgent
from meeting_analyzer.clients.gemini_client import GeminiClient
from meeting_analyzer.config import Settings
from meeting_analyzer.main import app, get_gemini_client
from meeting_analyzer.routers.analysis import get_dispatcher, get_store
from meeting_analyzer.routers.recordings import get_subtitle_extractor, get_summarizer
from meeting_analyzer.services.analysis_service import AnalysisRecordStore
from meeting_analyzer.services.dispatcher import JobDispatcher
from meeting_analyzer.services.kafka_service import KafkaConnectionError
from meeting_analyzer.services.pipeline import PipelineOrchestrator
from meeting_analyzer.services.subtitle_extractor import SubtitleExtractor


class FakeQueue:
    """In-memory job queue."""

    def __init__(self, error: Optional[Exception] = None) -> None:
        self.jobs: List[uuid.UUID] = []
        self.error = error

    def enqueue(self, recording_id: uuid.UUID, analysis_id: uuid.UUID) -> bool:
        if self.error is not None:
            raise self.error
        if recording_id in self.jobs:
            return False
        self.jobs.append(recording_id)
        return True


@pytest.fixture
def queue() -> FakeQueue:
    return FakeQueue()


@pytest.fixture
def api(client: TestClient, test_db: Session, test_settings: Settings, queue: FakeQueue,
        gemini_response, analysis_json: str) -> Generator[TestClient, None, None]:
    """Test client with the dispatcher and store bound to test settings."""
    def handler(request: httpx.Request) -> httpx.Response:
        return gemini_response(analysis_json)

    def orchestrator_factory(db: Session, settings: Settings) -> PipelineOrchestrator:
        gemini = GeminiClient(settings, http_client=httpx.Client(transport=httpx.MockTransport(handler)))
        return PipelineOrchestrator(db, settings, client=gemini)

    app.dependency_overrides[get_dispatcher] = lambda: JobDispatcher(
        test_db, queue, orchestrator_factory=orchestrator_factory, settings=test_settings
    )
    app.dependency_overrides[get_store] = lambda: AnalysisRecordStore(test_db, test_settings)
    yield client


class TestAnalysisEndpoints:
    """Test the analysis routes."""

    def test_request_analysis(self, api: TestClient, make_recording, queue: FakeQueue) -> None:
        recording = make_recording()

        response = api.post(f"/api/recordings/{recording.id}/analysis")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "processing"
        assert data["recording_id"] == str(recording.id)
        assert data["key_points"] == []
        assert queue.jobs == [recording.id]

    def test_request_twice_returns_same_record(self, api: TestClient, make_recording, queue: FakeQueue) -> None:
        recording = make_recording()

        first = api.post(f"/api/recordings/{recording.id}/analysis").json()
        second = api.post(f"/api/recordings/{recording.id}/analysis").json()

        assert first["id"] == second["id"]
        assert queue.jobs == [recording.id]

    def test_request_unknown_recording(self, api: TestClient) -> None:
        response = api.post(f"/api/recordings/{uuid.uuid4()}/analysis")

        assert response.status_code == 404
        assert response.json()["error"]["code"] == "RECORDING_NOT_FOUND"

    def test_invalid_recording_id(self, api: TestClient) -> None:
        assert api.get("/api/recordings/not-a-uuid/analysis").status_code == 422

    def test_queue_unavailable(self, api: TestClient, make_recording, queue: FakeQueue) -> None:
        queue.error = KafkaConnectionError("Cannot connect to Kafka")
        recording = make_recording()

        response = api.post(f"/api/recordings/{recording.id}/analysis")

        assert response.status_code == 503
        assert response.json()["error"]["code"] == "SERVICE_UNAVAILABLE"
        record = api.get(f"/api/recordings/{recording.id}/analysis").json()
        assert record["status"] == "failed"

    def test_sync_analysis(self, api: TestClient, make_recording, sample_transcript: str) -> None:
        recording = make_recording(transcript_text=sample_transcript)

        response = api.post(f"/api/recordings/{recording.id}/analysis/sync")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "completed"
        assert data["key_points"] == ["Release moves to March", "Two hires approved"]
        assert data["topics"] == ["Roadmap", "Hiring"]
        assert data["model_used"] == "gemini-test"

    def test_sync_analysis_not_configured(self, client: TestClient, test_db: Session, test_settings: Settings,
                                          make_recording, sample_transcript: str) -> None:
        settings = test_settings.model_copy(update={"gemini_api_key": ""})
        app.dependency_overrides[get_dispatcher] = lambda: JobDispatcher(test_db, settings=settings)
        recording = make_recording(transcript_text=sample_transcript)

        response = client.post(f"/api/recordings/{recording.id}/analysis/sync")

        assert response.status_code == 503
        assert response.json()["error"]["code"] == "AI_NOT_CONFIGURED"

    def test_sync_analysis_bad_link(self, api: TestClient, make_recording) -> None:
        recording = make_recording(web_view_link="https://example.com/recording")

        response = api.post(f"/api/recordings/{recording.id}/analysis/sync")

        assert response.status_code == 502
        assert response.json()["error"]["code"] == "ANALYSIS_FAILED"

    def test_get_missing_analysis(self, api: TestClient, make_recording) -> None:
        response = api.get(f"/api/recordings/{make_recording().id}/analysis")

        assert response.status_code == 404
        assert response.json()["error"]["code"] == "ANALYSIS_NOT_FOUND"

    def test_manual_save(self, api: TestClient, make_recording) -> None:
        recording = make_recording()

        response = api.put(f"/api/recordings/{recording.id}/analysis", json={
            "summary": "Edited",
            "key_points": "- One\n- Two",
            "topics": "Budget, Hiring",
        })

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "completed"
        assert data["model_used"] == "manual"
        assert data["key_points"] == ["One", "Two"]
        assert data["topics"] == ["Budget", "Hiring"]

    def test_manual_save_unknown_recording(self, api: TestClient) -> None:
        response = api.put(f"/api/recordings/{uuid.uuid4()}/analysis", json={"summary": "x"})

        assert response.status_code == 404

    def test_delete(self, api: TestClient, make_recording) -> None:
        recording = make_recording()
        api.post(f"/api/recordings/{recording.id}/analysis/queue")

        assert api.delete(f"/api/recordings/{recording.id}/analysis").status_code == 204
        assert api.delete(f"/api/recordings/{recording.id}/analysis").status_code == 404

    def test_queue_and_counts(self, api: TestClient, make_recording) -> None:
        for _ in range(2):
            response = api.post(f"/api/recordings/{make_recording().id}/analysis/queue")
            assert response.json()["status"] == "pending"

        counts = api.get("/api/analysis/status-counts").json()

        assert counts == {"pending": 2, "processing": 0, "completed": 0, "failed": 0}

    def test_process_pending(self, api: TestClient, make_recording, sample_transcript: str) -> None:
        recording = make_recording(transcript_text=sample_transcript)
        api.post(f"/api/recordings/{recording.id}/analysis/queue")

        response = api.post("/api/analysis/process-pending", params={"limit": 5})

        assert response.status_code == 200
        assert response.json()["attempted"] == 1
        assert api.get(f"/api/recordings/{recording.id}/analysis").json()["status"] == "completed"


class TestTranscriptEndpoint:
    """Test caption extraction."""

    def test_extract(self, client: TestClient, make_recording, sample_transcript: str) -> None:
        extractor = Mock(spec=SubtitleExtractor)
        extractor.is_available.return_value = True
        extractor.extract.return_value = sample_transcript
        app.dependency_overrides[get_subtitle_extractor] = lambda: extractor
        recording = make_recording()

        response = client.post(f"/api/recordings/{recording.id}/transcript/extract")

        assert response.status_code == 200
        data = response.json()
        assert data["found"] is True
        assert data["characters"] == len(sample_transcript)
        assert data["preview"] == sample_transcript[:500]
        extractor.extract.assert_called_once_with(recording.web_view_link)

    def test_no_captions(self, client: TestClient, make_recording) -> None:
        extractor = Mock(spec=SubtitleExtractor)
        extractor.is_available.return_value = True
        extractor.extract.return_value = None
        app.dependency_overrides[get_subtitle_extractor] = lambda: extractor

        data = client.post(f"/api/recordings/{make_recording().id}/transcript/extract").json()

        assert data["found"] is False
        assert data["preview"] is None

    def test_tool_missing(self, client: TestClient, make_recording) -> None:
        extractor = Mock(spec=SubtitleExtractor)
        extractor.is_available.return_value = False
        app.dependency_overrides[get_subtitle_extractor] = lambda: extractor

        response = client.post(f"/api/recordings/{make_recording().id}/transcript/extract")

        assert response.status_code == 503
        assert response.json()["detail"]["error"]["code"] == "CAPTIONS_UNAVAILABLE"

    @patch("meeting_analyzer.routers.recordings.SubtitleExtractor")
    def test_extractor_closed_after_request(self, extractor_class: Mock, client: TestClient, make_recording) -> None:
        extractor = extractor_class.return_value
        extractor.is_available.return_value = True
        extractor.extract.return_value = None

        response = client.post(f"/api/recordings/{make_recording().id}/transcript/extract")

        assert response.status_code == 200
        extractor.close.assert_called_once()


class TestSummaryEndpoint:
    """Test plain-text summaries."""

    @pytest.fixture
    def summarizer_for(self, gemini_response):
        def _summarizer(settings: Settings, text: str = "Summary: The team reviewed the roadmap.") -> SummarizerAgent:
            transport = httpx.MockTransport(lambda request: gemini_response(text))
            return SummarizerAgent(client=GeminiClient(settings, http_client=httpx.Client(transport=transport)))

        return _summarizer

    def test_summary(self, client: TestClient, test_settings: Settings, make_recording, summarizer_for) -> None:
        app.dependency_overrides[get_summarizer] = lambda: summarizer_for(test_settings)
        recording = make_recording()

        response = client.post(f"/api/recordings/{recording.id}/summary")

        assert response.status_code == 200
        assert response.json() == {
            "recording_id": str(recording.id),
            "summary": "The team reviewed the roadmap.",
            "model_used": "gemini-test",
        }

    def test_summary_unknown_recording(self, client: TestClient, test_settings: Settings, summarizer_for) -> None:
        app.dependency_overrides[get_summarizer] = lambda: summarizer_for(test_settings)

        response = client.post(f"/api/recordings/{uuid.uuid4()}/summary")

        assert response.status_code == 404

    def test_summary_not_configured(self, client: TestClient, test_settings: Settings, make_recording,
                                    summarizer_for) -> None:
        settings = test_settings.model_copy(update={"gemini_api_key": ""})
        app.dependency_overrides[get_summarizer] = lambda: summarizer_for(settings)

        response = client.post(f"/api/recordings/{make_recording().id}/summary")

        assert response.status_code == 503
        assert response.json()["error"]["code"] == "AI_NOT_CONFIGURED"


class TestHealth:
    def test_health(self, client: TestClient) -> None:
        response = client.get("/health")

        assert response.status_code == 200
        assert response.json()["status"] == "healthy"
        assert "ai" in response.json()

    @pytest.mark.parametrize("connected, status, ai_connection", [
        (True, "healthy", "ok"),
        (False, "degraded", "failed"),
    ])
    def test_deep_check(self, client: TestClient, connected: bool, status: str, ai_connection: str) -> None:
        gemini = Mock(spec=GeminiClient)
        gemini.is_configured.return_value = True
        gemini.test_connection.return_value = connected
        app.dependency_overrides[get_gemini_client] = lambda: gemini

        data = client.get("/health", params={"deep": "true"}).json()

        assert data["status"] == status
        assert data["ai_connection"] == ai_connection

    def test_shallow_check_skips_api(self, client: TestClient) -> None:
        gemini = Mock(spec=GeminiClient)
        gemini.is_configured.return_value = True
        app.dependency_overrides[get_gemini_client] = lambda: gemini

        data = client.get("/health").json()

        assert "ai_connection" not in data
        gemini.test_connection.assert_not_called()

    def test_correlation_id_echoed(self, client: TestClient) -> None:
        response = client.get("/health", headers={"X-Correlation-ID": "req-123"})

        assert response.headers["X-Correlation-ID"] == "req-123"
