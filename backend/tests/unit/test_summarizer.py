"""
Tests for the summarizer AI agent.
"""

import pytest
from unittest.mock import Mock

from meeting_analyzer.agents.summarizer import SummarizerAgent
from meeting_analyzer.clients.gemini_client import GeminiClient
from meeting_analyzer.config import Settings


class TestSummarizerAgent:
    """Test the SummarizerAgent class."""

    @pytest.fixture
    def agent(self, test_settings: Settings) -> SummarizerAgent:
        """Create SummarizerAgent instance with mocked client."""
        client = Mock(spec=GeminiClient)
        client.settings = test_settings
        return SummarizerAgent(client=client, settings=test_settings)

    def test_generate_summary(self, agent: SummarizerAgent) -> None:
        agent.client.generate.return_value = "Summary: the class covered recursion.\n\nExamples  were   shown."

        summary = agent.generate_summary("https://drive.google.com/file/d/x/view", "Lecture 5")

        assert summary == "The class covered recursion.\n\nExamples were shown."
        prompt = agent.client.generate.call_args[0][0]
        assert "'Lecture 5'" in prompt
        assert "https://drive.google.com/file/d/x/view" in prompt

    def test_clean_summary(self, agent: SummarizerAgent) -> None:
        """Test summary cleaning functionality."""
        assert agent._clean_summary("**Summary:** Content here.") == "Content here."
        assert agent._clean_summary("SUMMARY: Content here.") == "Content here."
        assert agent._clean_summary("Video Summary: content here.") == "Content here."
        assert agent._clean_summary("  Regular summary.  ") == "Regular summary."

    def test_clean_summary_keeps_paragraphs(self, agent: SummarizerAgent) -> None:
        raw = "First   paragraph\nwraps here.\n\n\nSecond paragraph."

        assert agent._clean_summary(raw) == "First paragraph wraps here.\n\nSecond paragraph."

    def test_truncate_for_log(self, agent: SummarizerAgent) -> None:
        assert agent._truncate_for_log("short") == "short"
        assert agent._truncate_for_log("a" * 300, 10) == "a" * 10 + "..."
