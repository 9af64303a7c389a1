"""
AI agent for generating plain-text recording summaries.
"""

import re

from meeting_analyzer.agents.base_agent import BaseAgent
from meeting_analyzer.utils.logger import get_logger

logger = get_logger(__name__)


class SummarizerAgent(BaseAgent):
    """
    AI agent that writes a short prose summary of a recording.

    Used where a full structured analysis is not needed.
    """

    def generate_summary(self, video_url: str, video_name: str) -> str:
        """
        Generate a 2-3 paragraph summary for a video.

        Args:
            video_url: The Google Drive video URL
            video_name: The name of the video

        Returns:
            Cleaned summary text
        """
        logger.info(f"[{self.agent_name}] Starting summary", recording_name=video_name)

        prompt = self._build_summary_prompt(video_url, video_name)
        raw_summary = self._call_gemini(prompt, timeout=self.settings.generate_timeout)
        summary = self._clean_summary(raw_summary)

        logger.info(f"[{self.agent_name}] Generated summary successfully",
                   summary_word_count=len(summary.split()),
                   summary_preview=self._truncate_for_log(summary, 100))

        return summary

    def _build_summary_prompt(self, video_url: str, video_name: str) -> str:
        return (
            "Please watch this video and provide a concise summary (2-3 paragraphs) of the main content. "
            f"The video is titled: '{video_name}'. "
            f"Video URL: {video_url}\n\n"
            "Focus on the key topics discussed, main conclusions, and any important information shared."
        )

    def _clean_summary(self, raw_summary: str) -> str:
        """
        Clean and format the generated summary.

        Args:
            raw_summary: Raw summary text from Gemini

        Returns:
            Cleaned summary text
        """
        summary = raw_summary.strip()

        prefixes_to_remove = [
            "Summary:",
            "SUMMARY:",
            "**Summary:**",
            "Video Summary:",
        ]

        for prefix in prefixes_to_remove:
            if summary.startswith(prefix):
                summary = summary[len(prefix):].strip()
                break

        if summary and not summary[0].isupper():
            summary = summary[0].upper() + summary[1:]

        # Keep paragraph breaks, collapse other whitespace
        paragraphs = [re.sub(r"\s+", " ", p).strip() for p in re.split(r"\n\s*\n", summary)]
        return "\n\n".join(p for p in paragraphs if p)
