"""
AI agent that produces the structured analysis of a meeting recording.
Builds the analysis prompts and turns model output into a VideoAnalysis.
"""

import json
import re
from typing import Any, List, Optional

from meeting_analyzer.agents.base_agent import BaseAgent
from meeting_analyzer.schemas.analysis import VideoAnalysis
from meeting_analyzer.utils.logger import get_logger

logger = get_logger(__name__)

_CODE_FENCE_RE = re.compile(r"```(?:json)?\s*([\s\S]*?)\s*```")
# BCP 47 style codes such as en, es, pt-BR; must fit analysis_records.language
_LANGUAGE_CODE_RE = re.compile(r"^[A-Za-z]{2,3}(?:[-_][A-Za-z0-9]{2,4})?$")

# Gemini 1.5 accepts ~1M tokens; longer transcripts are cut with a marker
MAX_TRANSCRIPT_CHARS = 2_000_000

RESPONSE_FORMAT = """IMPORTANT: Respond ONLY with valid JSON in the following format (no markdown, no code blocks):
{
    "summary": "Your comprehensive summary here...",
    "keypoints": ["Point 1", "Point 2", "Point 3", ...],
    "topics": ["Topic 1", "Topic 2", "Topic 3", ...],
    "transcript": "Condensed transcript or 'Not available' if cannot be generated...",
    "language": "detected language code (e.g., en, es, fr)"
}"""


class MeetingAnalystAgent(BaseAgent):
    """
    AI agent that analyzes a recorded meeting or class.

    Produces a summary, key points, topics, a condensed transcript and the
    detected language, either from an existing transcript or from a video
    uploaded to the File API.
    """

    def analyze_transcript(self, transcript: str, name: str, duration: Optional[str]) -> VideoAnalysis:
        """
        Analyze a meeting from its transcript text.

        Args:
            transcript: Timestamped transcript of the recording
            name: Recording display name
            duration: Human-readable duration

        Returns:
            VideoAnalysis parsed from the model output
        """
        logger.info(f"[{self.agent_name}] Analyzing transcript",
                   recording_name=name,
                   transcript_length=len(transcript))

        prompt = self._build_transcript_prompt(transcript, name, duration)
        text = self._call_gemini(prompt, timeout=self.settings.generate_timeout)
        return self.parse_analysis_text(text)

    def analyze_video_file(self, file_uri: str, mime_type: str, name: str, duration: Optional[str]) -> VideoAnalysis:
        """
        Analyze a meeting from a video held by the File API.

        Args:
            file_uri: URI of the ACTIVE uploaded file
            mime_type: MIME type of the video
            name: Recording display name
            duration: Human-readable duration

        Returns:
            VideoAnalysis parsed from the model output
        """
        logger.info(f"[{self.agent_name}] Analyzing uploaded video", recording_name=name, file_uri=file_uri)

        prompt = self._build_video_prompt(name, duration)
        text = self._call_gemini(prompt, file_uri=file_uri, mime_type=mime_type,
                                 timeout=self.settings.file_generate_timeout)
        return self.parse_analysis_text(text)

    def _build_transcript_prompt(self, transcript: str, name: str, duration: Optional[str]) -> str:
        if len(transcript) > MAX_TRANSCRIPT_CHARS:
            transcript = transcript[:MAX_TRANSCRIPT_CHARS] + "\n[...transcript truncated...]"
            logger.info(f"[{self.agent_name}] Truncated long transcript for processing")

        return f"""You are an educational assistant analyzing the transcript of a recorded meeting/class.

Recording Information:
- Title: {name}
- Duration: {duration or 'Unknown'}

Please analyze this transcript and provide the following in a structured JSON format:

1. **Summary**: A comprehensive summary of the content (2-3 paragraphs)
2. **Key Points**: A list of 5-10 main takeaways or important points discussed
3. **Topics**: A list of main topics/themes covered
4. **Transcript**: A condensed, cleaned-up version of the main discussions

{RESPONSE_FORMAT}

TRANSCRIPT:
{transcript}"""

    def _build_video_prompt(self, name: str, duration: Optional[str]) -> str:
        return f"""You are an educational assistant analyzing a recorded meeting/class video.

Video Information:
- Title: {name}
- Duration: {duration or 'Unknown'}

Please analyze this video and provide the following in a structured JSON format:

1. **Summary**: A comprehensive summary of the video content (2-3 paragraphs)
2. **Key Points**: A list of 5-10 main takeaways or important points discussed
3. **Topics**: A list of main topics/themes covered in the video
4. **Transcript Summary**: If audio is available, provide a condensed transcript of the main discussions

{RESPONSE_FORMAT}"""

    def parse_analysis_text(self, text: str) -> VideoAnalysis:
        """
        Turn model output into a VideoAnalysis.

        Strips an optional code fence and decodes the JSON object. Output
        that is not a JSON object becomes a summary-only analysis; this
        method does not raise on malformed model output.

        Args:
            text: Raw model text

        Returns:
            VideoAnalysis with every field populated
        """
        text = (text or "").strip()

        match = _CODE_FENCE_RE.search(text)
        if match:
            text = match.group(1)

        try:
            data = json.loads(text)
        except ValueError:
            data = None

        if not isinstance(data, dict):
            logger.warning(f"[{self.agent_name}] Model output is not JSON, using it as summary",
                          preview=self._truncate_for_log(text, 100))
            return VideoAnalysis(
                summary=text,
                key_points=[],
                topics=[],
                transcript="",
                language=self.settings.default_language,
            )

        key_points = data.get("keypoints", data.get("key_points"))
        return VideoAnalysis(
            summary=self._as_text(data.get("summary")),
            key_points=self._as_string_list(key_points),
            topics=self._as_string_list(data.get("topics")),
            transcript=self._as_text(data.get("transcript")),
            language=self._as_language(data.get("language")),
        )

    def _as_language(self, value: Any) -> str:
        """Keep a language code the model returned, or fall back to the default."""
        code = value.strip() if isinstance(value, str) else ""
        if _LANGUAGE_CODE_RE.match(code):
            return code
        if code:
            logger.warning(f"[{self.agent_name}] Model returned an unusable language, using default",
                          language=self._truncate_for_log(code, 50))
        return self.settings.default_language

    @staticmethod
    def _as_text(value: Any) -> str:
        if value is None:
            return ""
        if isinstance(value, str):
            return value
        return json.dumps(value, ensure_ascii=False)

    @staticmethod
    def _as_string_list(value: Any) -> List[str]:
        if not isinstance(value, list):
            return []
        return [item if isinstance(item, str) else json.dumps(item, ensure_ascii=False)
                for item in value if item is not None]
