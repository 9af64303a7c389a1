"""
Caption parsing utilities.
Turns timed-text XML and SRT/VTT subtitle text into plain transcripts.
"""

import html
import re
import xml.etree.ElementTree as ET
from typing import List

from meeting_analyzer.utils.logger import get_logger

logger = get_logger(__name__)

_CUE_TIMESTAMP_RE = re.compile(r"^\d{1,2}:\d{2}:\d{2}[.,]\d{3}")
_CUE_INDEX_RE = re.compile(r"^\d+$")
_SPEAKER_BRACKET_RE = re.compile(r"^\[.*?\]\s*")
_VOICE_OPEN_RE = re.compile(r"<v\s+[^>]+>")
_VOICE_CLOSE_RE = re.compile(r"</v>")


class CaptionParser:
    """Parser for caption tracks in timed-text XML and SRT/VTT formats."""

    @staticmethod
    def format_timestamp(seconds: float) -> str:
        """
        Format a caption offset as ``H:MM:SS``, or ``M:SS`` under an hour.

        Args:
            seconds: Offset from the start of the recording

        Returns:
            Formatted timestamp
        """
        total = int(seconds)
        hours, remainder = divmod(total, 3600)
        minutes, secs = divmod(remainder, 60)
        if hours > 0:
            return "%d:%02d:%02d" % (hours, minutes, secs)
        return "%d:%02d" % (minutes, secs)

    @staticmethod
    def parse_caption_xml(xml_text: str) -> str:
        """
        Parse timed-text XML into a timestamped transcript.

        A timestamp line is emitted whenever a caption starts in a later
        whole minute than the last one emitted, followed by the caption
        text. Lines are joined with newlines.

        Args:
            xml_text: ``<transcript><text start="..">..</text>...</transcript>``

        Returns:
            Transcript text, empty if the XML cannot be parsed
        """
        try:
            root = ET.fromstring(xml_text)
        except ET.ParseError as e:
            logger.warning("Failed to parse caption XML", error=str(e))
            return ""

        lines: List[str] = []
        last_minute = -1

        for element in root.iter("text"):
            try:
                start = float(element.get("start", "0"))
            except ValueError:
                start = 0.0

            text = html.unescape("".join(element.itertext())).strip()
            if not text:
                continue

            minute = int(start // 60)
            if minute > last_minute:
                lines.append(CaptionParser.format_timestamp(start))
                last_minute = minute

            lines.append(text)

        return "\n".join(lines)

    @staticmethod
    def clean_subtitle_text(content: str) -> str:
        """
        Strip SRT/VTT structure from subtitle text.

        Removes the WEBVTT header, cue indexes, timestamp lines and speaker
        markup, then joins what is left with single spaces.

        Args:
            content: Raw subtitle file content

        Returns:
            Plain transcript text
        """
        cleaned: List[str] = []

        for raw_line in content.splitlines():
            line = raw_line.strip()

            if not line or line.startswith("WEBVTT"):
                continue
            if _CUE_TIMESTAMP_RE.match(line) or _CUE_INDEX_RE.match(line):
                continue

            line = _SPEAKER_BRACKET_RE.sub("", line)
            line = _VOICE_OPEN_RE.sub("", line)
            line = _VOICE_CLOSE_RE.sub("", line).strip()

            if line:
                cleaned.append(line)

        return " ".join(cleaned)
