"""
Caption extraction for recordings stored on Google Drive.

Uses yt-dlp in verbose mode to discover the authenticated timed-text URL
Drive would serve captions from, then downloads the caption track
directly. The video itself is never fetched.
"""

import os
import re
import shutil
import subprocess
from typing import Callable, List, Optional
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

import httpx

from meeting_analyzer.config import Settings, get_settings
from meeting_analyzer.utils.caption_parser import CaptionParser
from meeting_analyzer.utils.logger import get_logger

logger = get_logger(__name__)

CAPTION_URL_RE = re.compile(r'Invoking http downloader on "(https://drive\.google\.com/timedtext\?[^"]+)"')

# Query parameters that select a specific track; replaced on every request
TRACK_PARAMS = {"type", "lang", "kind", "name", "fmt"}


class SubtitleExtractor:
    """
    Extracts auto-generated captions from Drive-hosted recordings.

    Availability depends on a yt-dlp binary on the host; call
    ``is_available()`` before ``extract()``.
    """

    def __init__(
        self,
        language: Optional[str] = None,
        settings: Optional[Settings] = None,
        http_client: Optional[httpx.Client] = None,
        runner: Callable[..., subprocess.CompletedProcess] = subprocess.run,
    ) -> None:
        self.settings: Settings = settings or get_settings()
        self.language: str = language or self.settings.subtitle_language
        self._http: httpx.Client = http_client or httpx.Client(follow_redirects=True)
        self._runner = runner
        self._ytdlp_path: Optional[str] = self._find_ytdlp()

    def _find_ytdlp(self) -> Optional[str]:
        for path in self.settings.ytdlp_paths:
            if os.path.isfile(path) and os.access(path, os.X_OK):
                return path
        return shutil.which("yt-dlp")

    def is_available(self) -> bool:
        """Check whether the caption discovery tool is installed."""
        return self._ytdlp_path is not None

    def extract(self, storage_url: str, language: Optional[str] = None) -> Optional[str]:
        """
        Extract a timestamped transcript from a recording's captions.

        Args:
            storage_url: Drive view URL of the recording
            language: Caption language code (defaults to the extractor's language)

        Returns:
            Transcript text, or None if no usable captions were found
        """
        if not self.is_available():
            logger.warning("yt-dlp not available, cannot extract captions")
            return None

        lang = language or self.language
        caption_url = self.discover_caption_url(storage_url, lang)
        if not caption_url:
            logger.info("No caption URL found", storage_url=storage_url)
            return None

        base_url = self._caption_base_url(caption_url)

        content = self._download_track(base_url, lang, asr=True)
        if not content:
            logger.debug("ASR track empty, trying named track", language=lang)
            content = self._download_track(base_url, lang, asr=False)

        if not content:
            logger.info("Caption download returned no content", storage_url=storage_url)
            return None

        if content.lstrip().startswith("<"):
            transcript = CaptionParser.parse_caption_xml(content)
        else:
            transcript = CaptionParser.clean_subtitle_text(content)

        if len(transcript) < self.settings.min_transcript_chars:
            logger.info("Transcript too short, treating as not found",
                       storage_url=storage_url,
                       characters=len(transcript))
            return None

        logger.info("Extracted transcript", storage_url=storage_url, characters=len(transcript))
        return transcript

    def discover_caption_url(self, storage_url: str, language: Optional[str] = None) -> Optional[str]:
        """
        Run yt-dlp in verbose, subtitles-only mode and scrape the caption URL from its log.

        Args:
            storage_url: Drive view URL of the recording
            language: Caption language code

        Returns:
            The timed-text URL yt-dlp would have fetched, or None
        """
        if not self._ytdlp_path:
            return None

        command: List[str] = [
            self._ytdlp_path,
            "-v",
            "--write-sub",
            "--sub-lang", language or self.language,
            "--skip-download",
            "--sub-format", "srv3",
            "-o", os.devnull,
            storage_url,
        ]

        try:
            result = self._runner(
                command,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                text=True,
                timeout=self.settings.ytdlp_timeout,
                check=False,
            )
        except (OSError, subprocess.TimeoutExpired) as e:
            logger.error("yt-dlp invocation failed", storage_url=storage_url, error=str(e))
            return None

        match = CAPTION_URL_RE.search(result.stdout or "")
        if not match:
            return None
        return match.group(1)

    @staticmethod
    def _caption_base_url(caption_url: str) -> str:
        """Remove track-selecting parameters from a timed-text URL."""
        parts = urlsplit(caption_url)
        query = [(k, v) for k, v in parse_qsl(parts.query, keep_blank_values=True) if k not in TRACK_PARAMS]
        return urlunsplit((parts.scheme, parts.netloc, parts.path, urlencode(query), parts.fragment))

    def _download_track(self, base_url: str, language: str, asr: bool) -> str:
        params = {"type": "track", "lang": language}
        if asr:
            params["kind"] = "asr"
        else:
            params["name"] = "1"
        params["fmt"] = "1"

        separator = "&" if urlsplit(base_url).query else "?"
        url = f"{base_url}{separator}{urlencode(params)}"

        try:
            response = self._http.get(
                url,
                headers={"Referer": self.settings.caption_referer},
                timeout=httpx.Timeout(self.settings.caption_timeout, connect=self.settings.caption_connect_timeout),
            )
        except httpx.HTTPError as e:
            logger.warning("Caption download failed", error=str(e))
            return ""

        if response.status_code != 200:
            logger.warning("Caption download returned error status", status_code=response.status_code)
            return ""

        return response.text.strip()

    def close(self) -> None:
        self._http.close()
