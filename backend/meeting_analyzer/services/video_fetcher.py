"""
Video download from Google Drive into local scratch space.

Handles the large-file confirmation page Drive serves instead of content,
checks free disk space before downloading, and enforces the size limits
of the Gemini File API.
"""

import os
import re
import shutil
import time
import uuid
from contextlib import contextmanager
from typing import Callable, Iterator, Optional

import httpx

from meeting_analyzer.config import Settings, get_settings
from meeting_analyzer.utils.logger import get_logger

logger = get_logger(__name__)

MAX_HTML_PAGE_BYTES = 1024 * 1024

# Ordered; the first pattern that matches wins
FILE_ID_PATTERNS = [
    re.compile(r"/file/d/([a-zA-Z0-9_-]+)"),
    re.compile(r"id=([a-zA-Z0-9_-]+)"),
    re.compile(r"/d/([a-zA-Z0-9_-]+)"),
    re.compile(r"open\?id=([a-zA-Z0-9_-]+)"),
]

_CONFIRM_PARAM_RE = re.compile(r"confirm=([0-9A-Za-z_-]+)")
_CONFIRM_INPUT_RE = re.compile(r'name="confirm"\s+value="([0-9A-Za-z_-]+)"')

VIDEO_MIME_TYPES = {
    "mp4": "video/mp4",
    "webm": "video/webm",
    "mov": "video/quicktime",
    "avi": "video/x-msvideo",
    "mkv": "video/x-matroska",
    "wmv": "video/x-ms-wmv",
    "flv": "video/x-flv",
    "m4v": "video/x-m4v",
}
DEFAULT_VIDEO_MIME_TYPE = "video/mp4"


class VideoFetchError(Exception):
    """Base class for video download failures."""
    pass


class BadReferenceError(VideoFetchError):
    """Raised when no Drive file id can be derived from a URL."""
    pass


class InsufficientSpaceError(VideoFetchError):
    """Raised when the scratch directory has too little free space."""
    pass


class AccessDeniedError(VideoFetchError):
    """Raised when Drive answers with an HTML page instead of the video."""
    pass


class DownloadFailedError(VideoFetchError):
    """Raised when the download fails or produces an unusable file."""
    pass


class FileTooLargeError(VideoFetchError):
    """Raised when the video exceeds the upload size limit."""
    pass


def _looks_like_html(data: bytes) -> bool:
    head = data[:2048].lstrip().lower()
    return head.startswith(b"<!doctype html") or b"<html" in head


def _sniff_video_mime_type(header: bytes) -> Optional[str]:
    """Identify common video containers from their leading bytes."""
    if len(header) >= 12 and header[4:8] == b"ftyp":
        brand = header[8:12]
        if brand == b"qt  ":
            return "video/quicktime"
        if brand.startswith(b"M4V"):
            return "video/x-m4v"
        return "video/mp4"
    if header.startswith(b"\x1a\x45\xdf\xa3"):
        return "video/webm" if b"webm" in header[:64] else "video/x-matroska"
    if header.startswith(b"RIFF") and header[8:12] == b"AVI ":
        return "video/x-msvideo"
    if header.startswith(b"FLV"):
        return "video/x-flv"
    if header.startswith(b"\x30\x26\xb2\x75\x8e\x66\xcf\x11"):
        return "video/x-ms-wmv"
    return None


class VideoFetcher:
    """
    Downloads Drive-hosted videos into the scratch directory.

    Scratch files get unique names, so concurrent downloads never collide.
    Callers own the returned file; ``fetched()`` deletes it on exit.
    The whole download, including a confirmation retry, must finish within
    ``download_timeout`` seconds of ``clock``.
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        http_client: Optional[httpx.Client] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.settings: Settings = settings or get_settings()
        self._http: httpx.Client = http_client or httpx.Client(follow_redirects=True)
        self._clock = clock

    @staticmethod
    def extract_file_id(url: str) -> Optional[str]:
        """
        Extract a Drive file id from a sharing or view URL.

        Args:
            url: Drive URL, e.g. ``https://drive.google.com/file/d/<id>/view``

        Returns:
            The file id, or None if no pattern matches
        """
        if not url:
            return None
        for pattern in FILE_ID_PATTERNS:
            match = pattern.search(url)
            if match:
                return match.group(1)
        return None

    def build_download_url(self, file_id: str, confirm: Optional[str] = None) -> str:
        url = f"{self.settings.drive_download_url}?export=download&id={file_id}"
        if confirm:
            url += f"&confirm={confirm}"
        return url

    @staticmethod
    def detect_video_mime_type(path: str, name: Optional[str] = None) -> str:
        """
        Determine a video's MIME type.

        File content is checked first; if it is not a recognised video
        container the extension of ``name`` (or of ``path``) is mapped
        through a fixed table, defaulting to ``video/mp4``.
        """
        try:
            with open(path, "rb") as fp:
                sniffed = _sniff_video_mime_type(fp.read(64))
        except OSError:
            sniffed = None

        if sniffed and sniffed.startswith("video/"):
            return sniffed

        extension = os.path.splitext(name or path)[1].lstrip(".").lower()
        return VIDEO_MIME_TYPES.get(extension, DEFAULT_VIDEO_MIME_TYPE)

    def fetch(self, file_id: str, suggested_name: Optional[str] = None) -> str:
        """
        Download a Drive file into the scratch directory.

        Args:
            file_id: Drive file id
            suggested_name: Original file name, used for the extension

        Returns:
            Path of the downloaded scratch file

        Raises:
            InsufficientSpaceError, AccessDeniedError, DownloadFailedError, FileTooLargeError
        """
        self._prepare_scratch_dir()

        extension = os.path.splitext(suggested_name or "")[1].lstrip(".").lower() or "mp4"
        target = os.path.join(self.settings.scratch_dir, f"video_{uuid.uuid4().hex}.{extension}")

        logger.info("Downloading video", file_id=file_id, target=target)

        deadline = self._clock() + self.settings.download_timeout

        try:
            html_page = self._stream(self.build_download_url(file_id), target, deadline)
            if html_page is not None:
                token = self._find_confirm_token(html_page)
                if token:
                    logger.info("Large-file confirmation page received, retrying with token", file_id=file_id)
                    self._stream(self.build_download_url(file_id, confirm=token), target, deadline)
            self._validate(target)
        except BaseException:
            self._remove(target)
            raise

        logger.info("Video downloaded", file_id=file_id, size_bytes=os.path.getsize(target))
        return target

    @contextmanager
    def fetched(self, file_id: str, suggested_name: Optional[str] = None) -> Iterator[str]:
        """Download a video and delete the scratch file when the block exits."""
        path = self.fetch(file_id, suggested_name)
        try:
            yield path
        finally:
            self._remove(path)

    def _prepare_scratch_dir(self) -> None:
        scratch = self.settings.scratch_dir
        os.makedirs(scratch, exist_ok=True)

        cutoff = time.time() - self.settings.scratch_retention_seconds
        for entry in os.scandir(scratch):
            try:
                if entry.is_file() and entry.stat().st_mtime < cutoff:
                    os.remove(entry.path)
                    logger.debug("Removed stale scratch file", path=entry.path)
            except OSError as e:
                logger.warning("Could not remove stale scratch file", path=entry.path, error=str(e))

        free = shutil.disk_usage(scratch).free
        if free < self.settings.min_free_space_bytes:
            raise InsufficientSpaceError(
                f"Insufficient disk space: {free / (1024 ** 3):.1f} GiB free, "
                f"{self.settings.min_free_space_bytes / (1024 ** 3):.1f} GiB required"
            )

    def _stream(self, url: str, target: str, deadline: float) -> Optional[str]:
        """
        Stream a download to ``target``.

        Returns the page text when the body turned out to be an HTML page,
        so the caller can look for a confirmation token.
        The httpx timeout bounds each read; ``deadline`` bounds the whole
        transfer and is checked on every chunk received.
        """
        timeout = httpx.Timeout(self.settings.download_timeout, connect=self.settings.download_connect_timeout)
        written = 0

        try:
            with self._http.stream("GET", url, timeout=timeout) as response:
                if response.status_code != 200:
                    raise DownloadFailedError(f"Download failed with HTTP {response.status_code}")

                with open(target, "wb") as fp:
                    for chunk in response.iter_bytes():
                        if self._clock() > deadline:
                            raise DownloadFailedError(
                                f"Download timed out after {self.settings.download_timeout:.0f} seconds"
                            )
                        written += len(chunk)
                        if written > self.settings.max_video_bytes:
                            raise FileTooLargeError(self._too_large_message(written))
                        fp.write(chunk)
        except httpx.TimeoutException as e:
            raise DownloadFailedError(f"Download timed out: {e}") from e
        except httpx.HTTPError as e:
            raise DownloadFailedError(f"Download connection error: {e}") from e

        if written > MAX_HTML_PAGE_BYTES:
            return None
        with open(target, "rb") as fp:
            body = fp.read()
        return body.decode("utf-8", errors="replace") if _looks_like_html(body) else None

    @staticmethod
    def _find_confirm_token(page: str) -> Optional[str]:
        match = _CONFIRM_PARAM_RE.search(page) or _CONFIRM_INPUT_RE.search(page)
        return match.group(1) if match else None

    def _validate(self, path: str) -> None:
        if not os.path.exists(path):
            raise DownloadFailedError("Download produced no file")

        size = os.path.getsize(path)
        with open(path, "rb") as fp:
            head = fp.read(2048)
        is_html = _looks_like_html(head)

        if size < self.settings.min_video_bytes or is_html:
            if is_html:
                raise AccessDeniedError(
                    "Drive returned an HTML page instead of the video; the file is probably not shared publicly"
                )
            raise DownloadFailedError(f"Downloaded file is too small ({size} bytes)")

        if size > self.settings.max_video_bytes:
            raise FileTooLargeError(self._too_large_message(size))

    def _too_large_message(self, size: int) -> str:
        return (
            f"Video is too large ({size / (1024 ** 3):.2f} GiB); "
            f"the limit is {self.settings.max_video_bytes / (1024 ** 3):.0f} GiB"
        )

    @staticmethod
    def _remove(path: str) -> None:
        try:
            os.remove(path)
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.warning("Failed to delete scratch file", path=path, error=str(e))

    def close(self) -> None:
        self._http.close()

