"""
Tests for the Drive video fetcher.
"""

import os
import time
from typing import Any, Callable, Iterator, List

import httpx
import pytest

from meeting_analyzer.config import Settings
from meeting_analyzer.services.video_fetcher import (
    AccessDeniedError,
    DownloadFailedError,
    FileTooLargeError,
    InsufficientSpaceError,
    VideoFetcher,
)

MP4_HEADER = b"\x00\x00\x00\x18ftypisom\x00\x00\x02\x00"
VIDEO_BYTES = MP4_HEADER + b"\x00" * 5000
CONFIRM_PAGE = (
    b"<!DOCTYPE html><html><body>Google Drive can't scan this file for viruses."
    b'<a href="/uc?export=download&amp;confirm=t0k3n&amp;id=1AbC">Download anyway</a></body></html>'
)


def _fetcher(settings: Settings, handler: Callable[[httpx.Request], httpx.Response], clock=None) -> VideoFetcher:
    http = httpx.Client(transport=httpx.MockTransport(handler))
    if clock is None:
        return VideoFetcher(settings, http_client=http)
    return VideoFetcher(settings, http_client=http, clock=clock)


def _scratch_files(settings: Settings) -> List[str]:
    if not os.path.isdir(settings.scratch_dir):
        return []
    return os.listdir(settings.scratch_dir)


class TestExtractFileId:
    """Test Drive file id extraction."""

    @pytest.mark.parametrize("url", [
        "https://drive.google.com/file/d/1AbC_dEf-123/view?usp=sharing",
        "https://drive.google.com/open?id=1AbC_dEf-123",
        "https://drive.google.com/uc?id=1AbC_dEf-123&export=download",
        "https://docs.google.com/d/1AbC_dEf-123/edit",
    ])
    def test_known_formats(self, url: str) -> None:
        assert VideoFetcher.extract_file_id(url) == "1AbC_dEf-123"

    def test_file_path_wins_over_query(self) -> None:
        url = "https://drive.google.com/file/d/pathId/view?resourcekey=x&id=queryId"

        assert VideoFetcher.extract_file_id(url) == "pathId"

    def test_no_match(self) -> None:
        assert VideoFetcher.extract_file_id("https://example.com/video.mp4") is None
        assert VideoFetcher.extract_file_id("") is None


class TestDetectVideoMimeType:
    """Test MIME type detection."""

    def test_extension_fallback(self, tmp_path: Any) -> None:
        path = tmp_path / "video_abc.bin"
        path.write_bytes(b"not a known container" * 10)

        assert VideoFetcher.detect_video_mime_type(str(path), "Class 3.mkv") == "video/x-matroska"
        assert VideoFetcher.detect_video_mime_type(str(path), "Class 3.MOV") == "video/quicktime"
        assert VideoFetcher.detect_video_mime_type(str(path), "Class 3.xyz") == "video/mp4"

    def test_content_wins_over_extension(self, tmp_path: Any) -> None:
        path = tmp_path / "clip.avi"
        path.write_bytes(b"\x1a\x45\xdf\xa3\x9f\x42\x86\x81\x01\x42\x82\x84webm" + b"\x00" * 100)

        assert VideoFetcher.detect_video_mime_type(str(path), "clip.avi") == "video/webm"

    def test_mp4_signature(self, tmp_path: Any) -> None:
        path = tmp_path / "recording"
        path.write_bytes(VIDEO_BYTES)

        assert VideoFetcher.detect_video_mime_type(str(path)) == "video/mp4"

    def test_missing_file_uses_extension(self) -> None:
        assert VideoFetcher.detect_video_mime_type("/nonexistent/file.webm") == "video/webm"


class TestFetch:
    """Test video downloads."""

    def test_download_success(self, test_settings: Settings) -> None:
        seen: List[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, content=VIDEO_BYTES)

        path = _fetcher(test_settings, handler).fetch("1AbC", "Meeting.mp4")

        assert os.path.dirname(path) == test_settings.scratch_dir
        assert os.path.basename(path).startswith("video_")
        assert path.endswith(".mp4")
        with open(path, "rb") as fp:
            assert fp.read() == VIDEO_BYTES
        assert seen[0].url.params["export"] == "download"
        assert seen[0].url.params["id"] == "1AbC"
        assert "confirm" not in seen[0].url.params

    def test_unique_scratch_names(self, test_settings: Settings) -> None:
        fetcher = _fetcher(test_settings, lambda request: httpx.Response(200, content=VIDEO_BYTES))

        first = fetcher.fetch("1AbC", "a.mp4")
        second = fetcher.fetch("1AbC", "a.mp4")

        assert first != second

    def test_confirmation_page_retry(self, test_settings: Settings) -> None:
        seen: List[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            if request.url.params.get("confirm") == "t0k3n":
                return httpx.Response(200, content=VIDEO_BYTES)
            return httpx.Response(200, content=CONFIRM_PAGE, headers={"Content-Type": "text/html"})

        path = _fetcher(test_settings, handler).fetch("1AbC", "Meeting.mp4")

        assert len(seen) == 2
        assert seen[1].url.params["confirm"] == "t0k3n"
        assert os.path.getsize(path) == len(VIDEO_BYTES)

    def test_small_html_is_access_denied(self, test_settings: Settings) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, content=b"<html><body>Sign in</body></html>")

        with pytest.raises(AccessDeniedError):
            _fetcher(test_settings, handler).fetch("1AbC", "Meeting.mp4")

        assert _scratch_files(test_settings) == []

    def test_small_binary_is_download_failed(self, test_settings: Settings) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, content=b"\x00" * 500)

        with pytest.raises(DownloadFailedError):
            _fetcher(test_settings, handler).fetch("1AbC", "Meeting.mp4")

        assert _scratch_files(test_settings) == []

    def test_too_large(self, test_settings: Settings) -> None:
        settings = test_settings.model_copy(update={"max_video_bytes": 4096})

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, content=VIDEO_BYTES)

        with pytest.raises(FileTooLargeError):
            _fetcher(settings, handler).fetch("1AbC", "Meeting.mp4")

        assert _scratch_files(settings) == []

    def test_http_error_status(self, test_settings: Settings) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(404, content=b"not found")

        with pytest.raises(DownloadFailedError, match="404"):
            _fetcher(test_settings, handler).fetch("1AbC", "Meeting.mp4")

    def test_connection_error(self, test_settings: Settings) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        with pytest.raises(DownloadFailedError):
            _fetcher(test_settings, handler).fetch("1AbC", "Meeting.mp4")

    def test_slow_download_times_out(self, test_settings: Settings, fake_clock) -> None:
        settings = test_settings.model_copy(update={"download_timeout": 1000.0})

        def trickle() -> Iterator[bytes]:
            yield MP4_HEADER
            for _ in range(6):
                fake_clock.now += 400
                yield b"\x00" * 400

        fetcher = _fetcher(settings, lambda request: httpx.Response(200, content=trickle()), clock=fake_clock)

        with pytest.raises(DownloadFailedError, match="timed out after 1000 seconds"):
            fetcher.fetch("1AbC", "Meeting.mp4")
        assert _scratch_files(settings) == []

    def test_deadline_spans_confirmation_retry(self, test_settings: Settings, fake_clock) -> None:
        settings = test_settings.model_copy(update={"download_timeout": 1000.0})

        def slow(body: bytes) -> Iterator[bytes]:
            fake_clock.now += 600
            yield body

        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.params.get("confirm") == "t0k3n":
                return httpx.Response(200, content=slow(VIDEO_BYTES))
            return httpx.Response(200, content=slow(CONFIRM_PAGE))

        fetcher = _fetcher(settings, handler, clock=fake_clock)

        with pytest.raises(DownloadFailedError, match="timed out"):
            fetcher.fetch("1AbC", "Meeting.mp4")
        assert _scratch_files(settings) == []

    def test_insufficient_space(self, test_settings: Settings) -> None:
        settings = test_settings.model_copy(update={"min_free_space_bytes": 10 ** 18})
        fetcher = _fetcher(settings, lambda request: httpx.Response(200, content=VIDEO_BYTES))

        with pytest.raises(InsufficientSpaceError):
            fetcher.fetch("1AbC", "Meeting.mp4")

    def test_stale_scratch_files_swept(self, test_settings: Settings) -> None:
        os.makedirs(test_settings.scratch_dir)
        stale = os.path.join(test_settings.scratch_dir, "video_old.mp4")
        fresh = os.path.join(test_settings.scratch_dir, "video_new.mp4")
        for path in (stale, fresh):
            with open(path, "wb") as fp:
                fp.write(b"x")
        two_hours_ago = time.time() - 7200
        os.utime(stale, (two_hours_ago, two_hours_ago))

        _fetcher(test_settings, lambda request: httpx.Response(200, content=VIDEO_BYTES)).fetch("1AbC")

        assert not os.path.exists(stale)
        assert os.path.exists(fresh)

    def test_fetched_context_deletes_file(self, test_settings: Settings) -> None:
        fetcher = _fetcher(test_settings, lambda request: httpx.Response(200, content=VIDEO_BYTES))

        with pytest.raises(RuntimeError):
            with fetcher.fetched("1AbC", "Meeting.mp4") as path:
                assert os.path.exists(path)
                raise RuntimeError("upload failed")

        assert not os.path.exists(path)
