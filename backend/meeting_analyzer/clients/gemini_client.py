"""
HTTP client for the Gemini API.

Wraps content generation, the resumable File API upload, file status
polling and file deletion. Every call uses an explicit connect timeout
that is shorter than the overall operation budget.
"""

import os
import re
import time
from typing import Any, Callable, Dict, Iterator, List, Optional

import httpx

from meeting_analyzer.config import Settings, get_settings
from meeting_analyzer.schemas.remote_file import RemoteFile
from meeting_analyzer.utils.logger import get_logger

logger = get_logger(__name__)

UPLOAD_CHUNK_SIZE = 8 * 1024 * 1024

_UPLOAD_URL_HEADER_RE = re.compile(r"^x-goog-upload-url:\s*(\S+)\s*$", re.IGNORECASE | re.MULTILINE)

SAFETY_SETTINGS: List[Dict[str, str]] = [
    {"category": "HARM_CATEGORY_HARASSMENT", "threshold": "BLOCK_MEDIUM_AND_ABOVE"},
    {"category": "HARM_CATEGORY_HATE_SPEECH", "threshold": "BLOCK_MEDIUM_AND_ABOVE"},
    {"category": "HARM_CATEGORY_SEXUALLY_EXPLICIT", "threshold": "BLOCK_MEDIUM_AND_ABOVE"},
    {"category": "HARM_CATEGORY_DANGEROUS_CONTENT", "threshold": "BLOCK_MEDIUM_AND_ABOVE"},
]


class GeminiError(Exception):
    """Base class for Gemini API failures."""
    pass


class NotConfiguredError(GeminiError):
    """Raised when AI features are disabled or no API key is set."""

    def __init__(self, message: str = "AI analysis is not configured") -> None:
        super().__init__(message)


class GeminiConnectionError(GeminiError):
    """Raised when the API cannot be reached or a transfer times out."""
    pass


class GeminiHTTPError(GeminiError):
    """Raised when the API answers with an unexpected status code."""

    def __init__(self, status_code: int, message: str) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.message = message


class InvalidResponseError(GeminiError):
    """Raised when a response body is not the JSON shape we expect."""
    pass


class UploadStartFailedError(GeminiError):
    """Raised when the resumable upload session cannot be opened."""
    pass


class UploadFailedError(GeminiError):
    """Raised when the file content upload is rejected."""
    pass


class RemoteProcessingFailedError(GeminiError):
    """Raised when the File API reports the uploaded file as FAILED."""
    pass


class ProcessingTimeoutError(GeminiError):
    """Raised when an uploaded file does not become ACTIVE in time."""
    pass


def _error_message(response: httpx.Response) -> str:
    """Pull ``error.message`` out of an error body, falling back to the status."""
    try:
        payload = response.json()
        message = payload.get("error", {}).get("message")
        if message:
            return str(message)
    except (ValueError, AttributeError):
        pass
    return f"HTTP error {response.status_code}"


class GeminiClient:
    """
    Stateless-per-call client for the Gemini REST API.

    The API key is sent as the ``key`` query parameter and is never logged.
    ``sleep`` and ``clock`` drive the status polling loop and can be replaced
    in tests.
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        http_client: Optional[httpx.Client] = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.settings: Settings = settings or get_settings()
        self._http: httpx.Client = http_client or httpx.Client(follow_redirects=True)
        self._sleep = sleep
        self._clock = clock

    @property
    def model(self) -> str:
        return self.settings.gemini_model

    def is_configured(self) -> bool:
        """Check if AI features are enabled and credentials are present."""
        return self.settings.ai_configured

    def _require_configured(self) -> None:
        if not self.is_configured():
            raise NotConfiguredError()

    def _model_path(self) -> str:
        model = self.model
        return model if model.startswith("models/") else f"models/{model}"

    def _timeout(self, total: float, connect: Optional[float] = None) -> httpx.Timeout:
        return httpx.Timeout(total, connect=connect if connect is not None else self.settings.connect_timeout)

    def _request(self, method: str, url: str, *, timeout: httpx.Timeout, **kwargs: Any) -> httpx.Response:
        """Send a request, translating transport failures into GeminiConnectionError."""
        params = dict(kwargs.pop("params", None) or {})
        params["key"] = self.settings.gemini_api_key
        try:
            return self._http.request(method, url, params=params, timeout=timeout, **kwargs)
        except httpx.TimeoutException as e:
            logger.error("Gemini API request timed out", method=method, url=url, error=str(e))
            raise GeminiConnectionError(f"Request timed out: {e}") from e
        except httpx.HTTPError as e:
            logger.error("Gemini API connection error", method=method, url=url, error=str(e))
            raise GeminiConnectionError(f"Connection error: {e}") from e

    @staticmethod
    def _json(response: httpx.Response) -> Dict[str, Any]:
        try:
            payload = response.json()
        except ValueError as e:
            raise InvalidResponseError(f"Response is not valid JSON: {e}") from e
        if not isinstance(payload, dict):
            raise InvalidResponseError("Response JSON is not an object")
        return payload

    def generate(
        self,
        prompt: str,
        file_uri: Optional[str] = None,
        mime_type: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> str:
        """
        Run a generateContent call and return the first candidate's text.

        Args:
            prompt: Text prompt
            file_uri: Optional File API URI to ground the prompt on
            mime_type: MIME type of the referenced file
            timeout: Total operation timeout in seconds

        Returns:
            Raw text of ``candidates[0].content.parts[0].text``

        Raises:
            NotConfiguredError, GeminiConnectionError, GeminiHTTPError, InvalidResponseError
        """
        self._require_configured()

        parts: List[Dict[str, Any]] = []
        if file_uri:
            parts.append({"fileData": {"mimeType": mime_type or "video/mp4", "fileUri": file_uri}})
        parts.append({"text": prompt})

        payload = {
            "contents": [{"parts": parts}],
            "generationConfig": {
                "temperature": self.settings.temperature,
                "topK": self.settings.top_k,
                "topP": self.settings.top_p,
                "maxOutputTokens": self.settings.max_output_tokens,
            },
            "safetySettings": SAFETY_SETTINGS,
        }

        url = f"{self.settings.gemini_api_base_url}/{self._model_path()}:generateContent"
        logger.info("Gemini generateContent request",
                   url=f"{url}?key=***",
                   prompt_length=len(prompt),
                   has_file=bool(file_uri))

        total = timeout if timeout is not None else self.settings.generate_timeout
        response = self._request("POST", url, json=payload, timeout=self._timeout(total))

        if response.status_code != 200:
            message = _error_message(response)
            logger.error("Gemini API error", status_code=response.status_code, error=message)
            raise GeminiHTTPError(response.status_code, message)

        data = self._json(response)
        try:
            return data["candidates"][0]["content"]["parts"][0]["text"]
        except (KeyError, IndexError, TypeError) as e:
            raise InvalidResponseError("Invalid API response format") from e

    def upload_file(self, local_path: str, mime_type: str, display_name: str) -> RemoteFile:
        """
        Upload a local file with the two-phase resumable protocol.

        Args:
            local_path: Path of the file to upload
            mime_type: MIME type declared to the File API
            display_name: Human-readable name stored with the file

        Returns:
            RemoteFile describing the uploaded file

        Raises:
            UploadStartFailedError: If the upload session cannot be opened
            UploadFailedError: If the content upload is rejected
            InvalidResponseError: If the final response lacks a ``file`` object
        """
        self._require_configured()

        size = os.path.getsize(local_path)
        start_url = f"{self.settings.gemini_upload_base_url}/files"

        logger.info("Starting resumable upload", display_name=display_name, size_bytes=size, mime_type=mime_type)

        start = self._request(
            "POST",
            start_url,
            headers={
                "X-Goog-Upload-Protocol": "resumable",
                "X-Goog-Upload-Command": "start",
                "X-Goog-Upload-Header-Content-Length": str(size),
                "X-Goog-Upload-Header-Content-Type": mime_type,
                "Content-Type": "application/json",
            },
            json={"file": {"display_name": display_name}},
            timeout=self._timeout(self.settings.upload_start_timeout),
        )

        if start.status_code != 200:
            message = _error_message(start)
            logger.error("Upload start failed", status_code=start.status_code, error=message)
            raise UploadStartFailedError(f"Failed to start upload: {message}")

        upload_url = self._extract_upload_url(start)
        if not upload_url:
            raise UploadStartFailedError("Failed to start upload: no upload URL in response")

        try:
            response = self._http.request(
                "PUT",
                upload_url,
                headers={
                    "Content-Length": str(size),
                    "X-Goog-Upload-Offset": "0",
                    "X-Goog-Upload-Command": "upload, finalize",
                },
                content=self._upload_chunks(local_path, self._clock() + self.settings.upload_timeout),
                timeout=self._timeout(self.settings.upload_timeout),
            )
        except httpx.HTTPError as e:
            logger.error("Upload transfer failed", error=str(e))
            raise GeminiConnectionError(f"Upload connection error: {e}") from e

        if response.status_code != 200:
            message = _error_message(response)
            logger.error("Upload failed", status_code=response.status_code, error=message)
            raise UploadFailedError(f"Failed to upload file: {message}")

        data = self._json(response)
        if not isinstance(data.get("file"), dict):
            raise InvalidResponseError("Upload response has no file object")

        remote = RemoteFile.model_validate(data["file"])
        logger.info("Upload complete", file_name=remote.name, state=remote.state)
        return remote

    def _upload_chunks(self, path: str, deadline: float) -> Iterator[bytes]:
        """Read the file for the upload body, stopping once ``deadline`` has passed."""
        with open(path, "rb") as fp:
            while True:
                data = fp.read(UPLOAD_CHUNK_SIZE)
                if not data:
                    break
                if self._clock() > deadline:
                    logger.error("Upload transfer timed out", upload_timeout=self.settings.upload_timeout)
                    raise GeminiConnectionError(
                        f"Upload timed out after {self.settings.upload_timeout:.0f} seconds"
                    )
                yield data

    @staticmethod
    def _extract_upload_url(response: httpx.Response) -> Optional[str]:
        """Read the per-upload URL, scanning the raw header block if needed."""
        url = response.headers.get("x-goog-upload-url")
        if url:
            return url
        raw = "\n".join(
            f"{name.decode('latin-1')}: {value.decode('latin-1')}"
            for name, value in response.headers.raw
        )
        match = _UPLOAD_URL_HEADER_RE.search(raw)
        return match.group(1) if match else None

    def get_file(self, file_name: str) -> RemoteFile:
        """Fetch the current metadata of an uploaded file."""
        url = f"{self.settings.gemini_api_base_url}/{file_name}"
        response = self._request(
            "GET",
            url,
            timeout=self._timeout(self.settings.status_timeout, self.settings.status_connect_timeout),
        )
        if response.status_code != 200:
            message = _error_message(response)
            raise GeminiHTTPError(response.status_code, f"Failed to get file status: {message}")
        return RemoteFile.model_validate(self._json(response))

    def wait_for_active(
        self,
        file_name: str,
        max_wait_seconds: Optional[float] = None,
        should_cancel: Optional[Callable[[], bool]] = None,
    ) -> RemoteFile:
        """
        Poll an uploaded file until the File API marks it ACTIVE.

        Args:
            file_name: Resource name, e.g. ``files/abc123``
            max_wait_seconds: Give up after this long (defaults to ``file_wait_timeout``)
            should_cancel: Checked before every sleep; returning True aborts the wait

        Returns:
            The ACTIVE RemoteFile

        Raises:
            RemoteProcessingFailedError: If the file state becomes FAILED
            ProcessingTimeoutError: If the wait exceeds ``max_wait_seconds`` or is cancelled
        """
        self._require_configured()

        max_wait = max_wait_seconds if max_wait_seconds is not None else self.settings.file_wait_timeout
        started = self._clock()
        polls = 0

        while True:
            remote = self.get_file(file_name)
            polls += 1

            if remote.is_active:
                logger.info("Remote file is active", file_name=file_name, polls=polls)
                return remote

            if remote.is_failed:
                logger.error("Remote file processing failed", file_name=file_name)
                raise RemoteProcessingFailedError(f"File processing failed for {file_name}")

            elapsed = self._clock() - started
            if elapsed >= max_wait:
                logger.error("Timed out waiting for remote file", file_name=file_name, waited_seconds=round(elapsed, 1))
                raise ProcessingTimeoutError(f"File processing timed out after {int(max_wait)} seconds")

            if should_cancel and should_cancel():
                raise ProcessingTimeoutError(f"Waiting for {file_name} was cancelled")

            logger.debug("Remote file still processing", file_name=file_name, state=remote.state, polls=polls)
            self._sleep(self.settings.poll_interval)

    def delete_file(self, file_name: str) -> bool:
        """
        Delete an uploaded file.

        Returns:
            True if the API answered 200 or 204
        """
        url = f"{self.settings.gemini_api_base_url}/{file_name}"
        response = self._request(
            "DELETE",
            url,
            timeout=self._timeout(self.settings.status_timeout, self.settings.status_connect_timeout),
        )
        deleted = response.status_code in (200, 204)
        if not deleted:
            logger.warning("Remote file delete failed", file_name=file_name, status_code=response.status_code)
        return deleted

    def test_connection(self) -> bool:
        """Send a trivial prompt to check that the API answers."""
        if not self.is_configured():
            return False
        try:
            return bool(self.generate("Reply with exactly: OK"))
        except GeminiError as e:
            logger.warning("Gemini connection test failed", error=str(e))
            return False

    def close(self) -> None:
        """Close the underlying HTTP connection pool."""
        self._http.close()

    def __enter__(self) -> "GeminiClient":
        return self

    def __exit__(self, exc_type: Optional[type], exc_val: Optional[BaseException], exc_tb: Optional[object]) -> None:
        self.close()
