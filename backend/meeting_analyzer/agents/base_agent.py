"""
Base class for the AI agents that analyze meeting recordings.
Provides common Gemini call logging, timing and error reporting.
"""

import time
from typing import Optional

from meeting_analyzer.clients.gemini_client import GeminiClient, GeminiError
from meeting_analyzer.config import Settings, get_settings
from meeting_analyzer.utils.logger import get_logger

logger = get_logger(__name__)


class BaseAgent:
    """
    Base class for agents built on a GeminiClient.

    Subclasses build prompts and post-process model text; this class owns
    the client and the logging around each call.
    """

    def __init__(self, client: Optional[GeminiClient] = None, settings: Optional[Settings] = None) -> None:
        """Initialize the agent with a Gemini API client."""
        self.settings: Settings = settings or (client.settings if client else get_settings())
        self.client: GeminiClient = client or GeminiClient(self.settings)
        self.agent_name: str = self.__class__.__name__

    @property
    def model(self) -> str:
        return self.client.model

    def is_configured(self) -> bool:
        return self.client.is_configured()

    def _call_gemini(
        self,
        prompt: str,
        file_uri: Optional[str] = None,
        mime_type: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> str:
        """
        Make a call to Gemini with logging.

        Args:
            prompt: The prompt to send
            file_uri: Optional File API URI the prompt refers to
            mime_type: MIME type of the referenced file
            timeout: Total operation timeout in seconds

        Returns:
            The model's raw text response

        Raises:
            GeminiError: If the API call fails
        """
        start_time = time.time()

        logger.info(f"[{self.agent_name}] Sending prompt to Gemini",
                   prompt_length=len(prompt),
                   has_file=bool(file_uri))

        try:
            response_text = self.client.generate(prompt, file_uri=file_uri, mime_type=mime_type, timeout=timeout)
        except GeminiError as e:
            logger.error(f"[{self.agent_name}] Gemini call failed",
                        error=str(e),
                        error_type=type(e).__name__,
                        duration_seconds=round(time.time() - start_time, 2))
            raise

        logger.info(f"[{self.agent_name}] Gemini response received",
                   duration_seconds=round(time.time() - start_time, 2),
                   response_length=len(response_text))

        return response_text

    def _truncate_for_log(self, text: str, max_length: int = 200) -> str:
        """
        Truncate text for logging to avoid overly long log messages.

        Args:
            text: Text to truncate
            max_length: Maximum length to keep

        Returns:
            Truncated text with ellipsis if needed
        """
        if len(text) <= max_length:
            return text
        return text[:max_length] + "..."
