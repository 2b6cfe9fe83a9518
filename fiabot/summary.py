"""Gemini-backed document summaries."""

import logging
from pathlib import Path
from typing import Any, Optional, Union

from google import genai
from google.genai import types

logger = logging.getLogger(__name__)

SYSTEM_INSTRUCTION = (
    "You are summarizing official FIA Formula 1 decision documents. "
    "Write a single summary of 20 to 25 words. Focus on the action or decision "
    "taken, such as a penalty given to a driver or team, a new regulation, or "
    "that no further action was taken."
)
USER_PROMPT = "Please provide a summary of this document"


class SummarizationError(Exception):
    """Raised when a summary cannot be produced."""


class Summarizer:
    """Summarizes PDF documents with a Gemini model."""

    def __init__(
        self,
        api_key: str,
        model: str = "gemini-2.0-flash",
        timeout: float = 120.0,
        client: Optional[Any] = None,
    ):
        if not api_key and client is None:
            raise SummarizationError("GEMINI_API_KEY is not configured")
        self.model = model
        self.client = client or genai.Client(
            api_key=api_key,
            http_options=types.HttpOptions(timeout=int(timeout * 1000)),
        )
        self.config = types.GenerateContentConfig(
            system_instruction=SYSTEM_INSTRUCTION,
            temperature=0.7,
            top_k=64,
            top_p=0.95,
            max_output_tokens=8192,
            response_mime_type="text/plain",
        )

    def generate_summary(self, pdf_path: Union[str, Path]) -> str:
        """Return a short summary of the PDF at ``pdf_path``.

        Raises:
            SummarizationError: On read failures, API errors, timeouts or an
                empty response
        """
        try:
            data = Path(pdf_path).read_bytes()
        except OSError as e:
            raise SummarizationError(f"Cannot read {pdf_path}: {e}") from e

        try:
            response = self.client.models.generate_content(
                model=self.model,
                contents=[
                    types.Part.from_bytes(data=data, mime_type="application/pdf"),
                    USER_PROMPT,
                ],
                config=self.config,
            )
        except Exception as e:
            raise SummarizationError(f"Gemini request failed: {e}") from e

        text = (getattr(response, "text", None) or "").strip()
        if not text:
            raise SummarizationError("Gemini returned an empty summary")

        logger.info(f"Generated summary ({len(text)} chars) for {Path(pdf_path).name}")
        return text
