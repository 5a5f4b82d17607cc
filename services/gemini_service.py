"""
Gemini Integration Service
Handles JSON generation calls to the Google Gemini API for budget analysis
and statement summarisation.
"""
import asyncio
import os
from typing import Any, Dict, List, Optional

import google.generativeai as genai
from google.generativeai.types import HarmCategory, HarmBlockThreshold
from dotenv import load_dotenv
import logging

from services.errors import ExternalServiceError, ValidationError

load_dotenv()

logger = logging.getLogger(__name__)

DEFAULT_MAX_DOCUMENT_BYTES = 10 * 1024 * 1024


class GeminiService:
    """Service for requesting structured JSON output from Google Gemini"""

    def __init__(self, api_key: Optional[str] = None, model_name: Optional[str] = None):
        api_key = api_key or os.getenv("GEMINI_API_KEY")
        if not api_key:
            raise ValueError("GEMINI_API_KEY environment variable is required")

        genai.configure(api_key=api_key)

        self.model_name = model_name or os.getenv("GEMINI_MODEL", "gemini-2.0-flash")
        self.text_timeout = float(os.getenv("GEMINI_TEXT_TIMEOUT_SECONDS", "60"))
        self.document_timeout = float(os.getenv("GEMINI_DOCUMENT_TIMEOUT_SECONDS", "300"))
        self.max_document_bytes = int(os.getenv("GEMINI_MAX_DOCUMENT_BYTES", str(DEFAULT_MAX_DOCUMENT_BYTES)))

        # Safety settings
        self.safety_settings = {
            HarmCategory.HARM_CATEGORY_HARASSMENT: HarmBlockThreshold.BLOCK_NONE,
            HarmCategory.HARM_CATEGORY_HATE_SPEECH: HarmBlockThreshold.BLOCK_NONE,
            HarmCategory.HARM_CATEGORY_SEXUALLY_EXPLICIT: HarmBlockThreshold.BLOCK_NONE,
            HarmCategory.HARM_CATEGORY_DANGEROUS_CONTENT: HarmBlockThreshold.BLOCK_NONE,
        }
        logger.info(f"Initialized Gemini service with model: {self.model_name}")

    def _check_document(self, document: bytes) -> None:
        """Reject empty or oversized documents before anything is sent."""
        if not document:
            raise ValidationError("Uploaded document is empty")
        if len(document) > self.max_document_bytes:
            raise ExternalServiceError(
                f"Document is {len(document)} bytes, above the {self.max_document_bytes} byte limit"
            )

    async def generate_json(
        self,
        prompt: str,
        system_instruction: Optional[str] = None,
        document: Optional[bytes] = None,
        mime_type: str = "application/pdf",
        max_output_tokens: Optional[int] = None,
        temperature: Optional[float] = None,
    ) -> str:
        """
        Generate a JSON response from Gemini.

        Args:
            prompt: User prompt
            system_instruction: Optional system prompt
            document: Optional document bytes sent inline with the prompt
            mime_type: MIME type of the document
            max_output_tokens: Maximum tokens in response
            temperature: Sampling temperature (0.0-1.0)

        Returns:
            Raw response text (expected to be JSON, parsed by the caller)

        Raises:
            ValidationError: document is empty
            ExternalServiceError: size limit, timeout or any Gemini API failure
        """
        contents: List[Any] = []
        timeout = self.text_timeout
        if document is not None:
            self._check_document(document)
            contents.append({"mime_type": mime_type, "data": document})
            timeout = self.document_timeout
        contents.append(prompt)

        generation_config: Dict[str, Any] = {"response_mime_type": "application/json"}
        if temperature is not None:
            generation_config["temperature"] = temperature
        if max_output_tokens:
            generation_config["max_output_tokens"] = max_output_tokens

        try:
            model = genai.GenerativeModel(
                model_name=self.model_name,
                safety_settings=self.safety_settings,
                system_instruction=system_instruction,
            )
            response = await asyncio.wait_for(
                model.generate_content_async(contents, generation_config=generation_config),
                timeout=timeout,
            )
            text = response.text
        except asyncio.TimeoutError as e:
            logger.error(f"Gemini request timed out after {timeout}s")
            raise ExternalServiceError(f"Gemini request timed out after {timeout:g} seconds") from e
        except Exception as e:
            logger.error(f"Error generating Gemini response: {e}")
            raise ExternalServiceError(f"Failed to generate response: {str(e)}") from e

        logger.info(f"Gemini returned {len(text or '')} characters")
        return text or ""


# Global instance (singleton pattern)
_gemini_service_instance = None

def get_gemini_service() -> GeminiService:
    """
    Get or create the global GeminiService instance.

    Returns:
        Shared GeminiService instance
    """
    global _gemini_service_instance
    if _gemini_service_instance is None:
        _gemini_service_instance = GeminiService()
    return _gemini_service_instance
