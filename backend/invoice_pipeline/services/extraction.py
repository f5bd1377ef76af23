"""Gemini adapter that turns invoice text into a structured extraction candidate."""

import asyncio
import json
import logging
import os

from google import genai
from google.genai import types as genai_types
from pydantic import ValidationError

from invoice_pipeline.schemas.invoice import ExtractionCandidate
from invoice_pipeline.services.errors import ExtractionError, MalformedExtractionError

logger = logging.getLogger(__name__)

_DEFAULT_TIMEOUT_SECONDS = 120.0
_MAX_OUTPUT_TOKENS = 8192


def _strip_to_json_object(raw_text: str) -> str:
    """Drop markdown fences and any prose around the outermost JSON object."""
    raw = raw_text.strip()
    # Strip optional markdown code fence
    if raw.startswith("```"):
        raw = raw.split("```", 2)[1]
        if raw.startswith("json"):
            raw = raw[4:]
        raw = raw.rsplit("```", 1)[0].strip()
    first, last = raw.find("{"), raw.rfind("}")
    if first != -1 and last > first:
        raw = raw[first : last + 1]
    return raw


def parse_extraction_response(raw_text: str) -> ExtractionCandidate:
    """Parse provider response text into an ExtractionCandidate.

    Raises MalformedExtractionError unless the text holds a JSON object with an
    ``invoice_header`` object and a ``line_items`` array.
    """
    try:
        data: object = json.loads(_strip_to_json_object(raw_text))
    except json.JSONDecodeError as exc:
        raise MalformedExtractionError(f"response is not valid JSON ({exc.msg})") from exc

    if not isinstance(data, dict):
        raise MalformedExtractionError("response is not a JSON object")
    if not isinstance(data.get("invoice_header"), dict):
        raise MalformedExtractionError("response has no invoice_header object")
    if not isinstance(data.get("line_items"), list):
        raise MalformedExtractionError("response has no line_items array")

    try:
        return ExtractionCandidate.model_validate(data)
    except ValidationError as exc:
        raise MalformedExtractionError(
            f"response does not match the invoice schema ({exc.error_count()} errors)"
        ) from exc


def _timeout_seconds() -> float:
    raw = os.environ.get("EXTRACTION_TIMEOUT_SECONDS", "").strip()
    return float(raw) if raw else _DEFAULT_TIMEOUT_SECONDS


class GeminiExtractionService:
    """Calls the Gemini API to extract invoice data from document text."""

    def __init__(
        self,
        client: genai.Client | None = None,
        model_name: str | None = None,
        timeout_seconds: float | None = None,
    ) -> None:
        self._client = client
        self._model_name = model_name
        self._timeout = timeout_seconds if timeout_seconds is not None else _timeout_seconds()

    def _get_client(self) -> tuple[genai.Client, str]:
        if self._client is None:
            api_key = os.environ.get("GEMINI_API_KEY", "").strip()
            if not api_key:
                raise ValueError("GEMINI_API_KEY environment variable is not set")
            self._client = genai.Client(api_key=api_key)
        if not self._model_name:
            self._model_name = os.environ.get("GEMINI_EXTRACTION_MODEL", "").strip()
            if not self._model_name:
                raise ValueError("GEMINI_EXTRACTION_MODEL environment variable is not set")
        return self._client, self._model_name

    async def extract(self, document_text: str, prompt: str) -> ExtractionCandidate:
        """Send *document_text* with *prompt* to Gemini and return the parsed candidate.

        Raises ExtractionError on configuration, transport or timeout failures and
        MalformedExtractionError if the response cannot be parsed.
        """
        try:
            client, model_name = self._get_client()
        except ValueError as exc:
            raise ExtractionError(str(exc)) from exc

        logger.info("sending %d chars to Gemini model %s", len(document_text), model_name)
        try:
            response = await asyncio.wait_for(
                client.aio.models.generate_content(
                    model=model_name,
                    contents=[prompt, f"Document content:\n{document_text}"],
                    config=genai_types.GenerateContentConfig(
                        max_output_tokens=_MAX_OUTPUT_TOKENS,
                        response_mime_type="application/json",
                    ),
                ),
                timeout=self._timeout,
            )
        except TimeoutError as exc:
            raise ExtractionError(f"request timed out after {self._timeout:g}s") from exc
        except Exception as exc:
            raise ExtractionError(str(exc) or type(exc).__name__) from exc

        raw = response.text or ""
        logger.info("Gemini response received (%d chars)", len(raw))
        if not raw.strip():
            raise MalformedExtractionError("response was empty")
        return parse_extraction_response(raw)
