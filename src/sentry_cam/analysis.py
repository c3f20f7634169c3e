"""Vision analysis collaborators producing text summaries of recordings."""
from __future__ import annotations

import base64
import logging
from typing import Protocol

import httpx

from .session import MediaClip
from .video import encode_jpeg

logger = logging.getLogger(__name__)

ANALYSIS_PROMPT = (
    "Analyze this security footage frame. Describe what is happening, identify any "
    "people or significant objects, and note any unusual activity. Be concise and "
    "prioritize security-relevant observations."
)

GEMINI_ENDPOINT = "https://generativelanguage.googleapis.com/v1beta/models/{model}:generateContent"
DEFAULT_GEMINI_MODEL = "gemini-2.5-flash"


class AnalysisError(RuntimeError):
    """Raised when a still frame could not be captured or described."""


class AnalysisService(Protocol):
    async def analyze(self, image: bytes) -> str:  # pragma: no cover - interface only
        ...


def capture_still(media: MediaClip, offset_s: float = 1.0, *, quality: int = 80) -> bytes:
    """Return one representative frame of *media* as JPEG bytes."""

    frame = media.still_frame(offset_s)
    if frame is None:
        raise AnalysisError("Could not capture frame from video.")
    return encode_jpeg(frame, quality=quality)


class GeminiAnalysisService:
    """Describe still frames with the Gemini ``generateContent`` REST API."""

    def __init__(
        self,
        api_key: str | None,
        *,
        model: str = DEFAULT_GEMINI_MODEL,
        prompt: str = ANALYSIS_PROMPT,
        timeout: float = 60.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._api_key = api_key
        self.model = model
        self.prompt = prompt
        self.timeout = float(timeout)
        self._transport = transport
        if not api_key:
            logger.warning("Gemini API key not set; analysis requests will fail")

    def build_request(self, image: bytes) -> dict[str, object]:
        return {
            "contents": [
                {
                    "parts": [
                        {
                            "inline_data": {
                                "mime_type": "image/jpeg",
                                "data": base64.b64encode(image).decode("ascii"),
                            }
                        },
                        {"text": self.prompt},
                    ]
                }
            ]
        }

    async def analyze(self, image: bytes) -> str:
        if not self._api_key:
            raise AnalysisError("Gemini API key is not configured.")
        url = GEMINI_ENDPOINT.format(model=self.model)
        async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
            try:
                response = await client.post(
                    url,
                    json=self.build_request(image),
                    headers={"x-goog-api-key": self._api_key},
                )
                response.raise_for_status()
            except httpx.HTTPError as exc:
                raise AnalysisError(f"Gemini API request failed: {exc}") from exc
        return self._extract_text(response.json())

    @staticmethod
    def _extract_text(payload: object) -> str:
        try:
            parts = payload["candidates"][0]["content"]["parts"]  # type: ignore[index]
        except (KeyError, IndexError, TypeError) as exc:
            raise AnalysisError("Gemini API returned no description") from exc
        text = "".join(part.get("text", "") for part in parts if isinstance(part, dict)).strip()
        if not text:
            raise AnalysisError("Gemini API returned no description")
        return text


__all__ = [
    "ANALYSIS_PROMPT",
    "AnalysisError",
    "AnalysisService",
    "DEFAULT_GEMINI_MODEL",
    "GeminiAnalysisService",
    "capture_still",
]
