"""
Gemini generateContent client.
Two request shapes are used: free text with Google Search grounding, and
JSON constrained by a response schema. The API rejects the combination, so
asking for both is a programming error.
"""

from __future__ import annotations

import base64
import logging
from dataclasses import dataclass
from typing import Any, Protocol

import httpx

from .config import get_settings
from .errors import CredentialsMissing, ReasoningUnavailable
from .models import GenerationResult, GroundingSource

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MediaPart:
    data: bytes
    mime_type: str


class ReasoningClient(Protocol):
    async def generate(
        self,
        prompt: str,
        *,
        response_schema: dict[str, Any] | None = None,
        use_search: bool = False,
        media: MediaPart | None = None,
    ) -> GenerationResult:
        ...


class GeminiClient:
    def __init__(
        self,
        *,
        api_key: str | None = None,
        model: str | None = None,
        base_url: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        settings = get_settings()
        self._api_key = api_key if api_key is not None else settings.gemini_api_key
        self._model = model or settings.gemini_model
        self._base_url = (base_url or settings.gemini_base_url).rstrip("/")
        self._timeout = timeout or settings.http_timeout
        self._transport = transport

    @property
    def configured(self) -> bool:
        return bool(self._api_key)

    async def generate(
        self,
        prompt: str,
        *,
        response_schema: dict[str, Any] | None = None,
        use_search: bool = False,
        media: MediaPart | None = None,
    ) -> GenerationResult:
        if response_schema is not None and use_search:
            raise ValueError("Search grounding cannot be combined with a response schema")
        if not self._api_key:
            raise CredentialsMissing("Gemini")
        body = self._build_body(prompt, response_schema=response_schema, use_search=use_search, media=media)
        endpoint = f"{self._base_url}/models/{self._model}:generateContent"
        headers = {"x-goog-api-key": self._api_key}
        async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
            try:
                response = await client.post(endpoint, json=body, headers=headers)
                response.raise_for_status()
                payload = response.json()
            except httpx.HTTPStatusError as exc:
                logger.error("Gemini returned %s", exc.response.status_code)
                raise ReasoningUnavailable(
                    f"Gemini request failed: {exc.response.status_code}",
                    status_code=exc.response.status_code,
                ) from exc
            except (httpx.HTTPError, ValueError) as exc:
                logger.error("Gemini request failed: %s", exc)
                raise ReasoningUnavailable(f"Gemini request failed: {exc}") from exc
        return self._parse(payload)

    @staticmethod
    def _build_body(
        prompt: str,
        *,
        response_schema: dict[str, Any] | None,
        use_search: bool,
        media: MediaPart | None,
    ) -> dict[str, Any]:
        parts: list[dict[str, Any]] = []
        if media is not None:
            parts.append(
                {
                    "inline_data": {
                        "mime_type": media.mime_type,
                        "data": base64.b64encode(media.data).decode("ascii"),
                    }
                }
            )
        parts.append({"text": prompt})
        body: dict[str, Any] = {"contents": [{"role": "user", "parts": parts}]}
        if use_search:
            body["tools"] = [{"google_search": {}}]
        if response_schema is not None:
            body["generationConfig"] = {
                "responseMimeType": "application/json",
                "responseSchema": response_schema,
            }
        return body

    @staticmethod
    def _parse(payload: Any) -> GenerationResult:
        if not isinstance(payload, dict):
            return GenerationResult()
        candidates = payload.get("candidates") or []
        if not candidates or not isinstance(candidates[0], dict):
            return GenerationResult()
        candidate = candidates[0]
        parts = (candidate.get("content") or {}).get("parts") or []
        text = "".join(part.get("text", "") for part in parts if isinstance(part, dict))
        chunks = (candidate.get("groundingMetadata") or {}).get("groundingChunks") or []
        citations = []
        for chunk in chunks:
            web = chunk.get("web") if isinstance(chunk, dict) else None
            if isinstance(web, dict) and web.get("uri") and web.get("title"):
                citations.append(GroundingSource(title=web["title"], uri=web["uri"]))
        return GenerationResult(text=text, citations=citations)
