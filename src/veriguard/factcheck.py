"""
Google Fact Check Tools integration.
Prior published fact-checks are gathered as extra context for claim
verification; the registry is auxiliary, so failures degrade to no context.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

import httpx

from .config import get_settings
from .models import FactCheckRecord, GroundingSource

logger = logging.getLogger(__name__)


@dataclass
class RegistryContext:
    context: str = ""
    sources: list[GroundingSource] = field(default_factory=list)
    records: list[FactCheckRecord] = field(default_factory=list)


class FactCheckRegistry:
    def __init__(
        self,
        *,
        api_key: str | None = None,
        base_url: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        settings = get_settings()
        self._api_key = api_key if api_key is not None else settings.registry_api_key
        self._base_url = (base_url or settings.fact_check_base_url).rstrip("/")
        self._timeout = timeout or settings.http_timeout
        self._transport = transport

    async def search(self, query: str) -> RegistryContext:
        if not self._api_key:
            logger.warning("Fact check registry skipped: no API key configured")
            return RegistryContext()
        params = {"query": query, "key": self._api_key}
        async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
            try:
                response = await client.get(f"{self._base_url}/claims:search", params=params)
                response.raise_for_status()
                payload = response.json()
            except (httpx.HTTPError, ValueError) as exc:
                logger.warning("Fact check registry unavailable: %s", exc)
                return RegistryContext()
        if not isinstance(payload, dict):
            return RegistryContext()
        return self._parse(payload.get("claims"))

    @staticmethod
    def _parse(claims: Any) -> RegistryContext:
        if not isinstance(claims, list) or not claims:
            return RegistryContext()
        records: list[FactCheckRecord] = []
        sources: list[GroundingSource] = []
        lines = ["Existing verified fact checks found via Google Fact Check Tools API:"]
        for claim in claims:
            if not isinstance(claim, dict):
                continue
            reviews = claim.get("claimReview") or []
            review = reviews[0] if reviews and isinstance(reviews[0], dict) else None
            if review is None:
                continue
            text = claim.get("text") or ""
            publisher = (review.get("publisher") or {}).get("name") or "Unknown Source"
            rating = review.get("textualRating") or "Unspecified"
            record = FactCheckRecord(
                claim=text,
                publisher=publisher,
                rating=rating,
                url=review.get("url"),
                title=review.get("title"),
            )
            records.append(record)
            lines.append(f'- Claim: "{text}"\n  Rating: {rating} by {publisher}')
            if record.url:
                sources.append(
                    GroundingSource(
                        title=f"[Fact Check] {publisher}: {record.title or text}",
                        uri=record.url,
                    )
                )
        if not records:
            return RegistryContext()
        return RegistryContext(context="\n".join(lines) + "\n", sources=sources, records=records)
