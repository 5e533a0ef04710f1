from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Any, AsyncIterator
from urllib.parse import urlparse

import httpx

from slanglab.core.config import get_settings
from slanglab.core.errors import EvidenceConfigMissingError, EvidenceProviderError
from slanglab.domain.types import utc_now
from slanglab.services.resilience import call_external


SERPAPI_URL = "https://serpapi.com/search"
_INTEGRATION = "evidence.serpapi"


def rank_score(position: int) -> int:
    # Search rank stands in for relevance: first result 100, ten points per rank below.
    return max(0, 100 - (max(position, 1) - 1) * 10)


def _source_name(url: str) -> str:
    host = (urlparse(url).hostname or "").lower()
    return host[4:] if host.startswith("www.") else host


def map_organic_results(payload: dict[str, Any], *, limit: int) -> list[dict[str, Any]]:
    observed_at = utc_now().isoformat()
    candidates: list[dict[str, Any]] = []
    for index, result in enumerate((payload.get("organic_results") or [])[:limit]):
        link = result.get("link")
        if not link:
            continue
        candidates.append(
            {
                "source": _source_name(link) or "web",
                "url": link,
                "title": result.get("title"),
                "snippet": result.get("snippet") or "",
                "score": rank_score(int(result.get("position") or index + 1)),
                "observed_at": observed_at,
            }
        )
    return candidates


class SerpApiEvidenceProvider:
    def __init__(self, client: httpx.AsyncClient | None = None) -> None:
        self._settings = get_settings()
        self._client = client

    @asynccontextmanager
    async def _client_scope(self) -> AsyncIterator[httpx.AsyncClient]:
        # Injected clients belong to the caller; otherwise one client per call, closed on exit.
        if self._client is not None:
            yield self._client
            return
        timeout_s = self._settings.ext_call_timeout_ms / 1000.0
        async with httpx.AsyncClient(timeout=timeout_s) as client:
            yield client

    async def search(self, phrase: str) -> list[dict[str, Any]]:
        api_key = self._settings.serpapi_api_key
        if not api_key:
            raise EvidenceConfigMissingError("SERPAPI_API_KEY is required for the SerpAPI evidence provider")

        limit = self._settings.evidence_results_per_query
        params = {
            "q": f"{phrase} slang meaning definition",
            "api_key": api_key,
            "num": limit,
            "engine": "google",
        }
        try:
            async with self._client_scope() as client:
                response = await call_external(_INTEGRATION, lambda: client.get(SERPAPI_URL, params=params))
        except (httpx.HTTPError, TimeoutError) as exc:
            raise EvidenceProviderError("SerpAPI request failed.") from exc

        if response.status_code >= 400:
            error = EvidenceProviderError(f"SerpAPI error: {response.status_code}")
            setattr(error, "status_code", response.status_code)
            raise error

        try:
            payload = response.json()
        except ValueError as exc:
            raise EvidenceProviderError("SerpAPI returned a non-JSON body.") from exc
        return map_organic_results(payload, limit=limit)
